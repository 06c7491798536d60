"""
Round API Endpoints

重點：
1. submit_action 只是 ActInRound 的薄包裝，所有規則都在 core
2. Result 的失敗種類對應到 HTTP status code，body 為 {"errors": [...]}
3. 狀態更新由 state_version 控制，前端靠 /state 短輪詢
"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import logging

from database import SessionLocal, get_db
from models import Round
from schemas import ActionSubmit, ErrorResponse, RoundResponse
from core.act_in_round import ActInRound, ActInRoundParams
from core.finish_round import FinishRound
from core.locks import RoundLocks
from core.results import FailureKind
from services.repositories import SqlAlchemyPlayerRepository, SqlAlchemyRoundRepository
from services.state_service import StateVersionNotifier

router = APIRouter(prefix="/api/rounds", tags=["rounds"])
logger = logging.getLogger(__name__)

# 整個行程共用一份，同一回合的請求才會排隊
round_locks = RoundLocks()

FAILURE_STATUS = {
    FailureKind.VALIDATION_ERROR: 422,
    FailureKind.NOT_FOUND: 404,
    FailureKind.INELIGIBLE_ACTION: 409,
    FailureKind.INVALID_ACTION: 400,
    FailureKind.PERSISTENCE_FAILURE: 503,
    FailureKind.FINISHING_FAILURE: 500,
}


def get_session_factory():
    """FastAPI dependency：通知用的 session factory（測試時可覆寫）"""
    return SessionLocal


def get_act_in_round(
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
) -> ActInRound:
    rounds = SqlAlchemyRoundRepository(db)
    return ActInRound(
        rounds=rounds,
        players=SqlAlchemyPlayerRepository(db),
        finisher=FinishRound(rounds),
        notifier=StateVersionNotifier(session_factory),
        locks=round_locks,
    )


@router.post(
    "/{round_id}/actions",
    response_model=RoundResponse,
    responses={status: {"model": ErrorResponse} for status in set(FAILURE_STATUS.values())},
)
async def submit_action(
    round_id: int,
    action_data: ActionSubmit,
    act_in_round: ActInRound = Depends(get_act_in_round),
):
    """
    提交玩家動作

    流程：
    1. 組成 ActInRoundParams（用 id 讓 ActInRound 自己讀取最新狀態）
    2. 執行 ActInRound
    3. 失敗：依 FailureKind 回傳對應的 status code
    """
    logger.info(
        f"Submitting action for player {action_data.player_id} "
        f"in round {round_id}: {action_data.action_type.value}"
    )

    result = await act_in_round.perform(ActInRoundParams(
        action_type=action_data.action_type,
        action_payload=action_data.payload,
        round_id=round_id,
        player_id=action_data.player_id,
    ))

    if result.is_failed:
        logger.info(f"Action rejected in round {round_id} ({result.kind.value}): {result.errors}")
        return JSONResponse(
            status_code=FAILURE_STATUS[result.kind],
            content={"errors": result.errors},
        )

    return await run_in_threadpool(RoundResponse.model_validate, result.value)


@router.get("/{round_id}", response_model=RoundResponse)
def get_round(round_id: int, db: Session = Depends(get_db)):
    round_obj = db.get(Round, round_id)
    if not round_obj:
        raise HTTPException(status_code=404, detail="Round not found")
    return RoundResponse.model_validate(round_obj)
