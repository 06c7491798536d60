"""
ActInRound：玩家在回合中出手

流程：
1. 參數驗證（列出所有違反的規則）
2. 取得 Round / Player（直接給物件，或用 id 查詢；查不到立即停止）
3. 檢查玩家能不能出手
4. 建立動作並追加到回合
5. 寫入回合（如果所有人都出手了，同一次寫入把回合轉成 COMPLETE）
6. 只有完成 OPEN -> COMPLETE 轉換的那個請求會呼叫 RoundFinisher
7. 成功後通知 StateNotifier（失敗只記 log）

並發安全：
- 3～5 在 per-round lock 內執行，同一回合的請求依序處理
- 跨行程由 Round.version 樂觀鎖擋下，衝突時重新讀取回合再試一次

所有異常都在這裡轉成 Result，不會往外拋
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from models import Player, Round, RoundStatus
from core.exceptions import (
    ConcurrentRoundModification,
    PlayerCannotAct,
    PlayerNotFound,
    RoundGameException,
    RoundNotFound,
    RoundPersistenceError,
)
from core.finish_round import RoundFinisher
from core.locks import RoundLocks
from core.results import FailureKind, Result
from core.state_machine import RoundStateMachine
from database import get_settings
from services.action_service import create_round_action
from services.repositories import PlayerRepository, RoundRepository
from services.state_service import StateNotifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActInRoundParams:
    action_type: Any = None
    action_payload: Optional[Dict[str, Any]] = None
    round_id: Optional[int] = None
    round: Optional[Round] = None
    player_id: Optional[int] = None
    player: Optional[Player] = None


def _not_empty(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (dict, list, tuple, set)):
        return len(value) > 0
    if isinstance(value, int) and not isinstance(value, bool):
        return value != 0
    return True


class ActInRoundValidator:
    """結構驗證：不看領域規則，只檢查參數有沒有給齊"""

    RULES = [
        (lambda p: _not_empty(p.action_type), "'Action Type' must not be empty."),
        (lambda p: _not_empty(p.action_payload), "'Action Payload' must not be empty."),
        (lambda p: p.round is not None or _not_empty(p.round_id), "'Round Id' must not be empty."),
        (lambda p: p.round_id is not None or p.round is not None, "'Round' must not be empty."),
        (lambda p: p.player is not None or _not_empty(p.player_id), "'Player Id' must not be empty."),
        (lambda p: p.player_id is not None or p.player is not None, "'Player' must not be empty."),
    ]

    def validate(self, params: ActInRoundParams) -> List[str]:
        return [message for rule, message in self.RULES if not rule(params)]


class ActInRound:
    def __init__(
        self,
        rounds: RoundRepository,
        players: PlayerRepository,
        finisher: RoundFinisher,
        notifier: Optional[StateNotifier] = None,
        locks: Optional[RoundLocks] = None,
        conflict_retries: Optional[int] = None,
    ):
        self.rounds = rounds
        self.players = players
        self.finisher = finisher
        self.notifier = notifier
        self.locks = locks if locks is not None else RoundLocks()
        if conflict_retries is None:
            conflict_retries = get_settings().act_conflict_retries
        self.conflict_retries = conflict_retries

    async def perform(self, params: ActInRoundParams) -> Result:
        errors = ActInRoundValidator().validate(params)
        if errors:
            return Result.fail(FailureKind.VALIDATION_ERROR, errors)

        round_key = params.round.id if params.round is not None else params.round_id

        try:
            async with self.locks.hold(round_key):
                round_obj, completed_now = await self._record_action(params)
        except RoundGameException as e:
            return self._failure(e)
        except SQLAlchemyError as e:
            # 例如讀取 Round 關聯時的 DB 錯誤
            logger.error(f"Database error while acting in round {round_key}: {e}", exc_info=True)
            return Result.fail(
                FailureKind.PERSISTENCE_FAILURE,
                [f"Could not record action in round {round_key}."],
            )

        if completed_now:
            finish_result = await self._finish(round_obj)
            if finish_result.is_failed:
                return finish_result
            round_obj = finish_result.value or round_obj

        await self._notify(round_obj.game_id)
        return Result.ok(round_obj)

    async def _record_action(self, params: ActInRoundParams):
        """3～5：必須在 per-round lock 內呼叫"""
        round_obj = params.round
        round_id = round_obj.id if round_obj is not None else params.round_id
        attempts = self.conflict_retries + 1

        for attempt in range(attempts):
            if round_obj is None:
                # 衝突後改用 SELECT ... FOR UPDATE 重新讀取
                round_obj = await self._load_round(round_id, for_update=attempt > 0)
            player = params.player or await self._load_player(params.player_id)
            player_id = player.id

            if not round_obj.can_player_act_in(player_id):
                raise PlayerCannotAct(player_id, round_id)

            action = create_round_action(params.action_type, player_id, params.action_payload)
            previous_status = round_obj.status
            previous_last_action_at = round_obj.last_action_at
            round_obj.record_action(action)
            action_label = f"{action.action_type.value} #{action.sequence}"

            completed_now = round_obj.everybody_played()
            if completed_now:
                RoundStateMachine.transition(round_obj, RoundStatus.COMPLETE)

            try:
                await self._save(round_id, round_obj)
            except ConcurrentRoundModification:
                round_obj.discard_action(action, previous_status, previous_last_action_at)
                logger.warning(
                    f"Conflict saving round {round_id} (attempt {attempt + 1}/{attempts}), reloading"
                )
                round_obj = None
                continue
            except RoundGameException:
                round_obj.discard_action(action, previous_status, previous_last_action_at)
                raise

            logger.info(f"Player {player_id} acted in round {round_id}: {action_label}")
            return round_obj, completed_now

        raise RoundPersistenceError(
            f"Round {round_id} kept changing concurrently, gave up after {attempts} attempts."
        )

    async def _load_round(self, round_id, for_update: bool = False) -> Round:
        try:
            round_obj = await self.rounds.get_by_id(round_id, for_update=for_update)
        except RoundGameException:
            raise
        except Exception as e:
            logger.error(f"Failed to load round {round_id}: {e}", exc_info=True)
            raise RoundPersistenceError(f"Could not load round {round_id}.") from e

        if round_obj is None:
            logger.warning(f"Round {round_id} not found")
            raise RoundNotFound(round_id)
        return round_obj

    async def _load_player(self, player_id) -> Player:
        try:
            player = await self.players.get_by_id(player_id)
        except RoundGameException:
            raise
        except Exception as e:
            logger.error(f"Failed to load player {player_id}: {e}", exc_info=True)
            raise RoundPersistenceError(f"Could not load player {player_id}.") from e

        if player is None:
            logger.warning(f"Player {player_id} not found")
            raise PlayerNotFound(player_id)
        return player

    async def _save(self, round_id, round_obj: Round) -> None:
        try:
            await self.rounds.save_round(round_obj)
        except RoundGameException:
            raise
        except Exception as e:
            # round_obj 可能已經被 rollback expire，這裡只用事先取得的 id
            logger.error(f"Failed to save round {round_id}: {e}", exc_info=True)
            raise RoundPersistenceError(f"Could not save round {round_id}.") from e

    async def _finish(self, round_obj: Round) -> Result:
        logger.info(f"Everybody played in round {round_obj.id}, finishing")
        try:
            result = await self.finisher.perform(round_obj)
        except Exception as e:
            logger.error(f"Finishing round {round_obj.id} raised: {e}", exc_info=True)
            return Result.fail(
                FailureKind.FINISHING_FAILURE,
                [f"Round {round_obj.id} could not be finished: {e}"],
            )

        if result.is_failed:
            logger.error(f"Finishing round {round_obj.id} failed: {result.errors}")
            return Result.fail(FailureKind.FINISHING_FAILURE, result.errors)
        return result

    async def _notify(self, game_id) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify_game_changed(game_id)
        except Exception as e:
            logger.error(f"State notification for game {game_id} failed: {e}", exc_info=True)

    @staticmethod
    def _failure(error: RoundGameException) -> Result:
        reasons = getattr(error, "reasons", None) or [str(error)]
        return Result.fail(error.kind, reasons)
