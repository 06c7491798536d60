"""
Repository：Round / Player 的存取

ActInRound 只依賴 RoundRepository / PlayerRepository 這兩個介面；
這裡提供 SQLAlchemy 版本的實作。

SQLAlchemy Session 是同步的，所以每個操作都丟到 threadpool 執行，
避免卡住 event loop
"""
import logging
from typing import Optional, Protocol

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from models import Game, Player, Round
from core.exceptions import (
    ActionAlreadySubmitted,
    ConcurrentRoundModification,
    RoundPersistenceError,
)
from core.locks import with_round_lock

logger = logging.getLogger(__name__)


class RoundRepository(Protocol):
    async def get_by_id(self, round_id: int, *, for_update: bool = False) -> Optional[Round]:
        ...

    async def save_round(self, round_obj: Round) -> None:
        ...


class PlayerRepository(Protocol):
    async def get_by_id(self, player_id: int) -> Optional[Player]:
        ...


def _is_duplicate_player_action(error: IntegrityError) -> bool:
    message = str(error.orig)
    return "uq_one_action_per_player" in message or "round_actions.player_id" in message


class SqlAlchemyRoundRepository:
    def __init__(self, db: Session):
        self.db = db

    def _get_by_id(self, round_id: int, for_update: bool) -> Optional[Round]:
        # 資格 / 完成判斷會讀 game.players，結算會讀 game.rounds，一次載入避免在 event loop 上 lazy load
        options = (
            selectinload(Round.actions),
            selectinload(Round.game).selectinload(Game.players),
            selectinload(Round.game).selectinload(Game.rounds),
        )
        if for_update:
            return with_round_lock(round_id, self.db).options(*options).first()
        return (
            self.db.query(Round)
            .filter(Round.id == round_id)
            .options(*options)
            .populate_existing()
            .first()
        )

    async def get_by_id(self, round_id: int, *, for_update: bool = False) -> Optional[Round]:
        """
        取得回合（一律從 DB 重新讀取，不用 session 快取）

        for_update=True 時使用 SELECT ... FOR UPDATE，鎖會持續到下一次 commit / rollback
        """
        return await run_in_threadpool(self._get_by_id, round_id, for_update)

    def _save_round(self, round_obj: Round) -> None:
        round_id = round_obj.id
        try:
            self.db.add(round_obj)
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning(f"Stale write rejected for round {round_id}")
            raise ConcurrentRoundModification(round_id)
        except IntegrityError as e:
            self.db.rollback()
            if _is_duplicate_player_action(e):
                raise ActionAlreadySubmitted("Player has already acted in this round.")
            # sequence 撞號：其他行程先寫入了同一個位置
            raise ConcurrentRoundModification(round_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save round {round_id}: {e}", exc_info=True)
            raise RoundPersistenceError(f"Could not save round {round_id}.") from e

        # commit 會 expire 所有物件，在 threadpool 裡先重新載入，呼叫端之後讀屬性不會再碰 DB
        try:
            self._get_by_id(round_id, False)
        except SQLAlchemyError as e:
            logger.warning(f"Round {round_id} saved but could not be reloaded: {e}")

    async def save_round(self, round_obj: Round) -> None:
        """
        寫入回合（含新追加的動作、狀態變更、連帶的 Game / 下一回合）

        異常：
            ConcurrentRoundModification: version 不符，或 sequence 衝突
            ActionAlreadySubmitted: 同一玩家在同一回合已有動作
            RoundPersistenceError: 其他 DB 錯誤
        """
        await run_in_threadpool(self._save_round, round_obj)


class SqlAlchemyPlayerRepository:
    def __init__(self, db: Session):
        self.db = db

    def _get_by_id(self, player_id: int) -> Optional[Player]:
        return self.db.get(Player, player_id)

    async def get_by_id(self, player_id: int) -> Optional[Player]:
        return await run_in_threadpool(self._get_by_id, player_id)
