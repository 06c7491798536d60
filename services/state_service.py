"""
State version 服務

前端靠短輪詢 GET /api/games/{game_id}/state 取得 state_version，
版本號變了才重新抓回合資料
"""
import logging
from typing import Callable, Protocol

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from models import Game

logger = logging.getLogger(__name__)


class StateNotifier(Protocol):
    async def notify_game_changed(self, game_id: int) -> None:
        ...


def bump_state_version(db: Session, game_id: int, reason: str) -> bool:
    """
    遞增遊戲的 state_version（不 commit，交由外層 transaction 處理）

    返回：
        True 如果遊戲存在並已遞增，False 否則
    """
    # 在 DB 端原子遞增
    updated = db.query(Game).filter(Game.id == game_id).update(
        {Game.state_version: Game.state_version + 1}
    )
    if not updated:
        logger.warning(f"Cannot bump state version, game {game_id} not found (reason={reason})")
        return False

    logger.debug(f"Game {game_id} state_version bumped ({reason})")
    return True


class StateVersionNotifier:
    """
    以 state_version 通知遊戲狀態改變

    使用獨立的 session，在 ActInRound 的 transaction commit 之後才執行
    """

    def __init__(self, session_factory: Callable[[], Session], reason: str = "round_action"):
        self.session_factory = session_factory
        self.reason = reason

    def _notify(self, game_id: int) -> None:
        db = self.session_factory()
        try:
            if bump_state_version(db, game_id, reason=self.reason):
                db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def notify_game_changed(self, game_id: int) -> None:
        await run_in_threadpool(self._notify, game_id)
