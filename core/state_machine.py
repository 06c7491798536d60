"""
狀態機：集中管理 Game 與 Round 的狀態轉換

所有 status 的修改都必須經過這裡，非法轉換一律拋 InvalidStateTransition

Round:  OPEN -> COMPLETE -> FINISHED
Game:   WAITING -> PLAYING -> FINISHED
"""
import logging

from models import Game, GameStatus, Round, RoundStatus, utcnow
from core.exceptions import InvalidStateTransition

logger = logging.getLogger(__name__)


class RoundStateMachine:
    TRANSITIONS = {
        RoundStatus.OPEN: {RoundStatus.COMPLETE},
        RoundStatus.COMPLETE: {RoundStatus.FINISHED},
        RoundStatus.FINISHED: set(),
    }

    @classmethod
    def can_transition(cls, current: RoundStatus, new: RoundStatus) -> bool:
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def transition(cls, round_obj: Round, new_status: RoundStatus) -> Round:
        """
        轉換回合狀態（只改記憶體中的物件，由呼叫者負責存檔）

        異常：
            InvalidStateTransition: 不允許的轉換
        """
        current = round_obj.status
        if not cls.can_transition(current, new_status):
            raise InvalidStateTransition(
                f"Round {round_obj.id} cannot go from {current.value} to {new_status.value}"
            )

        round_obj.status = new_status
        if new_status == RoundStatus.FINISHED:
            round_obj.finished_at = utcnow()

        logger.info(f"Round {round_obj.id}: {current.value} -> {new_status.value}")
        return round_obj


class GameStateMachine:
    TRANSITIONS = {
        GameStatus.WAITING: {GameStatus.PLAYING},
        GameStatus.PLAYING: {GameStatus.FINISHED},
        GameStatus.FINISHED: set(),
    }

    @classmethod
    def transition(cls, game: Game, new_status: GameStatus) -> Game:
        current = game.status
        if new_status not in cls.TRANSITIONS.get(current, set()):
            raise InvalidStateTransition(
                f"Game {game.id} cannot go from {current.value} to {new_status.value}"
            )

        game.status = new_status
        logger.info(f"Game {game.id}: {current.value} -> {new_status.value}")
        return game
