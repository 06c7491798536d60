"""
FinishRound：回合結算

ActInRound 在回合轉成 COMPLETE 之後呼叫，冪等：
- FINISHED：直接回傳成功
- OPEN：還有人沒出手，回傳失敗
- COMPLETE：轉成 FINISHED，接著開下一回合；已達 max_rounds 則結束遊戲
"""
import logging
from typing import Protocol

from models import GameStatus, Round, RoundStatus
from core.exceptions import MaxRoundsReached, RoundGameException
from core.results import FailureKind, Result
from core.state_machine import GameStateMachine, RoundStateMachine
from services.repositories import RoundRepository

logger = logging.getLogger(__name__)


class RoundFinisher(Protocol):
    async def perform(self, round_obj: Round) -> Result:
        ...


def open_next_round(round_obj: Round) -> Round:
    """
    為同一個遊戲開下一回合（只改記憶體，跟著 round_obj 一起存檔）

    異常：
        MaxRoundsReached: 已經是最後一回合
    """
    game = round_obj.game
    next_number = round_obj.round_number + 1
    if next_number > game.max_rounds:
        raise MaxRoundsReached(f"Game {game.id} already played {game.max_rounds} rounds")

    next_round = Round(round_number=next_number, status=RoundStatus.OPEN)
    # 從 Game.rounds 這一側加入，才會跟著 save-update cascade 進 session
    game.rounds.append(next_round)
    game.current_round = next_number
    return next_round


class FinishRound:
    def __init__(self, rounds: RoundRepository):
        self.rounds = rounds

    async def perform(self, round_obj: Round) -> Result:
        if round_obj.status == RoundStatus.FINISHED:
            return Result.ok(round_obj)
        if round_obj.status != RoundStatus.COMPLETE:
            return Result.fail(FailureKind.FINISHING_FAILURE, [f"Round {round_obj.id} is not complete."])

        try:
            RoundStateMachine.transition(round_obj, RoundStatus.FINISHED)

            game = round_obj.game
            if round_obj.round_number < game.max_rounds:
                next_round = open_next_round(round_obj)
                logger.info(f"Game {game.id}: opened round {next_round.round_number}")
            else:
                GameStateMachine.transition(game, GameStatus.FINISHED)
                logger.info(f"Game {game.id} finished after {game.max_rounds} rounds")

            await self.rounds.save_round(round_obj)
        except RoundGameException as e:
            logger.error(f"Failed to finish round {round_obj.id}: {e}")
            return Result.fail(FailureKind.FINISHING_FAILURE, [str(e)])

        return Result.ok(round_obj)
