"""
Game Manager：管理 Game 的完整生命週期

職責：
1. 建立 Game
2. 玩家加入
3. 開始遊戲（狀態轉換 + 開第一回合）
4. 查詢 Game / 當前回合

回合內的出手與結算不在這裡，由 ActInRound / FinishRound 負責
"""
from typing import Optional

from sqlalchemy.orm import Session
import logging

from models import Game, GameStatus, Player, Round, RoundStatus
from core.state_machine import GameStateMachine
from core.exceptions import (
    GameNotAcceptingPlayers,
    GameNotFound,
    InvalidPlayerCount,
)
from services.naming_service import generate_display_name, generate_game_code
from database import get_settings, transactional

logger = logging.getLogger(__name__)


class GameManager:
    """Game 生命週期管理器"""

    @staticmethod
    @transactional
    def create_game(db: Session, max_rounds: Optional[int] = None) -> Game:
        """
        建立新遊戲

        參數：
            db: SQLAlchemy Session
            max_rounds: 回合數上限（預設取 Settings.default_max_rounds）

        注意：
            - Game code 碰撞機率極低（26^6），但仍會檢查唯一性
        """
        code = generate_game_code()
        while db.query(Game).filter(Game.code == code).first():
            code = generate_game_code()
            logger.warning(f"Game code collision detected, regenerating: {code}")

        game = Game(
            code=code,
            status=GameStatus.WAITING,
            max_rounds=max_rounds or get_settings().default_max_rounds,
            current_round=0,
            state_version=0,
        )
        db.add(game)
        db.flush()

        logger.info(f"Created game {game.id} with code {code}")
        return game

    @staticmethod
    @transactional
    def join_game(db: Session, code: str, nickname: str) -> Player:
        """
        玩家加入遊戲

        前置條件：
            Game 狀態必須是 WAITING

        異常：
            GameNotFound: Game 不存在
            GameNotAcceptingPlayers: 遊戲已經開始
        """
        game = GameManager.get_game_by_code(db, code)
        if game.status != GameStatus.WAITING:
            raise GameNotAcceptingPlayers(
                f"Game {code} is not accepting players (status: {game.status.value})"
            )

        player = Player(
            game_id=game.id,
            nickname=nickname,
            display_name=generate_display_name(game.id, db),
            is_active=True,
        )
        db.add(player)
        db.flush()

        logger.info(f"Player {player.id} ({nickname}) joined game {game.id} as {player.display_name}")
        return player

    @staticmethod
    @transactional
    def start_game(db: Session, game_id: int) -> Round:
        """
        開始遊戲（WAITING -> PLAYING）並開第一回合

        前置條件：
        1. Game 必須存在
        2. Game 狀態必須是 WAITING
        3. active 玩家數量 >= 2

        返回：
            第一回合

        異常：
            GameNotFound: Game 不存在
            InvalidPlayerCount: 玩家數量不足
            InvalidStateTransition: Game 狀態不是 WAITING
        """
        game = GameManager.get_game_by_id(db, game_id)

        player_count = GameManager.get_player_count(db, game_id)
        if player_count < 2:
            raise InvalidPlayerCount(f"Need at least 2 players to start game, got {player_count}")

        GameStateMachine.transition(game, GameStatus.PLAYING)

        first_round = Round(round_number=1, status=RoundStatus.OPEN)
        game.rounds.append(first_round)
        game.current_round = 1
        db.flush()

        logger.info(f"Started game {game_id} with {player_count} players, round {first_round.id} open")
        return first_round

    @staticmethod
    def get_game_by_code(db: Session, code: str) -> Game:
        game = db.query(Game).filter(Game.code == code.upper()).first()
        if not game:
            raise GameNotFound(f"with code {code}")
        return game

    @staticmethod
    def get_game_by_id(db: Session, game_id: int) -> Game:
        game = db.get(Game, game_id)
        if not game:
            raise GameNotFound(game_id)
        return game

    @staticmethod
    def get_player_count(db: Session, game_id: int) -> int:
        """取得遊戲內 active 玩家數量"""
        return db.query(Player).filter(
            Player.game_id == game_id,
            Player.is_active == True  # noqa: E712
        ).count()

    @staticmethod
    def get_current_round(db: Session, game_id: int) -> Optional[Round]:
        game = GameManager.get_game_by_id(db, game_id)
        if game.current_round == 0:
            return None
        return db.query(Round).filter(
            Round.game_id == game_id,
            Round.round_number == game.current_round
        ).first()
