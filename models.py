"""
資料模型

Game 1-* Player、Game 1-* Round、Round 1-* RoundAction

Round 是唯一會被並發修改的資源：
- actions 只能透過 record_action() 追加
- version 是樂觀鎖（SQLAlchemy version_id_col），每次寫入 rounds 都會遞增
"""
import enum
from collections import Counter
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GameStatus(str, enum.Enum):
    WAITING = "WAITING"
    PLAYING = "PLAYING"
    FINISHED = "FINISHED"


class RoundStatus(str, enum.Enum):
    OPEN = "OPEN"            # 接受玩家動作
    COMPLETE = "COMPLETE"    # 所有人都已提交，等待結算
    FINISHED = "FINISHED"    # 結算完成，不可再修改


class RoundActionType(str, enum.Enum):
    BET = "BET"
    PLAY_CARD = "PLAY_CARD"
    VOTE = "VOTE"


class Game(Base):
    __tablename__ = "games"

    id = Column(Integer, primary_key=True)
    code = Column(String(6), unique=True, nullable=False, index=True)
    status = Column(Enum(GameStatus), nullable=False, default=GameStatus.WAITING)
    max_rounds = Column(Integer, nullable=False, default=10)
    current_round = Column(Integer, nullable=False, default=0)
    state_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    players = relationship("Player", back_populates="game", order_by="Player.id")
    rounds = relationship("Round", back_populates="game", order_by="Round.round_number")


class Player(Base):
    __tablename__ = "players"

    id = Column(Integer, primary_key=True)
    game_id = Column(Integer, ForeignKey("games.id"), nullable=False, index=True)
    nickname = Column(String(50), nullable=False)
    display_name = Column(String(50), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    game = relationship("Game", back_populates="players")


class Round(Base):
    __tablename__ = "rounds"
    __table_args__ = (
        UniqueConstraint("game_id", "round_number", name="uq_round_number_per_game"),
    )

    id = Column(Integer, primary_key=True)
    game_id = Column(Integer, ForeignKey("games.id"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    status = Column(Enum(RoundStatus), nullable=False, default=RoundStatus.OPEN)
    version = Column(Integer, nullable=False)
    last_action_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    game = relationship("Game", back_populates="rounds")
    actions = relationship(
        "RoundAction",
        back_populates="round",
        order_by="RoundAction.sequence",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    def acted_player_ids(self) -> set:
        return {action.player_id for action in self.actions}

    def expected_player_ids(self) -> set:
        """這個回合應該出手的玩家：所屬遊戲內所有 active 玩家"""
        if self.game is None:
            return set()
        return {player.id for player in self.game.players if player.is_active}

    def can_player_act_in(self, player_id: int) -> bool:
        """
        玩家現在能不能在這個回合出手

        - 回合必須是 OPEN（COMPLETE / FINISHED 都不接受）
        - 玩家必須是遊戲內的 active 玩家
        - 玩家在這個回合還沒有動作

        一旦玩家出過手，這個判斷在回合剩下的時間內永遠是 False
        """
        if self.status != RoundStatus.OPEN:
            return False
        if player_id not in self.expected_player_ids():
            return False
        return player_id not in self.acted_player_ids()

    def everybody_played(self) -> bool:
        """每位應出手的玩家都恰好有一個動作（不快取，每次重算）"""
        expected = self.expected_player_ids()
        if not expected:
            return False
        counts = Counter(action.player_id for action in self.actions)
        return all(counts[player_id] == 1 for player_id in expected)

    def record_action(self, action: "RoundAction") -> None:
        """
        追加一個動作（按提交順序編號）

        同時更新 last_action_at，確保 rounds 這一列一定會被 UPDATE，
        讓 version 樂觀鎖檢查生效
        """
        action.sequence = len(self.actions) + 1
        self.actions.append(action)
        self.last_action_at = utcnow()

    def discard_action(self, action: "RoundAction", previous_status: RoundStatus, previous_last_action_at) -> None:
        """
        撤銷 record_action（以及同時的狀態轉換），寫入失敗時使用

        只還原還載入在記憶體裡的屬性：rollback 之後已 expire 的屬性
        下次存取會從 DB 重新讀取，不需要還原，也不能在這裡觸發 lazy load
        """
        loaded = inspect(self).dict
        if "actions" in loaded and action in self.actions:
            self.actions.remove(action)
        if "status" in loaded:
            self.status = previous_status
        if "last_action_at" in loaded:
            self.last_action_at = previous_last_action_at


class RoundAction(Base):
    __tablename__ = "round_actions"
    __table_args__ = (
        UniqueConstraint("round_id", "player_id", name="uq_one_action_per_player"),
        UniqueConstraint("round_id", "sequence", name="uq_action_sequence"),
    )

    id = Column(Integer, primary_key=True)
    round_id = Column(Integer, ForeignKey("rounds.id"), nullable=False, index=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    action_type = Column(Enum(RoundActionType), nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    round = relationship("Round", back_populates="actions")
    player = relationship("Player")

    @property
    def typed_payload(self):
        # 避免 circular import
        from services.action_service import parse_payload
        return parse_payload(self.action_type, self.payload)
