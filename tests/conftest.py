import asyncio

import pytest
from sqlalchemy.orm import sessionmaker

from database import Base, create_db_engine
from models import Game, GameStatus, Player, Round, RoundStatus
from core.results import Result
from core.state_machine import RoundStateMachine


# =============================================================================
# In-memory collaborators
# =============================================================================


class FakeRoundRepository:
    def __init__(self, *rounds):
        self.rounds = {round_obj.id: round_obj for round_obj in rounds}
        self.saved = []
        self.fail_on_save = None
        # 依序在前幾次寫入丟出的錯誤（每次寫入取一個）
        self.save_errors = []

    async def get_by_id(self, round_id, *, for_update=False):
        await asyncio.sleep(0)
        return self.rounds.get(round_id)

    async def save_round(self, round_obj):
        # 讓其他 task 有機會在寫入途中插隊
        await asyncio.sleep(0)
        if self.save_errors:
            raise self.save_errors.pop(0)
        if self.fail_on_save is not None:
            raise self.fail_on_save
        self.saved.append((round_obj.id, len(round_obj.actions), round_obj.status))


class FakePlayerRepository:
    def __init__(self, *players):
        self.players = {player.id: player for player in players}

    async def get_by_id(self, player_id):
        await asyncio.sleep(0)
        return self.players.get(player_id)


class RecordingFinisher:
    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result
        self.error = error

    async def perform(self, round_obj):
        self.calls.append(round_obj.id)
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result
        RoundStateMachine.transition(round_obj, RoundStatus.FINISHED)
        return Result.ok(round_obj)


class RecordingNotifier:
    def __init__(self, error=None):
        self.game_ids = []
        self.error = error

    async def notify_game_changed(self, game_id):
        self.game_ids.append(game_id)
        if self.error is not None:
            raise self.error


def make_game(player_count=2, max_rounds=3, game_id=1, round_id=10):
    """建立不經過 DB 的 Game / Player / Round（transient ORM 物件）"""
    game = Game(
        id=game_id,
        code="ABCDEF",
        status=GameStatus.PLAYING,
        max_rounds=max_rounds,
        current_round=1,
        state_version=0,
    )
    players = [
        Player(id=i, game_id=game_id, game=game, nickname=f"p{i}", display_name=f"Player {i}", is_active=True)
        for i in range(1, player_count + 1)
    ]
    round_obj = Round(id=round_id, game_id=game_id, game=game, round_number=1, status=RoundStatus.OPEN)
    return game, players, round_obj


# =============================================================================
# SQLite fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seeded(db):
    """一個進行中的遊戲：兩位玩家、第一回合 OPEN"""
    game = Game(
        code="QWERTY",
        status=GameStatus.PLAYING,
        max_rounds=2,
        current_round=1,
        state_version=0,
    )
    db.add(game)
    db.flush()
    players = [
        Player(game_id=game.id, nickname=name, display_name=name, is_active=True)
        for name in ("alice", "bob")
    ]
    db.add_all(players)
    round_obj = Round(round_number=1, status=RoundStatus.OPEN)
    game.rounds.append(round_obj)
    db.commit()
    return {
        "game_id": game.id,
        "player_ids": [player.id for player in players],
        "round_id": round_obj.id,
    }
