"""ActInRound against the SQLAlchemy repositories on a temporary SQLite database."""

import asyncio

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from core.act_in_round import ActInRound, ActInRoundParams
from core.exceptions import ConcurrentRoundModification
from core.finish_round import FinishRound
from core.results import FailureKind
from models import Game, GameStatus, Round, RoundActionType, RoundStatus
from services.action_service import create_round_action
from services.repositories import SqlAlchemyPlayerRepository, SqlAlchemyRoundRepository
from services.state_service import StateVersionNotifier, bump_state_version


def build(db, session_factory):
    rounds = SqlAlchemyRoundRepository(db)
    return ActInRound(
        rounds=rounds,
        players=SqlAlchemyPlayerRepository(db),
        finisher=FinishRound(rounds),
        notifier=StateVersionNotifier(session_factory),
        conflict_retries=2,
    )


def bet(player_id, round_id, amount=10):
    return ActInRoundParams(
        action_type=RoundActionType.BET,
        action_payload={"amount": amount},
        round_id=round_id,
        player_id=player_id,
    )


def test_round_is_played_to_completion(db, session_factory, seeded):
    act = build(db, session_factory)
    alice, bob = seeded["player_ids"]
    round_id = seeded["round_id"]

    first = asyncio.run(act.perform(bet(alice, round_id)))
    second = asyncio.run(act.perform(ActInRoundParams(
        action_type=RoundActionType.VOTE,
        action_payload={"target_player_id": alice},
        round_id=round_id,
        player_id=bob,
    )))

    assert first.is_success
    assert second.is_success

    db.expire_all()
    round_obj = db.get(Round, round_id)
    assert round_obj.status == RoundStatus.FINISHED
    assert round_obj.finished_at is not None
    assert [(a.player_id, a.sequence) for a in round_obj.actions] == [(alice, 1), (bob, 2)]
    assert round_obj.actions[1].typed_payload.target_player_id == alice

    game = db.get(Game, seeded["game_id"])
    assert game.current_round == 2
    assert game.state_version == 2
    next_round = db.query(Round).filter_by(game_id=game.id, round_number=2).one()
    assert next_round.status == RoundStatus.OPEN
    assert next_round.actions == []


def test_duplicate_action_leaves_round_untouched(db, session_factory, seeded):
    act = build(db, session_factory)
    alice, _ = seeded["player_ids"]
    round_id = seeded["round_id"]

    asyncio.run(act.perform(bet(alice, round_id)))
    result = asyncio.run(act.perform(bet(alice, round_id, amount=99)))

    assert result.kind == FailureKind.INELIGIBLE_ACTION
    db.expire_all()
    assert [a.payload for a in db.get(Round, round_id).actions] == [{"amount": 10}]


def test_missing_ids_are_not_found(db, session_factory, seeded):
    act = build(db, session_factory)

    missing_round = asyncio.run(act.perform(bet(seeded["player_ids"][0], 12345)))
    missing_player = asyncio.run(act.perform(bet(12345, seeded["round_id"])))

    assert missing_round.kind == FailureKind.NOT_FOUND
    assert missing_player.kind == FailureKind.NOT_FOUND
    db.expire_all()
    assert db.get(Round, seeded["round_id"]).actions == []


def test_stale_save_raises_conflict(session_factory, seeded):
    alice, bob = seeded["player_ids"]
    db_a, db_b = session_factory(), session_factory()
    try:
        round_a = db_a.get(Round, seeded["round_id"])
        round_b = db_b.get(Round, seeded["round_id"])
        assert round_b.actions == []

        round_a.record_action(create_round_action(RoundActionType.BET, alice, {"amount": 1}))
        asyncio.run(SqlAlchemyRoundRepository(db_a).save_round(round_a))

        round_b.record_action(create_round_action(RoundActionType.BET, bob, {"amount": 1}))
        with pytest.raises(ConcurrentRoundModification):
            asyncio.run(SqlAlchemyRoundRepository(db_b).save_round(round_b))
    finally:
        db_a.close()
        db_b.close()


def test_stale_round_reference_is_reloaded_and_rejected(session_factory, seeded):
    alice, _ = seeded["player_ids"]
    round_id = seeded["round_id"]
    db_a, db_b = session_factory(), session_factory()
    try:
        stale = db_b.get(Round, round_id)
        assert stale.actions == []

        winner = asyncio.run(build(db_a, session_factory).perform(bet(alice, round_id)))
        loser = asyncio.run(build(db_b, session_factory).perform(ActInRoundParams(
            action_type=RoundActionType.BET,
            action_payload={"amount": 3},
            round=stale,
            player_id=alice,
        )))

        assert winner.is_success
        assert loser.kind == FailureKind.INELIGIBLE_ACTION
        db_b.expire_all()
        assert len(db_b.get(Round, round_id).actions) == 1
    finally:
        db_a.close()
        db_b.close()


def test_stale_round_reference_retry_completes_round_once(session_factory, seeded):
    alice, bob = seeded["player_ids"]
    round_id = seeded["round_id"]
    db_a, db_b = session_factory(), session_factory()
    try:
        stale = db_b.get(Round, round_id)
        assert stale.actions == []

        asyncio.run(build(db_a, session_factory).perform(bet(alice, round_id)))
        result = asyncio.run(build(db_b, session_factory).perform(ActInRoundParams(
            action_type=RoundActionType.BET,
            action_payload={"amount": 3},
            round=stale,
            player_id=bob,
        )))

        assert result.is_success
        assert result.value.status == RoundStatus.FINISHED
        assert [a.player_id for a in result.value.actions] == [alice, bob]
        rounds = db_b.query(Round).filter_by(game_id=seeded["game_id"]).all()
        assert sorted(r.round_number for r in rounds) == [1, 2]
    finally:
        db_a.close()
        db_b.close()


def test_lookup_for_update(db, seeded):
    repo = SqlAlchemyRoundRepository(db)

    round_obj = asyncio.run(repo.get_by_id(seeded["round_id"], for_update=True))

    assert round_obj.id == seeded["round_id"]
    assert asyncio.run(repo.get_by_id(999)) is None


def test_lookup_loads_game_and_players(db, seeded):
    repo = SqlAlchemyRoundRepository(db)

    round_obj = asyncio.run(repo.get_by_id(seeded["round_id"]))

    assert "actions" not in inspect(round_obj).unloaded
    assert "game" not in inspect(round_obj).unloaded
    assert "players" not in inspect(round_obj.game).unloaded
    assert "rounds" not in inspect(round_obj.game).unloaded


def test_saved_round_is_readable_without_another_query(db, seeded):
    repo = SqlAlchemyRoundRepository(db)
    alice, _ = seeded["player_ids"]
    round_obj = asyncio.run(repo.get_by_id(seeded["round_id"]))

    round_obj.record_action(create_round_action(RoundActionType.BET, alice, {"amount": 5}))
    asyncio.run(repo.save_round(round_obj))

    assert not inspect(round_obj).unloaded & {"status", "actions", "game", "game_id"}
    assert "players" not in inspect(round_obj.game).unloaded
    assert [a.sequence for a in round_obj.actions] == [1]


def test_failed_commit_can_be_resubmitted(db, session_factory, seeded, monkeypatch):
    alice, bob = seeded["player_ids"]
    round_id = seeded["round_id"]
    act = build(db, session_factory)
    assert asyncio.run(act.perform(bet(alice, round_id))).is_success

    commit = db.commit
    failures = [OperationalError("COMMIT", {}, Exception("database is locked"))]

    def flaky_commit():
        if failures:
            raise failures.pop()
        commit()

    monkeypatch.setattr(db, "commit", flaky_commit)

    failed = asyncio.run(act.perform(bet(bob, round_id)))
    retried = asyncio.run(act.perform(bet(bob, round_id)))

    assert failed.kind == FailureKind.PERSISTENCE_FAILURE
    assert failed.errors == [f"Could not save round {round_id}."]
    assert retried.is_success
    db.expire_all()
    round_obj = db.get(Round, round_id)
    assert round_obj.status == RoundStatus.FINISHED
    assert [(a.player_id, a.sequence) for a in round_obj.actions] == [(alice, 1), (bob, 2)]


def test_player_lookup(db, seeded):
    repo = SqlAlchemyPlayerRepository(db)

    player = asyncio.run(repo.get_by_id(seeded["player_ids"][1]))

    assert player.nickname == "bob"
    assert asyncio.run(repo.get_by_id(999)) is None


def test_last_round_finishes_game(db, session_factory, seeded):
    game = db.get(Game, seeded["game_id"])
    game.max_rounds = 1
    db.commit()
    act = build(db, session_factory)

    for player_id in seeded["player_ids"]:
        assert asyncio.run(act.perform(bet(player_id, seeded["round_id"]))).is_success

    db.expire_all()
    game = db.get(Game, seeded["game_id"])
    assert game.status == GameStatus.FINISHED
    assert [r.round_number for r in game.rounds] == [1]


def test_bump_state_version_for_missing_game(db):
    assert bump_state_version(db, 404, reason="test") is False


def test_notifier_bumps_in_its_own_session(db, session_factory, seeded):
    notifier = StateVersionNotifier(session_factory)

    asyncio.run(notifier.notify_game_changed(seeded["game_id"]))
    asyncio.run(notifier.notify_game_changed(seeded["game_id"]))

    db.expire_all()
    assert db.get(Game, seeded["game_id"]).state_version == 2
