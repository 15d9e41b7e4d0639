import os
import sys
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure the project root (containing database.py, models.py, ...) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from database import Base, get_db
import models  # noqa: F401  (registers tables on Base)
from core.duel_manager import DuelManager
from core.battle_manager import BattleManager
from models import VoteValue

T0 = datetime(2024, 1, 1, 12, 0, 0)

A = "alice"
B = "bob"


@pytest.fixture()
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def client(session_factory):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def active_contest(db):
    """
    Factory: accepted A-vs-B contest, A offensive, in set_trick at T0.
    Returns the contest id.
    """
    def _make(player_a=A, player_b=B, now=T0):
        created = DuelManager.create_challenge(db, player_a, player_b, "Alice", "Bob")
        contest_id = created.contest["id"]
        DuelManager.respond_to_challenge(db, contest_id, player_b, True, now=now)
        return contest_id
    return _make


@pytest.fixture()
def play_to_judge(db):
    """
    Factory: run one set + response so the contest is waiting on a judgement.
    Returns the set turn id.
    """
    def _play(contest_id, setter, defender, now=T0):
        set_result = DuelManager.submit_move(db, contest_id, setter, "kickflip", "clip://set", 4000, now=now)
        DuelManager.submit_move(db, contest_id, defender, "kickflip", "clip://resp", 4200, now=now)
        return set_result.turn["id"]
    return _play


@pytest.fixture()
def voting_battle(db):
    """Factory: battle between A (creator) and B with voting open at T0. Returns the battle id."""
    def _make(creator=A, opponent=B, now=T0):
        battle = BattleManager.create_battle(db, creator)
        battle_id = battle.id
        BattleManager.join_battle(db, battle_id, opponent)
        BattleManager.initialize_voting(db, f"init-{battle_id}", battle_id, now=now)
        return battle_id
    return _make


def vote(db, battle_id, voter, value, event_id=None, now=T0):
    return BattleManager.cast_vote(db, event_id or f"vote-{battle_id}-{voter}-{value}", battle_id, voter,
                                   VoteValue(value), now=now)
