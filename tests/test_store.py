import pytest

from core.store import get_for_update, insert_if_absent, run_in_transaction, update
from models import Battle, BattleStatus, Contest, Turn


def test_get_for_update_missing_row(db):
    assert get_for_update(db, Contest, "missing") is None
    with pytest.raises(ValueError):
        get_for_update(db, Turn, 1)


def test_insert_if_absent(db):
    row, created = insert_if_absent(db, Battle(id="b1", creator_id="a", status=BattleStatus.WAITING))
    db.commit()
    assert created

    existing, created = insert_if_absent(db, Battle(id="b1", creator_id="someone-else"))
    assert not created
    assert existing.creator_id == "a"


def test_update_rejects_unknown_attribute(db):
    battle = Battle(id="b2", creator_id="a")
    update(battle, {"opponent_id": "b"})
    assert battle.opponent_id == "b"
    assert battle.updated_at is not None
    with pytest.raises(AttributeError):
        update(battle, {"not_a_column": 1})


def test_run_in_transaction_commits_and_rolls_back(db, session_factory):
    run_in_transaction(db, lambda session: session.add(Battle(id="b3", creator_id="a")))

    def failing(session):
        session.add(Battle(id="b4", creator_id="a"))
        raise RuntimeError("abort")

    with pytest.raises(RuntimeError):
        run_in_transaction(db, failing)

    check = session_factory()
    try:
        ids = {battle.id for battle in check.query(Battle).all()}
    finally:
        check.close()
    assert ids == {"b3"}
