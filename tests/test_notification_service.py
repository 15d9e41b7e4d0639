from models import Contest
from schemas import NotificationType
from services import notification_service
from services.analytics_service import emit_event


def _contest(**kwargs):
    values = dict(id="c1", player_a_id="a", player_b_id="b", player_a_name="Alice", player_b_name=None)
    values.update(kwargs)
    return Contest(**values)


def test_your_turn_names_the_other_player():
    contest = _contest()
    to_b = notification_service.your_turn(contest, "b")
    to_a = notification_service.your_turn(contest, "a")

    assert to_b.type is NotificationType.YOUR_TURN
    assert to_b.data == {"contest_id": "c1", "opponent_name": "Alice"}
    assert to_a.data["opponent_name"] == "Opponent"


def test_game_over_goes_to_both_players():
    notifications = notification_service.game_over(_contest(), "a")
    assert [(n.recipient_id, n.data["you_won"]) for n in notifications] == [("a", True), ("b", False)]


def test_deadline_warning_goes_to_current_turn():
    notification = notification_service.deadline_warning(_contest(current_turn="b"), 42)
    assert notification.recipient_id == "b"
    assert notification.data["minutes_remaining"] == 42


def test_emit_event_uses_sink():
    seen = []
    ok = emit_event("a", "move_submitted", {"contest_id": "c1"}, sink=lambda *args: seen.append(args))
    assert ok
    assert seen == [("a", "move_submitted", {"contest_id": "c1"})]


def test_emit_event_failure_is_swallowed():
    def broken(user_id, event, properties):
        raise ConnectionError("analytics down")

    assert emit_event("a", "move_submitted", sink=broken) is False
    assert emit_event(None, "vote_timeout") is True
