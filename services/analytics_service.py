"""
Analytics service: fire-and-forget server events

Events are emitted only after the owning transaction has committed. A
failing sink is logged and otherwise ignored: an event may be lost, but
game state is never affected by it.
"""
import logging
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)
event_logger = logging.getLogger("analytics")

EventSink = Callable[[str, str, Dict[str, Any]], None]


def log_sink(user_id: str, event: str, properties: Dict[str, Any]) -> None:
    """Default sink: one structured log line per event."""
    event_logger.info(f"{event} user={user_id} {properties}")


def emit_event(user_id: Optional[str], event: str, properties: Optional[Dict[str, Any]] = None,
               sink: Optional[EventSink] = None) -> bool:
    """
    Emit one analytics event.

    Args:
        user_id: the acting (or winning) player
        event: event name, e.g. "move_submitted", "battle_completed"
        properties: event payload
        sink: destination; defaults to log_sink

    Returns:
        True if the sink accepted the event, False if it failed.
    """
    sink = sink or log_sink
    try:
        sink(user_id or "system", event, dict(properties or {}))
        return True
    except Exception as e:
        logger.warning(f"Analytics event {event} dropped: {e}", exc_info=True)
        return False
