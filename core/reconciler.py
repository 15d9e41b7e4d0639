"""
Timeout Reconciler: periodic sweep that force-resolves elapsed deadlines

Each sweep:
1. Selects candidate ids (plain reads, no locks)
2. Resolves each row in its own session and transaction; the manager
   re-reads the row under lock and re-validates before mutating
3. Emits analytics and hands notifications to the dispatcher after commit

A row that fails is logged and counted; the sweep moves on. Overlapping
sweeps are skipped, not queued.
"""
import asyncio
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import or_

from core.battle_manager import BattleManager
from core.duel_manager import DuelManager
from database import SessionLocal, Settings, get_settings
from models import BattleStatus, BattleVoteState, Contest, ContestStatus
from schemas import Notification, SweepReport, TimeoutResolution
from services.analytics_service import emit_event
from services.deadline_service import utcnow

logger = logging.getLogger(__name__)

NotificationDispatcher = Callable[[List[Notification]], None]

# resolution kind -> (report counter, analytics event)
_OUTCOMES = {
    "vote_timeout": ("duel_timeouts", "vote_timeout"),
    "turn_forfeit": ("duel_forfeits", "game_forfeited"),
    "disconnect_forfeit": ("disconnect_forfeits", "game_forfeited"),
    "hard_cap_forfeit": ("hard_cap_forfeits", "game_forfeited"),
    "deadline_warning": ("deadline_warnings", None),
    "battle_timeout": ("battle_timeouts", "battle_completed"),
    "battle_disconnect_forfeit": ("disconnect_forfeits", "battle_completed"),
}


def log_dispatcher(notifications: List[Notification]) -> None:
    """Default dispatcher: log each notification."""
    for notification in notifications:
        logger.info(f"Notify {notification.recipient_id}: {notification.type.value} {notification.data}")


class TimeoutReconciler:
    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher or log_dispatcher
        self.settings = settings or get_settings()
        self._running = threading.Lock()
        self._stop = None

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    # ============ Sweep ============

    def run_once(self, now: Optional[datetime] = None) -> SweepReport:
        """
        One full sweep.

        Returns:
            SweepReport with per-kind counts and every notification produced.
            `skipped=True` when another sweep is still in progress.
        """
        if not self._running.acquire(blocking=False):
            logger.debug("Previous sweep still running, skipping")
            return SweepReport(skipped=True)

        try:
            now = now or utcnow()
            report = SweepReport()

            # Hard cap before turn deadlines: a capped game is closed, not timed out
            self._sweep(report, self._hard_cap_candidates(now), DuelManager.resolve_hard_cap, now)
            self._sweep(report, self._expired_contest_candidates(now), DuelManager.resolve_expired_deadline, now)
            self._sweep(report, self._paused_contest_candidates(now), DuelManager.resolve_disconnect_timeout, now)
            self._sweep(report, self._warning_candidates(now), DuelManager.issue_deadline_warning, now)
            self._sweep(report, self._expired_vote_candidates(now), BattleManager.resolve_vote_timeout, now)
            self._sweep(report, self._disconnected_battle_candidates(now), BattleManager.resolve_disconnect_timeout, now)

            if report.notifications:
                self._dispatch(report.notifications)

            if report.errors or report.notifications:
                logger.info(
                    f"Sweep done: {report.duel_timeouts} duel timeouts, {report.duel_forfeits} forfeits, "
                    f"{report.disconnect_forfeits} disconnect forfeits, {report.battle_timeouts} battle timeouts, "
                    f"{report.deadline_warnings} warnings, {report.hard_cap_forfeits} hard cap, "
                    f"{report.errors} errors"
                )
            return report
        finally:
            self._running.release()

    def _sweep(self, report: SweepReport, ids: List[str],
               resolve: Callable[..., Optional[TimeoutResolution]], now: datetime) -> None:
        for row_id in ids:
            db = self.session_factory()
            try:
                resolution = resolve(db, row_id, now)
            except Exception as e:
                report.errors += 1
                logger.error(f"Failed to resolve {resolve.__name__} for {row_id}: {e}", exc_info=True)
                continue
            finally:
                db.close()

            if resolution is None:
                continue
            self._record(report, resolution)

    def _record(self, report: SweepReport, resolution: TimeoutResolution) -> None:
        counter, event = _OUTCOMES[resolution.kind]
        setattr(report, counter, getattr(report, counter) + 1)
        report.notifications.extend(resolution.notifications)

        if event:
            emit_event(resolution.winner_id, event, {
                "target_id": resolution.target_id,
                "reason": resolution.kind,
                "event_id": resolution.event_id,
            })

    def _dispatch(self, notifications: List[Notification]) -> None:
        try:
            self.dispatcher(notifications)
        except Exception as e:
            logger.error(f"Notification dispatch failed ({len(notifications)} dropped): {e}", exc_info=True)

    # ============ Candidate queries ============

    def _ids(self, query_fn) -> List[str]:
        db = self.session_factory()
        try:
            return [row[0] for row in query_fn(db).all()]
        finally:
            db.close()

    def _expired_contest_candidates(self, now: datetime) -> List[str]:
        return self._ids(lambda db: db.query(Contest.id).filter(
            Contest.status == ContestStatus.ACTIVE,
            Contest.deadline_at < now,
        ))

    def _paused_contest_candidates(self, now: datetime) -> List[str]:
        cutoff = now - timedelta(seconds=self.settings.reconnect_window_seconds)
        return self._ids(lambda db: db.query(Contest.id).filter(
            Contest.status == ContestStatus.PAUSED,
            or_(Contest.player_a_disconnected_at < cutoff, Contest.player_b_disconnected_at < cutoff),
        ))

    def _warning_candidates(self, now: datetime) -> List[str]:
        horizon = now + timedelta(seconds=self.settings.deadline_warning_seconds)
        return self._ids(lambda db: db.query(Contest.id).filter(
            Contest.status == ContestStatus.ACTIVE,
            Contest.deadline_at > now,
            Contest.deadline_at <= horizon,
            or_(Contest.deadline_warning_for.is_(None), Contest.deadline_warning_for != Contest.deadline_at),
        ))

    def _hard_cap_candidates(self, now: datetime) -> List[str]:
        cutoff = now - timedelta(days=self.settings.game_hard_cap_days)
        return self._ids(lambda db: db.query(Contest.id).filter(
            Contest.status == ContestStatus.ACTIVE,
            Contest.created_at < cutoff,
        ))

    def _expired_vote_candidates(self, now: datetime) -> List[str]:
        return self._ids(lambda db: db.query(BattleVoteState.battle_id).filter(
            BattleVoteState.status == BattleStatus.VOTING,
            BattleVoteState.vote_deadline_at < now,
        ))

    def _disconnected_battle_candidates(self, now: datetime) -> List[str]:
        cutoff = now - timedelta(seconds=self.settings.reconnect_window_seconds)
        return self._ids(lambda db: db.query(BattleVoteState.battle_id).filter(
            BattleVoteState.status == BattleStatus.VOTING,
            or_(
                BattleVoteState.creator_disconnected_at < cutoff,
                BattleVoteState.opponent_disconnected_at < cutoff,
            ),
        ))

    # ============ Background loop ============

    async def run_forever(self) -> None:
        """Sweep every `reconciler_interval_seconds` until stop() is called."""
        self._stop = asyncio.Event()
        interval = self.settings.reconciler_interval_seconds
        logger.info(f"Timeout reconciler started (interval={interval}s)")

        while not self._stop.is_set():
            try:
                await asyncio.to_thread(self.run_once)
            except Exception as e:
                logger.error(f"Reconciler sweep crashed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Timeout reconciler stopped")

    def stop(self) -> None:
        if self._stop is not None:
            self._stop.set()
