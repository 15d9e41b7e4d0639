"""
Duel Manager: SKATE contest lifecycle and turn/judge logic

Responsibilities:
1. Challenge lifecycle (create, accept/decline, forfeit)
2. Move submission (set trick / response)
3. Judging and setter bail (letters, role swaps, game over)
4. Disputes against missed verdicts
5. Disconnect / reconnect pausing
6. Timeout resolution paths used by the reconciler

Every mutating call follows the same shape:
    lock the contest row -> check the ledger -> validate -> mutate
    -> append the event id -> commit -> emit analytics -> return notifications

No game state is kept in memory between calls.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.exceptions import (
    ContestNotFound,
    DeadlineExpired,
    DisputeAlreadyResolved,
    DisputeAlreadyUsed,
    DisputeNotFound,
    InvalidState,
    NotAParticipant,
    NotYourTurn,
    PhaseRejectsAction,
    ResponseRequiredBeforeJudging,
    TurnAlreadyJudged,
    TurnNotFound,
    WrongRole,
)
from core.ledger import append_event, generate_event_id, has_processed
from core.locks import with_contest_lock, with_dispute_lock, with_turn_lock
from core.state_machine import ContestStateMachine, ensure_roles, swap_roles
from database import get_settings, transactional
from models import (
    CompletionReason,
    Contest,
    ContestStatus,
    Dispute,
    Turn,
    TurnPhase,
    TurnResult,
    TurnType,
)
from schemas import DisputeResult, DuelActionResult, MoveResult, Notification, TimeoutResolution
from services import notification_service
from services.analytics_service import emit_event
from services.deadline_service import (
    deadline_sequence_key,
    disconnect_sequence_key,
    first_lapsed,
    is_expired,
    next_deadline,
    seconds_remaining,
    utcnow,
)
from services.letters_service import is_game_over, next_letters, previous_letters, resolve_player_name

logger = logging.getLogger(__name__)


def _load_locked(db: Session, contest_id: str) -> Contest:
    contest = with_contest_lock(contest_id, db).first()
    if not contest:
        raise ContestNotFound(contest_id)
    return contest


def _record_event(contest: Contest, event_id: Optional[str]) -> None:
    if event_id:
        contest.processed_event_ids = append_event(
            contest.processed_event_ids, event_id, get_settings().duel_ledger_size
        )


def _award_letter(contest: Contest, player_id: str) -> str:
    if player_id == contest.player_a_id:
        contest.player_a_letters = next_letters(contest.player_a_letters)
        return contest.player_a_letters
    contest.player_b_letters = next_letters(contest.player_b_letters)
    return contest.player_b_letters


def _finish_or_continue(contest: Contest, now: datetime) -> List[Notification]:
    """
    After letters and roles are settled: end the game if someone spelled
    SKATE, otherwise hand the set back to the (possibly new) offensive player.
    """
    over, loser = is_game_over(contest.player_a_letters, contest.player_b_letters)
    if over:
        winner_id = contest.player_b_id if loser == "a" else contest.player_a_id
        ContestStateMachine.complete(contest, winner_id, CompletionReason.LETTERS, now)
        return notification_service.game_over(contest, winner_id)

    ContestStateMachine.advance_phase(
        contest, TurnPhase.SET_TRICK, next_deadline(now, get_settings().turn_deadline_seconds)
    )
    return [notification_service.your_turn(contest, contest.offensive_player_id)]


def _replayed(contest: Contest, message: str = "Already processed") -> DuelActionResult:
    return DuelActionResult(
        already_processed=True,
        game_over=contest.status is ContestStatus.COMPLETED,
        winner_id=contest.winner_id,
        message=message,
        contest=contest.to_dict(),
    )


class DuelManager:
    """SKATE duel engine"""

    # ============ Lifecycle ============

    @staticmethod
    def create_challenge(
        db: Session,
        challenger_id: str,
        opponent_id: str,
        challenger_name: Optional[str] = None,
        opponent_name: Optional[str] = None,
    ) -> DuelActionResult:
        """
        Create a WAITING contest; the challenger will set first.

        Raises:
            InvalidState: challenging yourself
        """
        result = DuelManager._create_challenge(db, challenger_id, opponent_id, challenger_name, opponent_name)
        emit_event(challenger_id, "challenge_created", {
            "contest_id": result.contest["id"],
            "opponent_id": opponent_id,
        })
        return result

    @staticmethod
    @transactional
    def _create_challenge(db: Session, challenger_id: str, opponent_id: str,
                          challenger_name: Optional[str], opponent_name: Optional[str]) -> DuelActionResult:
        if challenger_id == opponent_id:
            raise InvalidState("Cannot challenge yourself")

        contest = Contest(
            player_a_id=challenger_id,
            player_b_id=opponent_id,
            player_a_name=challenger_name,
            player_b_name=opponent_name,
            status=ContestStatus.WAITING,
            offensive_player_id=challenger_id,
            defensive_player_id=opponent_id,
            player_a_letters="",
            player_b_letters="",
            processed_event_ids=[],
        )
        db.add(contest)
        db.flush()

        logger.info(f"Challenge {contest.id} created: {challenger_id} vs {opponent_id}")

        return DuelActionResult(
            message="Challenge sent.",
            contest=contest.to_dict(),
            notifications=[notification_service.challenge_received(contest)],
        )

    @staticmethod
    def respond_to_challenge(db: Session, contest_id: str, player_id: str, accept: bool,
                             event_id: Optional[str] = None, now: Optional[datetime] = None) -> DuelActionResult:
        result = DuelManager._respond_to_challenge(db, contest_id, player_id, accept, event_id, now or utcnow())
        if not result.already_processed:
            emit_event(player_id, "challenge_accepted" if accept else "challenge_declined", {"contest_id": contest_id})
        return result

    @staticmethod
    @transactional
    def _respond_to_challenge(db: Session, contest_id: str, player_id: str, accept: bool,
                              event_id: Optional[str], now: datetime) -> DuelActionResult:
        contest = _load_locked(db, contest_id)
        if has_processed(contest.processed_event_ids, event_id):
            return _replayed(contest)

        if not contest.is_participant(player_id):
            raise NotAParticipant(player_id, contest_id)
        if player_id != contest.player_b_id:
            raise WrongRole("Only the challenged player can respond")
        if contest.status is not ContestStatus.WAITING:
            raise InvalidState("Contest is not waiting for a response")

        if accept:
            ContestStateMachine.transition_status(contest, ContestStatus.ACTIVE)
            ContestStateMachine.advance_phase(
                contest, TurnPhase.SET_TRICK, next_deadline(now, get_settings().turn_deadline_seconds)
            )
            notifications = [notification_service.your_turn(contest, contest.current_turn)]
            message = "Game on."
        else:
            ContestStateMachine.complete(contest, None, CompletionReason.DECLINED, now)
            notifications = []
            message = "Challenge declined."

        contest.updated_at = now
        _record_event(contest, event_id)
        logger.info(f"Contest {contest_id} {'accepted' if accept else 'declined'} by {player_id}")

        return DuelActionResult(message=message, contest=contest.to_dict(), notifications=notifications)

    # ============ Move submission ============

    @staticmethod
    def submit_move(
        db: Session,
        contest_id: str,
        player_id: str,
        trick_description: str,
        media_ref: str,
        duration_ms: int,
        thumbnail_ref: Optional[str] = None,
        event_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MoveResult:
        """
        Submit a set trick or a response video.

        Error priority:
            1. ContestNotFound
            2. NotAParticipant
            3. InvalidState        contest not active
            4. NotYourTurn
            5. DeadlineExpired     the contest is NOT forfeited here; only the
                                   reconciler resolves timeouts
            6. PhaseRejectsAction  wrong role for the phase, or judge phase

        Returns:
            MoveResult with the new turn, a message, and at most one
            notification (to the defender after a set).
        """
        result = DuelManager._submit_move(
            db, contest_id, player_id, trick_description, media_ref,
            duration_ms, thumbnail_ref, event_id, now or utcnow()
        )
        if not result.already_processed:
            emit_event(player_id, "move_submitted", {
                "contest_id": contest_id,
                "turn_type": result.turn["turn_type"],
                "turn_number": result.turn["turn_number"],
            })
        return result

    @staticmethod
    @transactional
    def _submit_move(db: Session, contest_id: str, player_id: str, trick_description: str, media_ref: str,
                     duration_ms: int, thumbnail_ref: Optional[str], event_id: Optional[str],
                     now: datetime) -> MoveResult:
        # 1. Lock
        contest = _load_locked(db, contest_id)
        if has_processed(contest.processed_event_ids, event_id):
            return MoveResult(already_processed=True, contest=contest.to_dict(), message="Already processed")

        # 2. Validate in priority order
        if not contest.is_participant(player_id):
            raise NotAParticipant(player_id, contest_id)
        if contest.status is not ContestStatus.ACTIVE:
            raise InvalidState("Contest is not active")
        ensure_roles(contest)
        if contest.current_turn != player_id:
            raise NotYourTurn("Not your turn")
        if is_expired(contest.deadline_at, now):
            raise DeadlineExpired("Turn deadline has passed")

        # 3. Phase dispatch
        phase = contest.phase
        if phase is TurnPhase.SET_TRICK:
            if player_id != contest.offensive_player_id:
                raise PhaseRejectsAction("Only the offensive player may set a trick")
            turn_type = TurnType.SET
            next_phase = TurnPhase.RESPOND_TRICK
        elif phase is TurnPhase.RESPOND_TRICK:
            if player_id != contest.defensive_player_id:
                raise PhaseRejectsAction("Only the defensive player may respond")
            turn_type = TurnType.RESPONSE
            next_phase = TurnPhase.JUDGE
        elif phase is TurnPhase.JUDGE:
            raise PhaseRejectsAction("Current phase does not accept submissions")
        else:
            raise PhaseRejectsAction(f"Current phase {phase!r} does not accept submissions")

        # 4. Turn number = existing turns + 1
        turn_count = db.query(func.count(Turn.id)).filter(Turn.contest_id == contest_id).scalar() or 0
        player_name = notification_service.name_of(contest, player_id)

        turn = Turn(
            contest_id=contest_id,
            player_id=player_id,
            player_name=resolve_player_name(player_name),
            turn_number=turn_count + 1,
            turn_type=turn_type,
            trick_description=trick_description,
            media_ref=media_ref,
            duration_ms=duration_ms,
            thumbnail_ref=thumbnail_ref,
            result=TurnResult.PENDING,
            timed_out=False,
            created_at=now,
        )
        db.add(turn)

        # 5. Advance phase with a fresh deadline
        ContestStateMachine.advance_phase(
            contest, next_phase, next_deadline(now, get_settings().turn_deadline_seconds)
        )
        contest.updated_at = now
        _record_event(contest, event_id)
        db.flush()

        if turn_type is TurnType.SET:
            contest.last_trick_description = trick_description
            contest.last_trick_by = player_id
            message = "Trick set. Sent."
            notifications = [notification_service.your_turn(contest, contest.defensive_player_id)]
        else:
            message = "Response sent. Now judge the trick."
            notifications = []

        logger.info(
            f"Turn {turn.turn_number} ({turn_type.value}) submitted by {player_id} "
            f"in contest {contest_id}, phase -> {next_phase.value}"
        )

        return MoveResult(
            turn=turn.to_dict(),
            contest=contest.to_dict(),
            message=message,
            notifications=notifications,
        )

    # ============ Judging ============

    @staticmethod
    def judge(db: Session, contest_id: str, turn_id: int, judging_player_id: str, verdict: TurnResult,
              event_id: Optional[str] = None, now: Optional[datetime] = None) -> DuelActionResult:
        """
        Record the defender's verdict on the offensive player's trick.

        - MISSED: the defensive (judging) player takes the next letter,
          roles stay the same
        - LANDED: no letter, roles swap

        A second judge call on the same turn raises TurnAlreadyJudged, even
        when the first call already moved the contest to the next phase.
        """
        result = DuelManager._judge(db, contest_id, turn_id, judging_player_id, verdict, event_id, now or utcnow())
        if not result.already_processed:
            emit_event(judging_player_id, "trick_judged", {
                "contest_id": contest_id,
                "turn_id": turn_id,
                "result": verdict.value,
            })
            if result.game_over:
                emit_event(result.winner_id, "game_completed", {"contest_id": contest_id, "reason": "letters"})
        return result

    @staticmethod
    @transactional
    def _judge(db: Session, contest_id: str, turn_id: int, judging_player_id: str, verdict: TurnResult,
               event_id: Optional[str], now: datetime) -> DuelActionResult:
        if verdict not in (TurnResult.LANDED, TurnResult.MISSED):
            raise InvalidState(f"Verdict must be landed or missed, got {verdict.value}")

        contest = _load_locked(db, contest_id)
        if has_processed(contest.processed_event_ids, event_id):
            return _replayed(contest)

        if not contest.is_participant(judging_player_id):
            raise NotAParticipant(judging_player_id, contest_id)

        # Re-read the turn under lock: the race guard for concurrent judges
        turn = with_turn_lock(turn_id, db).first()
        if not turn or turn.contest_id != contest_id:
            raise TurnNotFound(turn_id)
        if turn.result is not TurnResult.PENDING:
            raise TurnAlreadyJudged(turn_id)

        if contest.status is ContestStatus.ACTIVE:
            ensure_roles(contest)
        if judging_player_id != contest.defensive_player_id:
            raise WrongRole("Only the defending player can judge")
        if contest.status is not ContestStatus.ACTIVE or contest.phase is not TurnPhase.JUDGE:
            raise PhaseRejectsAction("Contest is not in judging phase")
        if contest.current_turn != judging_player_id:
            raise NotYourTurn("Not your turn to judge")
        if turn.turn_type is not TurnType.SET:
            raise PhaseRejectsAction("Only a set trick can be judged")

        # Judge must have reciprocated before judging
        has_response = db.query(Turn.id).filter(
            Turn.contest_id == contest_id,
            Turn.player_id == judging_player_id,
            Turn.turn_type == TurnType.RESPONSE,
            Turn.turn_number > turn.turn_number,
        ).first() is not None
        if not has_response:
            raise ResponseRequiredBeforeJudging()

        turn.result = verdict
        turn.judged_by = judging_player_id
        turn.judged_at = now

        if verdict is TurnResult.MISSED:
            letters = _award_letter(contest, judging_player_id)
            message = "BAIL. Letter earned."
            logger.info(f"Contest {contest_id}: {judging_player_id} missed, letters now {letters!r}")
        else:
            swap_roles(contest)
            message = "LAND. Roles swap."
            logger.info(f"Contest {contest_id}: {judging_player_id} landed, roles swap")

        notifications = _finish_or_continue(contest, now)
        game_over = contest.status is ContestStatus.COMPLETED
        if game_over:
            message = "Game over."
            logger.info(f"Contest {contest_id} completed, winner {contest.winner_id}")

        contest.updated_at = now
        _record_event(contest, event_id)

        return DuelActionResult(
            game_over=game_over,
            winner_id=contest.winner_id,
            message=message,
            contest=contest.to_dict(),
            turn=turn.to_dict(),
            notifications=notifications,
        )

    # ============ Setter bail ============

    @staticmethod
    def setter_bail(db: Session, contest_id: str, player_id: str,
                    event_id: Optional[str] = None, now: Optional[datetime] = None) -> DuelActionResult:
        """
        The setter concedes their own trick: they take the letter and the
        defender becomes the setter.
        """
        result = DuelManager._setter_bail(db, contest_id, player_id, event_id, now or utcnow())
        if not result.already_processed:
            emit_event(player_id, "setter_bailed", {"contest_id": contest_id})
            if result.game_over:
                emit_event(result.winner_id, "game_completed", {"contest_id": contest_id, "reason": "letters"})
        return result

    @staticmethod
    @transactional
    def _setter_bail(db: Session, contest_id: str, player_id: str,
                     event_id: Optional[str], now: datetime) -> DuelActionResult:
        contest = _load_locked(db, contest_id)
        if has_processed(contest.processed_event_ids, event_id):
            return _replayed(contest)

        if not contest.is_participant(player_id):
            raise NotAParticipant(player_id, contest_id)
        if contest.status is not ContestStatus.ACTIVE:
            raise InvalidState("Contest is not active")
        ensure_roles(contest)
        if contest.offensive_player_id != player_id:
            raise WrongRole("Only the setter can declare a bail")
        if contest.phase is not TurnPhase.SET_TRICK:
            raise PhaseRejectsAction("Can only bail during set trick phase")

        _award_letter(contest, player_id)
        swap_roles(contest)
        notifications = _finish_or_continue(contest, now)

        game_over = contest.status is ContestStatus.COMPLETED
        message = (
            "You bailed your own trick. Game over."
            if game_over
            else "You bailed your own trick. Letter earned. Roles swap."
        )
        contest.updated_at = now
        _record_event(contest, event_id)

        logger.info(f"Contest {contest_id}: setter {player_id} bailed (game_over={game_over})")

        return DuelActionResult(
            game_over=game_over,
            winner_id=contest.winner_id,
            message=message,
            contest=contest.to_dict(),
            notifications=notifications,
        )

    # ============ Forfeit ============

    @staticmethod
    def forfeit(db: Session, contest_id: str, player_id: str,
                event_id: Optional[str] = None, now: Optional[datetime] = None) -> DuelActionResult:
        result = DuelManager._forfeit(db, contest_id, player_id, event_id, now or utcnow())
        if not result.already_processed:
            emit_event(player_id, "game_forfeited", {
                "contest_id": contest_id,
                "reason": CompletionReason.FORFEIT.value,
                "winner_id": result.winner_id,
            })
        return result

    @staticmethod
    @transactional
    def _forfeit(db: Session, contest_id: str, player_id: str,
                 event_id: Optional[str], now: datetime) -> DuelActionResult:
        contest = _load_locked(db, contest_id)
        if has_processed(contest.processed_event_ids, event_id):
            return _replayed(contest)

        if not contest.is_participant(player_id):
            raise NotAParticipant(player_id, contest_id)
        if contest.status not in (ContestStatus.ACTIVE, ContestStatus.PAUSED):
            raise InvalidState("Contest is not active")

        winner_id = contest.opponent_of(player_id)
        ContestStateMachine.complete(contest, winner_id, CompletionReason.FORFEIT, now)
        contest.updated_at = now
        _record_event(contest, event_id)

        logger.info(f"Contest {contest_id} forfeited by {player_id}, winner {winner_id}")

        return DuelActionResult(
            game_over=True,
            winner_id=winner_id,
            message="You forfeited.",
            contest=contest.to_dict(),
            notifications=[notification_service.opponent_forfeited(contest, winner_id)],
        )

    # ============ Disputes ============

    @staticmethod
    def file_dispute(db: Session, contest_id: str, player_id: str, turn_id: int,
                     event_id: Optional[str] = None, now: Optional[datetime] = None) -> DisputeResult:
        """
        Dispute a `missed` verdict on your own set trick.

        Each player gets one dispute per contest, and only while the disputed
        trick is still the latest set and nothing has been played since.

        Error priority:
            1. ContestNotFound
            2. NotAParticipant
            3. InvalidState        contest not active
            4. DisputeAlreadyUsed
            5. TurnNotFound
            6. InvalidState        turn of another contest, not a missed
                                   verdict, not your trick, not judged, or
                                   play has moved on
        """
        result = DuelManager._file_dispute(db, contest_id, player_id, turn_id, event_id, now or utcnow())
        if not result.already_processed:
            emit_event(player_id, "dispute_filed", {"contest_id": contest_id, "turn_id": turn_id})
        return result

    @staticmethod
    @transactional
    def _file_dispute(db: Session, contest_id: str, player_id: str, turn_id: int,
                      event_id: Optional[str], now: datetime) -> DisputeResult:
        contest = _load_locked(db, contest_id)
        if has_processed(contest.processed_event_ids, event_id):
            return DisputeResult(already_processed=True, message="Already processed", contest=contest.to_dict())

        if not contest.is_participant(player_id):
            raise NotAParticipant(player_id, contest_id)
        if contest.status is not ContestStatus.ACTIVE:
            raise InvalidState("Contest is not active")
        if contest.dispute_used_by(player_id):
            raise DisputeAlreadyUsed()

        turn = with_turn_lock(turn_id, db).first()
        if not turn:
            raise TurnNotFound(turn_id)
        if turn.contest_id != contest_id:
            raise InvalidState("Turn does not belong to this contest")
        if turn.result is not TurnResult.MISSED:
            raise InvalidState("Can only dispute a missed verdict")
        if turn.player_id != player_id:
            raise InvalidState("You can only dispute verdicts on your own tricks")
        if not turn.judged_by:
            raise InvalidState("Turn has not been judged yet")

        latest_set = db.query(func.max(Turn.turn_number)).filter(
            Turn.contest_id == contest_id,
            Turn.turn_type == TurnType.SET,
        ).scalar()
        if contest.phase is not TurnPhase.SET_TRICK or latest_set != turn.turn_number:
            raise InvalidState("Play has moved on since this verdict")

        contest.mark_dispute_used(player_id)
        dispute = Dispute(
            contest_id=contest_id,
            turn_id=turn_id,
            disputed_by=player_id,
            against_player_id=turn.judged_by,
            original_result=TurnResult.MISSED,
            created_at=now,
        )
        db.add(dispute)
        contest.updated_at = now
        _record_event(contest, event_id)
        db.flush()

        logger.info(f"Contest {contest_id}: {player_id} disputed turn {turn_id} judged by {turn.judged_by}")

        return DisputeResult(
            message="Dispute filed.",
            dispute=dispute.to_dict(),
            contest=contest.to_dict(),
            notifications=[notification_service.dispute_filed(
                contest, dispute.id, turn_id, turn.judged_by, player_id
            )],
        )

    @staticmethod
    def resolve_dispute(db: Session, dispute_id: int, player_id: str, final_result: TurnResult,
                        event_id: Optional[str] = None, now: Optional[datetime] = None) -> DisputeResult:
        """
        The judge rules on a dispute against their verdict.

        - LANDED: the verdict is overturned. The letter it awarded is taken
          back, the turn becomes landed and roles swap as for any landed trick.
        - MISSED: the verdict stands, nothing else changes.

        A dispute is resolved once; a second resolution raises
        DisputeAlreadyResolved.
        """
        result = DuelManager._resolve_dispute(db, dispute_id, player_id, final_result, event_id, now or utcnow())
        if not result.already_processed:
            emit_event(player_id, "dispute_resolved", {
                "contest_id": result.contest["id"],
                "dispute_id": dispute_id,
                "final_result": final_result.value,
            })
        return result

    @staticmethod
    @transactional
    def _resolve_dispute(db: Session, dispute_id: int, player_id: str, final_result: TurnResult,
                         event_id: Optional[str], now: datetime) -> DisputeResult:
        if final_result not in (TurnResult.LANDED, TurnResult.MISSED):
            raise InvalidState(f"Final result must be landed or missed, got {final_result.value}")

        contest_id = db.query(Dispute.contest_id).filter(Dispute.id == dispute_id).scalar()
        if contest_id is None:
            raise DisputeNotFound(dispute_id)

        contest = _load_locked(db, contest_id)
        if has_processed(contest.processed_event_ids, event_id):
            return DisputeResult(already_processed=True, message="Already processed", contest=contest.to_dict())

        dispute = with_dispute_lock(dispute_id, db).first()
        if dispute.final_result is not None:
            raise DisputeAlreadyResolved(dispute_id)
        if player_id != dispute.against_player_id:
            raise WrongRole("Only the judge of the disputed trick can resolve it")
        if contest.status is not ContestStatus.ACTIVE:
            raise InvalidState("Contest is not active")

        if final_result is TurnResult.LANDED:
            if contest.phase is not TurnPhase.SET_TRICK:
                raise InvalidState("Play has moved on since this verdict")
            turn = with_turn_lock(dispute.turn_id, db).first()
            judge_id = dispute.against_player_id
            if judge_id == contest.player_a_id:
                contest.player_a_letters = previous_letters(contest.player_a_letters)
            else:
                contest.player_b_letters = previous_letters(contest.player_b_letters)

            contest.offensive_player_id = judge_id
            contest.defensive_player_id = dispute.disputed_by
            ContestStateMachine.advance_phase(
                contest, TurnPhase.SET_TRICK, next_deadline(now, get_settings().turn_deadline_seconds)
            )
            turn.result = TurnResult.LANDED
            message = "Dispute upheld. Missed overturned to landed. Letter removed."
        else:
            message = "Dispute denied. Missed stands."

        dispute.final_result = final_result
        dispute.resolved_by = player_id
        dispute.resolved_at = now
        contest.updated_at = now
        _record_event(contest, event_id)

        logger.info(f"Contest {contest_id}: dispute {dispute_id} resolved as {final_result.value} by {player_id}")

        return DisputeResult(
            message=message,
            dispute=dispute.to_dict(),
            contest=contest.to_dict(),
            notifications=[notification_service.dispute_resolved(
                contest, dispute_id, dispute.disputed_by, final_result.value
            )],
        )

    # ============ Presence ============

    @staticmethod
    @transactional
    def handle_disconnect(db: Session, contest_id: str, player_id: str,
                          event_id: Optional[str] = None, now: Optional[datetime] = None) -> DuelActionResult:
        """
        Pause an active contest when a participant drops.

        The reconciler forfeits the contest to the connected player once the
        reconnect window has elapsed.
        """
        now = now or utcnow()
        contest = _load_locked(db, contest_id)
        if has_processed(contest.processed_event_ids, event_id):
            return _replayed(contest)
        if not contest.is_participant(player_id):
            raise NotAParticipant(player_id, contest_id)

        if contest.status not in (ContestStatus.ACTIVE, ContestStatus.PAUSED):
            return DuelActionResult(message="Contest is not in play", contest=contest.to_dict())

        # a repeated disconnect keeps the first timestamp
        if contest.disconnected_at_of(player_id) is None:
            contest.set_disconnected_at(player_id, now)
        if contest.status is ContestStatus.ACTIVE:
            ContestStateMachine.transition_status(contest, ContestStatus.PAUSED)
            contest.paused_at = now

        contest.updated_at = now
        _record_event(contest, event_id)
        logger.info(f"Player {player_id} disconnected from contest {contest_id}, paused")

        return DuelActionResult(message="Contest paused.", contest=contest.to_dict())

    @staticmethod
    @transactional
    def handle_reconnect(db: Session, contest_id: str, player_id: str,
                         event_id: Optional[str] = None, now: Optional[datetime] = None) -> DuelActionResult:
        """
        Clear the player's disconnect. A paused contest resumes, with a fresh
        deadline, only once both players are connected again.
        """
        now = now or utcnow()
        contest = _load_locked(db, contest_id)
        if has_processed(contest.processed_event_ids, event_id):
            return _replayed(contest)
        if not contest.is_participant(player_id):
            raise NotAParticipant(player_id, contest_id)

        contest.set_disconnected_at(player_id, None)

        message = "Reconnected."
        if contest.status is ContestStatus.PAUSED and contest.all_connected():
            ContestStateMachine.transition_status(contest, ContestStatus.ACTIVE)
            contest.paused_at = None
            contest.deadline_at = next_deadline(now, get_settings().turn_deadline_seconds)
            contest.deadline_warning_for = None
            message = "Contest resumed."

        contest.updated_at = now
        _record_event(contest, event_id)
        logger.info(f"Player {player_id} reconnected to contest {contest_id}")

        return DuelActionResult(message=message, contest=contest.to_dict())

    # ============ Queries ============

    @staticmethod
    def get_contest(db: Session, contest_id: str) -> Contest:
        contest = db.query(Contest).filter(Contest.id == contest_id).first()
        if not contest:
            raise ContestNotFound(contest_id)
        return contest

    @staticmethod
    def get_turns(db: Session, contest_id: str) -> List[Turn]:
        return db.query(Turn).filter(Turn.contest_id == contest_id).order_by(Turn.turn_number).all()

    # ============ Timeout resolution (reconciler) ============

    @staticmethod
    @transactional
    def resolve_expired_deadline(db: Session, contest_id: str, now: datetime) -> Optional[TimeoutResolution]:
        """
        Resolve one contest whose turn deadline has elapsed.

        - RESPOND_TRICK / JUDGE: the defender gets the benefit of the doubt.
          The pending set turn becomes LANDED with timed_out, roles swap,
          both players get a vote_timeout notification.
        - SET_TRICK: the setter never set; the contest is forfeited to the
          other player.

        Everything is re-validated under the lock. The idempotency key is
        built from the deadline itself, so repeated sweeps over the same
        deadline apply nothing after the first.

        Returns:
            TimeoutResolution, or None when the row no longer qualifies
        """
        contest = with_contest_lock(contest_id, db).first()
        if not contest:
            return None
        if contest.status is not ContestStatus.ACTIVE:
            return None
        if not is_expired(contest.deadline_at, now):
            return None
        if contest.phase is None:
            logger.warning(f"Contest {contest_id} is active with no phase, skipping timeout")
            return None

        actor_id = contest.current_turn or "unknown"
        event_id = generate_event_id("timeout", actor_id, contest_id, deadline_sequence_key(contest.deadline_at))
        if has_processed(contest.processed_event_ids, event_id):
            return None

        if contest.phase in (TurnPhase.RESPOND_TRICK, TurnPhase.JUDGE):
            pending = db.query(Turn).filter(
                Turn.contest_id == contest_id,
                Turn.turn_type == TurnType.SET,
                Turn.result == TurnResult.PENDING,
            ).order_by(Turn.turn_number.desc()).with_for_update().first()

            turn_id = None
            if pending:
                pending.result = TurnResult.LANDED
                pending.timed_out = True
                pending.judged_at = now
                turn_id = pending.id

            swap_roles(contest)
            ContestStateMachine.advance_phase(
                contest, TurnPhase.SET_TRICK, next_deadline(now, get_settings().turn_deadline_seconds)
            )
            contest.updated_at = now
            _record_event(contest, event_id)

            logger.info(f"Contest {contest_id}: vote timed out, turn {turn_id} counted as landed, roles switched")

            return TimeoutResolution(
                kind="vote_timeout",
                target_id=contest_id,
                event_id=event_id,
                notifications=notification_service.vote_timeout(contest, turn_id),
            )

        if contest.phase is TurnPhase.SET_TRICK:
            loser_id = contest.current_turn
            winner_id = contest.opponent_of(loser_id)
            ContestStateMachine.complete(contest, winner_id, CompletionReason.TURN_TIMEOUT, now)
            contest.updated_at = now
            _record_event(contest, event_id)

            logger.info(f"Contest {contest_id}: set deadline elapsed, forfeited by {loser_id}")

            return TimeoutResolution(
                kind="turn_forfeit",
                target_id=contest_id,
                winner_id=winner_id,
                event_id=event_id,
                notifications=notification_service.game_forfeited(
                    contest, loser_id, winner_id, CompletionReason.TURN_TIMEOUT.value
                ),
            )

        raise InvalidState(f"Unhandled phase {contest.phase!r} in contest {contest_id}")

    @staticmethod
    @transactional
    def resolve_disconnect_timeout(db: Session, contest_id: str, now: datetime) -> Optional[TimeoutResolution]:
        """
        Forfeit a paused contest once a player has stayed away past the
        reconnect window.

        If both have lapsed, the one who dropped first loses; player A loses
        a tie.
        """
        contest = with_contest_lock(contest_id, db).first()
        if not contest or contest.status is not ContestStatus.PAUSED:
            return None

        lapsed = first_lapsed(
            [(contest.player_a_id, contest.player_a_disconnected_at),
             (contest.player_b_id, contest.player_b_disconnected_at)],
            now,
            get_settings().reconnect_window_seconds,
        )
        if not lapsed:
            return None

        loser_id, disconnected_at = lapsed
        event_id = generate_event_id(
            "disconnect_timeout", loser_id, contest_id, disconnect_sequence_key(disconnected_at)
        )
        if has_processed(contest.processed_event_ids, event_id):
            return None

        winner_id = contest.opponent_of(loser_id)
        ContestStateMachine.complete(contest, winner_id, CompletionReason.DISCONNECT_TIMEOUT, now)
        contest.updated_at = now
        _record_event(contest, event_id)

        logger.info(f"Contest {contest_id}: {loser_id} did not reconnect, forfeited")

        return TimeoutResolution(
            kind="disconnect_forfeit",
            target_id=contest_id,
            winner_id=winner_id,
            event_id=event_id,
            notifications=notification_service.game_forfeited(
                contest, loser_id, winner_id, CompletionReason.DISCONNECT_TIMEOUT.value
            ),
        )

    @staticmethod
    @transactional
    def issue_deadline_warning(db: Session, contest_id: str, now: datetime) -> Optional[TimeoutResolution]:
        """
        Warn the current player once per deadline when it is close.

        The warned deadline is stored on the row, so a restart or a second
        worker never warns twice for the same deadline.
        """
        contest = with_contest_lock(contest_id, db).first()
        if not contest or contest.status is not ContestStatus.ACTIVE:
            return None
        if not contest.deadline_at or not contest.current_turn:
            return None
        if contest.deadline_at <= now:
            return None
        if contest.deadline_at - now > timedelta(seconds=get_settings().deadline_warning_seconds):
            return None
        if contest.deadline_warning_for == contest.deadline_at:
            return None

        contest.deadline_warning_for = contest.deadline_at
        minutes = round(seconds_remaining(contest.deadline_at, now) / 60)

        return TimeoutResolution(
            kind="deadline_warning",
            target_id=contest_id,
            event_id=generate_event_id(
                "deadline_warning", contest.current_turn, contest_id, deadline_sequence_key(contest.deadline_at)
            ),
            notifications=[notification_service.deadline_warning(contest, minutes)],
        )

    @staticmethod
    @transactional
    def resolve_hard_cap(db: Session, contest_id: str, now: datetime) -> Optional[TimeoutResolution]:
        """
        End an active contest that has run past the hard cap.

        The player closest to losing (more letters) takes the loss; on equal
        letters the player whose turn it is loses.
        """
        contest = with_contest_lock(contest_id, db).first()
        if not contest or contest.status is not ContestStatus.ACTIVE:
            return None
        if now - contest.created_at <= timedelta(days=get_settings().game_hard_cap_days):
            return None

        a_count = len(contest.player_a_letters or "")
        b_count = len(contest.player_b_letters or "")
        if a_count > b_count:
            loser_id = contest.player_a_id
        elif b_count > a_count:
            loser_id = contest.player_b_id
        else:
            loser_id = contest.current_turn or contest.player_a_id

        event_id = generate_event_id("hard_cap", loser_id, contest_id, f"created-{contest.created_at.isoformat()}")
        if has_processed(contest.processed_event_ids, event_id):
            return None

        winner_id = contest.opponent_of(loser_id)
        ContestStateMachine.complete(contest, winner_id, CompletionReason.HARD_CAP, now)
        contest.updated_at = now
        _record_event(contest, event_id)

        logger.info(
            f"Contest {contest_id} hit the hard cap, loser {loser_id} "
            f"(letters {contest.player_a_letters!r} vs {contest.player_b_letters!r})"
        )

        return TimeoutResolution(
            kind="hard_cap_forfeit",
            target_id=contest_id,
            winner_id=winner_id,
            event_id=event_id,
            notifications=notification_service.game_forfeited(
                contest, loser_id, winner_id, CompletionReason.HARD_CAP.value
            ),
        )
