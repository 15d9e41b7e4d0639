"""
Battle Manager: clip-vs-clip battles and their voting

Responsibilities:
1. Battle lifecycle (create, join, open voting)
2. Vote casting with idempotency and double-vote overwrite
3. Vote timeout and disconnect resolution used by the reconciler

The voting state document (BattleVoteState) holds the live tally. Every
action locks the Battle row first and the state document second. Battles
created before the document existed are voted on through the legacy path,
which derives state from the battle_votes table.
"""
import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from core.exceptions import (
    BattleNotFound,
    DeadlineExpired,
    InvalidState,
    NotAParticipant,
)
from core.ledger import append_event, generate_event_id, has_processed
from core.locks import with_battle_lock, with_vote_state_lock
from core.store import insert_if_absent, update
from database import get_settings, transactional
from models import Battle, BattleStatus, BattleVote, BattleVoteState, CompletionReason, VoteValue
from schemas import TimeoutResolution, VoteResult
from services import notification_service
from services.analytics_service import emit_event
from services.deadline_service import (
    deadline_sequence_key,
    disconnect_sequence_key,
    first_lapsed,
    is_expired,
    next_deadline,
    utcnow,
)
from services.scoring_service import both_voted, calculate_winner, resolve_timeout_winner

logger = logging.getLogger(__name__)


def _upsert_vote(db: Session, battle_id: str, voter_id: str, value: VoteValue, now: datetime) -> None:
    """One live vote per voter; a second vote replaces the first."""
    row = db.query(BattleVote).filter(
        BattleVote.battle_id == battle_id,
        BattleVote.voter_id == voter_id,
    ).first()
    if row:
        row.value = value
        row.created_at = now
    else:
        db.add(BattleVote(battle_id=battle_id, voter_id=voter_id, value=value, created_at=now))


def _lock_battle_and_state(db: Session, battle_id: str) -> Tuple[Optional[Battle], Optional[BattleVoteState]]:
    battle = with_battle_lock(battle_id, db).first()
    state = with_vote_state_lock(battle_id, db).first()
    return battle, state


def _complete_battle(battle: Optional[Battle], winner_id: str, now: datetime) -> None:
    if battle:
        update(battle, {
            "status": BattleStatus.COMPLETED,
            "winner_id": winner_id,
            "completed_at": now,
            "updated_at": now,
        })


class BattleManager:
    """Battle voting engine"""

    # ============ Lifecycle ============

    @staticmethod
    @transactional
    def create_battle(db: Session, creator_id: str) -> Battle:
        battle = Battle(creator_id=creator_id, status=BattleStatus.WAITING)
        db.add(battle)
        db.flush()
        logger.info(f"Battle {battle.id} created by {creator_id}")
        return battle

    @staticmethod
    @transactional
    def join_battle(db: Session, battle_id: str, opponent_id: str) -> Battle:
        """
        Take the opponent slot. Joining again as the same opponent is a no-op.

        Raises:
            BattleNotFound
            InvalidState: own battle, slot taken, or battle no longer waiting
        """
        battle = with_battle_lock(battle_id, db).first()
        if not battle:
            raise BattleNotFound(battle_id)
        if battle.opponent_id == opponent_id:
            return battle
        if battle.creator_id == opponent_id:
            raise InvalidState("Cannot join your own battle")
        if battle.opponent_id is not None or battle.status is not BattleStatus.WAITING:
            raise InvalidState("Battle already has an opponent")

        update(battle, {"opponent_id": opponent_id})
        logger.info(f"Player {opponent_id} joined battle {battle_id}")
        return battle

    @staticmethod
    @transactional
    def initialize_voting(db: Session, event_id: str, battle_id: str,
                          now: Optional[datetime] = None) -> Tuple[BattleVoteState, bool]:
        """
        Open voting: create the state document with a fresh vote deadline.

        Insert-if-absent, so a repeated call (same or different event id)
        returns the existing document with created=False.

        Returns:
            (state, created)
        """
        now = now or utcnow()
        battle = with_battle_lock(battle_id, db).first()
        if not battle:
            raise BattleNotFound(battle_id)
        if battle.status is BattleStatus.COMPLETED:
            raise InvalidState("Battle is already completed")
        if not battle.opponent_id:
            raise InvalidState("Battle has no opponent yet")

        state, created = insert_if_absent(db, BattleVoteState(
            battle_id=battle_id,
            creator_id=battle.creator_id,
            opponent_id=battle.opponent_id,
            status=BattleStatus.VOTING,
            votes=[],
            voting_started_at=now,
            vote_deadline_at=next_deadline(now, get_settings().vote_timeout_seconds),
            processed_event_ids=[event_id],
            created_at=now,
            updated_at=now,
        ))

        if created:
            if battle.status is BattleStatus.WAITING:
                update(battle, {"status": BattleStatus.VOTING, "updated_at": now})
            logger.info(f"Voting initialized for battle {battle_id}")
        else:
            logger.info(f"Voting already initialized for battle {battle_id} (status={state.status.value})")

        return state, created

    # ============ Voting ============

    @staticmethod
    def cast_vote(db: Session, event_id: str, battle_id: str, voter_id: str, value: VoteValue,
                  now: Optional[datetime] = None) -> VoteResult:
        """
        Cast (or replace) a participant's vote on the other clip.

        When both participants have voted the battle completes: each `clean`
        scores one point for the other participant, higher score wins, a tie
        goes to the creator.

        Raises:
            BattleNotFound: neither a state document nor a battle exists
            InvalidState: voting is not open
            DeadlineExpired: vote deadline has passed
            NotAParticipant
        """
        result = BattleManager._cast_vote(db, event_id, battle_id, voter_id, value, now or utcnow())
        if not result.already_processed:
            emit_event(voter_id, "battle_voted", {"battle_id": battle_id, "vote": value.value})
            if result.battle_complete and result.winner_id:
                emit_event(result.winner_id, "battle_completed", {
                    "battle_id": battle_id,
                    "winner_id": result.winner_id,
                    "completion_reason": CompletionReason.VOTES.value,
                })
        return result

    @staticmethod
    @transactional
    def _cast_vote(db: Session, event_id: str, battle_id: str, voter_id: str, value: VoteValue,
                   now: datetime) -> VoteResult:
        battle, state = _lock_battle_and_state(db, battle_id)
        if not state:
            return BattleManager._cast_vote_legacy(db, battle, battle_id, voter_id, value, now)

        if has_processed(state.processed_event_ids, event_id):
            return VoteResult(
                already_processed=True,
                battle_complete=state.status is BattleStatus.COMPLETED,
                winner_id=state.winner_id,
                final_score=state.scores,
            )

        if state.status is not BattleStatus.VOTING:
            raise InvalidState("Voting is not active")
        if is_expired(state.vote_deadline_at, now):
            raise DeadlineExpired("Voting deadline has passed")
        if not state.is_participant(voter_id):
            raise NotAParticipant(voter_id, battle_id)

        entry = {"voter_id": voter_id, "value": value.value, "voted_at": now.isoformat()}
        votes = [vote for vote in (state.votes or []) if vote["voter_id"] != voter_id]
        if len(votes) != len(state.votes or []):
            logger.info(f"Vote updated in battle {battle_id} by {voter_id}: {value.value}")
        votes.append(entry)

        state.votes = votes
        state.processed_event_ids = append_event(
            state.processed_event_ids, event_id, get_settings().battle_ledger_size
        )
        state.updated_at = now
        _upsert_vote(db, battle_id, voter_id, value, now)

        if not both_voted(votes, state.creator_id, state.opponent_id):
            return VoteResult()

        winner_id, scores = calculate_winner(votes, state.creator_id, state.opponent_id)
        state.status = BattleStatus.COMPLETED
        state.winner_id = winner_id
        state.scores = scores
        state.completion_reason = CompletionReason.VOTES
        _complete_battle(battle, winner_id, now)

        logger.info(f"Battle {battle_id} completed, winner {winner_id}, scores {scores}")

        return VoteResult(
            battle_complete=True,
            winner_id=winner_id,
            final_score=scores,
            notifications=notification_service.battle_completed(
                battle_id, (state.creator_id, state.opponent_id), winner_id, scores, CompletionReason.VOTES.value
            ),
        )

    @staticmethod
    def _cast_vote_legacy(db: Session, battle: Optional[Battle], battle_id: str, voter_id: str,
                          value: VoteValue, now: datetime) -> VoteResult:
        """Battles without a state document: battle_votes is the state, the locked Battle row the result."""
        if not battle:
            raise BattleNotFound(battle_id)
        if not battle.is_participant(voter_id):
            raise NotAParticipant(voter_id, battle_id)
        if battle.status is BattleStatus.COMPLETED:
            raise InvalidState("Voting is not active")

        _upsert_vote(db, battle_id, voter_id, value, now)
        db.flush()

        rows = db.query(BattleVote).filter(BattleVote.battle_id == battle_id).all()
        votes = [{"voter_id": row.voter_id, "value": row.value.value} for row in rows]

        if not battle.opponent_id or not both_voted(votes, battle.creator_id, battle.opponent_id):
            return VoteResult()

        winner_id, scores = calculate_winner(votes, battle.creator_id, battle.opponent_id)
        update(battle, {
            "status": BattleStatus.COMPLETED,
            "winner_id": winner_id,
            "completed_at": now,
            "updated_at": now,
        })
        logger.info(f"Battle {battle_id} completed via legacy votes, winner {winner_id}")

        return VoteResult(
            battle_complete=True,
            winner_id=winner_id,
            final_score=scores,
            notifications=notification_service.battle_completed(
                battle_id, (battle.creator_id, battle.opponent_id), winner_id, scores, CompletionReason.VOTES.value
            ),
        )

    # ============ Queries ============

    @staticmethod
    def get_vote_state(db: Session, battle_id: str) -> Optional[BattleVoteState]:
        return db.query(BattleVoteState).filter(BattleVoteState.battle_id == battle_id).first()

    @staticmethod
    def get_battle(db: Session, battle_id: str) -> Battle:
        battle = db.query(Battle).filter(Battle.id == battle_id).first()
        if not battle:
            raise BattleNotFound(battle_id)
        return battle

    # ============ Presence ============

    @staticmethod
    @transactional
    def handle_disconnect(db: Session, battle_id: str, player_id: str,
                          now: Optional[datetime] = None) -> BattleVoteState:
        """Record a dropped participant; the reconciler forfeits after the reconnect window."""
        now = now or utcnow()
        _, state = _lock_battle_and_state(db, battle_id)
        if not state:
            raise BattleNotFound(battle_id)
        if not state.is_participant(player_id):
            raise NotAParticipant(player_id, battle_id)

        # a repeated disconnect keeps the first timestamp
        if state.status is BattleStatus.VOTING and state.disconnected_at_of(player_id) is None:
            state.set_disconnected_at(player_id, now)
            state.updated_at = now
            logger.info(f"Player {player_id} disconnected from battle {battle_id}")
        return state

    @staticmethod
    @transactional
    def handle_reconnect(db: Session, battle_id: str, player_id: str,
                         now: Optional[datetime] = None) -> BattleVoteState:
        now = now or utcnow()
        _, state = _lock_battle_and_state(db, battle_id)
        if not state:
            raise BattleNotFound(battle_id)
        if not state.is_participant(player_id):
            raise NotAParticipant(player_id, battle_id)

        if state.disconnected_at_of(player_id) is not None:
            state.set_disconnected_at(player_id, None)
            state.updated_at = now
            logger.info(f"Player {player_id} reconnected to battle {battle_id}")
        return state

    # ============ Timeout resolution (reconciler) ============

    @staticmethod
    @transactional
    def resolve_vote_timeout(db: Session, battle_id: str, now: datetime) -> Optional[TimeoutResolution]:
        """
        Close voting once the deadline has elapsed.

        The participant who voted wins; with no votes (or, inconsistently,
        both) the creator wins.
        """
        battle, state = _lock_battle_and_state(db, battle_id)
        if not state or state.status is not BattleStatus.VOTING:
            return None
        if not is_expired(state.vote_deadline_at, now):
            return None

        event_id = generate_event_id(
            "timeout", battle_id, battle_id, deadline_sequence_key(state.vote_deadline_at)
        )
        if has_processed(state.processed_event_ids, event_id):
            return None

        votes = state.votes or []
        winner_id, reason = resolve_timeout_winner(votes, state.creator_id, state.opponent_id)
        if state.opponent_id:
            _, scores = calculate_winner(votes, state.creator_id, state.opponent_id)
        else:
            scores = None

        state.status = BattleStatus.COMPLETED
        state.winner_id = winner_id
        state.scores = scores
        state.completion_reason = reason
        state.processed_event_ids = append_event(
            state.processed_event_ids, event_id, get_settings().battle_ledger_size
        )
        state.updated_at = now
        _complete_battle(battle, winner_id, now)

        logger.info(f"Vote timeout processed for battle {battle_id}: winner {winner_id} ({reason.value})")

        return TimeoutResolution(
            kind="battle_timeout",
            target_id=battle_id,
            winner_id=winner_id,
            event_id=event_id,
            notifications=notification_service.battle_completed(
                battle_id, (state.creator_id, state.opponent_id), winner_id, scores, reason.value
            ),
        )

    @staticmethod
    @transactional
    def resolve_disconnect_timeout(db: Session, battle_id: str, now: datetime) -> Optional[TimeoutResolution]:
        """
        Forfeit a battle once a participant has stayed away past the reconnect window.

        If both have lapsed, the one who dropped first loses; the creator
        loses a tie.
        """
        battle, state = _lock_battle_and_state(db, battle_id)
        if not state or state.status is not BattleStatus.VOTING:
            return None

        lapsed = first_lapsed(
            [(state.creator_id, state.creator_disconnected_at),
             (state.opponent_id, state.opponent_disconnected_at)],
            now,
            get_settings().reconnect_window_seconds,
        )
        if not lapsed:
            return None

        loser_id, disconnected_at = lapsed
        event_id = generate_event_id(
            "disconnect_timeout", loser_id, battle_id, disconnect_sequence_key(disconnected_at)
        )
        if has_processed(state.processed_event_ids, event_id):
            return None

        winner_id = state.other_participant(loser_id)
        state.status = BattleStatus.COMPLETED
        state.winner_id = winner_id
        state.completion_reason = CompletionReason.DISCONNECT_TIMEOUT
        state.processed_event_ids = append_event(
            state.processed_event_ids, event_id, get_settings().battle_ledger_size
        )
        state.updated_at = now
        _complete_battle(battle, winner_id, now)

        logger.info(f"Battle {battle_id}: {loser_id} did not reconnect, winner {winner_id}")

        return TimeoutResolution(
            kind="battle_disconnect_forfeit",
            target_id=battle_id,
            winner_id=winner_id,
            event_id=event_id,
            notifications=notification_service.battle_completed(
                battle_id, (state.creator_id, state.opponent_id), winner_id,
                reason=CompletionReason.DISCONNECT_TIMEOUT.value,
            ),
        )
