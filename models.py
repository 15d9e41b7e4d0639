"""
ORM models

Contest/Turn/Dispute for SKATE duels, Battle/BattleVoteState/BattleVote for
clip-vs-clip battles. Status, phase and vote values are explicit enums;
every field the engines read or write is declared here.
"""
import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from services.deadline_service import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


# ============ Enums ============

class ContestStatus(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class TurnPhase(str, enum.Enum):
    SET_TRICK = "set_trick"
    RESPOND_TRICK = "respond_trick"
    JUDGE = "judge"


class TurnType(str, enum.Enum):
    SET = "set"
    RESPONSE = "response"


class TurnResult(str, enum.Enum):
    PENDING = "pending"
    LANDED = "landed"
    MISSED = "missed"


class CompletionReason(str, enum.Enum):
    LETTERS = "letters"
    FORFEIT = "forfeit"
    DECLINED = "declined"
    TURN_TIMEOUT = "turn_timeout"
    DISCONNECT_TIMEOUT = "disconnect_timeout"
    HARD_CAP = "hard_cap"
    VOTES = "votes"
    OPPONENT_TIMEOUT = "opponent_timeout"
    CREATOR_TIMEOUT = "creator_timeout"
    BOTH_TIMEOUT = "both_timeout"


class BattleStatus(str, enum.Enum):
    WAITING = "waiting"
    VOTING = "voting"
    COMPLETED = "completed"


class VoteValue(str, enum.Enum):
    CLEAN = "clean"
    SKETCH = "sketch"
    REDO = "redo"


# ============ Duels ============

class Contest(Base):
    __tablename__ = "contests"

    id = Column(String(36), primary_key=True, default=_uuid)
    player_a_id = Column(String(64), nullable=False, index=True)
    player_b_id = Column(String(64), nullable=False, index=True)
    player_a_name = Column(String(64), nullable=True)
    player_b_name = Column(String(64), nullable=True)

    status = Column(Enum(ContestStatus), nullable=False, default=ContestStatus.WAITING, index=True)
    offensive_player_id = Column(String(64), nullable=True)
    defensive_player_id = Column(String(64), nullable=True)
    current_turn = Column(String(64), nullable=True)
    phase = Column(Enum(TurnPhase), nullable=True)

    player_a_letters = Column(String(5), nullable=False, default="")
    player_b_letters = Column(String(5), nullable=False, default="")

    deadline_at = Column(DateTime, nullable=True, index=True)
    deadline_warning_for = Column(DateTime, nullable=True)
    winner_id = Column(String(64), nullable=True)
    completion_reason = Column(Enum(CompletionReason), nullable=True)

    last_trick_description = Column(Text, nullable=True)
    last_trick_by = Column(String(64), nullable=True)

    # per player: a contest resumes only once both are back
    player_a_disconnected_at = Column(DateTime, nullable=True)
    player_b_disconnected_at = Column(DateTime, nullable=True)
    paused_at = Column(DateTime, nullable=True)

    player_a_dispute_used = Column(Boolean, nullable=False, default=False)
    player_b_dispute_used = Column(Boolean, nullable=False, default=False)

    processed_event_ids = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)

    turns = relationship("Turn", back_populates="contest", order_by="Turn.turn_number")

    def participants(self) -> tuple:
        return (self.player_a_id, self.player_b_id)

    def is_participant(self, player_id: str) -> bool:
        return player_id in (self.player_a_id, self.player_b_id)

    def opponent_of(self, player_id: str) -> str:
        return self.player_b_id if player_id == self.player_a_id else self.player_a_id

    def letters_of(self, player_id: str) -> str:
        if player_id == self.player_a_id:
            return self.player_a_letters or ""
        return self.player_b_letters or ""

    def disconnected_at_of(self, player_id: str):
        if player_id == self.player_a_id:
            return self.player_a_disconnected_at
        return self.player_b_disconnected_at

    def set_disconnected_at(self, player_id: str, value) -> None:
        if player_id == self.player_a_id:
            self.player_a_disconnected_at = value
        else:
            self.player_b_disconnected_at = value

    def all_connected(self) -> bool:
        return self.player_a_disconnected_at is None and self.player_b_disconnected_at is None

    def dispute_used_by(self, player_id: str) -> bool:
        if player_id == self.player_a_id:
            return bool(self.player_a_dispute_used)
        return bool(self.player_b_dispute_used)

    def mark_dispute_used(self, player_id: str) -> None:
        if player_id == self.player_a_id:
            self.player_a_dispute_used = True
        else:
            self.player_b_dispute_used = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "player_a_id": self.player_a_id,
            "player_b_id": self.player_b_id,
            "player_a_name": self.player_a_name,
            "player_b_name": self.player_b_name,
            "status": self.status.value if self.status else None,
            "offensive_player_id": self.offensive_player_id,
            "defensive_player_id": self.defensive_player_id,
            "current_turn": self.current_turn,
            "phase": self.phase.value if self.phase else None,
            "letters": {
                self.player_a_id: self.player_a_letters or "",
                self.player_b_id: self.player_b_letters or "",
            },
            "deadline_at": self.deadline_at.isoformat() if self.deadline_at else None,
            "winner_id": self.winner_id,
            "completion_reason": self.completion_reason.value if self.completion_reason else None,
        }


class Turn(Base):
    __tablename__ = "turns"
    __table_args__ = (
        UniqueConstraint("contest_id", "turn_number", name="uq_turn_contest_number"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    contest_id = Column(String(36), ForeignKey("contests.id"), nullable=False, index=True)
    player_id = Column(String(64), nullable=False)
    player_name = Column(String(64), nullable=True)
    turn_number = Column(Integer, nullable=False)
    turn_type = Column(Enum(TurnType), nullable=False)
    trick_description = Column(Text, nullable=False)
    media_ref = Column(Text, nullable=False)
    duration_ms = Column(Integer, nullable=False)
    thumbnail_ref = Column(Text, nullable=True)

    result = Column(Enum(TurnResult), nullable=False, default=TurnResult.PENDING)
    judged_by = Column(String(64), nullable=True)
    judged_at = Column(DateTime, nullable=True)
    timed_out = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    contest = relationship("Contest", back_populates="turns")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contest_id": self.contest_id,
            "player_id": self.player_id,
            "player_name": self.player_name,
            "turn_number": self.turn_number,
            "turn_type": self.turn_type.value,
            "trick_description": self.trick_description,
            "media_ref": self.media_ref,
            "duration_ms": self.duration_ms,
            "thumbnail_ref": self.thumbnail_ref,
            "result": self.result.value,
            "judged_by": self.judged_by,
            "judged_at": self.judged_at.isoformat() if self.judged_at else None,
            "timed_out": self.timed_out,
        }


class Dispute(Base):
    """A challenge to a missed verdict; each player gets one per contest"""
    __tablename__ = "disputes"
    __table_args__ = (
        UniqueConstraint("contest_id", "disputed_by", name="uq_dispute_contest_player"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    contest_id = Column(String(36), ForeignKey("contests.id"), nullable=False, index=True)
    turn_id = Column(Integer, ForeignKey("turns.id"), nullable=False)
    disputed_by = Column(String(64), nullable=False)
    against_player_id = Column(String(64), nullable=False)
    original_result = Column(Enum(TurnResult), nullable=False)
    final_result = Column(Enum(TurnResult), nullable=True)
    resolved_by = Column(String(64), nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contest_id": self.contest_id,
            "turn_id": self.turn_id,
            "disputed_by": self.disputed_by,
            "against_player_id": self.against_player_id,
            "original_result": self.original_result.value,
            "final_result": self.final_result.value if self.final_result else None,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


# ============ Battles ============

class Battle(Base):
    __tablename__ = "battles"

    id = Column(String(36), primary_key=True, default=_uuid)
    creator_id = Column(String(64), nullable=False, index=True)
    opponent_id = Column(String(64), nullable=True)
    status = Column(Enum(BattleStatus), nullable=False, default=BattleStatus.WAITING)
    winner_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)

    def is_participant(self, player_id: str) -> bool:
        return player_id in (self.creator_id, self.opponent_id)


class BattleVoteState(Base):
    """Transactional voting document, one per battle"""
    __tablename__ = "battle_vote_states"

    battle_id = Column(String(36), ForeignKey("battles.id"), primary_key=True)
    creator_id = Column(String(64), nullable=False)
    opponent_id = Column(String(64), nullable=True)
    status = Column(Enum(BattleStatus), nullable=False, default=BattleStatus.VOTING, index=True)

    # [{"voter_id": ..., "value": "clean", "voted_at": iso}]
    votes = Column(JSON, nullable=False, default=list)
    voting_started_at = Column(DateTime, nullable=True)
    vote_deadline_at = Column(DateTime, nullable=True, index=True)
    winner_id = Column(String(64), nullable=True)
    scores = Column(JSON, nullable=True)
    completion_reason = Column(Enum(CompletionReason), nullable=True)

    creator_disconnected_at = Column(DateTime, nullable=True)
    opponent_disconnected_at = Column(DateTime, nullable=True)

    processed_event_ids = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    def is_participant(self, player_id: str) -> bool:
        return player_id in (self.creator_id, self.opponent_id)

    def other_participant(self, player_id: str) -> str:
        return self.opponent_id if player_id == self.creator_id else self.creator_id

    def disconnected_at_of(self, player_id: str):
        if player_id == self.creator_id:
            return self.creator_disconnected_at
        return self.opponent_disconnected_at

    def set_disconnected_at(self, player_id: str, value) -> None:
        if player_id == self.creator_id:
            self.creator_disconnected_at = value
        else:
            self.opponent_disconnected_at = value

    def to_dict(self) -> dict:
        return {
            "battle_id": self.battle_id,
            "creator_id": self.creator_id,
            "opponent_id": self.opponent_id,
            "status": self.status.value,
            "votes": list(self.votes or []),
            "voting_started_at": self.voting_started_at.isoformat() if self.voting_started_at else None,
            "vote_deadline_at": self.vote_deadline_at.isoformat() if self.vote_deadline_at else None,
            "winner_id": self.winner_id,
            "scores": self.scores,
        }


class BattleVote(Base):
    """Relational vote table, one live vote per voter"""
    __tablename__ = "battle_votes"
    __table_args__ = (
        UniqueConstraint("battle_id", "voter_id", name="uq_battle_vote_voter"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    battle_id = Column(String(36), ForeignKey("battles.id"), nullable=False, index=True)
    voter_id = Column(String(64), nullable=False)
    value = Column(Enum(VoteValue), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
