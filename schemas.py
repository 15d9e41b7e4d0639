"""
Pydantic schemas

Request bodies for the API, plus the result and notification shapes the
engines return.
"""
import enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models import TurnResult, VoteValue


# ============ Notifications ============

class NotificationType(str, enum.Enum):
    YOUR_TURN = "your_turn"
    GAME_OVER = "game_over"
    VOTE_TIMEOUT = "vote_timeout"
    GAME_FORFEITED = "game_forfeited"
    OPPONENT_FORFEITED = "opponent_forfeited"
    DEADLINE_WARNING = "deadline_warning"
    CHALLENGE_RECEIVED = "challenge_received"
    BATTLE_COMPLETED = "battle_completed"
    DISPUTE_FILED = "dispute_filed"
    DISPUTE_RESOLVED = "dispute_resolved"


class Notification(BaseModel):
    """Outbound event description; delivery belongs to the transport."""
    recipient_id: str
    type: NotificationType
    data: Dict[str, Any] = Field(default_factory=dict)


# ============ Engine results ============

class MoveResult(BaseModel):
    ok: bool = True
    already_processed: bool = False
    turn: Optional[Dict[str, Any]] = None
    contest: Dict[str, Any]
    message: str
    notifications: List[Notification] = Field(default_factory=list)


class DuelActionResult(BaseModel):
    """Shared by judging, setter bail, forfeit and lifecycle actions."""
    ok: bool = True
    already_processed: bool = False
    game_over: bool = False
    winner_id: Optional[str] = None
    message: str
    contest: Dict[str, Any]
    turn: Optional[Dict[str, Any]] = None
    notifications: List[Notification] = Field(default_factory=list)


class DisputeResult(BaseModel):
    ok: bool = True
    already_processed: bool = False
    message: str
    dispute: Optional[Dict[str, Any]] = None
    contest: Dict[str, Any]
    notifications: List[Notification] = Field(default_factory=list)


class TimeoutResolution(BaseModel):
    """What one reconciler iteration did to one contest or battle row."""
    kind: str
    target_id: str
    winner_id: Optional[str] = None
    event_id: str
    notifications: List[Notification] = Field(default_factory=list)


class VoteResult(BaseModel):
    success: bool = True
    already_processed: bool = False
    battle_complete: bool = False
    winner_id: Optional[str] = None
    final_score: Optional[Dict[str, int]] = None
    notifications: List[Notification] = Field(default_factory=list)


# ============ Requests ============

class ChallengeCreate(BaseModel):
    challenger_id: str
    opponent_id: str
    challenger_name: Optional[str] = None
    opponent_name: Optional[str] = None


class ChallengeRespond(BaseModel):
    player_id: str
    accept: bool
    event_id: Optional[str] = None


class MoveSubmit(BaseModel):
    player_id: str
    trick_description: str = Field(min_length=1, max_length=500)
    media_ref: str = Field(min_length=1)
    duration_ms: int = Field(gt=0)
    thumbnail_ref: Optional[str] = None
    event_id: Optional[str] = None


class JudgeSubmit(BaseModel):
    player_id: str
    verdict: TurnResult
    event_id: Optional[str] = None


class DisputeFile(BaseModel):
    player_id: str
    turn_id: int
    event_id: Optional[str] = None


class DisputeResolve(BaseModel):
    player_id: str
    final_result: TurnResult
    event_id: Optional[str] = None


class PlayerAction(BaseModel):
    player_id: str
    event_id: Optional[str] = None


class BattleCreate(BaseModel):
    creator_id: str


class BattleJoin(BaseModel):
    opponent_id: str


class VotingInitialize(BaseModel):
    event_id: str


class VoteSubmit(BaseModel):
    event_id: str
    voter_id: str
    value: VoteValue


class SweepReport(BaseModel):
    """Counts and outbound notifications from one reconciler sweep."""
    skipped: bool = False
    duel_timeouts: int = 0
    duel_forfeits: int = 0
    disconnect_forfeits: int = 0
    battle_timeouts: int = 0
    deadline_warnings: int = 0
    hard_cap_forfeits: int = 0
    errors: int = 0
    notifications: List[Notification] = Field(default_factory=list)
