"""
Domain exceptions

Every rejection raised by the engines lives here so the API layer can map
them in one place. Each family carries a stable `code` and an HTTP-style
`status_code`, letting a client decide between retrying and prompting:

- not_found          404  contest / turn / dispute / battle missing
- forbidden          403  non-participant or wrong role
- invalid_state      400  wrong phase, status or turn order
- already_processed  409  idempotent replay or race loser (a no-op)
- expired            400  deadline passed; only the reconciler resolves it
- internal           500  corrupt row, never silently patched
"""


class SkateGameException(Exception):
    """Base class for all game exceptions"""
    status_code = 500
    code = "internal"

    def to_detail(self) -> dict:
        return {"code": self.code, "message": str(self)}


# ============ Families ============

class NotFound(SkateGameException):
    status_code = 404
    code = "not_found"


class Forbidden(SkateGameException):
    status_code = 403
    code = "forbidden"


class InvalidState(SkateGameException):
    status_code = 400
    code = "invalid_state"


class AlreadyProcessed(SkateGameException):
    status_code = 409
    code = "already_processed"


class Expired(SkateGameException):
    status_code = 400
    code = "expired"


class CorruptState(SkateGameException):
    status_code = 500
    code = "internal"


# ============ Not found ============

class ContestNotFound(NotFound):
    def __init__(self, contest_id):
        self.contest_id = contest_id
        super().__init__(f"Contest {contest_id} not found")


class TurnNotFound(NotFound):
    def __init__(self, turn_id):
        self.turn_id = turn_id
        super().__init__(f"Turn {turn_id} not found")


class DisputeNotFound(NotFound):
    def __init__(self, dispute_id):
        self.dispute_id = dispute_id
        super().__init__(f"Dispute {dispute_id} not found")


class BattleNotFound(NotFound):
    def __init__(self, battle_id):
        self.battle_id = battle_id
        super().__init__(f"Battle {battle_id} not found")


# ============ Forbidden ============

class NotAParticipant(Forbidden):
    def __init__(self, player_id, target_id):
        self.player_id = player_id
        super().__init__(f"Player {player_id} is not a participant in {target_id}")


class WrongRole(Forbidden):
    """Participant, but not in the role this action needs"""
    pass


# ============ Invalid state ============

class InvalidStateTransition(InvalidState):
    """Illegal status or phase transition"""
    pass


class NotYourTurn(InvalidState):
    pass


class PhaseRejectsAction(InvalidState):
    """The current phase does not accept this action"""
    pass


class ResponseRequiredBeforeJudging(InvalidState):
    def __init__(self):
        super().__init__("You must submit your response before judging")


class DisputeAlreadyUsed(InvalidState):
    def __init__(self):
        super().__init__("You have already used your dispute for this game")


# ============ Already processed ============

class TurnAlreadyJudged(AlreadyProcessed):
    def __init__(self, turn_id):
        self.turn_id = turn_id
        super().__init__(f"Turn {turn_id} has already been judged")


class DisputeAlreadyResolved(AlreadyProcessed):
    def __init__(self, dispute_id):
        self.dispute_id = dispute_id
        super().__init__(f"Dispute {dispute_id} has already been resolved")


# ============ Expired ============

class DeadlineExpired(Expired):
    pass


# ============ Internal ============

class MissingRoleAssignment(CorruptState):
    def __init__(self, contest_id):
        self.contest_id = contest_id
        super().__init__(f"Contest {contest_id} is missing player role assignments")
