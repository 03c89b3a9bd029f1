from enum import Enum, unique


@unique
class MatchStatus(Enum):
    PREGAME = "PREGAME"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"

    @property
    def is_terminal(self) -> bool:
        return self in (MatchStatus.COMPLETED, MatchStatus.CANCELLED)


# Status changes that are allowed. Terminal states have no successors.
# PREGAME -> COMPLETED only happens through a room code forfeit.
STATUS_TRANSITIONS = {
    MatchStatus.PREGAME: frozenset({
        MatchStatus.IN_PROGRESS,
        MatchStatus.COMPLETED,
        MatchStatus.CANCELLED,
    }),
    MatchStatus.IN_PROGRESS: frozenset({
        MatchStatus.COMPLETED,
        MatchStatus.DISPUTED,
        MatchStatus.CANCELLED,
    }),
    MatchStatus.DISPUTED: frozenset({
        MatchStatus.COMPLETED,
        MatchStatus.CANCELLED,
    }),
    MatchStatus.COMPLETED: frozenset(),
    MatchStatus.CANCELLED: frozenset(),
}


@unique
class NegotiationPhase(Enum):
    STAGE_BAN = "STAGE_BAN"
    CAPTAIN_SELECT = "CAPTAIN_SELECT"
    HOST_SELECT = "HOST_SELECT"
    ROOM_CODE = "ROOM_CODE"
    DONE = "DONE"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (NegotiationPhase.DONE, NegotiationPhase.CANCELLED)


@unique
class DisputeOrigin(Enum):
    SCORE_MISMATCH = "SCORE_MISMATCH"
    PLAYER_REQUEST = "PLAYER_REQUEST"


@unique
class DisputeStatus(Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    EXPIRED = "EXPIRED"


@unique
class HistoryAction(Enum):
    CREATED = "created"
    PHASE_STARTED = "phase_started"
    STAGE_BANNED = "stage_banned"
    STAGE_SELECTED = "stage_selected"
    CAPTAIN_PICKED = "captain_picked"
    HOST_VOTED = "host_voted"
    HOST_SELECTED = "host_selected"
    ROOM_CODE_REJECTED = "room_code_rejected"
    ROOM_CODE_SUBMITTED = "room_code_submitted"
    ROOM_CODE_FLAGGED = "room_code_flagged"
    ROOM_CODE_CONFIRMED = "room_code_confirmed"
    STATUS_CHANGED = "status_changed"
    SCORE_REPORTED = "score_reported"
    DISPUTE_REQUESTED = "dispute_requested"
    DISPUTE_ASSIGNED = "dispute_assigned"
    TIMED_OUT = "timed_out"
