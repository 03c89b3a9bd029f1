import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Optional

from ..exceptions import NotParticipant, StateError
from ..timing import TimerHandle, datetime_now
from .dispute import Dispute
from .enums import (
    STATUS_TRANSITIONS,
    HistoryAction,
    MatchStatus,
    NegotiationPhase
)
from .score import ReportedScore


@dataclass
class HistoryEntry:
    action: HistoryAction
    actor: Optional[int]
    timestamp: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "actor": self.actor,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        return cls(
            action=HistoryAction(data["action"]),
            actor=data["actor"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            payload=data.get("payload", {}),
        )


@dataclass
class Participant:
    user_id: int
    captain: Optional[str] = None
    is_host: bool = False
    reported_score: Optional[ReportedScore] = None
    reported_at: Optional[datetime] = None
    rating_change: int = 0

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "captain": self.captain,
            "is_host": self.is_host,
            "reported_score": (
                list(self.reported_score) if self.reported_score else None
            ),
            "reported_at": (
                self.reported_at.isoformat() if self.reported_at else None
            ),
            "rating_change": self.rating_change,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Participant":
        score = data.get("reported_score")
        reported_at = data.get("reported_at")
        return cls(
            user_id=data["user_id"],
            captain=data.get("captain"),
            is_host=data.get("is_host", False),
            reported_score=ReportedScore(*score) if score else None,
            reported_at=(
                datetime.fromisoformat(reported_at) if reported_at else None
            ),
            rating_change=data.get("rating_change", 0),
        )


@dataclass(eq=False)
class Match:
    """
    A head to head match between exactly two players.

    Only the component that owns the current phase mutates a match, and it
    does so while holding `lock`. Once the status is terminal the match is
    frozen: `transition` and `record` both raise `StateError`.

    `timer` is the single outstanding phase timer. Arming a new one cancels
    the previous one so at most one timeout can ever fire against a match.
    """
    id: int
    participants: list[Participant]
    created_at: datetime = field(default_factory=datetime_now)
    status: MatchStatus = MatchStatus.PREGAME
    phase: NegotiationPhase = NegotiationPhase.STAGE_BAN
    stage: Optional[str] = None
    room_code: Optional[str] = None
    is_hypercharged: bool = False
    hypercharge_multiplier: float = 0.0
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    winner_id: Optional[int] = None
    cancel_reason: Optional[str] = None
    at_fault: list[int] = field(default_factory=list)
    history: list[HistoryEntry] = field(default_factory=list)
    dispute: Optional[Dispute] = None

    timer: Optional[TimerHandle] = field(default=None, repr=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self):
        if len(self.participants) != 2:
            raise ValueError("A match needs exactly two participants")
        if self.participants[0].user_id == self.participants[1].user_id:
            raise ValueError("A player can not play against themselves")

    @property
    def user_ids(self) -> list[int]:
        return [p.user_id for p in self.participants]

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def host(self) -> Optional[Participant]:
        hosts = [p for p in self.participants if p.is_host]
        return hosts[0] if hosts else None

    @property
    def loser_id(self) -> Optional[int]:
        if self.winner_id is None:
            return None
        return self.opponent_of(self.winner_id).user_id

    def participant(self, user_id: int) -> Participant:
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        raise NotParticipant(self.id, user_id)

    def opponent_of(self, user_id: int) -> Participant:
        first, second = self.participants
        if first.user_id == user_id:
            return second
        if second.user_id == user_id:
            return first
        raise NotParticipant(self.id, user_id)

    def __iter__(self) -> Iterator[Participant]:
        return iter(self.participants)

    def record(
        self,
        action: HistoryAction,
        actor: Optional[int] = None,
        **payload: Any
    ) -> HistoryEntry:
        if self.is_terminal:
            raise StateError(f"Match {self.id} is already {self.status.name}")

        entry = HistoryEntry(action, actor, datetime_now(), payload)
        self.history.append(entry)
        return entry

    def transition(
        self,
        status: MatchStatus,
        actor: Optional[int] = None,
        **payload: Any
    ) -> None:
        """
        Move the match to a new status and log it to the history.

        # Errors
        Raises `StateError` if the transition is not allowed, in which case
        nothing is changed.
        """
        if status not in STATUS_TRANSITIONS[self.status]:
            raise StateError(
                f"Match {self.id} can not go from {self.status.name} "
                f"to {status.name}"
            )

        self.record(
            HistoryAction.STATUS_CHANGED,
            actor,
            old=self.status.name,
            new=status.name,
            **payload
        )
        self.status = status
        now = datetime_now()
        if status is MatchStatus.IN_PROGRESS:
            self.started_at = now
        if status.is_terminal:
            self.ended_at = now
            self.clear_timer()
            if not self.phase.is_terminal:
                self.phase = (
                    NegotiationPhase.CANCELLED
                    if status is MatchStatus.CANCELLED
                    else NegotiationPhase.DONE
                )

    def arm_timer(self, handle: TimerHandle) -> None:
        self.clear_timer()
        self.timer = handle

    def clear_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "participants": [p.to_dict() for p in self.participants],
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "phase": self.phase.value,
            "stage": self.stage,
            "room_code": self.room_code,
            "is_hypercharged": self.is_hypercharged,
            "hypercharge_multiplier": self.hypercharge_multiplier,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "winner_id": self.winner_id,
            "cancel_reason": self.cancel_reason,
            "at_fault": list(self.at_fault),
            "history": [entry.to_dict() for entry in self.history],
            "dispute": self.dispute.to_dict() if self.dispute else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Match":
        def parse_time(value):
            return datetime.fromisoformat(value) if value else None

        dispute = data.get("dispute")
        return cls(
            id=data["id"],
            participants=[
                Participant.from_dict(p) for p in data["participants"]
            ],
            created_at=parse_time(data["created_at"]),
            status=MatchStatus(data["status"]),
            phase=NegotiationPhase(data["phase"]),
            stage=data.get("stage"),
            room_code=data.get("room_code"),
            is_hypercharged=data.get("is_hypercharged", False),
            hypercharge_multiplier=data.get("hypercharge_multiplier", 0.0),
            started_at=parse_time(data.get("started_at")),
            ended_at=parse_time(data.get("ended_at")),
            winner_id=data.get("winner_id"),
            cancel_reason=data.get("cancel_reason"),
            at_fault=list(data.get("at_fault", [])),
            history=[HistoryEntry.from_dict(e) for e in data.get("history", [])],
            dispute=Dispute.from_dict(dispute) if dispute else None,
        )

    def __str__(self) -> str:
        return f"Match({self.id}, {self.user_ids}, {self.status.name})"
