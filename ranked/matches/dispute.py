from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..exceptions import ValidationError
from .enums import DisputeOrigin, DisputeStatus
from .score import ReportedScore


@dataclass
class Resolution:
    """
    A reviewer's decision. Either a winner is declared or the match is
    cancelled, never both. `score` is the final score from the winner's point
    of view and only feeds the score margin bonus.
    """
    winner_id: Optional[int] = None
    cancelled: bool = False
    score: Optional[ReportedScore] = None
    note: str = ""

    def validate(self) -> None:
        if self.cancelled == (self.winner_id is not None):
            raise ValidationError(
                "A resolution must either declare a winner or cancel the match"
            )
        if self.score is not None and not self.score.is_win:
            raise ValidationError(
                "The resolution score must be given from the winner's side"
            )

    def to_dict(self) -> dict:
        return {
            "winner_id": self.winner_id,
            "cancelled": self.cancelled,
            "score": list(self.score) if self.score else None,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Resolution":
        score = data.get("score")
        return cls(
            winner_id=data.get("winner_id"),
            cancelled=data.get("cancelled", False),
            score=ReportedScore(*score) if score else None,
            note=data.get("note", ""),
        )


@dataclass
class Dispute:
    match_id: int
    priority: float
    origin: DisputeOrigin
    created_at: datetime
    # Order of submission, used to break priority ties
    sequence: int
    # Number of recent disputes involving each participant
    metadata: dict[int, int] = field(default_factory=dict)
    requested_by: Optional[int] = None
    assigned_reviewer: Optional[int] = None
    status: DisputeStatus = DisputeStatus.PENDING
    resolution: Optional[Resolution] = None
    closed_at: Optional[datetime] = None

    @property
    def id(self) -> int:
        # A match can only ever be disputed once
        return self.match_id

    @property
    def sort_key(self) -> tuple[float, int]:
        return (-self.priority, self.sequence)

    def to_dict(self) -> dict:
        return {
            "match_id": self.match_id,
            "priority": self.priority,
            "origin": self.origin.value,
            "created_at": self.created_at.isoformat(),
            "sequence": self.sequence,
            "metadata": {str(k): v for k, v in self.metadata.items()},
            "requested_by": self.requested_by,
            "assigned_reviewer": self.assigned_reviewer,
            "status": self.status.value,
            "resolution": self.resolution.to_dict() if self.resolution else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Dispute":
        resolution = data.get("resolution")
        closed_at = data.get("closed_at")
        return cls(
            match_id=data["match_id"],
            priority=data["priority"],
            origin=DisputeOrigin(data["origin"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            sequence=data["sequence"],
            metadata={int(k): v for k, v in data.get("metadata", {}).items()},
            requested_by=data.get("requested_by"),
            assigned_reviewer=data.get("assigned_reviewer"),
            status=DisputeStatus(data["status"]),
            resolution=Resolution.from_dict(resolution) if resolution else None,
            closed_at=datetime.fromisoformat(closed_at) if closed_at else None,
        )
