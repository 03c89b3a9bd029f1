"""
Fixed rules of the pre game negotiation
"""

import random
import re
from typing import NamedTuple, Optional

from ..config import config
from ..exceptions import ValidationError

ROOM_CODE_PATTERN = re.compile(r"^[A-Za-z0-9]{4,8}$")

HOST_SELF = "host myself"
HOST_OPPONENT = "opponent should host"
HOST_OPTIONS = [HOST_SELF, HOST_OPPONENT]

CODE_CONFIRM = "confirm"
CODE_INVALID = "invalid"
CODE_OPTIONS = [CODE_CONFIRM, CODE_INVALID]


def validate_room_code(value: str) -> str:
    """
    Normalize a room code.

    # Errors
    Raises `ValidationError` unless the code is 4 to 8 letters or digits.
    """
    code = str(value).strip()
    if not ROOM_CODE_PATTERN.match(code):
        raise ValidationError(
            "Room codes are 4 to 8 letters or digits"
        )
    return code.upper()


class HostCandidate(NamedTuple):
    user_id: int
    vote: Optional[str]
    rank_position: int
    rating: int


def resolve_host(
    a: HostCandidate,
    b: HostCandidate,
    rng: random.Random
) -> tuple[int, str]:
    """
    Decide who hosts from both votes. A missing vote is `None`.

    Returns the host's user id and the name of the rule that decided it.
    """
    self_votes = [c for c in (a, b) if c.vote == HOST_SELF]
    opponent_votes = [c for c in (a, b) if c.vote == HOST_OPPONENT]

    if len(self_votes) == 1:
        return self_votes[0].user_id, "volunteered"

    if not self_votes and len(opponent_votes) == 1:
        voter = opponent_votes[0]
        other = b if voter is a else a
        return other.user_id, "nominated"

    if a.rank_position != b.rank_position:
        higher = a if a.rank_position > b.rank_position else b
        return higher.user_id, "higher rank"
    if a.rating != b.rating:
        higher = a if a.rating > b.rating else b
        return higher.user_id, "higher rating"
    return rng.choice((a, b)).user_id, "random"


def check_pregame_timeouts() -> None:
    """
    The stall guard counts from the last answer, so it has to outlast every
    single prompt window or players answering in time could be cancelled.

    # Errors
    Raises `ValueError` if `PREGAME_TIMEOUT` is shorter than a phase timeout.
    """
    windows = {
        name: getattr(config, name)
        for name in (
            "STAGE_BAN_TIMEOUT",
            "CAPTAIN_PICK_TIMEOUT",
            "HOST_SELECT_TIMEOUT",
            "ROOM_CODE_TIMEOUT",
            "ROOM_CODE_CONFIRM_TIMEOUT",
        )
    }
    name, longest = max(windows.items(), key=lambda item: item[1])
    if config.PREGAME_TIMEOUT < longest:
        raise ValueError(
            f"PREGAME_TIMEOUT ({config.PREGAME_TIMEOUT}) is shorter than "
            f"{name} ({longest})"
        )
