"""
Self reported match scores
"""

import re
from typing import NamedTuple, Union

from ..exceptions import ValidationError

SCORE_PATTERN = re.compile(r"^\s*(\d+)\s*[-:]\s*(\d+)\s*$")


class ReportedScore(NamedTuple):
    """
    A final score as seen by the player reporting it: runs scored by the
    reporter and runs scored by their opponent.
    """
    own: int
    opponent: int

    @classmethod
    def parse(
        cls,
        value: Union[str, "ReportedScore", tuple[int, int]],
        maximum: int
    ) -> "ReportedScore":
        """
        Accepts `"5-3"`, `"5:3"` or a pair of integers.

        # Errors
        Raises `ValidationError` for malformed input, values outside of
        `0..maximum` and tied scores.
        """
        if isinstance(value, str):
            m = SCORE_PATTERN.match(value)
            if m is None:
                raise ValidationError(
                    f"'{value}' is not a score. Use the format 5-3"
                )
            own, opponent = int(m.group(1)), int(m.group(2))
        else:
            try:
                own, opponent = value
            except (TypeError, ValueError):
                raise ValidationError(f"{value!r} is not a score")
            if not isinstance(own, int) or not isinstance(opponent, int):
                raise ValidationError(f"{value!r} is not a score")

        for runs in (own, opponent):
            if not 0 <= runs <= maximum:
                raise ValidationError(
                    f"Scores must be between 0 and {maximum}"
                )
        if own == opponent:
            raise ValidationError("Matches can not end in a tie")

        return cls(own, opponent)

    @property
    def margin(self) -> int:
        return abs(self.own - self.opponent)

    @property
    def is_win(self) -> bool:
        return self.own > self.opponent

    def mirrored(self) -> "ReportedScore":
        return ReportedScore(self.opponent, self.own)

    def agrees_with(self, other: "ReportedScore") -> bool:
        """
        Two reports from opposing players agree when they describe the same
        final score.
        """
        return self == other.mirrored()

    def __str__(self) -> str:
        return f"{self.own}-{self.opponent}"
