"""
Over/ball clock.

Overs are displayed as "overs.balls" ("3.4" = 3 completed overs and 4 legal
balls into the 4th). That string is NOT a decimal number: 3.4 overs is 3 + 4/6
of an over, not 3.4. Internally we always carry the exact integer pair and only
format to the dotted form for display.
"""
from dataclasses import dataclass
from typing import Union

from scorebook.errors import ValidationError
from scorebook.settings import BALLS_PER_OVER


@dataclass(frozen=True)
class OversClock:
    completed_overs: int = 0
    balls: int = 0  # legal balls in the open over, 0..5

    def __post_init__(self):
        if self.completed_overs < 0 or not 0 <= self.balls < BALLS_PER_OVER:
            raise ValidationError(f"Invalid overs value {self.completed_overs}.{self.balls}")

    @classmethod
    def from_balls(cls, legal_balls: int) -> "OversClock":
        if legal_balls < 0:
            raise ValidationError("Ball count cannot be negative")
        return cls(legal_balls // BALLS_PER_OVER, legal_balls % BALLS_PER_OVER)

    @classmethod
    def parse(cls, value) -> "OversClock":
        """Accepts a clock, a display string ("3.4") or the legacy decimal (3.4)."""
        if isinstance(value, OversClock):
            return value
        if value is None:
            return cls()
        if isinstance(value, float):
            # 0.1 steps accumulate drift (0.30000000000000004), round first
            value = f"{value:.1f}"
        text = str(value).strip()
        try:
            if "." in text:
                overs_part, balls_part = text.split(".", 1)
                overs, balls = int(overs_part or 0), int(balls_part or 0)
            else:
                overs, balls = int(text), 0
        except ValueError:
            raise ValidationError(f"Invalid overs value '{value}'")
        return cls(overs, balls)

    @property
    def total_balls(self) -> int:
        return self.completed_overs * BALLS_PER_OVER + self.balls

    def as_overs(self) -> float:
        """Exact fractional overs, for rate arithmetic."""
        return self.completed_overs + self.balls / BALLS_PER_OVER

    def advance(self, was_legal: bool) -> "OversClock":
        if not was_legal:
            return self
        if self.balls == BALLS_PER_OVER - 1:
            return OversClock(self.completed_overs + 1, 0)
        return OversClock(self.completed_overs, self.balls + 1)

    def __str__(self):
        return f"{self.completed_overs}.{self.balls}"


OversLike = Union[OversClock, str, float, int, None]


def legal_balls_in_current_over(total_overs: OversLike) -> int:
    return OversClock.parse(total_overs).balls


def advance(total_overs: OversLike, was_legal_delivery: bool) -> OversClock:
    return OversClock.parse(total_overs).advance(was_legal_delivery)


def format_overs(legal_balls: int) -> str:
    return str(OversClock.from_balls(legal_balls))
