from datetime import date
from typing import Optional

from pydantic import BaseModel, computed_field

from scorebook.utils.overs import OversClock, format_overs

# Match status values
NOT_STARTED = "Not Started"
IN_PROGRESS = "In Progress"
COMPLETED = "Completed"

# Extras kinds, as stored
WIDE = "Wide"
NO_BALL = "No Ball"
BYE = "Bye"
LEG_BYE = "Leg Bye"
EXTRAS_TYPES = (WIDE, NO_BALL, BYE, LEG_BYE)

TOSS_DECISIONS = ("bat", "bowl")

# Default overs per innings for the known formats
FORMAT_OVERS = {"T20": 20, "One-day": 50}


class Entity(BaseModel):
    """A stored row. Computed fields are for responses only and never persisted."""
    id: Optional[int] = None
    user_id: str

    def to_row(self) -> dict:
        exclude = set(type(self).model_computed_fields) | {"id"}
        return self.model_dump(exclude=exclude)


class Team(Entity):
    name: str
    short_name: Optional[str] = None


class Player(Entity):
    team_id: int
    name: str
    role: str = "Player"


class Match(Entity):
    team1_id: int
    team2_id: int
    match_type: str = "T20"
    overs: int = 20
    venue: Optional[str] = None
    match_date: Optional[date] = None
    status: str = NOT_STARTED
    current_innings: int = 1
    toss_winner_id: Optional[int] = None
    toss_decision: Optional[str] = None
    batting_team_id: Optional[int] = None
    bowling_team_id: Optional[int] = None
    winner_id: Optional[int] = None
    result_message: Optional[str] = None

    def other_team(self, team_id: int) -> int:
        return self.team2_id if team_id == self.team1_id else self.team1_id


class Innings(Entity):
    match_id: int
    innings_number: int = 1
    batting_team_id: int
    bowling_team_id: int
    total_runs: int = 0
    total_wickets: int = 0
    legal_balls: int = 0
    target: Optional[int] = None
    last_sequence: int = 0

    # Who is in the middle right now, so a reload can resume scoring
    striker_id: Optional[int] = None
    non_striker_id: Optional[int] = None
    bowler_id: Optional[int] = None

    @computed_field
    @property
    def total_overs(self) -> str:
        return format_overs(self.legal_balls)

    @property
    def clock(self) -> OversClock:
        return OversClock.from_balls(self.legal_balls)


class Delivery(Entity):
    match_id: int
    innings_id: int
    sequence_number: int
    over_number: int
    ball_number: int
    striker_id: int
    non_striker_id: int
    bowler_id: int
    runs: int = 0
    extras_type: Optional[str] = None
    extras_runs: int = 0
    is_wicket: bool = False
    dismissal_type: Optional[str] = None


class BattingFigure(Entity):
    match_id: int
    innings_id: int
    player_id: int
    runs: int = 0
    balls_faced: int = 0
    fours: int = 0
    sixes: int = 0
    strike_rate: float = 0.0
    is_out: bool = False
    dismissal_type: Optional[str] = None
    batting_position: int = 1


class BowlingFigure(Entity):
    match_id: int
    innings_id: int
    player_id: int
    legal_balls: int = 0
    runs_conceded: int = 0
    wickets: int = 0
    wides: int = 0
    no_balls: int = 0
    economy_rate: float = 0.0

    @computed_field
    @property
    def overs(self) -> str:
        return format_overs(self.legal_balls)


FIGURE_KEYS = ("innings_id", "player_id")
