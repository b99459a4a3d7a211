from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from scorebook.errors import ValidationError
from scorebook.models import (
    BYE, LEG_BYE, NO_BALL, WIDE,
    BattingFigure, BowlingFigure, Delivery, Innings,
)
from scorebook.settings import BALLS_PER_OVER
from scorebook.utils.overs import OversClock

# The scoring panel offers 0-7 (7 = five all-run plus overthrows)
MAX_RUNS_PER_BALL = 7

EXTRAS_ALIASES = {
    "": None, "none": None,
    "wide": WIDE, "wd": WIDE,
    "no ball": NO_BALL, "no-ball": NO_BALL, "noball": NO_BALL, "nb": NO_BALL,
    "bye": BYE, "b": BYE,
    "leg bye": LEG_BYE, "leg-bye": LEG_BYE, "legbye": LEG_BYE, "lb": LEG_BYE,
}

# Dismissals that go down against the batting side, not the bowler
NON_BOWLER_DISMISSALS = ("runout", "run out", "run-out", "retired", "retired hurt", "retired out")


def normalize_extras(extras_type) -> Optional[str]:
    if extras_type is None:
        return None
    key = str(extras_type).strip().lower()
    if key not in EXTRAS_ALIASES:
        raise ValidationError(f"Unknown extras type '{extras_type}'")
    return EXTRAS_ALIASES[key]


def credits_bowler(dismissal_type: Optional[str]) -> bool:
    if not dismissal_type:
        return True
    return dismissal_type.strip().lower() not in NON_BOWLER_DISMISSALS


@dataclass(frozen=True)
class ClassifiedDelivery:
    runs: int
    extras_type: Optional[str]
    is_wicket: bool
    is_legal: bool
    total_runs_added: int
    batter_runs: int
    extras_runs: int
    bowler_runs: int
    is_four: bool
    is_six: bool
    ends_over: bool
    strike_rotates: bool

    @property
    def counts_as_ball_faced(self) -> bool:
        return self.is_legal


def classify_delivery(runs, extras_type=None, is_wicket=False, balls_in_over=0) -> ClassifiedDelivery:
    """
    Turns raw scoring input into what each aggregate should receive.

    `balls_in_over` is the number of legal balls already bowled in the open
    over; it decides whether this ball closes the over.
    """
    if isinstance(runs, bool) or not isinstance(runs, int):
        raise ValidationError("Runs must be a whole number")
    if not 0 <= runs <= MAX_RUNS_PER_BALL:
        raise ValidationError(f"Runs must be between 0 and {MAX_RUNS_PER_BALL}")
    if not 0 <= balls_in_over < BALLS_PER_OVER:
        raise ValidationError(f"Balls in over must be between 0 and {BALLS_PER_OVER - 1}")

    extras = normalize_extras(extras_type)
    is_legal = extras not in (WIDE, NO_BALL)

    # Wides and no-balls carry one automatic penalty run on top of anything run
    total = runs + 1 if not is_legal else runs
    batter_runs = runs if extras is None else 0

    # Byes and leg-byes are not the bowler's fault
    bowler_runs = 0 if extras in (BYE, LEG_BYE) else total

    ends_over = is_legal and balls_in_over == BALLS_PER_OVER - 1

    return ClassifiedDelivery(
        runs=runs,
        extras_type=extras,
        is_wicket=bool(is_wicket),
        is_legal=is_legal,
        total_runs_added=total,
        batter_runs=batter_runs,
        extras_runs=total - batter_runs,
        bowler_runs=bowler_runs,
        is_four=extras is None and runs == 4,
        is_six=extras is None and runs == 6,
        ends_over=ends_over,
        strike_rotates=(runs % 2 == 1) or ends_over,
    )


def strike_rate(runs: int, balls_faced: int) -> float:
    if balls_faced <= 0:
        return 0.0
    return round(runs / balls_faced * 100, 2)


def economy_rate(runs_conceded: int, legal_balls: int) -> float:
    clock = OversClock.from_balls(legal_balls)
    # Economy is only quoted once a full over is in the book
    if clock.completed_overs == 0:
        return 0.0
    return round(runs_conceded / clock.as_overs(), 2)


def run_rate(runs: int, legal_balls: int) -> float:
    if legal_balls <= 0:
        return 0.0
    return round(runs / (legal_balls / BALLS_PER_OVER), 2)


def next_batters(striker_id, non_striker_id, classified: ClassifiedDelivery) -> Tuple[Optional[int], Optional[int]]:
    """Who faces next. On a wicket the striker's slot (wherever it ends up) is vacated."""
    on_strike, off_strike = striker_id, non_striker_id
    if classified.strike_rotates:
        on_strike, off_strike = off_strike, on_strike
    if classified.is_wicket:
        if on_strike == striker_id:
            on_strike = None
        else:
            off_strike = None
    return on_strike, off_strike


# ======================================================
# Aggregates (pure functions, no store access)
# ======================================================

def apply_to_innings(innings: Innings, classified: ClassifiedDelivery, sequence_number: int) -> Innings:
    clock = innings.clock.advance(classified.is_legal)
    return innings.model_copy(update={
        "total_runs": innings.total_runs + classified.total_runs_added,
        "total_wickets": innings.total_wickets + (1 if classified.is_wicket else 0),
        "legal_balls": clock.total_balls,
        "last_sequence": sequence_number,
    })


def new_batting_figure(innings: Innings, player_id: int, batting_position: int) -> BattingFigure:
    return BattingFigure(
        user_id=innings.user_id, match_id=innings.match_id, innings_id=innings.id,
        player_id=player_id, batting_position=batting_position,
    )


def new_bowling_figure(innings: Innings, player_id: int) -> BowlingFigure:
    return BowlingFigure(
        user_id=innings.user_id, match_id=innings.match_id, innings_id=innings.id,
        player_id=player_id,
    )


def apply_to_batting(figure: BattingFigure, classified: ClassifiedDelivery, dismissal_type=None) -> BattingFigure:
    runs = figure.runs + classified.batter_runs
    balls = figure.balls_faced + (1 if classified.counts_as_ball_faced else 0)
    update = {
        "runs": runs,
        "balls_faced": balls,
        "fours": figure.fours + (1 if classified.is_four else 0),
        "sixes": figure.sixes + (1 if classified.is_six else 0),
        "strike_rate": strike_rate(runs, balls),
    }
    if classified.is_wicket:
        update["is_out"] = True
        update["dismissal_type"] = dismissal_type or "Out"
    return figure.model_copy(update=update)


def apply_to_bowling(figure: BowlingFigure, classified: ClassifiedDelivery, dismissal_type=None) -> BowlingFigure:
    legal_balls = figure.legal_balls + (1 if classified.is_legal else 0)
    runs_conceded = figure.runs_conceded + classified.bowler_runs
    wicket = classified.is_wicket and credits_bowler(dismissal_type)
    return figure.model_copy(update={
        "legal_balls": legal_balls,
        "runs_conceded": runs_conceded,
        "wickets": figure.wickets + (1 if wicket else 0),
        "wides": figure.wides + (1 if classified.extras_type == WIDE else 0),
        "no_balls": figure.no_balls + (1 if classified.extras_type == NO_BALL else 0),
        "economy_rate": economy_rate(runs_conceded, legal_balls),
    })


def recompute_innings(innings: Innings, deliveries: Iterable[Delivery]):
    """
    Rebuilds innings totals and every figure from the ball log.
    Deliveries must belong to `innings`; they are folded in sequence order.
    Returns (innings, {player_id: BattingFigure}, {player_id: BowlingFigure}).
    """
    totals = innings.model_copy(update={
        "total_runs": 0, "total_wickets": 0, "legal_balls": 0, "last_sequence": 0,
    })
    batting: Dict[int, BattingFigure] = {}
    bowling: Dict[int, BowlingFigure] = {}

    for d in sorted(deliveries, key=lambda x: x.sequence_number):
        classified = classify_delivery(d.runs, d.extras_type, d.is_wicket, totals.clock.balls)

        if d.striker_id not in batting:
            batting[d.striker_id] = new_batting_figure(totals, d.striker_id, len(batting) + 1)
        batting[d.striker_id] = apply_to_batting(batting[d.striker_id], classified, d.dismissal_type)

        if d.bowler_id not in bowling:
            bowling[d.bowler_id] = new_bowling_figure(totals, d.bowler_id)
        bowling[d.bowler_id] = apply_to_bowling(bowling[d.bowler_id], classified, d.dismissal_type)

        totals = apply_to_innings(totals, classified, d.sequence_number)

    return totals, batting, bowling


# ======================================================
# Read-side summaries
# ======================================================

def calculate_innings_summary(innings: Innings, overs_limit: Optional[int] = None) -> dict:
    """Score line for the scoreboard: runs/wickets, overs, run rates, projection."""
    crr = run_rate(innings.total_runs, innings.legal_balls)
    projected = int(crr * overs_limit) if overs_limit and crr > 0 else 0

    summary = {
        "runs": innings.total_runs,
        "wickets": innings.total_wickets,
        "overs": innings.total_overs,
        "balls": innings.legal_balls,
        "crr": crr,
        "projected_score": projected,
        "target": innings.target,
        "required_run_rate": None,
    }

    if innings.target and overs_limit:
        balls_left = overs_limit * BALLS_PER_OVER - innings.legal_balls
        runs_needed = innings.target - innings.total_runs
        summary["runs_needed"] = max(0, runs_needed)
        summary["balls_left"] = max(0, balls_left)
        if balls_left > 0 and runs_needed > 0:
            summary["required_run_rate"] = run_rate(runs_needed, balls_left)
    return summary


def extras_breakdown(deliveries: Iterable[Delivery]) -> dict:
    extras = {"total": 0, "b": 0, "lb": 0, "w": 0, "nb": 0}
    keys = {BYE: "b", LEG_BYE: "lb", WIDE: "w", NO_BALL: "nb"}
    for d in deliveries:
        if d.extras_type and d.extras_runs:
            extras[keys[d.extras_type]] += d.extras_runs
            extras["total"] += d.extras_runs
    return extras


def format_timeline(deliveries: Iterable[Delivery], limit: int = 6) -> List[dict]:
    """Most recent deliveries first, for the recent-balls strip."""
    recent = sorted(deliveries, key=lambda d: d.sequence_number, reverse=True)[:limit]
    timeline = []
    for d in recent:
        if d.is_wicket:
            label = "W"
        elif d.extras_type == WIDE:
            label = f"{d.extras_runs}wd"
        elif d.extras_type == NO_BALL:
            label = f"{d.extras_runs}nb"
        elif d.extras_type in (BYE, LEG_BYE):
            label = f"{d.extras_runs}{'b' if d.extras_type == BYE else 'lb'}"
        else:
            label = str(d.runs)
        timeline.append({
            "sequence_number": d.sequence_number,
            "over": d.over_number,
            "ball": d.ball_number,
            "runs": d.runs,
            "extras": d.extras_runs,
            "extras_type": d.extras_type,
            "is_wicket": d.is_wicket,
            "label": label,
        })
    return timeline
