from typing import Dict, Iterable, List

from scorebook.common import player_names
from scorebook.store import EntityStore
from scorebook.utils.match_helpers import economy_rate, strike_rate
from scorebook.utils.overs import format_overs


def career_batting(figures: Iterable[dict], names: Dict[int, str], limit: int = 10) -> List[dict]:
    """Top run scorers across every innings the user has scored."""
    stats: Dict[int, dict] = {}
    for f in figures:
        pid = f["player_id"]
        if pid not in stats:
            stats[pid] = {
                "player_id": pid, "player_name": names.get(pid, "Unknown"),
                "innings": 0, "runs": 0, "balls": 0, "fours": 0, "sixes": 0,
                "outs": 0, "highest_score": 0,
            }
        s = stats[pid]
        s["innings"] += 1
        s["runs"] += f["runs"]
        s["balls"] += f["balls_faced"]
        s["fours"] += f["fours"]
        s["sixes"] += f["sixes"]
        s["outs"] += 1 if f["is_out"] else 0
        s["highest_score"] = max(s["highest_score"], f["runs"])

    rows = []
    for s in stats.values():
        # Never dismissed: average is just the runs
        average = s["runs"] / s["outs"] if s["outs"] else s["runs"]
        rows.append(dict(s, average=round(average, 2), strike_rate=strike_rate(s["runs"], s["balls"])))
    rows.sort(key=lambda r: (-r["runs"], r["player_name"]))
    return rows[:limit]


def career_bowling(figures: Iterable[dict], names: Dict[int, str], limit: int = 10) -> List[dict]:
    """Top wicket takers."""
    stats: Dict[int, dict] = {}
    for f in figures:
        pid = f["player_id"]
        if pid not in stats:
            stats[pid] = {
                "player_id": pid, "player_name": names.get(pid, "Unknown"),
                "innings": 0, "wickets": 0, "runs_conceded": 0, "legal_balls": 0,
                "best_wickets": 0,
            }
        s = stats[pid]
        s["innings"] += 1
        s["wickets"] += f["wickets"]
        s["runs_conceded"] += f["runs_conceded"]
        s["legal_balls"] += f["legal_balls"]
        s["best_wickets"] = max(s["best_wickets"], f["wickets"])

    rows = []
    for s in stats.values():
        average = s["runs_conceded"] / s["wickets"] if s["wickets"] else 0.0
        rows.append(dict(
            s,
            overs=format_overs(s["legal_balls"]),
            average=round(average, 2),
            economy=economy_rate(s["runs_conceded"], s["legal_balls"]),
        ))
    rows.sort(key=lambda r: (-r["wickets"], r["economy"], r["player_name"]))
    return rows[:limit]


async def load_statistics(store: EntityStore, user_id: str, limit: int = 10) -> dict:
    names = await player_names(store, user_id)
    batting = await store.query("batting_figures", {"user_id": user_id})
    bowling = await store.query("bowling_figures", {"user_id": user_id})
    return {
        "top_batsmen": career_batting(batting, names, limit),
        "top_bowlers": career_bowling(bowling, names, limit),
    }
