from datetime import date
from typing import List, Optional

from pydantic import BaseModel

from scorebook.errors import NotFoundError
from scorebook.models import Innings, Match, Player, Team
from scorebook.store import EntityStore


# ======================================================
# Request schemas
# ======================================================

class CreateTeamRequest(BaseModel):
    name: str
    short_name: Optional[str] = None


class CreatePlayerRequest(BaseModel):
    team_id: int
    name: str
    role: Optional[str] = "Player"


class CreateMatchRequest(BaseModel):
    team1_id: int
    team2_id: int
    match_type: str = "T20"
    overs: Optional[int] = None  # defaults from match_type
    venue: Optional[str] = None
    match_date: Optional[date] = None


class TossRequest(BaseModel):
    winner_id: int
    decision: str


class ScoreUpdate(BaseModel):
    runs: int = 0
    extras_type: Optional[str] = None
    is_wicket: bool = False
    dismissal_type: Optional[str] = None
    # Omitted players fall back to whoever is stored as in the middle
    striker_id: Optional[int] = None
    non_striker_id: Optional[int] = None
    bowler_id: Optional[int] = None


class SelectPlayersRequest(BaseModel):
    striker_id: Optional[int] = None
    non_striker_id: Optional[int] = None
    bowler_id: Optional[int] = None


class EndMatchRequest(BaseModel):
    forced_winner_id: Optional[int] = None


# ======================================================
# Loaders (user-scoped, raise NotFoundError)
# ======================================================

async def fetch_match(store: EntityStore, user_id: str, match_id: int) -> Match:
    row = await store.get("matches", {"id": match_id, "user_id": user_id})
    if not row:
        raise NotFoundError(f"Match {match_id} not found")
    return Match(**row)


async def fetch_innings(store: EntityStore, user_id: str, innings_id: int) -> Innings:
    row = await store.get("innings", {"id": innings_id, "user_id": user_id})
    if not row:
        raise NotFoundError(f"Innings {innings_id} not found")
    return Innings(**row)


async def fetch_innings_by_number(store: EntityStore, user_id: str, match_id: int, number: int) -> Optional[Innings]:
    row = await store.get("innings", {"match_id": match_id, "innings_number": number, "user_id": user_id})
    return Innings(**row) if row else None


async def fetch_all_innings(store: EntityStore, user_id: str, match_id: int) -> List[Innings]:
    rows = await store.query("innings", {"match_id": match_id, "user_id": user_id}, order_by="innings_number")
    return [Innings(**r) for r in rows]


async def fetch_team(store: EntityStore, user_id: str, team_id: int) -> Team:
    row = await store.get("teams", {"id": team_id, "user_id": user_id})
    if not row:
        raise NotFoundError(f"Team {team_id} not found")
    return Team(**row)


async def fetch_player(store: EntityStore, user_id: str, player_id: int) -> Player:
    row = await store.get("players", {"id": player_id, "user_id": user_id})
    if not row:
        raise NotFoundError(f"Player {player_id} not found")
    return Player(**row)


async def player_names(store: EntityStore, user_id: str) -> dict:
    rows = await store.query("players", {"user_id": user_id})
    return {r["id"]: r["name"] for r in rows}
