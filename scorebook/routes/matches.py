from typing import Optional

from fastapi import APIRouter, Depends

from scorebook import database
from scorebook.common import (
    CreateMatchRequest, EndMatchRequest, TossRequest,
    fetch_all_innings, fetch_match, fetch_team, player_names,
)
from scorebook.identity import IdentityProvider, get_identity
from scorebook.lifecycle import MatchLifecycle, is_innings_over
from scorebook.models import BattingFigure, BowlingFigure, Delivery
from scorebook.store import EntityStore
from scorebook.utils.match_helpers import calculate_innings_summary, extras_breakdown, format_timeline

router = APIRouter()


def get_lifecycle(store: EntityStore = Depends(database.get_store),
                  identity: IdentityProvider = Depends(get_identity)) -> MatchLifecycle:
    return MatchLifecycle(store, identity)


async def fetch_full_match_state(store: EntityStore, user_id: str, match_id: int) -> dict:
    """Everything the scoreboard shows, built from the stored aggregates."""
    match = await fetch_match(store, user_id, match_id)
    team1 = await fetch_team(store, user_id, match.team1_id)
    team2 = await fetch_team(store, user_id, match.team2_id)
    team_names = {team1.id: team1.name, team2.id: team2.name}
    names = await player_names(store, user_id)

    def named(pid):
        return {"id": pid, "name": names.get(pid, "Unknown")} if pid else None

    innings_list = []
    for inn in await fetch_all_innings(store, user_id, match_id):
        scope = {"innings_id": inn.id, "user_id": user_id}
        deliveries = [Delivery(**r) for r in await store.query("deliveries", scope, order_by="sequence_number")]
        batting = [BattingFigure(**r) for r in await store.query("batting_figures", scope, order_by="batting_position")]
        bowling = [BowlingFigure(**r) for r in await store.query("bowling_figures", scope)]

        innings_list.append({
            "id": inn.id,
            "innings_number": inn.innings_number,
            "batting_team": team_names.get(inn.batting_team_id),
            "bowling_team": team_names.get(inn.bowling_team_id),
            "batting_team_id": inn.batting_team_id,
            "bowling_team_id": inn.bowling_team_id,
            "score": calculate_innings_summary(inn, match.overs),
            "is_over": is_innings_over(match, inn),
            "striker": named(inn.striker_id),
            "non_striker": named(inn.non_striker_id),
            "bowler": named(inn.bowler_id),
            "batting": [dict(b.model_dump(), name=names.get(b.player_id, "Unknown")) for b in batting],
            "bowling": [dict(b.model_dump(), name=names.get(b.player_id, "Unknown")) for b in bowling],
            "extras": extras_breakdown(deliveries),
            "recent_balls": format_timeline(deliveries),
        })

    return {
        "match_id": match.id,
        "match_type": match.match_type,
        "overs": match.overs,
        "venue": match.venue,
        "match_date": match.match_date,
        "status": match.status,
        "current_innings": match.current_innings,
        "team1": {"id": team1.id, "name": team1.name, "short_name": team1.short_name},
        "team2": {"id": team2.id, "name": team2.name, "short_name": team2.short_name},
        "toss_winner_id": match.toss_winner_id,
        "toss_winner_name": team_names.get(match.toss_winner_id),
        "toss_decision": match.toss_decision,
        "winner_id": match.winner_id,
        "result_message": match.result_message,
        "innings": innings_list,
    }


@router.get("/matches")
async def get_matches(lifecycle: MatchLifecycle = Depends(get_lifecycle)):
    return {"matches": await lifecycle.list_matches()}


@router.post("/matches")
async def create_match(payload: CreateMatchRequest, lifecycle: MatchLifecycle = Depends(get_lifecycle)):
    match = await lifecycle.create_match(
        payload.team1_id, payload.team2_id, payload.match_type,
        payload.overs, payload.venue, payload.match_date,
    )
    return {"status": "success", "match_id": match.id, "match": match}


@router.get("/matches/{match_id}")
async def get_match_data(match_id: int,
                         store: EntityStore = Depends(database.get_store),
                         identity: IdentityProvider = Depends(get_identity)):
    return await fetch_full_match_state(store, identity.require_user(), match_id)


@router.get("/matches/{match_id}/scorecard")
async def get_match_scorecard(match_id: int,
                              store: EntityStore = Depends(database.get_store),
                              identity: IdentityProvider = Depends(get_identity)):
    state = await fetch_full_match_state(store, identity.require_user(), match_id)
    return {f"inning{inn['innings_number']}": inn for inn in state["innings"]}


@router.delete("/matches/{match_id}")
async def delete_match(match_id: int, lifecycle: MatchLifecycle = Depends(get_lifecycle)):
    await lifecycle.delete_match(match_id)
    return {"status": "success", "message": "Match deleted"}


@router.post("/matches/{match_id}/toss")
async def record_toss(match_id: int, payload: TossRequest, lifecycle: MatchLifecycle = Depends(get_lifecycle)):
    innings = await lifecycle.resolve_toss(match_id, payload.winner_id, payload.decision)
    return {"status": "success", "innings": innings}


@router.post("/matches/{match_id}/end_inning")
async def end_inning(match_id: int, lifecycle: MatchLifecycle = Depends(get_lifecycle)):
    innings = await lifecycle.start_second_innings(match_id)
    return {
        "status": "inning_break",
        "target": innings.target,
        "innings": innings,
        "message": f"Innings Break! Target set: {innings.target} runs",
    }


@router.post("/matches/{match_id}/end_match")
async def end_match(match_id: int, payload: Optional[EndMatchRequest] = None,
                    lifecycle: MatchLifecycle = Depends(get_lifecycle)):
    forced = payload.forced_winner_id if payload else None
    match = await lifecycle.complete_match(match_id, forced)
    return {"status": "success", "result": match.result_message, "winner_id": match.winner_id}
