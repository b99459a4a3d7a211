from fastapi import APIRouter, Depends

from scorebook import database
from scorebook.common import CreatePlayerRequest, fetch_player, fetch_team, player_names
from scorebook.errors import ValidationError
from scorebook.identity import IdentityProvider, get_identity
from scorebook.models import Player
from scorebook.statistics import career_batting, career_bowling, load_statistics
from scorebook.store import EntityStore

router = APIRouter()


@router.post("/players")
async def create_player(payload: CreatePlayerRequest,
                        store: EntityStore = Depends(database.get_store),
                        identity: IdentityProvider = Depends(get_identity)):
    """Ad hoc add, e.g. from the player picker while scoring."""
    user_id = identity.require_user()
    await fetch_team(store, user_id, payload.team_id)

    name = payload.name.strip()
    if not name:
        raise ValidationError("Player name is required")
    player = Player(user_id=user_id, team_id=payload.team_id, name=name, role=payload.role or "Player")
    player_id = await store.insert("players", player.to_row())
    return player.model_copy(update={"id": player_id})


@router.get("/players/{player_id}")
async def get_player_stats(player_id: int,
                           store: EntityStore = Depends(database.get_store),
                           identity: IdentityProvider = Depends(get_identity)):
    user_id = identity.require_user()
    player = await fetch_player(store, user_id, player_id)
    names = await player_names(store, user_id)

    scope = {"player_id": player_id, "user_id": user_id}
    batting = career_batting(await store.query("batting_figures", scope), names, limit=1)
    bowling = career_bowling(await store.query("bowling_figures", scope), names, limit=1)
    return {
        "player": player,
        "batting": batting[0] if batting else None,
        "bowling": bowling[0] if bowling else None,
    }


@router.get("/statistics")
async def get_statistics(store: EntityStore = Depends(database.get_store),
                         identity: IdentityProvider = Depends(get_identity)):
    return await load_statistics(store, identity.require_user())
