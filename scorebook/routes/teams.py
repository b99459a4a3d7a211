from fastapi import APIRouter, Depends

from scorebook import database
from scorebook.common import CreateTeamRequest, fetch_team
from scorebook.errors import ValidationError
from scorebook.identity import IdentityProvider, get_identity
from scorebook.models import Player, Team
from scorebook.store import EntityStore

router = APIRouter()


@router.get("/teams")
async def get_teams(store: EntityStore = Depends(database.get_store),
                    identity: IdentityProvider = Depends(get_identity)):
    user_id = identity.require_user()
    rows = await store.query("teams", {"user_id": user_id}, order_by="name")
    return {"teams": [Team(**r) for r in rows]}


@router.post("/teams")
async def create_team(payload: CreateTeamRequest,
                      store: EntityStore = Depends(database.get_store),
                      identity: IdentityProvider = Depends(get_identity)):
    user_id = identity.require_user()
    name = payload.name.strip()
    if not name:
        raise ValidationError("Team name is required")
    team = Team(user_id=user_id, name=name, short_name=(payload.short_name or "").strip() or None)
    team_id = await store.insert("teams", team.to_row())
    return team.model_copy(update={"id": team_id})


@router.delete("/teams/{team_id}")
async def delete_team(team_id: int,
                      store: EntityStore = Depends(database.get_store),
                      identity: IdentityProvider = Depends(get_identity)):
    user_id = identity.require_user()
    await fetch_team(store, user_id, team_id)
    # Just the team row; its players and matches are left alone
    await store.delete("teams", {"id": team_id, "user_id": user_id})
    return {"status": "success", "message": "Team deleted"}


@router.get("/teams/{team_id}/players")
async def get_team_players(team_id: int,
                           store: EntityStore = Depends(database.get_store),
                           identity: IdentityProvider = Depends(get_identity)):
    user_id = identity.require_user()
    await fetch_team(store, user_id, team_id)
    rows = await store.query("players", {"team_id": team_id, "user_id": user_id}, order_by="name")
    return {"team_id": team_id, "players": [Player(**r) for r in rows]}
