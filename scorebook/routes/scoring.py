from fastapi import APIRouter, Depends

from scorebook import database
from scorebook.common import ScoreUpdate, SelectPlayersRequest
from scorebook.identity import IdentityProvider, get_identity
from scorebook.scoring import ScoringEngine
from scorebook.store import EntityStore

router = APIRouter()


def get_engine(store: EntityStore = Depends(database.get_store),
               identity: IdentityProvider = Depends(get_identity)) -> ScoringEngine:
    return ScoringEngine(store, identity)


@router.post("/innings/{innings_id}/deliveries")
async def update_score(innings_id: int, payload: ScoreUpdate, engine: ScoringEngine = Depends(get_engine)):
    return await engine.record_delivery(
        innings_id,
        runs=payload.runs,
        extras_type=payload.extras_type,
        is_wicket=payload.is_wicket,
        striker_id=payload.striker_id,
        non_striker_id=payload.non_striker_id,
        bowler_id=payload.bowler_id,
        dismissal_type=payload.dismissal_type,
    )


@router.post("/innings/{innings_id}/players")
async def set_players(innings_id: int, payload: SelectPlayersRequest, engine: ScoringEngine = Depends(get_engine)):
    # Only the slots the client actually sent are touched
    innings = await engine.select_players(innings_id, **payload.model_dump(exclude_unset=True))
    return {"status": "success", "innings": innings}


@router.post("/innings/{innings_id}/rotate_strike")
async def rotate_strike(innings_id: int, engine: ScoringEngine = Depends(get_engine)):
    innings = await engine.swap_strike(innings_id)
    return {"status": "success", "innings": innings}


@router.post("/innings/{innings_id}/rebuild")
async def rebuild_innings(innings_id: int, engine: ScoringEngine = Depends(get_engine)):
    innings = await engine.rebuild_innings(innings_id)
    return {"status": "success", "innings": innings}
