from fastapi import APIRouter, Depends

from scorebook.routes.scoring import get_engine
from scorebook.scoring import ScoringEngine

router = APIRouter()


@router.post("/innings/{innings_id}/undo_last_ball")
async def undo_last_ball(innings_id: int, engine: ScoringEngine = Depends(get_engine)):
    outcome = await engine.undo_last_delivery(innings_id)
    if outcome is None:
        # Empty log: nothing to take back
        return {"status": "noop", "message": "No deliveries to undo"}
    return {"status": "success", "message": "Undo Successful", "undone": outcome.undone, "innings": outcome.innings}
