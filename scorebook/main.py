import asyncio
import os
from contextlib import asynccontextmanager

import psutil
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from scorebook import database, settings
from scorebook.common import fetch_match
from scorebook.database import close_db, init_db
from scorebook.errors import ScorebookError
from scorebook.identity import IdentityProvider, get_identity
from scorebook.routes import matches, players, scoring, teams
from scorebook.routes.buttons import undo
from scorebook.sse_manager import manager
from scorebook.store import EntityStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await init_db()
    manager.attach(database.get_store())
    yield
    # Shutdown
    manager.detach()
    await close_db()

app = FastAPI(title="scorebook", lifespan=lifespan)

# --- CORS Setup ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Performance: Compress large JSON responses (scorecards) ---
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.exception_handler(ScorebookError)
async def scorebook_error_handler(request: Request, exc: ScorebookError):
    return JSONResponse(status_code=exc.status_code, content={"status": "error", "message": exc.message})


# --- Include Routers ---
app.include_router(matches.router, prefix="/api", tags=["Matches"])
app.include_router(scoring.router, prefix="/api", tags=["Scoring"])
app.include_router(teams.router, prefix="/api", tags=["Teams"])
app.include_router(players.router, prefix="/api", tags=["Players"])
app.include_router(undo.router, prefix="/api", tags=["Buttons"])


# --- SSE STREAM ENDPOINT ---
@app.get("/api/stream/{match_id}")
async def stream_match_data(match_id: int,
                            store: EntityStore = Depends(database.get_store),
                            identity: IdentityProvider = Depends(get_identity)):
    """
    SSE Endpoint: Viewers connect here to get live updates.
    One frame per committed change to the match's innings, balls or figures.
    """
    await fetch_match(store, identity.require_user(), match_id)

    async def event_generator():
        q = await manager.subscribe(match_id)
        try:
            while True:
                data = await q.get()
                yield data
        except asyncio.CancelledError:
            # Tab closed
            await manager.unsubscribe(match_id, q)
            raise

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@app.get("/health")
def health():
    return {"status": "ok", "store": settings.STORE_BACKEND}


@app.get("/memory")
def memory_usage():
    process = psutil.Process(os.getpid())
    ram_mb = process.memory_info().rss / 1024 / 1024
    return {
        "ram_used_mb": round(ram_mb, 2)
    }


def run():
    import uvicorn
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    run()
