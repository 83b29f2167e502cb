"""
Chessroom API и WebSocket.
"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from .analysis import analyze_session
from .config import get_config
from .database import make_engine, make_session_factory
from .exceptions import EvaluatorError, StoreError
from .repository import SQLSessionRepository
from .services import Services, build_services
from .sweeper import Sweeper
from .ws_handlers import ws_auth_and_loop

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

config = get_config()


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = make_engine(config.database_url)
    repository = SQLSessionRepository(make_session_factory(engine))
    services = build_services(config, repository=repository)
    app.state.services = services
    tasks = [
        asyncio.create_task(services.manager.run()),
        asyncio.create_task(Sweeper(services).run(config.sweep_interval_seconds)),
    ]
    logger.info("Chessroom started, database=%s", config.database_url)
    try:
        yield
    finally:
        services.registry.shutdown()
        services.driver.cancel_all()
        await services.manager.flush()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if services.writer is not None:
            await services.writer.drain()
        await services.evaluator.close()
        engine.dispose()
        logger.info("Chessroom stopped")


app = FastAPI(title="Chessroom API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _services(request: Request) -> Services:
    return request.app.state.services


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/sessions/{session_id}/analyze")
async def analyze(session_id: str, request: Request):
    services = _services(request)
    try:
        return await analyze_session(session_id, services.repository, services.evaluator, services.rules)
    except StoreError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except EvaluatorError as e:
        logger.warning("Analysis of %s failed: %s", session_id, e)
        raise HTTPException(status_code=503, detail="Evaluator unavailable")


@app.get("/api/sessions/{session_id}/analysis")
async def get_analysis(session_id: str, request: Request):
    repository = _services(request).repository
    snapshot = await asyncio.to_thread(repository.get_snapshot, session_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    if not snapshot.analysis:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not analyzed")
    return snapshot.analysis


@app.get("/api/users/{identity_id}/stats")
async def user_stats(identity_id: str, request: Request):
    repository = _services(request).repository
    stats = await asyncio.to_thread(repository.get_user_stats, identity_id)
    if stats is None:
        raise HTTPException(status_code=404, detail=f"User {identity_id} not found")
    return {
        "identity_id": stats.identity_id,
        "games": stats.games,
        "wins": stats.wins,
        "losses": stats.losses,
        "draws": stats.draws,
        "rating": stats.rating,
    }


@app.get("/api/users/{identity_id}/sessions")
async def user_sessions(
    identity_id: str,
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    repository = _services(request).repository
    snapshots = await asyncio.to_thread(repository.list_snapshots, identity_id, limit, offset)
    return [
        {
            "id": s.id,
            "players": s.players,
            "time_control": s.time_control,
            "is_bot": s.is_bot,
            "status": s.status,
            "winner": s.winner,
            "reason": s.reason,
            "moves": len(s.history),
            "analyzed": bool(s.analysis),
        }
        for s in snapshots
    ]


@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    logger.info("WS: connection attempt from %s", ws.client)
    await ws_auth_and_loop(ws, ws.app.state.services)
