"""FastAPI server: local lookup service for editor plugins."""

import asyncio
import json
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from .config import API_HOST, API_PORT
from .engine import Engine
from .providers.base import MergeRequestProvider
from .types import VcsError

logger = logging.getLogger(__name__)

# How often a waiting lookup checks whether its HTTP client went away
DISCONNECT_POLL_INTERVAL = 0.1
ERROR_QUEUE_SIZE = 100


# Request/Response models
class LookupResponse(BaseModel):
    mr: dict | None = None
    fromCache: bool = False
    pending: bool = False
    checked: bool = False


class StatsResponse(BaseModel):
    stats: dict | None = None


class CredentialRequest(BaseModel):
    token: str


class ProviderStatusModel(BaseModel):
    id: str
    name: str
    hostUrl: str
    hasCredential: bool


class StatusResponse(BaseModel):
    providers: list[ProviderStatusModel]
    cacheSize: int
    cacheTtl: float
    inFlight: int


class ErrorBroadcaster:
    """Fans surfaced provider errors out to SSE subscribers."""

    def __init__(self) -> None:
        self._queues: set[asyncio.Queue] = set()

    def __call__(self, error: VcsError, provider: MergeRequestProvider) -> None:
        if not error.should_surface:
            return
        event = {"provider": provider.id, "error": error.to_dict()}
        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping error event for slow subscriber")

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=ERROR_QUEUE_SIZE)
        self._queues.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._queues.discard(queue)


async def _watch_disconnect(request: Request, cancel: asyncio.Event) -> None:
    while not cancel.is_set():
        if await request.is_disconnected():
            cancel.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


def create_app(engine_factory: Callable[[], Engine] = Engine) -> FastAPI:
    """Build the API app; the engine lives for the duration of the lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = engine_factory()
        broadcaster = ErrorBroadcaster()
        remove_handler = engine.orchestrator.on_error(broadcaster)
        app.state.engine = engine
        app.state.errors = broadcaster
        try:
            yield
        finally:
            remove_handler()
            await engine.aclose()

    app = FastAPI(
        title="blamemr API",
        description="Resolve commits to the merge/pull request that introduced them",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS for local editor webviews
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_engine(request: Request) -> Engine:
        return request.app.state.engine

    @app.get("/api/lookup", response_model=LookupResponse)
    async def api_lookup(
        request: Request,
        remote: str = Query(..., description="Git remote URL of the repository"),
        sha: str = Query(..., min_length=4, description="Commit SHA"),
    ):
        """Resolve a commit to its MR/PR; a client disconnect cancels only this wait."""
        engine = get_engine(request)
        cancel = asyncio.Event()
        watcher = asyncio.create_task(_watch_disconnect(request, cancel))
        try:
            result = await engine.orchestrator.resolve(remote, sha, cancel)
        finally:
            cancel.set()
            watcher.cancel()
        return LookupResponse(**result.to_dict())

    @app.get("/api/stats", response_model=StatsResponse)
    async def api_stats(
        request: Request,
        remote: str = Query(...),
        sha: str = Query(..., min_length=4),
    ):
        """Fetch change statistics for a commit whose MR is already cached."""
        stats = await get_engine(request).orchestrator.fetch_stats(remote, sha)
        return StatsResponse(stats=stats.to_dict() if stats else None)

    @app.post("/api/cache/invalidate")
    async def api_invalidate(request: Request):
        """Repository state changed (pull, fetch, checkout, commit)."""
        engine = get_engine(request)
        engine.repository_changed.emit()
        return {"status": "ok", "cacheSize": engine.cache.size}

    @app.put("/api/credentials/{provider_id}")
    async def api_set_credential(provider_id: str, body: CredentialRequest, request: Request):
        """Set the access token for a provider."""
        try:
            get_engine(request).orchestrator.set_credential(provider_id, body.token)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"status": "ok"}

    @app.delete("/api/credentials/{provider_id}")
    async def api_delete_credential(provider_id: str, request: Request):
        """Remove the access token for a provider."""
        try:
            get_engine(request).orchestrator.set_credential(provider_id, None)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"status": "ok"}

    @app.get("/api/status", response_model=StatusResponse)
    async def api_status(request: Request):
        engine = get_engine(request)
        return StatusResponse(
            providers=[ProviderStatusModel(**p.to_dict()) for p in engine.provider_status()],
            cacheSize=engine.cache.size,
            cacheTtl=engine.cache.ttl,
            inFlight=engine.orchestrator.in_flight_count,
        )

    async def _stream_errors(request: Request) -> AsyncGenerator[dict, None]:
        """Yield SSE events for every error that should be shown to the user."""
        broadcaster: ErrorBroadcaster = request.app.state.errors
        queue = broadcaster.subscribe()
        try:
            while True:
                event = await queue.get()
                yield {"event": "message", "data": json.dumps({"type": "error", "data": event})}
        finally:
            broadcaster.unsubscribe(queue)

    @app.get("/api/errors/stream")
    async def api_errors_stream(request: Request):
        """Stream surfaced provider errors (SSE)."""
        return EventSourceResponse(
            _stream_errors(request),
            headers={
                "X-Accel-Buffering": "no",
                "Cache-Control": "no-cache",
            },
        )

    # Health check
    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()


def run_server(host: str | None = None, port: int | None = None):
    """Run the FastAPI server."""
    import uvicorn
    uvicorn.run(app, host=host or API_HOST, port=port or API_PORT)
