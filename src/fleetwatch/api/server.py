"""
FastAPI server for fleetwatch.

This server provides:
- POST /api/events for ingestion
- REST endpoints for history, filters, traces, context windows, category
  and agent timeline queries
- WebSocket endpoint streaming every stored event (original or derived)
"""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, AsyncIterator, Literal

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from fleetwatch.config import FleetwatchConfig
from fleetwatch.engine import ObservabilityEngine, build_engine
from fleetwatch.errors import DuplicateEventError, MalformedEventError, NotFoundError
from fleetwatch.event_store import MAX_QUERY_LIMIT
from fleetwatch.types import HistoryParams, IncomingEvent, StoredEvent

logger = logging.getLogger(__name__)


class EventIn(BaseModel):
    """Request body for POST /api/events."""
    model_config = ConfigDict(extra="ignore")

    session_id: str | None = None
    event_type: str | None = None
    source_app: str = "unknown"
    event_id: str | None = None
    tool_name: str | None = None
    summary: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: str | None = None
    run_id: str | None = None
    agent_id: str | None = None
    parent_event_id: str | None = None
    task_id: str | None = None
    duration_ms: int | None = None
    exit_code: int | None = None
    risk_level: Literal["low", "med", "high"] | None = None
    agent_state: Literal["idle", "active", "waiting", "error"] | None = None
    error_type: str | None = None


class BroadcastHub:
    """
    Fans stored events out to connected WebSocket clients.

    publish() is registered as an engine broadcast hook and may run on any
    thread (request workers, the session sweeper); it hands messages to the
    event loop, where each connection drains its own queue.
    """

    def __init__(self) -> None:
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queues: set[asyncio.Queue[dict[str, Any]]] = set()
        self._lock = threading.Lock()

    def bind(self, loop: asyncio.AbstractEventLoop | None) -> None:
        self._loop = loop

    def register(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        with self._lock:
            self._queues.add(queue)
        return queue

    def unregister(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        with self._lock:
            self._queues.discard(queue)

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._queues)

    def publish(self, event: StoredEvent) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        message = {"type": "event", "event": event.to_dict()}
        with self._lock:
            queues = list(self._queues)
        for queue in queues:
            loop.call_soon_threadsafe(queue.put_nowait, message)


def _http_error(status_code: int, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": message})


def create_app(
    engine: ObservabilityEngine | None = None,
    config: FleetwatchConfig | None = None,
    start_sweeper: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application around an engine.

    Args:
        engine: Engine to serve (built from config if omitted)
        config: Configuration; defaults to the engine's
        start_sweeper: Run the session sweeper for the app's lifetime
    """
    config = config or (engine.config if engine else FleetwatchConfig.from_env())
    engine = engine or build_engine(config)
    hub = BroadcastHub()
    server_config = config.server

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        hub.bind(asyncio.get_running_loop())
        engine.subscribe(hub.publish)
        if start_sweeper:
            engine.start()
        logger.info("fleetwatch server started")
        try:
            yield
        finally:
            engine.unsubscribe(hub.publish)
            if start_sweeper:
                engine.stop()
            hub.bind(None)
            logger.info("fleetwatch server stopped")

    app = FastAPI(title="fleetwatch", version="0.1.0", lifespan=lifespan)
    app.state.engine = engine
    app.state.hub = hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_config.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        # Malformed input is a 400 like every other rejected event
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": {"error": errors}})

    @app.get("/health")
    def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "clients": hub.client_count,
        }

    @app.post("/api/events", status_code=status.HTTP_201_CREATED)
    def post_event(body: EventIn) -> dict[str, Any]:
        """Ingest one event."""
        if not body.session_id or not body.event_type:
            raise _http_error(status.HTTP_400_BAD_REQUEST, "session_id and event_type are required")

        try:
            result = engine.ingest(IncomingEvent.from_dict(body.model_dump()))
        except DuplicateEventError:
            raise _http_error(status.HTTP_409_CONFLICT, "Duplicate event_id")
        except MalformedEventError as e:
            raise _http_error(status.HTTP_400_BAD_REQUEST, str(e))

        stored = result.stored
        return {"id": stored.id, "event_id": stored.event_id, "created_at": stored.created_at}

    @app.get("/api/history")
    def get_history(
        limit: int = 100,
        offset: int = 0,
        source_app: str | None = None,
        session_id: str | None = None,
        event_type: str | None = None,
        since: str | None = None,
    ) -> dict[str, Any]:
        params = HistoryParams(
            limit=limit,
            offset=offset,
            source_app=source_app or None,
            session_id=session_id or None,
            event_type=event_type or None,
            since=since or None,
        )
        try:
            events, total = engine.history(params)
        except MalformedEventError as e:
            raise _http_error(status.HTTP_400_BAD_REQUEST, str(e))
        return {
            "events": [e.to_dict() for e in events],
            "total": total,
            "filters": engine.filters().to_dict(),
        }

    @app.get("/api/filters")
    def get_filters() -> dict[str, Any]:
        return engine.filters().to_dict()

    @app.get("/api/trace/{event_id}")
    def get_trace(event_id: str) -> dict[str, Any]:
        try:
            return engine.trace(event_id).to_dict()
        except NotFoundError:
            raise _http_error(status.HTTP_404_NOT_FOUND, "Event not found")

    @app.get("/api/events/context")
    def get_context(
        run_id: str | None = None,
        ts: str | None = None,
        agent_id: str | None = None,
        window_sec: int | None = None,
    ) -> dict[str, Any]:
        if not run_id or not ts:
            raise _http_error(status.HTTP_400_BAD_REQUEST, "run_id and ts required")
        try:
            events = engine.context(run_id, ts, agent_id=agent_id or None, window_sec=window_sec)
        except MalformedEventError as e:
            raise _http_error(status.HTTP_400_BAD_REQUEST, str(e))
        return {"events": [e.to_dict() for e in events]}

    @app.get("/api/agents/{agent_id}/timeline")
    def get_agent_timeline(
        agent_id: str,
        since: str | None = None,
        limit: int = Query(200, ge=0),
    ) -> dict[str, Any]:
        try:
            events = engine.agent_timeline(agent_id, since=since or None, limit=min(limit, MAX_QUERY_LIMIT))
        except MalformedEventError as e:
            raise _http_error(status.HTTP_400_BAD_REQUEST, str(e))
        return {"events": [e.to_dict() for e in events]}

    @app.get("/api/events/category/{category}")
    def get_events_by_category(category: str, limit: int = Query(100, ge=0)) -> dict[str, Any]:
        events = engine.by_category(category, limit=min(limit, MAX_QUERY_LIMIT))
        return {"events": [e.to_dict() for e in events]}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """Stream a snapshot of recent events, then every new one."""
        await websocket.accept()
        queue = hub.register()
        sender: asyncio.Task[None] | None = None

        try:
            # The queue is registered first, so an event stored before the
            # snapshot read can arrive both ways; the pump skips those ids
            recent = engine.recent(server_config.snapshot_size)
            await websocket.send_json({"type": "snapshot", "events": [e.to_dict() for e in recent]})
            snapshot_ids = {e.id for e in recent}
            sender = asyncio.create_task(
                _pump(websocket, queue, server_config.heartbeat_interval_s, snapshot_ids)
            )

            while True:
                # Client messages are only pongs; anything else is ignored
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("WebSocket client disconnected")
        finally:
            if sender is not None:
                sender.cancel()
            hub.unregister(queue)

    return app


async def _pump(
    websocket: WebSocket,
    queue: asyncio.Queue[dict[str, Any]],
    heartbeat_s: float,
    skip_ids: set[int] | None = None,
) -> None:
    """
    Forward queued events to one client, with a ping when idle.

    Events whose row id is in skip_ids were already sent in the snapshot.
    """
    skip_ids = skip_ids or set()
    while True:
        try:
            message = await asyncio.wait_for(queue.get(), timeout=heartbeat_s)
        except TimeoutError:
            message = {"type": "ping", "ts": datetime.now(UTC).isoformat()}
        if message.get("type") == "event" and message["event"].get("id") in skip_ids:
            continue
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"WebSocket send failed: {e}")
            return


def run_server(
    engine: ObservabilityEngine | None = None,
    config: FleetwatchConfig | None = None,
) -> None:
    """Run the API server."""
    import uvicorn

    config = config or (engine.config if engine else FleetwatchConfig.from_env())
    app = create_app(engine, config)
    uvicorn.run(app, host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    run_server()
