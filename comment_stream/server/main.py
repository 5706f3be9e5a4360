"""
MODULE OVERVIEW:
The FastAPI application factory.

WHAT IS HAPPENING HERE:
`create_app()` builds one explicitly owned set of services (registry, broadcast
engine, comment store, keep-alive scheduler) and hangs them on `app.state`,
where the route dependencies pick them up. Nothing reaches for a global
connection list, so tests can build as many independent apps as they like.

The `lifespan` context starts the keep-alive thread when Uvicorn boots and, on
shutdown, stops it and closes every open stream exactly once.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from comment_stream.server.broadcast import BroadcastEngine
from comment_stream.server.comment_store import CommentStore
from comment_stream.server.connection_manager import ConnectionRegistry
from comment_stream.server.error_handlers import register_error_handlers
from comment_stream.server.keepalive import KeepAliveScheduler
from comment_stream.server.middleware import TimingMiddleware
from comment_stream.server.routes import comments, sse
from comment_stream.shared.config import Settings, settings as default_settings
from comment_stream.shared.models import ConnectionStats


@asynccontextmanager
async def lifespan(app: FastAPI):
    # STARTUP
    logger.info("Comment stream server starting up...")
    app.state.keepalive.start()

    yield

    # SHUTDOWN
    logger.info("Server shutting down. Closing SSE connections...")
    app.state.keepalive.stop()
    app.state.registry.close_all()
    logger.info("Shutdown complete.")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings

    app = FastAPI(
        title="Comment Stream",
        description="Real-time comment broadcast over Server-Sent Events",
        version="1.0.0",
        lifespan=lifespan,
    )

    registry = ConnectionRegistry(idle_timeout_s=settings.SSE_IDLE_TIMEOUT_S, max_backlog=settings.SSE_MAX_BACKLOG)
    engine = BroadcastEngine(registry)
    app.state.settings = settings
    app.state.registry = registry
    app.state.engine = engine
    app.state.store = CommentStore(capacity=settings.COMMENT_STORE_CAPACITY)
    app.state.keepalive = KeepAliveScheduler(registry, engine, interval_s=settings.KEEPALIVE_INTERVAL_S)
    app.state.startup_time = datetime.now(timezone.utc)
    # Tests flip this to end each stream right after its init envelopes.
    app.state.close_streams_after_init = False

    # Add Middlewares
    app.add_middleware(TimingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        max_age=3600,
    )

    register_error_handlers(app)

    # Route registrations
    app.include_router(sse.router, tags=["Stream"])
    app.include_router(comments.router, tags=["Comments"])

    @app.get("/healthz", tags=["Ops"])
    async def health_check(request: Request):
        return {"status": "ok", "activeConnections": request.app.state.registry.size()}

    @app.get("/stats", tags=["Ops"], response_model=ConnectionStats)
    async def get_stats(request: Request):
        state = request.app.state
        now = datetime.now(timezone.utc)
        return ConnectionStats(
            active_connections=state.registry.size(),
            total_registered=state.registry.total_registered,
            broadcasts=state.engine.broadcasts,
            deliveries=state.engine.deliveries,
            failed_deliveries=state.engine.failed_deliveries,
            stored_comments=state.store.count(),
            uptime_s=(now - state.startup_time).total_seconds(),
            server_time=now,
        )

    return app


app = create_app()
