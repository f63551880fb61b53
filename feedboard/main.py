"""FastAPI application entry point."""

import asyncio
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from feedboard.api import boards, diet, feeds, horses, pairing
from feedboard.config import Settings, get_settings
from feedboard.database import SessionLocal
from feedboard.services.board_state import BoardPublisher
from feedboard.services.broadcast import BroadcastManager
from feedboard.services.rankings import RankingManager
from feedboard.services.realtime import RealtimeService
from feedboard.services.scheduler import Scheduler

logger = logging.getLogger(__name__)


def _format_validation_error(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"] if part != "body")
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(messages)


def create_app(
    settings: Settings | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> FastAPI:
    """Build the application.

    The push registry, publisher, ranking manager and scheduler are created
    per application in the lifespan and kept on ``app.state``.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown events."""
        loop = asyncio.get_running_loop()
        manager = BroadcastManager()
        publisher = BoardPublisher(manager, session_factory)
        rankings = RankingManager(
            session_factory,
            publisher.publish,
            debounce_seconds=settings.ranking_debounce_seconds,
            loop=loop,
        )

        scheduler: Scheduler | None = None
        realtime: RealtimeService | None = None
        relay_task: asyncio.Task | None = None
        if settings.scheduler_backend == "inprocess":
            scheduler = Scheduler(
                session_factory,
                publisher.publish,
                override_interval=settings.override_sweep_interval_seconds,
                note_interval=settings.note_sweep_interval_seconds,
            )
            scheduler.start()
        else:
            # Sweeps run on Celery beat; relay their change notices
            realtime = RealtimeService(settings.redis_url)
            relay_task = asyncio.create_task(realtime.relay(publisher))

        manager.start(settings.keepalive_interval_seconds)

        app.state.settings = settings
        app.state.broadcast = manager
        app.state.publisher = publisher
        app.state.rankings = rankings
        app.state.scheduler = scheduler
        logger.info(f"Feed board server started ({settings.scheduler_backend} sweeps)")

        yield

        if relay_task is not None:
            relay_task.cancel()
            await asyncio.gather(relay_task, return_exceptions=True)
        if realtime is not None:
            await realtime.cleanup()
        if scheduler is not None:
            await scheduler.shutdown()
        await rankings.shutdown()
        await manager.shutdown()
        logger.info("Feed board server stopped")

    app = FastAPI(
        title="Feed Board API",
        description="Shared feed board for a stable display and its mobile controllers",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"success": False, "error": _format_validation_error(exc)},
        )

    # Register routers
    app.include_router(boards.router)
    app.include_router(horses.router)
    app.include_router(feeds.router)
    app.include_router(diet.router)
    app.include_router(pairing.router)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        state = request.app.state
        scheduler = getattr(state, "scheduler", None)
        return {
            "status": "healthy",
            "environment": settings.environment,
            "push": state.broadcast.get_stats() if hasattr(state, "broadcast") else None,
            "rankings": state.rankings.get_stats() if hasattr(state, "rankings") else None,
            "scheduler": scheduler.get_stats() if scheduler else {"backend": settings.scheduler_backend},
        }

    return app


app = create_app()
