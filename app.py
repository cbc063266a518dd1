import asyncio
import os
import signal
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend import RoomRegistry
from constants import Settings, load_settings
from logging_config import get_logger, setup_logging
from relay import MessageRouter
from routers.health import health_router
from routers.rooms import ConnectionGateway, rooms_router
from sweeper import LifecycleSweeper, StatsReporter

logger = get_logger(__name__)


def _install_loop_exception_handler(settings: Settings) -> None:
    """Log exceptions nobody awaited; in production, shut down gracefully."""
    loop = asyncio.get_running_loop()

    def handler(loop, context):
        exc = context.get("exception")
        logger.error(f"Unhandled exception in event loop: {context.get('message')}", exc_info=exc)
        if settings.shutdown_on_crash:
            logger.critical("Triggering graceful shutdown after unhandled exception")
            os.kill(os.getpid(), signal.SIGTERM)

    loop.set_exception_handler(handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    _install_loop_exception_handler(settings)

    sweeper = LifecycleSweeper(
        app.state.registry,
        max_age=settings.room_max_age,
        interval=settings.room_cleanup_interval,
    )
    sweeper.start()
    reporter = None
    if settings.enable_stats:
        reporter = StatsReporter(app.state.registry, interval=settings.stats_interval)
        reporter.start()
    logger.info(f"Relay server started ({settings.env} profile)")

    yield

    logger.info("Shutting down gracefully")
    await sweeper.stop()
    if reporter is not None:
        await reporter.stop()
    await app.state.gateway.shutdown()


def create_app(settings: Optional[Settings] = None, registry: Optional[RoomRegistry] = None) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(log_level=settings.log_level, log_file=settings.log_file)

    app = FastAPI(title="Motion Relay", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    registry = registry or RoomRegistry(max_rooms=settings.max_rooms)
    app.state.settings = settings
    app.state.registry = registry
    app.state.gateway = ConnectionGateway(registry, MessageRouter(registry), max_payload=settings.max_payload)

    app.include_router(health_router)
    app.include_router(rooms_router)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
