# backend/courtbook/main.py

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, get_settings
from .database import build_engine, build_session_factory
from .errors import BookingError
from .redis_client import build_redis_client
from .routers import bookings, internal, slots
from .services.expiry_sweeper import expiry_sweeper_loop
from .services.slots import SlotsRedisStore
from .services.slots.config import booking_config_from_settings
from .timezones import utc_now

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    interval = app.state.settings.sweep_interval_seconds
    task = None
    if interval > 0:
        store = SlotsRedisStore(app.state.redis, app.state.booking_config, app.state.clock)
        task = asyncio.create_task(
            expiry_sweeper_loop(app.state.session_factory, store, interval)
        )

    yield

    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    redis: Optional[Redis] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    """Build the API with its database engine and Redis client."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="Court Booking API", lifespan=lifespan)

    engine = engine or build_engine(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.redis = redis if redis is not None else build_redis_client(settings)
    app.state.booking_config = booking_config_from_settings(settings)
    app.state.clock = clock

    app.include_router(slots.router)
    app.include_router(bookings.router)
    app.include_router(internal.router)

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})

    @app.get("/health")
    def health():
        checks = {"redis": False, "database": False}
        try:
            checks["redis"] = bool(app.state.redis.ping())
        except RedisError:
            logger.warning("Health check: redis unreachable")
        try:
            with app.state.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            checks["database"] = True
        except SQLAlchemyError:
            logger.warning("Health check: database unreachable")

        status_code = 200 if all(checks.values()) else 503
        return JSONResponse(status_code=status_code, content=checks)

    return app
