"""safepath FastAPI application."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from app.api import alerts, auth, health, journeys, links, sos, users, ws
from app.core.config import settings
from app.core.errors import DependencyUnavailableError, DomainError
from app.core.ordering import KeyedLocks
from app.core.session_registry import SessionRegistry
from app.db.session import session_scope
from app.services.journey_service import purge_expired_locations
from app.services.notification_service import build_notifier

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def _purge_once() -> int:
    with session_scope() as db:
        return purge_expired_locations(db)


async def purge_locations_periodically(interval_seconds: float) -> None:
    """Delete expired location samples every ``interval_seconds``."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(_purge_once)
        except Exception:
            logger.exception("location_purge_failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.session_registry = SessionRegistry()
    app.state.notifier = build_notifier(settings)
    app.state.journey_locks = KeyedLocks()
    purge_task = None
    if settings.location_purge_interval_seconds > 0:
        purge_task = asyncio.create_task(purge_locations_periodically(settings.location_purge_interval_seconds))
    logger.info("%s started (channels=%s)", settings.app_name, [c.name for c in app.state.notifier.channels])
    try:
        yield
    finally:
        if purge_task is not None:
            purge_task.cancel()
        app.state.session_registry.clear()
        await app.state.notifier.aclose()


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan,
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(OperationalError)
async def storage_unavailable_handler(request: Request, exc: OperationalError):
    logger.error("storage_unavailable path=%s error=%s", request.url.path, exc.orig)
    return JSONResponse(
        status_code=DependencyUnavailableError.status_code,
        content={"detail": "Storage is unavailable"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(health.router)
app.include_router(auth.router)
app.include_router(links.router)
app.include_router(users.router)
app.include_router(journeys.router)
app.include_router(alerts.router)
app.include_router(sos.router)
app.include_router(ws.router)
