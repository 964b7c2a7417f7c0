"""FastAPI application entry point for the forum SSO bridge."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from core.logging import attach_file_handler, detach_file_handlers, get_logger
from core.settings import load_settings
from services.group_name_cache import GroupNameCache
from web import routers

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    if settings.auth_log:
        attach_file_handler(settings.auth_log)
    app.state.group_cache = GroupNameCache(settings.groups.cache_file).open()
    logger.info("Forum SSO bridge started (group strategy=%s)", settings.groups.strategy)
    try:
        yield
    finally:
        app.state.group_cache.flush()
        detach_file_handlers()


app = FastAPI(
    title="Forum SSO Bridge",
    description="Single sign-on between the identity provider session and the forum.",
    lifespan=lifespan,
)


@app.get("/healthz", include_in_schema=False)
def health_check():
    """Lightweight liveness probe."""
    return {"status": "ok"}


app.include_router(routers.sso.router)
