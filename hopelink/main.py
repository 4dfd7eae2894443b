from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from hopelink.core.config import get_settings
from hopelink.core.logging import configure_logging, request_id_middleware
from hopelink.db.init import create_tables, sanitize_db_url
from hopelink.matching.router import router as matching_router

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings.ENV)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    logger.info("=" * 70)
    logger.info("Starting HopeLink matching service...")
    logger.info(f"Environment: {settings.ENV}")
    logger.info(
        f"Database: {sanitize_db_url(settings.DATABASE_URL) if settings.DATABASE_URL else 'local SQLite'}"
    )
    logger.info(f"Matching context: {settings.MATCHING_CONTEXT}")
    logger.info("=" * 70)

    await create_tables()
    logger.info("✓ Tables ready")

    yield

    logger.info("=" * 70)
    logger.info("HopeLink matching service shut down")
    logger.info("=" * 70)


app = FastAPI(title="HopeLink Matching Service", version="0.1.0", lifespan=lifespan)
app.middleware("http")(request_id_middleware)
app.include_router(matching_router)


@app.get("/")
def health_check():
    logger.debug("Health check endpoint called")
    return {"status": "ok"}


@app.get("/healthz")
def healthz():
    logger.debug(f"Healthz endpoint called (env: {settings.ENV})")
    return {"status": "healthy", "env": settings.ENV}
