"""
Shelfsignal FastAPI Application
===============================

Receives engagement events from the tracking client and serves rating
sentiment.

Endpoints:
    GET   /api/health                          - Liveness + database check
    POST  /api/books/{id}/impression           - Record an impression
    POST  /api/books/{id}/click-through        - Record a click-through
    GET   /api/books/{id}/sentiment            - Per-criterion sentiment
    GET   /api/sentiment/thresholds            - All threshold bands
    GET   /api/sentiment/thresholds/{criterion}
    PATCH /api/sentiment/thresholds/{id}

Usage:
    uvicorn src.api.main:app --port 8000
    python -m src.api.main            # host/port/reload from API_* settings
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import configure_logging, get_settings

from . import db
from .ingestion_routes import router as ingestion_router
from .models import HealthResponse
from .sentiment_routes import router as sentiment_router

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.logging)
    # Opened eagerly so a bad DATABASE_* config shows up at boot, not on the first event
    if db.get_pool() is None:
        logger.warning("API started without a database; ingestion will answer 503")
    logger.info(f"{settings.app_name} API {settings.app_version} up")
    yield
    db.close_pool()
    logger.info(f"{settings.app_name} API stopped")


app = FastAPI(
    title="Shelfsignal API",
    description="Book engagement ingestion and rating sentiment",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.api.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(ingestion_router)
app.include_router(sentiment_router)


# ============================================================================
# HEALTH
# ============================================================================

@app.get("/api/health", response_model=HealthResponse)
async def health_check():
    """
    Always 200. 'degraded' when the database check fails: ingestion and
    sentiment requests answer 503 until it recovers.
    """
    health = db.check_health()
    connected = health["status"] == "connected"

    return HealthResponse(
        status="healthy" if connected else "degraded",
        version=settings.app_version,
        database=health["status"],
        database_version=health.get("version"),
        database_latency_ms=health.get("latency_ms"),
        threshold_rows=health.get("threshold_rows"),
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=settings.api.reload,
    )
