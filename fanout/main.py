"""Webhook fan-out API: receives webhooks and relays them to configured endpoints."""

import logging
import logging.config
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.config import settings
from fanout.db import init_db, get_db
from fanout.logging_setup import LOGGING_CONFIG
from fanout.middleware import RateLimitMiddleware, MetricsMiddleware, client_ip
from fanout.routers import endpoints, logs, webhooks, replay
from fanout.services.receiver import receive_webhook

logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger(__name__)

RECEIVER_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


# ---------------------------------------------------------------------------
# App lifecycle
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing database", extra={"event": "startup"})
    await init_db()
    if not settings.api_tokens:
        logger.warning(
            "MANAGEMENT_API_TOKENS is empty; management API is unauthenticated",
            extra={"event": "startup"},
        )
    logger.info(
        "Fan-out service ready, receiving on %s", settings.webhook_path,
        extra={"event": "startup"},
    )
    yield
    logger.info("Fan-out service shutting down", extra={"event": "shutdown"})


app = FastAPI(
    title="Webhook Fan-out",
    description="Receives webhooks, relays them to configured endpoints, and replays them on demand",
    version="0.1.0",
    lifespan=lifespan,
)

# Starlette wraps later additions around earlier ones: metrics sits outside
# the limiter so refused requests are counted too
app.add_middleware(
    RateLimitMiddleware,
    requests_per_minute=settings.rate_limit_per_minute,
    exempt_paths={settings.webhook_path},
)
app.add_middleware(MetricsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(endpoints.router)
app.include_router(logs.router)
app.include_router(webhooks.router)
app.include_router(replay.router)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    """Liveness + readiness probe. Checks DB connectivity."""
    db_ok = False
    try:
        await db.execute(text("SELECT 1"))
        db_ok = True
    except Exception:
        logger.exception("Health check database probe failed")

    status = "ok" if db_ok else "degraded"
    return {
        "status": status,
        "service": "webhook-fanout",
        "webhook_path": settings.webhook_path,
        "checks": {
            "database": "ok" if db_ok else "error",
        },
    }


# ---------------------------------------------------------------------------
# Prometheus metrics
# ---------------------------------------------------------------------------

@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Expose Prometheus metrics for scraping."""
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


# ---------------------------------------------------------------------------
# Inbound receiver
# ---------------------------------------------------------------------------

@app.api_route(settings.webhook_path, methods=RECEIVER_METHODS, include_in_schema=False)
async def inbound_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """Receive a webhook and fan it out. Never gated by management auth or rate limiting."""
    try:
        body = await request.body()
        return await receive_webhook(
            db,
            method=request.method,
            headers=dict(request.headers),
            body=body,
            source_ip=client_ip(request),
            user_agent=request.headers.get("user-agent", "unknown"),
            tenant_id=request.headers.get("x-tenant-id"),
        )
    except Exception:
        logger.exception("Inbound webhook could not be recorded")
        return JSONResponse({"error": "Internal server error"}, status_code=500)
