# app/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.config import settings
from app.db.pool import db_health_check
from app.services import redis_store

router = APIRouter()

SERVICE_NAME = "unified-inbox"


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": SERVICE_NAME}


@router.get("/readyz")
async def readyz():
    """Readiness: database pool, Redis and required configuration."""
    checks = {}

    t0 = time.time()
    db_health = await db_health_check()
    checks["database"] = {
        "ok": bool(db_health.get("healthy")),
        "latency_ms": round((time.time() - t0) * 1000, 1),
    }
    if "pool_stats" in db_health:
        checks["database"].update(db_health["pool_stats"])
    if not db_health.get("healthy"):
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")

    t0 = time.time()
    redis_health = await redis_store.health_check()
    checks["redis"] = {
        "ok": bool(redis_health.get("healthy")),
        "latency_ms": round((time.time() - t0) * 1000, 1),
    }
    if not redis_health.get("healthy"):
        checks["redis"]["error"] = redis_health.get("error", "Redis unhealthy")

    config_issues = []
    if not settings.OPENPHONE_API_KEY:
        config_issues.append("OPENPHONE_API_KEY not set")
    if not (settings.PERPLEXITY_API_KEY or settings.OPENAI_API_KEY):
        config_issues.append("No AI provider key set")
    if not settings.CRON_SECRET:
        config_issues.append("CRON_SECRET not set")
    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }

    overall_ok = all(check["ok"] for check in checks.values())
    body = {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
    return JSONResponse(status_code=200 if overall_ok else 503, content=body)
