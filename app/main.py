# app/main.py
"""
FastAPI application: OpenPhone cleanup, Gmail triage, draft review and
cron entry points, with database pool and Redis lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.middleware import RequestContextMiddleware
from app.routes import cron, gmail, health, openphone
from app.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level="DEBUG" if settings.debug else "INFO")
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool and Redis on startup; close them in reverse order on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        logger.info("Initializing Redis connection")
        await fast_redis.initialize()
        startup_tasks.append("redis")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    # Last, in-flight requests may still hold connections
    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Unified Inbox",
    description="OpenPhone and Gmail triage with AI summaries and reviewed draft replies",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(openphone.router)
app.include_router(gmail.router)
app.include_router(cron.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    return response


# Added last so it wraps request logging and the request id is bound first
app.add_middleware(RequestContextMiddleware)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
