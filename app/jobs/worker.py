"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, opens the database pool and Redis, and runs one invocation of
the matching pipeline.

    python -m app.jobs.worker openphone_cleanup
    python -m app.jobs.worker gmail_triage

openphone_cleanup reads OPENPHONE_START_DATE / OPENPHONE_END_DATE
(YYYY-MM-DD, default: the last 7 days) and OPENPHONE_RESUME_RUN_ID;
gmail_triage reads GMAIL_LOOKBACK_DAYS.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime, timedelta

from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.jobs.gmail_triage_job import run_gmail_triage
from app.jobs.openphone_cleanup_job import run_openphone_cleanup
from app.services.redis_client import fast_redis

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

DEFAULT_CLEANUP_WINDOW_DAYS = 7


def _env_date(name: str, default: date) -> date:
    value = os.getenv(name, "").strip()
    return date.fromisoformat(value) if value else default


async def openphone_cleanup() -> None:
    end_date = _env_date("OPENPHONE_END_DATE", datetime.now(UTC).date())
    start_date = _env_date("OPENPHONE_START_DATE", end_date - timedelta(days=DEFAULT_CLEANUP_WINDOW_DAYS))
    resume_run_id = os.getenv("OPENPHONE_RESUME_RUN_ID") or None

    result = await run_openphone_cleanup(start_date, end_date, resume_run_id)
    logger.info("OpenPhone cleanup finished", **result.to_response())


async def gmail_triage() -> None:
    lookback = os.getenv("GMAIL_LOOKBACK_DAYS", "").strip()
    result = await run_gmail_triage(int(lookback) if lookback else None)
    logger.info("Gmail triage finished", **result.to_response())


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "openphone_cleanup": openphone_cleanup,
    "gmail_triage": gmail_triage,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "openphone_cleanup").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job with the database pool and Redis open."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await db_pool.initialize()
    try:
        await fast_redis.initialize()
        try:
            await JOB_REGISTRY[name]()
        finally:
            await fast_redis.close()
    finally:
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging()
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
