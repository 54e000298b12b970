"""
Cron Routes
Scheduled entry points for both pipelines, gated by CRON_SECRET. Each
run leaves a system notification row summarizing the outcome.
"""

from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends

from app.auth.cron import cron_dependency
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.jobs.gmail_triage_job import GmailTriageJob
from app.jobs.openphone_cleanup_job import OpenPhoneCleanupJob
from app.repositories.notification_repository import NotificationRepository
from app.routes.gmail import get_triage_job
from app.routes.openphone import get_cleanup_job, run_error_to_http

logger = get_logger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(cron_dependency)])

CLEANUP_WINDOW_DAYS = 7
CRON_TRIAGE_LOOKBACK_DAYS = 3


async def _notify(title: str, message: str, priority: str, metadata: dict) -> None:
    try:
        await NotificationRepository.create(
            title=title, message=message, priority=priority, metadata=metadata
        )
    except DatabaseError as e:
        logger.warning("Failed to write cron notification", title=title, error=str(e))


@router.get("/openphone-cleanup")
async def openphone_cleanup(job: OpenPhoneCleanupJob = Depends(get_cleanup_job)):
    end_date = datetime.now(UTC).date()
    start_date = end_date - timedelta(days=CLEANUP_WINDOW_DAYS)

    try:
        result = await job.run(start_date, end_date)
    except Exception as e:
        logger.error("Cron OpenPhone cleanup failed", error=str(e), error_type=type(e).__name__)
        raise run_error_to_http(e) from e

    response = result.to_response()
    await _notify(
        title="OpenPhone Cleanup Completed",
        message=f"Processed {result.processed} conversations. {result.errors_count} errors.",
        priority="high" if result.errors_count > 0 else "normal",
        metadata=response,
    )
    return {"ok": True, "message": "OpenPhone cleanup completed", "result": response}


@router.get("/gmail-triage")
async def gmail_triage(job: GmailTriageJob = Depends(get_triage_job)):
    try:
        result = await job.run(CRON_TRIAGE_LOOKBACK_DAYS)
    except Exception as e:
        logger.error("Cron Gmail triage failed", error=str(e), error_type=type(e).__name__)
        raise run_error_to_http(e) from e

    response = result.to_response()
    await _notify(
        title="Gmail Triage Completed",
        message=f"Processed {result.processed} emails. Created {result.drafts_created} drafts.",
        priority="normal",
        metadata=response,
    )
    return {"ok": True, "message": "Gmail triage completed", "result": response}
