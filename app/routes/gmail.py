"""
Gmail API Routes
Triage invocation and the activity feed.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.auth.verify import admin_dependency
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.jobs.gmail_triage_job import GmailTriageJob
from app.models.api.gmail_request import TriageRequest
from app.models.api.gmail_response import ActivityResponse, TriageResponse
from app.repositories.gmail_repository import EmailLogRepository
from app.routes.openphone import run_error_to_http

logger = get_logger(__name__)

router = APIRouter(prefix="/api/gmail", tags=["gmail"])


def get_triage_job() -> GmailTriageJob:
    return GmailTriageJob()


@router.post("/triage", response_model=TriageResponse)
async def triage(
    body: TriageRequest | None = None,
    claims: dict = Depends(admin_dependency),
    job: GmailTriageJob = Depends(get_triage_job),
):
    """Triage recent INBOX mail for every active connected account."""
    try:
        result = await job.run(body.lookback_days if body else None)
    except Exception as e:
        logger.error("Gmail triage failed", error=str(e), error_type=type(e).__name__)
        raise run_error_to_http(e) from e

    return TriageResponse(**result.to_response())


@router.get("/activity", response_model=ActivityResponse)
async def activity(
    claims: dict = Depends(admin_dependency),
    limit: int = Query(default=200, ge=1, le=500),
):
    try:
        logs = await EmailLogRepository.list_activity(limit=limit)
    except DatabaseError as e:
        logger.error("Failed to load Gmail activity", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to load activity"
        )

    return ActivityResponse(logs=logs)
