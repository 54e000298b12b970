"""
OpenPhone API Routes
Cleanup runs, run/summary listings and the draft review workflow.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.auth.verify import admin_dependency
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.jobs.openphone_cleanup_job import OpenPhoneCleanupJob
from app.models.api.openphone_request import ApproveDraftRequest, RejectDraftRequest, RunRequest
from app.models.api.openphone_response import (
    DraftActionResponse,
    DraftListResponse,
    RunListResponse,
    RunResponse,
    SendApprovedResponse,
    SummaryListResponse,
)
from app.models.domain.draft_domain import DraftStatus
from app.models.domain.run_domain import RunSource
from app.repositories.openphone_repository import SummaryRepository
from app.repositories.run_repository import RunRepository
from app.services.draft_service import DraftNotFoundError, DraftService, DraftStateError, draft_service
from app.services.run_tracker import RunInProgressError, RunNotFoundError, RunStateError

logger = get_logger(__name__)

router = APIRouter(prefix="/api/openphone", tags=["openphone"])


def get_cleanup_job() -> OpenPhoneCleanupJob:
    return OpenPhoneCleanupJob()


def get_draft_service() -> DraftService:
    return draft_service


def run_error_to_http(e: Exception) -> HTTPException:
    """Translate run tracker errors; anything else is a 500."""
    if isinstance(e, RunNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, (RunStateError, RunInProgressError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e) or "Run failed")


@router.post("/run", response_model=RunResponse)
async def run_cleanup(
    body: RunRequest,
    claims: dict = Depends(admin_dependency),
    job: OpenPhoneCleanupJob = Depends(get_cleanup_job),
):
    """Process one batch of conversations; pass resumeRunId to continue a paused run."""
    try:
        resume_run_id = str(body.resume_run_id) if body.resume_run_id else None
        result = await job.run(body.start_date, body.end_date, resume_run_id)
    except Exception as e:
        logger.error("OpenPhone run failed", error=str(e), error_type=type(e).__name__)
        raise run_error_to_http(e) from e

    return RunResponse(**result.to_response())


@router.get("/runs", response_model=RunListResponse)
async def list_runs(
    claims: dict = Depends(admin_dependency),
    source: RunSource | None = Query(default=None, description="openphone or gmail"),
):
    try:
        runs = await RunRepository.list_recent(source=source)
    except DatabaseError as e:
        logger.error("Failed to list runs", error=str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to list runs")

    return RunListResponse(runs=[run.to_dict() for run in runs])


@router.get("/summaries", response_model=SummaryListResponse)
async def list_summaries(
    claims: dict = Depends(admin_dependency),
    run_id: str | None = Query(default=None, alias="runId"),
):
    try:
        summaries = await SummaryRepository.list_recent(run_id=run_id)
    except DatabaseError as e:
        logger.error("Failed to list summaries", run_id=run_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to list summaries"
        )

    return SummaryListResponse(summaries=summaries)


@router.get("/drafts", response_model=DraftListResponse)
async def list_drafts(
    claims: dict = Depends(admin_dependency),
    draft_status: DraftStatus | None = Query(default=None, alias="status"),
    service: DraftService = Depends(get_draft_service),
):
    try:
        drafts = await service.list_drafts(draft_status)
    except DatabaseError as e:
        logger.error("Failed to list drafts", error=str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to list drafts")

    return DraftListResponse(drafts=[draft.to_dict() for draft in drafts])


def _client(request: Request) -> dict[str, str | None]:
    """Caller details recorded with audit events."""
    return {
        "ip_address": getattr(request.state, "ip_address", None),
        "user_agent": getattr(request.state, "user_agent", None),
    }


def _draft_error_to_http(e: Exception) -> HTTPException:
    if isinstance(e, DraftNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, DraftStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Draft update failed")


@router.post("/approve", response_model=DraftActionResponse)
async def approve_draft(
    body: ApproveDraftRequest,
    request: Request,
    claims: dict = Depends(admin_dependency),
    service: DraftService = Depends(get_draft_service),
):
    try:
        draft = await service.approve(
            body.draft_id, edit=body.edit, actor=claims.get("email"), **_client(request)
        )
    except (DraftNotFoundError, DraftStateError, DatabaseError) as e:
        logger.warning("Draft approval failed", draft_id=body.draft_id, error=str(e))
        raise _draft_error_to_http(e) from e

    return DraftActionResponse(draft=draft.to_dict())


@router.post("/reject", response_model=DraftActionResponse)
async def reject_draft(
    body: RejectDraftRequest,
    request: Request,
    claims: dict = Depends(admin_dependency),
    service: DraftService = Depends(get_draft_service),
):
    try:
        draft = await service.reject(body.id, actor=claims.get("email"), **_client(request))
    except (DraftNotFoundError, DraftStateError, DatabaseError) as e:
        logger.warning("Draft rejection failed", draft_id=body.id, error=str(e))
        raise _draft_error_to_http(e) from e

    return DraftActionResponse(draft=draft.to_dict())


@router.post("/send-approved", response_model=SendApprovedResponse)
async def send_approved(
    request: Request,
    claims: dict = Depends(admin_dependency),
    service: DraftService = Depends(get_draft_service),
):
    try:
        result = await service.send_approved(actor=claims.get("email"), **_client(request))
    except DatabaseError as e:
        logger.error("Failed to load approved drafts", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to load approved drafts"
        )

    return SendApprovedResponse(**result.to_response())
