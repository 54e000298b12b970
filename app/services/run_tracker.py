"""
Checkpoint / Run Tracker shared by the OpenPhone and Gmail pipelines.

One runs row per pipeline run. An invocation either creates a run or
resumes a paused/failed one, holds a Redis lease on it while working,
and writes the row exactly once more at the end: paused/completed on
success, failed (with the error appended) on an unhandled exception.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import bind_run_context, clear_run_context, get_logger
from app.models.domain.run_domain import (
    Checkpoint,
    Run,
    RunError,
    RunSource,
    RunStatus,
    can_transition,
    utc_now_iso,
)
from app.repositories.run_repository import RunRepository
from app.services import redis_store

logger = get_logger(__name__)

RUN_LOCK_PREFIX = "run_lock:"


class RunNotFoundError(Exception):
    recoverable = False

    def __init__(self, run_id: str):
        super().__init__(f"Run {run_id} not found")
        self.run_id = run_id


class RunStateError(Exception):
    """The run cannot move to the requested state (e.g. resuming a completed run)."""

    recoverable = False


class RunInProgressError(Exception):
    """Another invocation currently holds the run's lease."""

    recoverable = True

    def __init__(self, run_id: str):
        super().__init__(f"Run {run_id} is already being processed")
        self.run_id = run_id


@dataclass(slots=True)
class RunSession:
    """State of one invocation against a run."""

    run: Run
    previous: Checkpoint
    lease_token: str | None = None
    processed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def run_id(self) -> str:
        return self.run.id

    @property
    def resume_page_token(self) -> str | None:
        return self.previous.page_token

    def record_error(
        self, step: str, message: str, item_id: str | None = None, item_key: str = "conversationId"
    ) -> None:
        self.errors.append(RunError(step=step, message=message, item_id=item_id).to_json(item_key))


class RunTracker:
    def __init__(self, lock_ttl_s: int | None = None):
        self.lock_ttl_s = lock_ttl_s or settings.RUN_LOCK_TTL_SECONDS

    async def start(
        self,
        source: RunSource,
        start_date: date,
        end_date: date,
        resume_run_id: str | None = None,
    ) -> RunSession:
        """
        Create a new running run, or resume an existing one.

        Raises:
            RunNotFoundError: resume_run_id does not exist
            RunStateError: the run is completed or belongs to another pipeline
            RunInProgressError: another invocation holds the run's lease
        """
        if not resume_run_id:
            run = await RunRepository.create(source, start_date, end_date, RunStatus.RUNNING)
            session = RunSession(run=run, previous=Checkpoint())
            session.lease_token = await self._acquire_lease(run.id)
            bind_run_context(run.id, source.value)
            return session

        run = await RunRepository.get(resume_run_id)
        if run is None:
            raise RunNotFoundError(resume_run_id)
        if run.source != source:
            raise RunStateError(f"Run {run.id} belongs to the {run.source.value} pipeline")
        if run.status == RunStatus.COMPLETED:
            raise RunStateError(f"Run {run.id} is already completed")

        lease_token = await self._acquire_lease(run.id)

        if run.status == RunStatus.RUNNING:
            # Lease was free, so the last invocation died without writing a final state
            logger.warning("Resuming run left in running state", run_id=run.id)
        elif not run.is_resumable():
            await self._release_lease(run.id, lease_token)
            raise RunStateError(f"Run {run.id} cannot resume from {run.status.value}")

        await RunRepository.update_state(run.id, RunStatus.RUNNING, run.checkpoint)
        previous = run.checkpoint
        run.status = RunStatus.RUNNING

        bind_run_context(run.id, source.value)
        logger.info("Run resumed", page_token=previous.page_token, total_processed=previous.total_processed)
        return RunSession(run=run, previous=previous, lease_token=lease_token)

    async def finish(self, session: RunSession, next_page_token: str | None) -> Checkpoint:
        """Persist a successful invocation: paused when more pages remain, else completed."""
        status = RunStatus.PAUSED if next_page_token else RunStatus.COMPLETED
        checkpoint = Checkpoint(
            page_token=next_page_token or None,
            processed=session.processed,
            total_processed=session.previous.total_processed + session.processed,
            errors=session.errors,
            last_processed_at=utc_now_iso(),
        )
        try:
            await self._write(session, status, checkpoint)
        finally:
            await self._end(session)
        logger.info(
            "Run finished",
            status=status.value,
            processed=session.processed,
            errors_count=len(session.errors),
        )
        return checkpoint

    async def fail(self, session: RunSession, error: BaseException) -> Checkpoint:
        """Persist a failed invocation; the stored page token is left where it was."""
        session.record_error("run", str(error) or type(error).__name__)
        checkpoint = Checkpoint(
            page_token=session.previous.page_token,
            processed=session.processed,
            total_processed=session.previous.total_processed + session.processed,
            errors=session.errors,
            last_processed_at=utc_now_iso(),
        )
        try:
            await self._write(session, RunStatus.FAILED, checkpoint)
        except Exception as write_error:
            # Keep the original exception as the one the caller sees
            logger.error("Failed to mark run as failed", run_id=session.run_id, error=str(write_error))
        finally:
            await self._end(session)
        logger.error("Run failed", error=str(error), error_type=type(error).__name__)
        return checkpoint

    async def _write(self, session: RunSession, status: RunStatus, checkpoint: Checkpoint) -> None:
        if not can_transition(session.run.status, status):
            raise RunStateError(f"Run {session.run_id} cannot move {session.run.status.value} -> {status.value}")
        await RunRepository.update_state(session.run_id, status, checkpoint)
        session.run.status = status
        session.run.checkpoint = checkpoint

    async def _end(self, session: RunSession) -> None:
        await self._release_lease(session.run_id, session.lease_token)
        clear_run_context()

    async def _acquire_lease(self, run_id: str) -> str | None:
        acquired, token = await redis_store.acquire_lease(f"{RUN_LOCK_PREFIX}{run_id}", self.lock_ttl_s)
        if acquired is None:
            logger.warning("Redis unavailable, running without a run lease", run_id=run_id)
            return None
        if not acquired:
            raise RunInProgressError(run_id)
        return token

    async def _release_lease(self, run_id: str, token: str | None) -> None:
        if token:
            await redis_store.release_lease(f"{RUN_LOCK_PREFIX}{run_id}", token)


run_tracker = RunTracker()
