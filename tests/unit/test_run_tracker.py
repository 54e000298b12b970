"""
Tests for run creation, resume, leases and final state writes.
"""

import pytest

from app.models.domain.run_domain import Checkpoint, Run, RunSource, RunStatus
from app.services.run_tracker import (
    RunInProgressError,
    RunNotFoundError,
    RunStateError,
    RunTracker,
)


def _stored_run(status: RunStatus, page_token: str | None = None, total: int = 0, source=RunSource.OPENPHONE):
    return Run(
        id="run-1",
        source=source,
        start_date=None,
        end_date=None,
        status=status,
        checkpoint=Checkpoint(page_token=page_token, processed=total, total_processed=total),
    )


@pytest.mark.asyncio
async def test_new_run_completes_without_page_token(run_store, fake_redis, window):
    tracker = RunTracker(lock_ttl_s=60)
    session = await tracker.start(RunSource.OPENPHONE, *window)
    session.processed = 3

    checkpoint = await tracker.finish(session, None)

    run = run_store.runs[session.run_id]
    assert run.status == RunStatus.COMPLETED
    assert checkpoint.page_token is None
    assert checkpoint.total_processed == 3
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_next_page_pauses_run(run_store, fake_redis, window):
    tracker = RunTracker(lock_ttl_s=60)
    session = await tracker.start(RunSource.OPENPHONE, *window)

    await tracker.finish(session, "page-2")

    run = run_store.runs[session.run_id]
    assert run.status == RunStatus.PAUSED
    assert run.checkpoint.page_token == "page-2"


@pytest.mark.asyncio
async def test_resume_continues_from_stored_token_and_accumulates(run_store, fake_redis, window):
    run_store.add(_stored_run(RunStatus.PAUSED, page_token="page-2", total=25))
    tracker = RunTracker(lock_ttl_s=60)

    session = await tracker.start(RunSource.OPENPHONE, *window, resume_run_id="run-1")
    assert session.resume_page_token == "page-2"
    assert run_store.runs["run-1"].status == RunStatus.RUNNING

    session.processed = 5
    checkpoint = await tracker.finish(session, None)

    assert checkpoint.processed == 5
    assert checkpoint.total_processed == 30
    assert run_store.runs["run-1"].status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_resume_unknown_run(run_store, fake_redis, window):
    with pytest.raises(RunNotFoundError):
        await RunTracker().start(RunSource.OPENPHONE, *window, resume_run_id="missing")


@pytest.mark.asyncio
async def test_resume_completed_run_is_rejected(run_store, fake_redis, window):
    run_store.add(_stored_run(RunStatus.COMPLETED))

    with pytest.raises(RunStateError):
        await RunTracker().start(RunSource.OPENPHONE, *window, resume_run_id="run-1")


@pytest.mark.asyncio
async def test_resume_run_from_other_pipeline_is_rejected(run_store, fake_redis, window):
    run_store.add(_stored_run(RunStatus.PAUSED, page_token="p", source=RunSource.GMAIL))

    with pytest.raises(RunStateError):
        await RunTracker().start(RunSource.OPENPHONE, *window, resume_run_id="run-1")


@pytest.mark.asyncio
async def test_concurrent_resume_is_refused(run_store, fake_redis, window):
    run_store.add(_stored_run(RunStatus.PAUSED, page_token="page-2"))
    tracker = RunTracker(lock_ttl_s=60)

    first = await tracker.start(RunSource.OPENPHONE, *window, resume_run_id="run-1")
    with pytest.raises(RunInProgressError):
        await tracker.start(RunSource.OPENPHONE, *window, resume_run_id="run-1")

    await tracker.finish(first, None)
    assert run_store.runs["run-1"].status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_runs_without_lease_when_redis_unavailable(run_store, fake_redis, window):
    fake_redis.available = False

    session = await RunTracker().start(RunSource.GMAIL, *window)

    assert session.lease_token is None


@pytest.mark.asyncio
async def test_fail_records_error_and_keeps_previous_token(run_store, fake_redis, window):
    run_store.add(_stored_run(RunStatus.PAUSED, page_token="page-2", total=10))
    tracker = RunTracker(lock_ttl_s=60)
    session = await tracker.start(RunSource.OPENPHONE, *window, resume_run_id="run-1")
    session.record_error("conversation", "bad convo", item_id="c9")

    checkpoint = await tracker.fail(session, RuntimeError("OpenPhone down"))

    run = run_store.runs["run-1"]
    assert run.status == RunStatus.FAILED
    assert checkpoint.page_token == "page-2"
    assert checkpoint.errors == [
        {"step": "conversation", "message": "bad convo", "conversationId": "c9"},
        {"step": "run", "message": "OpenPhone down"},
    ]
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_failed_run_can_be_resumed(run_store, fake_redis, window):
    run_store.add(_stored_run(RunStatus.FAILED, page_token="page-3"))

    session = await RunTracker().start(RunSource.OPENPHONE, *window, resume_run_id="run-1")

    assert session.resume_page_token == "page-3"
    assert run_store.runs["run-1"].status == RunStatus.RUNNING
