from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from app.jobs import worker


@pytest.fixture
def lifecycle(monkeypatch):
    calls = []

    def _track(name):
        async def _call():
            calls.append(name)

        return _call

    monkeypatch.setattr(worker.db_pool, "initialize", _track("db_open"))
    monkeypatch.setattr(worker.db_pool, "close", _track("db_close"))
    monkeypatch.setattr(worker.fast_redis, "initialize", _track("redis_open"))
    monkeypatch.setattr(worker.fast_redis, "close", _track("redis_close"))
    return calls


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch, lifecycle):
    async def dummy_job():
        lifecycle.append("job")

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert lifecycle == ["db_open", "redis_open", "job", "redis_close", "db_close"]


@pytest.mark.asyncio
async def test_run_worker_closes_connections_when_job_fails(monkeypatch, lifecycle):
    async def broken_job():
        raise RuntimeError("boom")

    monkeypatch.setitem(worker.JOB_REGISTRY, "broken", broken_job)

    with pytest.raises(RuntimeError):
        await worker.run_worker("broken")

    assert lifecycle[-2:] == ["redis_close", "db_close"]


@pytest.mark.asyncio
async def test_run_worker_unknown_job(lifecycle):
    with pytest.raises(ValueError):
        await worker.run_worker("missing")

    assert lifecycle == []


@pytest.mark.asyncio
async def test_openphone_cleanup_reads_window_from_env(monkeypatch):
    result = SimpleNamespace(to_response=lambda: {"runId": "run-1"})
    run = AsyncMock(return_value=result)
    monkeypatch.setattr(worker, "run_openphone_cleanup", run)
    monkeypatch.setenv("OPENPHONE_START_DATE", "2025-01-01")
    monkeypatch.setenv("OPENPHONE_END_DATE", "2025-01-07")
    monkeypatch.setenv("OPENPHONE_RESUME_RUN_ID", "run-1")

    await worker.openphone_cleanup()

    run.assert_awaited_once_with(date(2025, 1, 1), date(2025, 1, 7), "run-1")


@pytest.mark.asyncio
async def test_gmail_triage_defaults_lookback(monkeypatch):
    result = SimpleNamespace(to_response=lambda: {"runId": "run-2"})
    run = AsyncMock(return_value=result)
    monkeypatch.setattr(worker, "run_gmail_triage", run)
    monkeypatch.delenv("GMAIL_LOOKBACK_DAYS", raising=False)

    await worker.gmail_triage()

    run.assert_awaited_once_with(None)
