"""
Cron entry points: bearer secret gate and completion notifications.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.auth import cron as cron_auth
from app.auth.cron import verify_cron_secret
from app.db.helpers import DatabaseError
from app.jobs.gmail_triage_job import GmailTriageResult
from app.jobs.openphone_cleanup_job import OpenPhoneRunResult
from app.main import app
from app.routes import cron as cron_routes
from app.routes.gmail import get_triage_job
from app.routes.openphone import get_cleanup_job

client = TestClient(app)

AUTH = {"Authorization": "Bearer test-cron-secret"}


@pytest.fixture
def notifications(monkeypatch):
    create = AsyncMock()
    monkeypatch.setattr(cron_routes.NotificationRepository, "create", create)
    yield create
    app.dependency_overrides.clear()


def test_verify_cron_secret():
    assert verify_cron_secret("test-cron-secret") is True
    assert verify_cron_secret("wrong") is False
    assert verify_cron_secret(None) is False


def test_verify_cron_secret_without_configured_secret(monkeypatch):
    monkeypatch.setattr(cron_auth.settings, "CRON_SECRET", None)

    assert verify_cron_secret("test-cron-secret") is False


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer nope"}, {"Authorization": "Basic abc"}])
def test_cron_requires_secret(headers, notifications):
    response = client.get("/api/cron/openphone-cleanup", headers=headers)

    assert response.status_code == 401
    notifications.assert_not_awaited()


def test_openphone_cleanup_runs_last_week_and_notifies(notifications):
    job = SimpleNamespace(run=AsyncMock(return_value=OpenPhoneRunResult("run-1", 12, None, 2)))
    app.dependency_overrides[get_cleanup_job] = lambda: job

    response = client.get("/api/cron/openphone-cleanup", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["result"]["processed"] == 12
    start, end = job.run.await_args.args
    assert (end - start).days == 7
    kwargs = notifications.await_args.kwargs
    assert kwargs["title"] == "OpenPhone Cleanup Completed"
    assert kwargs["message"] == "Processed 12 conversations. 2 errors."
    assert kwargs["priority"] == "high"


def test_gmail_triage_notifies_even_if_notification_write_fails(notifications):
    notifications.side_effect = DatabaseError("insert failed", "execute_query")
    job = SimpleNamespace(
        run=AsyncMock(return_value=GmailTriageResult("run-2", 3, processed=9, drafts_created=2))
    )
    app.dependency_overrides[get_triage_job] = lambda: job

    response = client.get("/api/cron/gmail-triage", headers=AUTH)

    assert response.status_code == 200
    job.run.assert_awaited_once_with(3)
    assert notifications.await_args.kwargs["message"] == "Processed 9 emails. Created 2 drafts."


def test_failed_cron_run_returns_500(notifications):
    app.dependency_overrides[get_cleanup_job] = lambda: SimpleNamespace(
        run=AsyncMock(side_effect=RuntimeError("OpenPhone down"))
    )

    response = client.get("/api/cron/openphone-cleanup", headers=AUTH)

    assert response.status_code == 500
    notifications.assert_not_awaited()
