"""Celery task wiring: retry policy, payload handling and failure logging."""

import logging

import app.celery_app  # noqa: F401  (binds shared tasks to the app)
from app.celery_app import celery_app, log_task_failure
from app.tasks import maintenance, project_setup as project_setup_module
from app.tasks.maintenance import archive_inactive_projects
from app.tasks.project_setup import project_setup


def test_project_setup_retry_policy():
    assert project_setup.name == "projectSetup"
    assert project_setup.max_retries == 2
    assert project_setup.retry_backoff == 1
    assert project_setup.retry_jitter is False
    assert project_setup.acks_late is True
    assert project_setup.reject_on_worker_lost is True
    assert Exception in project_setup.autoretry_for


def test_tasks_are_registered():
    assert "projectSetup" in celery_app.tasks
    assert "projects.archive_inactive" in celery_app.tasks


def test_archive_sweep_is_scheduled_daily():
    entry = celery_app.conf.beat_schedule["archive-inactive-projects"]
    assert entry["task"] == "projects.archive_inactive"


def test_project_setup_runs_handler_with_payload(monkeypatch):
    received = []

    async def fake_run(payload):
        received.append(payload)
        return {"project_id": payload.project_id, "created_tasks": 2}

    monkeypatch.setattr(project_setup_module, "_run_project_setup", fake_run)

    result = project_setup.apply(kwargs={"project_id": "p1", "owner_id": "u1"})

    assert result.get() == {"project_id": "p1", "created_tasks": 2}
    assert received[0].project_id == "p1"
    assert received[0].owner_id == "u1"


def test_terminal_failure_is_logged(caplog):
    with caplog.at_level(logging.ERROR, logger="app.celery_app"):
        log_task_failure(
            sender=project_setup, task_id="job-1", exception=RuntimeError("store down")
        )

    assert "Job failed: id=job-1 name=projectSetup" in caplog.text
    assert "store down" in caplog.text


def test_archive_task_defaults_to_configured_threshold(monkeypatch):
    calls = []

    async def fake_archive(days):
        calls.append(days)
        return {"archived": 3, "days_inactive": days}

    monkeypatch.setattr(maintenance, "_archive_inactive_projects", fake_archive)

    assert archive_inactive_projects() == {"archived": 3, "days_inactive": 30}
    assert archive_inactive_projects(days_inactive=7)["days_inactive"] == 7
    assert calls == [30, 7]
