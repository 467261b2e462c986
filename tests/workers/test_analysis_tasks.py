"""
Tests for the Celery analysis task. The task body is called directly; the
pipeline and the SQL store are swapped out.
"""

import uuid

import pytest
from celery.exceptions import SoftTimeLimitExceeded
from conftest import make_run

from sitescope.core.errors import OrchestrationError
from sitescope.engines.base import EventLevel, RunStatus
from sitescope.workers import analysis_tasks


@pytest.fixture
def task_store(store, monkeypatch):
    monkeypatch.setattr(analysis_tasks, "SQLAlchemyCorpusStore", lambda session_factory: store)
    return store


class TestRunSiteAnalysis:

    def test_completed(self, task_store, monkeypatch):
        calls = []

        async def fake_run_analysis(store, run_id):
            calls.append((store, run_id))

        monkeypatch.setattr(analysis_tasks, "run_analysis", fake_run_analysis)
        run_id = uuid.uuid4()

        result = analysis_tasks.run_site_analysis(str(run_id))

        assert result == {"status": "completed", "run_id": str(run_id)}
        assert calls == [(task_store, run_id)]

    def test_pipeline_failure_is_not_retried(self, task_store, monkeypatch):
        async def failing(store, run_id):
            raise OrchestrationError("robots fetch exploded")

        monkeypatch.setattr(analysis_tasks, "run_analysis", failing)
        run_id = str(uuid.uuid4())

        result = analysis_tasks.run_site_analysis(run_id)

        assert result["status"] == "failed"
        assert result["error"] == "robots fetch exploded"

    def test_time_limit_marks_run_failed(self, task_store, monkeypatch):
        run = make_run(status=RunStatus.RUNNING)
        task_store.runs[run.id] = run

        async def slow(store, run_id):
            raise SoftTimeLimitExceeded()

        monkeypatch.setattr(analysis_tasks, "run_analysis", slow)

        with pytest.raises(SoftTimeLimitExceeded):
            analysis_tasks.run_site_analysis(str(run.id))

        assert task_store.runs[run.id].status == RunStatus.FAILED
        error = task_store.events[run.id][-1]
        assert error.level == EventLevel.ERROR
        assert "time limit" in error.message


def test_dispatch_run_queues_task(monkeypatch):
    queued = []
    monkeypatch.setattr(analysis_tasks.run_site_analysis, "delay", lambda *args: queued.append(args))
    run_id = uuid.uuid4()

    analysis_tasks.dispatch_run(run_id)

    assert queued == [(str(run_id),)]


def test_task_routed_to_analysis_queue():
    routes = analysis_tasks.celery_app.conf.task_routes
    assert routes["sitescope.workers.analysis_tasks.*"] == {"queue": "analysis_queue"}
    assert "sitescope.workers.analysis_tasks.run_site_analysis" in analysis_tasks.celery_app.tasks
