"""
Analysis Tasks - Celery task that executes one run end to end.

Flow:
1. POST /runs creates the run record (status pending) and dispatches
   run_site_analysis(run_id)
2. The task loads the run and executes the RunPipeline against the SQL store
3. The pipeline marks the run completed, or failed with an `error` event

Error handling:
- Pipeline failures are already recorded on the run; the task logs and
  returns instead of retrying, so a broken site is not crawled twice
- A soft time limit marks the run failed and re-raises
"""

from __future__ import annotations

import asyncio
from uuid import UUID

import structlog
from celery.exceptions import SoftTimeLimitExceeded

from sitescope.core.config import get_settings
from sitescope.core.database import AsyncSessionLocal
from sitescope.core.errors import OrchestrationError
from sitescope.engines.base import EventLevel, RunEvent, RunStatus, RunStep
from sitescope.engines.pipeline import run_analysis
from sitescope.storage.sql import SQLAlchemyCorpusStore
from sitescope.workers.celery_app import ANALYSIS_QUEUE, celery_app

logger = structlog.get_logger(__name__)
settings = get_settings()


def run_async(coro):
    """Run an async coroutine in a Celery (sync) task context."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ─────────────────────────────────────────────
# Task: Run Site Analysis
# ─────────────────────────────────────────────

@celery_app.task(
    name="sitescope.workers.analysis_tasks.run_site_analysis",
    bind=True,
    queue=ANALYSIS_QUEUE,
    soft_time_limit=settings.CELERY_TASK_SOFT_TIME_LIMIT,
    time_limit=settings.CELERY_TASK_TIME_LIMIT,
    acks_late=True,
)
def run_site_analysis(self, run_id: str) -> dict:
    """Crawl, analyse, score and cluster one run."""
    logger.info("Starting run", run_id=run_id)
    store = SQLAlchemyCorpusStore(AsyncSessionLocal)

    try:
        run_async(run_analysis(store, UUID(run_id)))

    except SoftTimeLimitExceeded:
        logger.error("Run timed out", run_id=run_id)
        run_async(_mark_failed(store, UUID(run_id), "Run exceeded its time limit"))
        raise

    except OrchestrationError as exc:
        logger.error("Run failed", run_id=run_id, error=str(exc))
        return {"status": RunStatus.FAILED.value, "run_id": run_id, "error": str(exc)}

    logger.info("Run finished", run_id=run_id)
    return {"status": RunStatus.COMPLETED.value, "run_id": run_id}


# ─────────────────────────────────────────────
# DB Helpers (async)
# ─────────────────────────────────────────────

async def _mark_failed(store: SQLAlchemyCorpusStore, run_id: UUID, message: str) -> None:
    await store.add_event(RunEvent(run_id=run_id, step=RunStep.ERROR, level=EventLevel.ERROR, message=message))
    await store.update_run(run_id, status=RunStatus.FAILED)


def dispatch_run(run_id: UUID) -> None:
    """Queue a run for background execution."""
    run_site_analysis.delay(str(run_id))
