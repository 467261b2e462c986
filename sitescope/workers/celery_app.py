"""
Celery application.

One task per run: the whole pipeline (crawl, rules, scoring, clustering)
executes inside a single `run_site_analysis` task on `analysis_queue`.
Workers take one run at a time and acknowledge it only when it finishes, so
a worker lost mid-run hands the run back to the broker.
"""

import structlog
from celery import Celery
from celery.signals import after_setup_logger, worker_ready
from kombu import Exchange, Queue

from sitescope.core.config import get_settings
from sitescope.core.logging import configure_logging

settings = get_settings()

ANALYSIS_QUEUE = "analysis_queue"
DEFAULT_QUEUE = "default"

celery_app = Celery(
    "sitescope",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["sitescope.workers.analysis_tasks"],
)

# ─────────────────────────────────────────────
# Queues and routing
# ─────────────────────────────────────────────

celery_app.conf.task_queues = (
    Queue(DEFAULT_QUEUE, Exchange(DEFAULT_QUEUE, type="direct"), routing_key=DEFAULT_QUEUE),
    Queue(ANALYSIS_QUEUE, Exchange("analysis", type="direct"), routing_key="analysis"),
)
celery_app.conf.task_default_queue = DEFAULT_QUEUE
celery_app.conf.task_routes = {
    "sitescope.workers.analysis_tasks.*": {"queue": ANALYSIS_QUEUE},
}

# ─────────────────────────────────────────────
# Execution
# ─────────────────────────────────────────────

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=settings.CELERY_TASK_SOFT_TIME_LIMIT,
    task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
    task_max_retries=settings.CELERY_MAX_RETRIES,
    # Run state lives in the database; results are only a debugging aid
    result_expires=86400,
    worker_send_task_events=True,
    task_send_sent_event=True,
)


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    structlog.get_logger("sitescope.worker").info(
        "Worker ready",
        hostname=sender.hostname,
        queues=[ANALYSIS_QUEUE, DEFAULT_QUEUE],
    )


@after_setup_logger.connect
def setup_worker_logging(logger, *args, **kwargs):
    configure_logging()
