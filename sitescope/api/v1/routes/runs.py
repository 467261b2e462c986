"""
Run API Routes

No business logic lives here.
Routes validate input, call the store and the dispatcher, return responses.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Annotated
from urllib.parse import urlsplit
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from sitescope.core.config import get_settings
from sitescope.core.database import AsyncSessionLocal
from sitescope.core.errors import RunValidationError
from sitescope.core.redis import RedisClient, RunLock
from sitescope.engines.base import (
    CrawlRun,
    EventLevel,
    Issue,
    IssueCategory,
    RunEvent,
    RunStatus,
    RunStep,
    Severity,
)
from sitescope.engines.crawler.frontier import URLNormalizer, normalize_url
from sitescope.engines.results import RunProgress, RunResults, build_progress, build_results
from sitescope.storage.base import CorpusStore
from sitescope.storage.sql import SQLAlchemyCorpusStore

logger = structlog.get_logger(__name__)
settings = get_settings()
router = APIRouter()

Dispatcher = Callable[[UUID], None]


# ─────────────────────────────────────────────
# Dependencies
# ─────────────────────────────────────────────

def get_store() -> CorpusStore:
    return SQLAlchemyCorpusStore(AsyncSessionLocal)


def get_run_lock(redis: RedisClient) -> RunLock:
    return RunLock(redis)


def get_dispatcher() -> Dispatcher:
    from sitescope.workers.analysis_tasks import dispatch_run

    return dispatch_run


Store = Annotated[CorpusStore, Depends(get_store)]
Lock = Annotated[RunLock, Depends(get_run_lock)]
Dispatch = Annotated[Dispatcher, Depends(get_dispatcher)]


# ─────────────────────────────────────────────
# Request / Response Schemas
# ─────────────────────────────────────────────

class RunRequest(BaseModel):
    url: str
    max_pages: int = Field(100, ge=1, le=1000)
    max_depth: int = Field(default_factory=lambda: settings.CRAWLER_MAX_DEPTH, ge=0, le=50)
    respect_robots: bool = True
    include_external: bool = False

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        parts = urlsplit(v)
        if parts.scheme.lower() not in ("http", "https"):
            raise ValueError("url must use http or https")
        if not parts.hostname:
            raise ValueError("url must include a host")
        return v


class RunResponse(BaseModel):
    id: UUID
    url: str
    domain: str
    status: RunStatus
    progress: float
    max_pages: int
    max_depth: int
    respect_robots: bool
    include_external: bool
    started_at: datetime | None
    finished_at: datetime | None
    created_at: datetime
    message: str = ""

    @classmethod
    def from_run(cls, run: CrawlRun, message: str = "") -> "RunResponse":
        return cls(**run.model_dump(), message=message)


class PaginatedIssues(BaseModel):
    items: list[Issue]
    total: int
    page: int
    per_page: int
    pages: int


async def _get_run_or_404(store: CorpusStore, run_id: UUID) -> CrawlRun:
    run = await store.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


# ─────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────

@router.post(
    "",
    response_model=RunResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a crawl and analysis run",
    description="Queues a run for the given URL and returns immediately with its ID.",
)
async def create_run(request: RunRequest, store: Store, lock: Lock, dispatch: Dispatch) -> RunResponse:
    """
    1. Return the active run for the domain if there is one
    2. Take the per-domain creation lock
    3. Create the run record (pending)
    4. Dispatch the background task
    """
    if request.max_pages > settings.CRAWLER_MAX_PAGES_PER_RUN:
        raise RunValidationError(
            f"max_pages may not exceed {settings.CRAWLER_MAX_PAGES_PER_RUN}",
            field="max_pages",
        )

    url = normalize_url(request.url)
    domain = URLNormalizer.host_of(url)

    existing = await store.find_active_run(domain)
    if existing:
        logger.info("Active run reused", run_id=str(existing.id), domain=domain)
        return RunResponse.from_run(existing, message="A run for this domain is already in progress.")

    if not await lock.acquire(domain):
        existing = await store.find_active_run(domain)
        if existing:
            return RunResponse.from_run(existing, message="A run for this domain is already in progress.")
        raise HTTPException(status_code=409, detail="A run for this domain is being created, retry shortly")

    try:
        run = await store.create_run(CrawlRun(
            url=url,
            domain=domain,
            max_pages=request.max_pages,
            max_depth=request.max_depth,
            respect_robots=request.respect_robots,
            include_external=request.include_external,
        ))
        try:
            dispatch(run.id)
        except Exception as exc:
            logger.error("Run dispatch failed", run_id=str(run.id), error=str(exc), exc_info=True)
            await store.add_event(RunEvent(
                run_id=run.id,
                step=RunStep.ERROR,
                level=EventLevel.ERROR,
                message=f"Could not queue run: {exc}",
            ))
            await store.update_run(run.id, status=RunStatus.FAILED)
            raise HTTPException(status_code=503, detail="Run could not be queued") from exc
    finally:
        await lock.release(domain)

    logger.info("Run created", run_id=str(run.id), domain=domain)
    return RunResponse.from_run(run, message="Run started. Poll /api/v1/runs/{id}/progress for status.")


@router.get(
    "/{run_id}",
    response_model=RunResponse,
    summary="Get run status",
)
async def get_run(run_id: UUID, store: Store) -> RunResponse:
    return RunResponse.from_run(await _get_run_or_404(store, run_id))


@router.get(
    "/{run_id}/progress",
    response_model=RunProgress,
    summary="Get run progress, ETA and recent events",
)
async def get_run_progress(run_id: UUID, store: Store) -> RunProgress:
    run = await _get_run_or_404(store, run_id)
    events = await store.recent_events(run_id, settings.PROGRESS_EVENT_LIMIT)
    latest_error = await store.latest_error(run_id) if run.status == RunStatus.FAILED else None
    return build_progress(run, events, latest_error)


@router.get(
    "/{run_id}/results",
    response_model=RunResults,
    summary="Get the full result payload of a completed run",
)
async def get_run_results(run_id: UUID, store: Store) -> RunResults:
    run = await _get_run_or_404(store, run_id)
    if run.status != RunStatus.COMPLETED:
        raise HTTPException(status_code=409, detail=f"Run is not complete yet (status: {run.status.value})")

    corpus = await store.load_corpus(run_id)
    issues = await store.list_issues(run_id)
    clusters = await store.list_clusters(run_id)
    return build_results(corpus, issues, clusters)


@router.get(
    "/{run_id}/issues",
    response_model=PaginatedIssues,
    summary="Get ranked issues for a run",
)
async def get_run_issues(
    run_id: UUID,
    store: Store,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    severity: Severity | None = Query(None, description="Filter by severity: critical|high|medium|low"),
    category: IssueCategory | None = Query(None, description="Filter by category"),
) -> PaginatedIssues:
    await _get_run_or_404(store, run_id)

    total = await store.count_issues(run_id, severity=severity, category=category)
    items = await store.list_issues(
        run_id,
        severity=severity,
        category=category,
        offset=(page - 1) * per_page,
        limit=per_page,
    )

    return PaginatedIssues(
        items=items,
        total=total,
        page=page,
        per_page=per_page,
        pages=-(-total // per_page),
    )
