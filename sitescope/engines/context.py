"""
Run-scoped context shared by the crawler and the analysis pipeline.

Nothing here is process-wide: every run gets its own context, event sink and
bound logger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from sitescope.core.config import get_settings
from sitescope.engines.base import CrawlRun, EventLevel, RunEvent, RunStatus, RunStep
from sitescope.storage.base import CorpusStore

settings = get_settings()

_LOG_METHODS = {
    EventLevel.DEBUG: "debug",
    EventLevel.INFO: "info",
    EventLevel.WARNING: "warning",
    EventLevel.ERROR: "error",
}


@dataclass
class RunOptions:
    """Crawler knobs that come from settings rather than the run request."""
    user_agent: str = field(default_factory=lambda: settings.CRAWLER_USER_AGENT)
    agent_token: str = field(default_factory=lambda: settings.CRAWLER_AGENT_TOKEN)
    request_delay: float = field(default_factory=lambda: settings.CRAWLER_REQUEST_DELAY)
    request_timeout: float = field(default_factory=lambda: settings.CRAWLER_REQUEST_TIMEOUT)
    max_redirects: int = field(default_factory=lambda: settings.CRAWLER_MAX_REDIRECTS)
    concurrency: int = field(default_factory=lambda: settings.CRAWLER_CONCURRENCY)
    seed_from_sitemap: bool = field(default_factory=lambda: settings.CRAWLER_SEED_FROM_SITEMAP)


class RunEvents:
    """Progress/log sink: persists RunEvents and mirrors them to structlog."""

    def __init__(self, store: CorpusStore, run: CrawlRun, logger: Any):
        self.store = store
        self.run = run
        self.logger = logger

    async def emit(
        self,
        step: RunStep,
        message: str,
        level: EventLevel = EventLevel.INFO,
        **data: Any,
    ) -> RunEvent:
        event = RunEvent(run_id=self.run.id, step=step, level=level, message=message, data=data)
        await self.store.add_event(event)
        getattr(self.logger, _LOG_METHODS[level])(message, step=step.value, **data)
        return event

    async def progress(self, value: float, status: RunStatus | None = None) -> CrawlRun:
        self.run = await self.store.update_run(self.run.id, status=status, progress=value)
        return self.run


@dataclass
class RunContext:
    run: CrawlRun
    store: CorpusStore
    options: RunOptions = field(default_factory=RunOptions)
    events: RunEvents = field(init=False)
    logger: Any = field(init=False)

    def __post_init__(self):
        self.logger = structlog.get_logger("sitescope.run").bind(run_id=str(self.run.id), domain=self.run.domain)
        self.events = RunEvents(self.store, self.run, self.logger)

    async def is_cancelled(self) -> bool:
        current = await self.store.get_run(self.run.id)
        return current is None or current.status == RunStatus.FAILED
