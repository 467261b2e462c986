"""
Domain records, enums and the analysis engine contract.

The crawler writes PageRecord/PageContent/LinkRecord rows through a store;
the analysis engines read them back as one Corpus snapshot and never write.
Every engine reports through an EngineResult, degrading to PARTIAL or FAILED
rather than raising.
"""

from __future__ import annotations

import time
import uuid
from abc import ABC
from datetime import datetime, timezone
from enum import Enum
from functools import cached_property
from typing import Any
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────

class Severity(str, Enum):
    CRITICAL = "critical"   # Blocking issue - fix immediately
    HIGH = "high"           # Significant impact - fix soon
    MEDIUM = "medium"       # Moderate impact - fix this sprint
    LOW = "low"             # Minor - fix when convenient


class IssueCategory(str, Enum):
    TECHNICAL = "technical"
    CONTENT = "content"
    PERFORMANCE = "performance"
    ACCESSIBILITY = "accessibility"
    AI = "ai"


class IssueType(str, Enum):
    # technical
    DUPLICATE_TITLES = "duplicate_titles"
    TITLE_LENGTH = "title_length"
    MISSING_TITLE = "missing_title"
    MISSING_META_DESCRIPTION = "missing_meta_description"
    DUPLICATE_META_DESCRIPTIONS = "duplicate_meta_descriptions"
    META_DESCRIPTION_LENGTH = "meta_description_length"
    CLIENT_ERROR_PAGE = "client_error_page"
    SERVER_ERROR = "server_error"
    REDIRECT_CHAIN = "redirect_chain"
    BROKEN_INTERNAL_LINK = "broken_internal_link"
    BROKEN_EXTERNAL_LINK = "broken_external_link"
    MISSING_CANONICAL = "missing_canonical"
    BLOCKED_BUT_LINKED = "blocked_but_linked"
    SITEMAP_ERROR_URL = "sitemap_error_url"
    # performance
    SLOW_PAGE = "slow_page"
    HEAVY_PAGE = "heavy_page"
    # content
    MISSING_H1 = "missing_h1"
    MULTIPLE_H1 = "multiple_h1"
    SHORT_CONTENT = "short_content"
    GENERIC_TITLE = "generic_title"
    ORPHAN_PAGE = "orphan_page"
    FEATURED_SNIPPET_OPPORTUNITY = "featured_snippet_opportunity"
    KEYWORD_STUFFING = "keyword_stuffing"
    # accessibility
    IMAGES_WITHOUT_ALT = "images_without_alt"
    # ai
    FAQ_SCHEMA_OPPORTUNITY = "faq_schema_opportunity"
    HOWTO_SCHEMA_OPPORTUNITY = "howto_schema_opportunity"
    COMPARISON_CONTENT_OPPORTUNITY = "comparison_content_opportunity"
    MISSING_STRUCTURED_DATA = "missing_structured_data"
    LOW_EAT_SCORE = "low_eat_score"
    HIGH_AI_POTENTIAL = "high_ai_potential"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (RunStatus.PENDING, RunStatus.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class RunStep(str, Enum):
    INIT = "init"
    CRAWL_START = "crawl_start"
    ROBOTS_ANALYSIS = "robots_analysis"
    SITEMAP_ANALYSIS = "sitemap_analysis"
    ROBOTS_BLOCKED = "robots_blocked"
    FETCH_ERROR = "fetch_error"
    PAGE_ERROR = "page_error"
    CRAWL_SUMMARY = "crawl_summary"
    CRAWL_COMPLETE = "crawl_complete"
    TECHNICAL_COMPLETE = "technical_complete"
    CONTENT_COMPLETE = "content_complete"
    AI_COMPLETE = "ai_complete"
    REPORTS_COMPLETE = "reports_complete"
    COMPLETE = "complete"
    ERROR = "error"


class EventLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LinkType(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    MAILTO = "mailto"
    TEL = "tel"


class OpportunityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EngineStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"       # Ran but with some rule failures
    FAILED = "failed"


# ─────────────────────────────────────────────
# Run records
# ─────────────────────────────────────────────

class CrawlRun(BaseModel):
    """One crawl + analysis execution."""
    id: UUID = Field(default_factory=uuid.uuid4)
    url: str
    domain: str
    max_pages: int = 100
    max_depth: int = 10
    respect_robots: bool = True
    include_external: bool = False
    status: RunStatus = RunStatus.PENDING
    progress: float = 0.0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class RunEvent(BaseModel):
    """One entry of the progress/log sink."""
    run_id: UUID
    step: RunStep
    level: EventLevel = EventLevel.INFO
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


# ─────────────────────────────────────────────
# Corpus records
# ─────────────────────────────────────────────

class PageRecord(BaseModel):
    """A single fetched URL within a run."""
    id: UUID = Field(default_factory=uuid.uuid4)
    run_id: UUID
    url: str
    status_code: int
    content_type: str = ""
    size_bytes: int = 0
    load_time_ms: float = 0.0
    depth: int = 0
    redirect_url: str | None = None
    redirect_count: int = 0
    headers: dict[str, str] = Field(default_factory=dict)
    robots_meta: str | None = None
    canonical_url: str | None = None
    is_indexable: bool = True
    is_internal: bool = True
    fetched_at: datetime = Field(default_factory=utcnow)

    @property
    def is_html(self) -> bool:
        content_type = self.content_type.lower()
        return "text/html" in content_type or "application/xhtml+xml" in content_type


class PageContent(BaseModel):
    """Extracted content profile of a status-200 HTML page."""
    page_id: UUID
    title: str = ""
    title_length: int = 0
    meta_description: str = ""
    meta_description_length: int = 0
    h1: str = ""
    h1_count: int = 0
    h2_count: int = 0
    h3_count: int = 0
    h4_count: int = 0
    h5_count: int = 0
    h6_count: int = 0
    word_count: int = 0
    internal_links_count: int = 0
    external_links_count: int = 0
    image_count: int = 0
    images_without_alt: int = 0
    keyword_density: dict[str, float] = Field(default_factory=dict)
    main_keywords: list[str] = Field(default_factory=list)
    structured_data_types: list[str] = Field(default_factory=list)


class LinkRecord(BaseModel):
    source_page_id: UUID
    target_url: str
    anchor_text: str = ""
    link_type: LinkType
    is_follow: bool = True
    position: int = 0


class ImageRecord(BaseModel):
    page_id: UUID
    src: str
    alt: str = ""
    title: str = ""
    loading: str = ""
    is_lazy: bool = False


class RobotsRecord(BaseModel):
    run_id: UUID
    robots_url: str
    is_accessible: bool = False
    content: str | None = None
    sitemap_urls: list[str] = Field(default_factory=list)
    error_message: str | None = None


class SitemapEntry(BaseModel):
    loc: str
    lastmod: str | None = None
    priority: float | None = None
    changefreq: str | None = None


class SitemapRecord(BaseModel):
    run_id: UUID
    sitemap_url: str
    total_urls: int = 0
    valid_urls: int = 0
    entries: list[SitemapEntry] = Field(default_factory=list)


class FetchFailure(BaseModel):
    """A frontier URL that could not be fetched (timeout, DNS, TLS, redirects)."""
    run_id: UUID
    url: str
    depth: int = 0
    kind: str
    message: str = ""
    is_internal: bool = True


# ─────────────────────────────────────────────
# Analysis output
# ─────────────────────────────────────────────

class Issue(BaseModel):
    """A single finding produced by the rule catalog."""
    id: UUID = Field(default_factory=uuid.uuid4)
    run_id: UUID | None = None
    category: IssueCategory
    type: IssueType
    severity: Severity
    title: str
    description: str
    recommendation: str = ""
    page_id: UUID | None = None
    page_url: str | None = None
    impact_score: int = 0
    effort_score: int = 50
    priority_score: float = 0.0
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class ContentCluster(BaseModel):
    id: UUID = Field(default_factory=uuid.uuid4)
    run_id: UUID | None = None
    name: str
    topic: str
    page_ids: list[UUID] = Field(default_factory=list)
    page_urls: list[str] = Field(default_factory=list)
    page_count: int = 0
    opportunity_level: OpportunityLevel = OpportunityLevel.LOW


class Corpus(BaseModel):
    """Read-only snapshot of everything a run crawled."""
    run: CrawlRun
    pages: list[PageRecord] = Field(default_factory=list)
    contents: list[PageContent] = Field(default_factory=list)
    links: list[LinkRecord] = Field(default_factory=list)
    images: list[ImageRecord] = Field(default_factory=list)
    robots: list[RobotsRecord] = Field(default_factory=list)
    sitemaps: list[SitemapRecord] = Field(default_factory=list)
    fetch_failures: list[FetchFailure] = Field(default_factory=list)

    @cached_property
    def pages_by_id(self) -> dict[UUID, PageRecord]:
        return {page.id: page for page in self.pages}

    @cached_property
    def pages_by_url(self) -> dict[str, PageRecord]:
        return {page.url: page for page in self.pages}

    @cached_property
    def content_by_page(self) -> dict[UUID, PageContent]:
        return {content.page_id: content for content in self.contents}

    @cached_property
    def failed_urls(self) -> set[str]:
        return {failure.url for failure in self.fetch_failures}

    def content_for(self, page: PageRecord) -> PageContent | None:
        return self.content_by_page.get(page.id)

    def html_pages(self) -> list[tuple[PageRecord, PageContent]]:
        """Status-200 HTML pages paired with their content, in crawl order."""
        return [
            (page, self.content_by_page[page.id])
            for page in self.pages
            if page.status_code == 200 and page.id in self.content_by_page
        ]

    def links_of_type(self, link_type: LinkType) -> list[LinkRecord]:
        return [link for link in self.links if link.link_type == link_type]


class EngineResult(BaseModel):
    """Standardized output from every analysis engine."""
    engine_name: str
    run_id: UUID
    status: EngineStatus
    issues: list[Issue] = Field(default_factory=list)
    rules_evaluated: int = 0
    failed_rules: list[str] = Field(default_factory=list)
    execution_time_ms: float = 0.0
    error_message: str | None = None


# ─────────────────────────────────────────────
# Base Engine
# ─────────────────────────────────────────────

class AnalysisEngine(ABC):
    """
    Base class for the rule-driven analysis engines.

    An engine owns a set of issue categories and evaluates every registered
    rule of those categories against the corpus. A rule that raises is logged
    and skipped; the engine then reports PARTIAL instead of failing.
    """

    ENGINE_NAME: str = "base"
    CATEGORIES: tuple[IssueCategory, ...] = ()

    def __init__(self, registry=None):
        from sitescope.core.rule_engine import get_rule_registry

        self.registry = registry if registry is not None else get_rule_registry()
        self.logger = structlog.get_logger(self.__class__.__name__)

    async def run(self, corpus: Corpus) -> EngineResult:
        issues: list[Issue] = []
        failed: list[str] = []
        rules = [rule for category in self.CATEGORIES for rule in self.registry.get_by_category(category)]

        for rule in rules:
            try:
                issues.extend(rule.evaluate(corpus))
            except Exception as exc:
                failed.append(rule.type.value)
                self.logger.warning(
                    "Rule evaluation failed",
                    rule=rule.type.value,
                    run_id=str(corpus.run.id),
                    error=str(exc),
                    exc_info=True,
                )

        return EngineResult(
            engine_name=self.ENGINE_NAME,
            run_id=corpus.run.id,
            status=EngineStatus.PARTIAL if failed else EngineStatus.SUCCESS,
            issues=issues,
            rules_evaluated=len(rules),
            failed_rules=failed,
        )

    async def execute(self, corpus: Corpus) -> EngineResult:
        """
        Timed, logged run(). A crash inside run() becomes a FAILED result.
        """
        start = time.perf_counter()
        self.logger.info(
            "Engine starting",
            engine=self.ENGINE_NAME,
            run_id=str(corpus.run.id),
            page_count=len(corpus.pages),
        )

        try:
            result = await self.run(corpus)
            elapsed = (time.perf_counter() - start) * 1000
            result.execution_time_ms = elapsed
            self.logger.info(
                "Engine complete",
                engine=self.ENGINE_NAME,
                run_id=str(corpus.run.id),
                issue_count=len(result.issues),
                failed_rules=len(result.failed_rules),
                elapsed_ms=round(elapsed, 2),
            )
            return result

        except Exception as exc:
            elapsed = (time.perf_counter() - start) * 1000
            self.logger.error(
                "Engine failed",
                engine=self.ENGINE_NAME,
                run_id=str(corpus.run.id),
                error=str(exc),
                elapsed_ms=round(elapsed, 2),
                exc_info=True,
            )
            return EngineResult(
                engine_name=self.ENGINE_NAME,
                run_id=corpus.run.id,
                status=EngineStatus.FAILED,
                execution_time_ms=elapsed,
                error_message=str(exc),
            )
