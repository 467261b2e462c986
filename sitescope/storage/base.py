"""
Persistence boundary between the engines and a backing store.

Pages, contents, links and images are append-only. Issues and clusters are
bulk-replaced on every scoring pass. Run progress never moves backwards.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from uuid import UUID

from sitescope.engines.base import (
    ContentCluster,
    Corpus,
    CrawlRun,
    FetchFailure,
    ImageRecord,
    Issue,
    IssueCategory,
    LinkRecord,
    PageContent,
    PageRecord,
    RobotsRecord,
    RunEvent,
    RunStatus,
    Severity,
    SitemapRecord,
)


def issue_rank_key(issue: Issue) -> tuple:
    """Priority descending, then a stable tie-break."""
    return (
        -issue.priority_score,
        issue.category.value,
        issue.type.value,
        issue.page_url or "",
        issue.description,
    )


class CorpusStore(ABC):

    # ── Runs ──────────────────────────────────

    @abstractmethod
    async def create_run(self, run: CrawlRun) -> CrawlRun: ...

    @abstractmethod
    async def get_run(self, run_id: UUID) -> CrawlRun | None: ...

    @abstractmethod
    async def find_active_run(self, domain: str) -> CrawlRun | None:
        """Most recent pending or running run for the domain."""

    @abstractmethod
    async def update_run(
        self,
        run_id: UUID,
        status: RunStatus | None = None,
        progress: float | None = None,
    ) -> CrawlRun:
        """
        Progress is clamped to [0, 100] and never decreases.
        RUNNING stamps started_at once; terminal statuses stamp finished_at.
        A run that is already COMPLETED or FAILED keeps its status.
        """

    # ── Corpus (append-only) ──────────────────

    @abstractmethod
    async def add_page(self, page: PageRecord) -> bool:
        """False when the run already holds a page with this URL."""

    @abstractmethod
    async def add_page_content(self, content: PageContent) -> None: ...

    @abstractmethod
    async def add_links(self, links: list[LinkRecord]) -> None: ...

    @abstractmethod
    async def add_images(self, images: list[ImageRecord]) -> None: ...

    @abstractmethod
    async def add_robots_record(self, record: RobotsRecord) -> None: ...

    @abstractmethod
    async def add_sitemap_record(self, record: SitemapRecord) -> None: ...

    @abstractmethod
    async def add_fetch_failure(self, failure: FetchFailure) -> None: ...

    @abstractmethod
    async def load_corpus(self, run_id: UUID) -> Corpus: ...

    # ── Analysis output (bulk replace) ────────

    @abstractmethod
    async def replace_issues(self, run_id: UUID, issues: list[Issue]) -> None: ...

    @abstractmethod
    async def list_issues(
        self,
        run_id: UUID,
        severity: Severity | None = None,
        category: IssueCategory | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Issue]:
        """Issues in rank order."""

    @abstractmethod
    async def count_issues(
        self,
        run_id: UUID,
        severity: Severity | None = None,
        category: IssueCategory | None = None,
    ) -> int: ...

    @abstractmethod
    async def normalize_priorities(self, run_id: UUID) -> int:
        """Recompute every stored priority from its impact/effort pair."""

    @abstractmethod
    async def replace_clusters(self, run_id: UUID, clusters: list[ContentCluster]) -> None: ...

    @abstractmethod
    async def list_clusters(self, run_id: UUID) -> list[ContentCluster]: ...

    # ── Events ────────────────────────────────

    @abstractmethod
    async def add_event(self, event: RunEvent) -> None: ...

    @abstractmethod
    async def recent_events(self, run_id: UUID, limit: int) -> list[RunEvent]:
        """The latest `limit` events, oldest first."""

    @abstractmethod
    async def latest_error(self, run_id: UUID) -> RunEvent | None: ...
