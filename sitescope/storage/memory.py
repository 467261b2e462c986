"""In-process store. Used by tests and single-shot runs."""

from __future__ import annotations

from collections import defaultdict
from uuid import UUID

from sitescope.core.rule_engine import calculate_priority_score
from sitescope.engines.base import (
    ContentCluster,
    Corpus,
    CrawlRun,
    EventLevel,
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
    utcnow,
)
from sitescope.storage.base import CorpusStore, issue_rank_key


class InMemoryCorpusStore(CorpusStore):

    def __init__(self):
        self.runs: dict[UUID, CrawlRun] = {}
        self.pages: dict[UUID, list[PageRecord]] = defaultdict(list)
        self.page_urls: dict[UUID, set[str]] = defaultdict(set)
        self.contents: dict[UUID, list[PageContent]] = defaultdict(list)
        self.links: dict[UUID, list[LinkRecord]] = defaultdict(list)
        self.images: dict[UUID, list[ImageRecord]] = defaultdict(list)
        self.robots: dict[UUID, list[RobotsRecord]] = defaultdict(list)
        self.sitemaps: dict[UUID, list[SitemapRecord]] = defaultdict(list)
        self.fetch_failures: dict[UUID, list[FetchFailure]] = defaultdict(list)
        self.issues: dict[UUID, list[Issue]] = defaultdict(list)
        self.clusters: dict[UUID, list[ContentCluster]] = defaultdict(list)
        self.events: dict[UUID, list[RunEvent]] = defaultdict(list)
        self._page_run: dict[UUID, UUID] = {}

    # ── Runs ──────────────────────────────────

    async def create_run(self, run: CrawlRun) -> CrawlRun:
        self.runs[run.id] = run.model_copy()
        return run

    async def get_run(self, run_id: UUID) -> CrawlRun | None:
        run = self.runs.get(run_id)
        return run.model_copy() if run else None

    async def find_active_run(self, domain: str) -> CrawlRun | None:
        active = [r for r in self.runs.values() if r.domain == domain.lower() and r.status.is_active]
        if not active:
            return None
        return max(active, key=lambda r: r.created_at).model_copy()

    async def update_run(
        self,
        run_id: UUID,
        status: RunStatus | None = None,
        progress: float | None = None,
    ) -> CrawlRun:
        run = self.runs[run_id]
        if progress is not None:
            run.progress = max(run.progress, min(100.0, max(0.0, progress)))
        if status is not None and not run.status.is_terminal:
            run.status = status
            if status == RunStatus.RUNNING and run.started_at is None:
                run.started_at = utcnow()
            if status.is_terminal:
                run.finished_at = utcnow()
        return run.model_copy()

    # ── Corpus ────────────────────────────────

    async def add_page(self, page: PageRecord) -> bool:
        if page.url in self.page_urls[page.run_id]:
            return False
        self.page_urls[page.run_id].add(page.url)
        self.pages[page.run_id].append(page)
        self._page_run[page.id] = page.run_id
        return True

    async def add_page_content(self, content: PageContent) -> None:
        self.contents[self._page_run[content.page_id]].append(content)

    async def add_links(self, links: list[LinkRecord]) -> None:
        for link in links:
            self.links[self._page_run[link.source_page_id]].append(link)

    async def add_images(self, images: list[ImageRecord]) -> None:
        for image in images:
            self.images[self._page_run[image.page_id]].append(image)

    async def add_robots_record(self, record: RobotsRecord) -> None:
        self.robots[record.run_id].append(record)

    async def add_sitemap_record(self, record: SitemapRecord) -> None:
        self.sitemaps[record.run_id].append(record)

    async def add_fetch_failure(self, failure: FetchFailure) -> None:
        self.fetch_failures[failure.run_id].append(failure)

    async def load_corpus(self, run_id: UUID) -> Corpus:
        return Corpus(
            run=self.runs[run_id].model_copy(),
            pages=list(self.pages[run_id]),
            contents=list(self.contents[run_id]),
            links=list(self.links[run_id]),
            images=list(self.images[run_id]),
            robots=list(self.robots[run_id]),
            sitemaps=list(self.sitemaps[run_id]),
            fetch_failures=list(self.fetch_failures[run_id]),
        )

    # ── Analysis output ───────────────────────

    async def replace_issues(self, run_id: UUID, issues: list[Issue]) -> None:
        self.issues[run_id] = [issue.model_copy(update={"run_id": run_id}) for issue in issues]

    def _filtered(self, run_id: UUID, severity: Severity | None, category: IssueCategory | None) -> list[Issue]:
        return [
            issue for issue in self.issues[run_id]
            if (severity is None or issue.severity == severity)
            and (category is None or issue.category == category)
        ]

    async def list_issues(
        self,
        run_id: UUID,
        severity: Severity | None = None,
        category: IssueCategory | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Issue]:
        ranked = sorted(self._filtered(run_id, severity, category), key=issue_rank_key)
        end = None if limit is None else offset + limit
        return [issue.model_copy() for issue in ranked[offset:end]]

    async def count_issues(
        self,
        run_id: UUID,
        severity: Severity | None = None,
        category: IssueCategory | None = None,
    ) -> int:
        return len(self._filtered(run_id, severity, category))

    async def normalize_priorities(self, run_id: UUID) -> int:
        for issue in self.issues[run_id]:
            issue.priority_score = calculate_priority_score(issue.impact_score, issue.effort_score)
        return len(self.issues[run_id])

    async def replace_clusters(self, run_id: UUID, clusters: list[ContentCluster]) -> None:
        self.clusters[run_id] = [cluster.model_copy(update={"run_id": run_id}) for cluster in clusters]

    async def list_clusters(self, run_id: UUID) -> list[ContentCluster]:
        return [cluster.model_copy() for cluster in self.clusters[run_id]]

    # ── Events ────────────────────────────────

    async def add_event(self, event: RunEvent) -> None:
        self.events[event.run_id].append(event)

    async def recent_events(self, run_id: UUID, limit: int) -> list[RunEvent]:
        if limit <= 0:
            return []
        return list(self.events[run_id][-limit:])

    async def latest_error(self, run_id: UUID) -> RunEvent | None:
        for event in reversed(self.events[run_id]):
            if event.level == EventLevel.ERROR:
                return event
        return None
