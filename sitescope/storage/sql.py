"""
SQLAlchemy-backed store.

Every operation opens its own session from the factory, so concurrent crawl
workers never share a session. Page dedup is enforced by the
(run_id, url) unique constraint.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

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
from sitescope.models.models import (
    ContentClusterRow,
    CrawlRunRecord,
    FetchFailureRow,
    ImageRow,
    IssueRow,
    LinkRow,
    PageContentRow,
    PageRow,
    RobotsRow,
    RunEventRow,
    SitemapRow,
)
from sitescope.storage.base import CorpusStore

logger = structlog.get_logger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything here is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ─────────────────────────────────────────────
# Row -> record mapping
# ─────────────────────────────────────────────

def _run(row: CrawlRunRecord) -> CrawlRun:
    return CrawlRun(
        id=row.id,
        url=row.url,
        domain=row.domain,
        max_pages=row.max_pages,
        max_depth=row.max_depth,
        respect_robots=row.respect_robots,
        include_external=row.include_external,
        status=RunStatus(row.status),
        progress=row.progress,
        started_at=_aware(row.started_at),
        finished_at=_aware(row.finished_at),
        created_at=_aware(row.created_at) or utcnow(),
    )


def _page(row: PageRow) -> PageRecord:
    record = PageRecord.model_validate(row, from_attributes=True)
    record.fetched_at = _aware(record.fetched_at)
    return record


def _issue(row: IssueRow) -> Issue:
    record = Issue.model_validate(row, from_attributes=True)
    record.created_at = _aware(record.created_at)
    return record


def _event(row: RunEventRow) -> RunEvent:
    record = RunEvent.model_validate(row, from_attributes=True)
    record.created_at = _aware(record.created_at)
    return record


def _issue_filters(run_id: UUID, severity: Severity | None, category: IssueCategory | None) -> list:
    clauses = [IssueRow.run_id == run_id]
    if severity is not None:
        clauses.append(IssueRow.severity == severity.value)
    if category is not None:
        clauses.append(IssueRow.category == category.value)
    return clauses


class SQLAlchemyCorpusStore(CorpusStore):
    """
    Usage:
        store = SQLAlchemyCorpusStore(AsyncSessionLocal)
        await run_analysis(store, run_id)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ── Runs ──────────────────────────────────

    async def create_run(self, run: CrawlRun) -> CrawlRun:
        async with self.session_factory() as session:
            session.add(CrawlRunRecord(
                id=run.id,
                url=run.url,
                domain=run.domain,
                max_pages=run.max_pages,
                max_depth=run.max_depth,
                respect_robots=run.respect_robots,
                include_external=run.include_external,
                status=run.status.value,
                progress=run.progress,
                started_at=run.started_at,
                finished_at=run.finished_at,
                created_at=run.created_at,
            ))
            await session.commit()
        return run

    async def get_run(self, run_id: UUID) -> CrawlRun | None:
        async with self.session_factory() as session:
            row = await session.get(CrawlRunRecord, run_id)
            return _run(row) if row else None

    async def find_active_run(self, domain: str) -> CrawlRun | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CrawlRunRecord)
                .where(
                    CrawlRunRecord.domain == domain.lower(),
                    CrawlRunRecord.status.in_([RunStatus.PENDING.value, RunStatus.RUNNING.value]),
                )
                .order_by(CrawlRunRecord.created_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _run(row) if row else None

    async def update_run(
        self,
        run_id: UUID,
        status: RunStatus | None = None,
        progress: float | None = None,
    ) -> CrawlRun:
        async with self.session_factory() as session:
            row = await session.get(CrawlRunRecord, run_id)
            if row is None:
                raise KeyError(run_id)
            if progress is not None:
                row.progress = max(row.progress, min(100.0, max(0.0, progress)))
            if status is not None and not RunStatus(row.status).is_terminal:
                row.status = status.value
                if status == RunStatus.RUNNING and row.started_at is None:
                    row.started_at = utcnow()
                if status.is_terminal:
                    row.finished_at = utcnow()
            await session.commit()
            return _run(row)

    # ── Corpus ────────────────────────────────

    async def add_page(self, page: PageRecord) -> bool:
        async with self.session_factory() as session:
            next_seq = await session.scalar(
                select(func.coalesce(func.max(PageRow.seq), 0) + 1).where(PageRow.run_id == page.run_id)
            )
            session.add(PageRow(**page.model_dump(), seq=next_seq))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug("Duplicate page ignored", run_id=str(page.run_id), url=page.url)
                return False
        return True

    async def _run_of_page(self, session: AsyncSession, page_id: UUID) -> UUID:
        run_id = await session.scalar(select(PageRow.run_id).where(PageRow.id == page_id))
        if run_id is None:
            raise KeyError(page_id)
        return run_id

    async def add_page_content(self, content: PageContent) -> None:
        async with self.session_factory() as session:
            run_id = await self._run_of_page(session, content.page_id)
            session.add(PageContentRow(**content.model_dump(), run_id=run_id))
            await session.commit()

    async def add_links(self, links: list[LinkRecord]) -> None:
        if not links:
            return
        async with self.session_factory() as session:
            run_ids: dict[UUID, UUID] = {}
            for link in links:
                if link.source_page_id not in run_ids:
                    run_ids[link.source_page_id] = await self._run_of_page(session, link.source_page_id)
                session.add(LinkRow(
                    **link.model_dump(exclude={"link_type"}),
                    link_type=link.link_type.value,
                    run_id=run_ids[link.source_page_id],
                ))
            await session.commit()

    async def add_images(self, images: list[ImageRecord]) -> None:
        if not images:
            return
        async with self.session_factory() as session:
            run_ids: dict[UUID, UUID] = {}
            for image in images:
                if image.page_id not in run_ids:
                    run_ids[image.page_id] = await self._run_of_page(session, image.page_id)
                session.add(ImageRow(**image.model_dump(), run_id=run_ids[image.page_id]))
            await session.commit()

    async def add_robots_record(self, record: RobotsRecord) -> None:
        async with self.session_factory() as session:
            session.add(RobotsRow(**record.model_dump()))
            await session.commit()

    async def add_sitemap_record(self, record: SitemapRecord) -> None:
        async with self.session_factory() as session:
            session.add(SitemapRow(**record.model_dump(mode="json", exclude={"run_id"}), run_id=record.run_id))
            await session.commit()

    async def add_fetch_failure(self, failure: FetchFailure) -> None:
        async with self.session_factory() as session:
            session.add(FetchFailureRow(**failure.model_dump()))
            await session.commit()

    async def load_corpus(self, run_id: UUID) -> Corpus:
        async with self.session_factory() as session:
            run_row = await session.get(CrawlRunRecord, run_id)
            if run_row is None:
                raise KeyError(run_id)

            pages = (await session.scalars(
                select(PageRow).where(PageRow.run_id == run_id).order_by(PageRow.seq, PageRow.fetched_at)
            )).all()
            contents = (await session.scalars(
                select(PageContentRow).where(PageContentRow.run_id == run_id)
            )).all()
            links = (await session.scalars(
                select(LinkRow).where(LinkRow.run_id == run_id).order_by(LinkRow.id)
            )).all()
            images = (await session.scalars(
                select(ImageRow).where(ImageRow.run_id == run_id).order_by(ImageRow.id)
            )).all()
            robots = (await session.scalars(
                select(RobotsRow).where(RobotsRow.run_id == run_id).order_by(RobotsRow.id)
            )).all()
            sitemaps = (await session.scalars(
                select(SitemapRow).where(SitemapRow.run_id == run_id).order_by(SitemapRow.id)
            )).all()
            failures = (await session.scalars(
                select(FetchFailureRow).where(FetchFailureRow.run_id == run_id).order_by(FetchFailureRow.id)
            )).all()

            return Corpus(
                run=_run(run_row),
                pages=[_page(row) for row in pages],
                contents=[PageContent.model_validate(row, from_attributes=True) for row in contents],
                links=[LinkRecord.model_validate(row, from_attributes=True) for row in links],
                images=[ImageRecord.model_validate(row, from_attributes=True) for row in images],
                robots=[RobotsRecord.model_validate(row, from_attributes=True) for row in robots],
                sitemaps=[SitemapRecord.model_validate(row, from_attributes=True) for row in sitemaps],
                fetch_failures=[FetchFailure.model_validate(row, from_attributes=True) for row in failures],
            )

    # ── Analysis output ───────────────────────

    async def replace_issues(self, run_id: UUID, issues: list[Issue]) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(IssueRow).where(IssueRow.run_id == run_id))
            session.add_all([
                IssueRow(
                    **issue.model_dump(exclude={"run_id", "category", "type", "severity", "data"}),
                    run_id=run_id,
                    category=issue.category.value,
                    type=issue.type.value,
                    severity=issue.severity.value,
                    data=issue.model_dump(mode="json")["data"],
                )
                for issue in issues
            ])
            await session.commit()
        logger.debug("Issues replaced", run_id=str(run_id), count=len(issues))

    async def list_issues(
        self,
        run_id: UUID,
        severity: Severity | None = None,
        category: IssueCategory | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Issue]:
        query = (
            select(IssueRow)
            .where(*_issue_filters(run_id, severity, category))
            .order_by(
                IssueRow.priority_score.desc(),
                IssueRow.category,
                IssueRow.type,
                func.coalesce(IssueRow.page_url, ""),
                IssueRow.description,
            )
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        async with self.session_factory() as session:
            rows = (await session.scalars(query)).all()
            return [_issue(row) for row in rows]

    async def count_issues(
        self,
        run_id: UUID,
        severity: Severity | None = None,
        category: IssueCategory | None = None,
    ) -> int:
        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(IssueRow).where(*_issue_filters(run_id, severity, category))
            )
            return total or 0

    async def normalize_priorities(self, run_id: UUID) -> int:
        async with self.session_factory() as session:
            rows = (await session.scalars(select(IssueRow).where(IssueRow.run_id == run_id))).all()
            for row in rows:
                row.priority_score = calculate_priority_score(row.impact_score, row.effort_score)
            await session.commit()
            return len(rows)

    async def replace_clusters(self, run_id: UUID, clusters: list[ContentCluster]) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(ContentClusterRow).where(ContentClusterRow.run_id == run_id))
            session.add_all([
                ContentClusterRow(
                    id=cluster.id,
                    run_id=run_id,
                    name=cluster.name,
                    topic=cluster.topic,
                    page_ids=[str(page_id) for page_id in cluster.page_ids],
                    page_urls=list(cluster.page_urls),
                    page_count=cluster.page_count,
                    opportunity_level=cluster.opportunity_level.value,
                    position=position,
                )
                for position, cluster in enumerate(clusters)
            ])
            await session.commit()

    async def list_clusters(self, run_id: UUID) -> list[ContentCluster]:
        async with self.session_factory() as session:
            rows = (await session.scalars(
                select(ContentClusterRow)
                .where(ContentClusterRow.run_id == run_id)
                .order_by(ContentClusterRow.position)
            )).all()
            return [ContentCluster.model_validate(row, from_attributes=True) for row in rows]

    # ── Events ────────────────────────────────

    async def add_event(self, event: RunEvent) -> None:
        async with self.session_factory() as session:
            session.add(RunEventRow(
                run_id=event.run_id,
                step=event.step.value,
                level=event.level.value,
                message=event.message,
                data=event.model_dump(mode="json")["data"],
                created_at=event.created_at,
            ))
            await session.commit()

    async def recent_events(self, run_id: UUID, limit: int) -> list[RunEvent]:
        if limit <= 0:
            return []
        async with self.session_factory() as session:
            rows = (await session.scalars(
                select(RunEventRow)
                .where(RunEventRow.run_id == run_id)
                .order_by(RunEventRow.id.desc())
                .limit(limit)
            )).all()
            return [_event(row) for row in reversed(rows)]

    async def latest_error(self, run_id: UUID) -> RunEvent | None:
        async with self.session_factory() as session:
            row = await session.scalar(
                select(RunEventRow)
                .where(RunEventRow.run_id == run_id, RunEventRow.level == EventLevel.ERROR.value)
                .order_by(RunEventRow.id.desc())
                .limit(1)
            )
            return _event(row) if row else None
