"""
Crawler Engine - Breadth-first site crawler over raw HTML.

Architecture:
- FIFO frontier with normalized-URL dedup and a hard depth limit
- Hard page budget, reserved before each fetch
- robots.txt compliance with allow-before-disallow precedence
- Sitemap discovery recorded for coverage auditing
- Per-host request spacing, widened by robots Crawl-delay
- N worker coroutines (default 1) draining one shared frontier
- Every page persisted through the CorpusStore as soon as it is fetched

States: seeded -> draining -> done.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlsplit

import structlog

from sitescope.engines.base import (
    EventLevel,
    FetchFailure,
    ImageRecord,
    LinkRecord,
    LinkType,
    PageContent,
    PageRecord,
    RunStep,
)
from sitescope.engines.context import RunContext
from sitescope.engines.crawler.extractor import ContentExtractor, ExtractedPage, has_noindex
from sitescope.engines.crawler.fetcher import Fetcher, FetchError, PageFetchResult
from sitescope.engines.crawler.frontier import CrawlURL, HostScheduler, URLFrontier, URLNormalizer
from sitescope.engines.crawler.politeness import PolitenessResolver, RobotsRules

logger = structlog.get_logger(__name__)

CRAWL_PROGRESS_SHARE = 50.0


class CrawlState(str, Enum):
    SEEDED = "seeded"
    DRAINING = "draining"
    DONE = "done"


@dataclass
class CrawlStats:
    """Live crawl statistics."""
    processed: int = 0
    pages_saved: int = 0
    fetch_errors: int = 0
    page_errors: int = 0
    robots_blocked: int = 0
    duplicates: int = 0
    start_time: float = field(default_factory=time.time)

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "pages_saved": self.pages_saved,
            "fetch_errors": self.fetch_errors,
            "page_errors": self.page_errors,
            "robots_blocked": self.robots_blocked,
            "duplicates": self.duplicates,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
        }


class CrawlerEngine:
    """
    Flow:
    1. Seed: resolve robots.txt and sitemaps, admit the start URL at depth 0
    2. Drain: pop -> cancelled? -> robots -> host wait -> fetch -> persist
       -> extract -> admit links, until the frontier is empty or the budget is spent
    3. Done: emit the crawl summary
    """

    ENGINE_NAME = "crawler"

    def __init__(
        self,
        ctx: RunContext,
        fetcher: Fetcher | None = None,
        scheduler: HostScheduler | None = None,
    ):
        self.ctx = ctx
        self.run = ctx.run
        self.options = ctx.options
        self.fetcher = fetcher
        self.scheduler = scheduler or HostScheduler(self.options.request_delay)
        self.frontier = URLFrontier(max_depth=self.run.max_depth)
        self.extractor = ContentExtractor(self.run.domain)
        self.robots = RobotsRules.allow_all()
        self.stats = CrawlStats()
        self.state = CrawlState.SEEDED
        self.logger = ctx.logger.bind(engine=self.ENGINE_NAME)
        self._reserved = 0
        self._stopped = False
        self._in_flight = 0
        self._idle: asyncio.Condition | None = None

    @property
    def budget(self) -> int:
        return self.run.max_pages

    async def crawl(self) -> CrawlStats:
        owns_fetcher = self.fetcher is None
        if owns_fetcher:
            self.fetcher = Fetcher(
                user_agent=self.options.user_agent,
                timeout=self.options.request_timeout,
                max_redirects=self.options.max_redirects,
            )
        try:
            await self._seed()
            await self._drain()
        finally:
            if owns_fetcher:
                await self.fetcher.aclose()

        self.state = CrawlState.DONE
        await self.ctx.events.emit(RunStep.CRAWL_SUMMARY, "Crawl finished", **self.stats.as_dict())
        return self.stats

    # ── Seeding ───────────────────────────────

    async def _seed(self) -> None:
        resolver = PolitenessResolver(self.fetcher, self.run.id, agent=self.options.agent_token)
        declared: list[str] = []

        if self.run.respect_robots:
            record, rules = await resolver.resolve_robots(self.run.url)
            await self.ctx.store.add_robots_record(record)
            self.robots = rules
            declared = record.sitemap_urls
            delay = rules.crawl_delay(self.options.agent_token)
            if delay:
                self.scheduler.set_interval(self.run.domain, delay)
            await self.ctx.events.emit(
                RunStep.ROBOTS_ANALYSIS,
                "robots.txt analysed" if record.is_accessible else "robots.txt not available",
                robots_url=record.robots_url,
                accessible=record.is_accessible,
                sitemaps=len(declared),
                crawl_delay=delay,
            )

        sitemaps = await resolver.resolve_sitemap(self.run.url, declared)
        for sitemap in sitemaps.records:
            await self.ctx.store.add_sitemap_record(sitemap)
        await self.ctx.events.emit(
            RunStep.SITEMAP_ANALYSIS,
            "Sitemap analysed" if sitemaps.found else "No sitemap found",
            sitemaps=len(sitemaps.records),
            urls=len(sitemaps.urls),
        )

        self.frontier.admit(self.run.url, 0)
        if self.options.seed_from_sitemap:
            for url in sitemaps.urls:
                if URLNormalizer.is_same_host(url, self.run.domain):
                    self.frontier.admit(url, 1)

        self.state = CrawlState.SEEDED
        self.logger.info("Crawl seeded", queued=len(self.frontier), budget=self.budget)

    # ── Draining ──────────────────────────────

    async def _drain(self) -> None:
        self.state = CrawlState.DRAINING
        workers = max(1, self.options.concurrency)
        if workers == 1:
            await self._worker()
            return

        # A worker that finds the frontier empty while others are still
        # fetching waits for them: in-flight pages may admit new links.
        self._idle = asyncio.Condition()
        await asyncio.gather(*(self._worker() for _ in range(workers)))

    async def _next_item(self) -> CrawlURL | None:
        """
        Takes the next URL and claims a budget slot for it in the same step,
        before any await, so concurrent workers never overshoot max_pages.
        """
        while True:
            if self._stopped or self._reserved >= self.budget:
                return None
            item = self.frontier.next()
            if item is not None:
                self._reserved += 1
                self._in_flight += 1
                return item
            if self._idle is None or self._in_flight == 0:
                return None
            async with self._idle:
                await self._idle.wait()

    async def _release(self) -> None:
        self._in_flight -= 1
        if self._idle is not None:
            async with self._idle:
                self._idle.notify_all()

    async def _worker(self) -> None:
        while True:
            item = await self._next_item()
            if item is None:
                return

            try:
                if await self.ctx.is_cancelled():
                    self._stopped = True
                    self._reserved -= 1
                    self.logger.info("Run cancelled, stopping crawl")
                    return

                self.frontier.mark_visited(item.url)

                if self.run.respect_robots and not item.probe_only and not self.robots.can_fetch(
                    item.url, self.options.agent_token
                ):
                    # Blocked URLs give their slot back
                    self._reserved -= 1
                    self.stats.robots_blocked += 1
                    await self.ctx.events.emit(
                        RunStep.ROBOTS_BLOCKED, "Blocked by robots.txt", EventLevel.DEBUG, url=item.url
                    )
                    continue

                try:
                    await self._process(item)
                except Exception as exc:
                    self.stats.page_errors += 1
                    await self.ctx.events.emit(
                        RunStep.PAGE_ERROR,
                        f"Error processing {item.url}: {exc}",
                        EventLevel.WARNING,
                        url=item.url,
                    )
                finally:
                    self.stats.processed += 1
            finally:
                await self._release()

            progress = min(CRAWL_PROGRESS_SHARE, self.stats.processed / max(1, self.budget) * CRAWL_PROGRESS_SHARE)
            await self.ctx.events.progress(progress)

    async def _process(self, item: CrawlURL) -> None:
        host = urlsplit(item.url).hostname or self.run.domain
        await self.scheduler.wait(host)

        result = await self.fetcher.fetch(item.url)
        if isinstance(result, FetchError):
            self.stats.fetch_errors += 1
            await self.ctx.store.add_fetch_failure(
                FetchFailure(
                    run_id=self.run.id,
                    url=item.url,
                    depth=item.depth,
                    kind=result.kind,
                    message=result.message,
                    is_internal=not item.probe_only,
                )
            )
            await self.ctx.events.emit(
                RunStep.FETCH_ERROR,
                f"Failed to fetch {item.url}: {result.message}",
                EventLevel.WARNING,
                url=item.url,
                kind=result.kind,
            )
            return

        extracted = None
        if result.is_html and not item.probe_only:
            extracted = self.extractor.extract(result.text, result.final_url)

        page = self._page_record(item, result, extracted)
        if not await self.ctx.store.add_page(page):
            self.stats.duplicates += 1
            self.logger.debug("Duplicate page skipped", url=item.url)
            return
        self.stats.pages_saved += 1

        if extracted is None:
            return

        await self._persist_extraction(page, extracted)
        self._admit_links(item, extracted)

    def _page_record(
        self,
        item: CrawlURL,
        result: PageFetchResult,
        extracted: ExtractedPage | None,
    ) -> PageRecord:
        robots_meta = extracted.robots_meta if extracted else None
        return PageRecord(
            run_id=self.run.id,
            url=item.url,
            status_code=result.status_code,
            content_type=result.content_type,
            size_bytes=result.size_bytes,
            load_time_ms=round(result.elapsed_ms, 2),
            depth=item.depth,
            redirect_url=result.redirect_url,
            redirect_count=result.redirect_count,
            headers=result.headers,
            robots_meta=robots_meta,
            canonical_url=extracted.canonical_url if extracted else None,
            is_indexable=not has_noindex(robots_meta, result.headers),
            is_internal=not item.probe_only,
        )

    async def _persist_extraction(self, page: PageRecord, extracted: ExtractedPage) -> None:
        counts = extracted.heading_counts
        await self.ctx.store.add_page_content(
            PageContent(
                page_id=page.id,
                title=extracted.title,
                title_length=len(extracted.title),
                meta_description=extracted.meta_description,
                meta_description_length=len(extracted.meta_description),
                h1=extracted.h1,
                h1_count=counts["h1"],
                h2_count=counts["h2"],
                h3_count=counts["h3"],
                h4_count=counts["h4"],
                h5_count=counts["h5"],
                h6_count=counts["h6"],
                word_count=extracted.word_count,
                internal_links_count=extracted.internal_links_count,
                external_links_count=extracted.external_links_count,
                image_count=len(extracted.images),
                images_without_alt=extracted.images_without_alt,
                keyword_density=extracted.keyword_density,
                main_keywords=extracted.main_keywords,
                structured_data_types=extracted.structured_data_types,
            )
        )
        if extracted.images:
            await self.ctx.store.add_images([
                ImageRecord(
                    page_id=page.id,
                    src=image.src,
                    alt=image.alt,
                    title=image.title,
                    loading=image.loading,
                    is_lazy=image.is_lazy,
                )
                for image in extracted.images
            ])
        if extracted.links:
            await self.ctx.store.add_links([
                LinkRecord(
                    source_page_id=page.id,
                    target_url=link.target_url,
                    anchor_text=link.anchor_text,
                    link_type=link.link_type,
                    is_follow=link.is_follow,
                    position=link.position,
                )
                for link in extracted.links
            ])

    def _admit_links(self, item: CrawlURL, extracted: ExtractedPage) -> None:
        for link in extracted.links:
            if not link.is_follow or urlsplit(link.target_url).scheme not in ("http", "https"):
                continue
            if link.link_type == LinkType.INTERNAL:
                self.frontier.admit(link.target_url, item.depth + 1)
            elif link.link_type == LinkType.EXTERNAL and self.run.include_external:
                self.frontier.admit(link.target_url, item.depth + 1, probe_only=True)
