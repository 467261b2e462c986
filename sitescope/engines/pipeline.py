"""
Run pipeline - crawl, analyse, score and cluster one run.

Flow (progress checkpoints in brackets):
1. init                      -> status running
2. crawl_start .. crawl_complete            [0 - 50]
3. technical engine          -> technical_complete   [60]
4. content engine            -> content_complete     [75]
5. AI engine                 -> ai_complete          [90]
6. score + rank, bulk replace issues, cluster, normalize priorities
                             -> reports_complete
7. complete                  -> status completed     [100]

Error handling:
- Per-page problems are recovered inside the crawler
- A failing rule is skipped by its engine (engine reports PARTIAL)
- Anything escaping a step marks the run failed with an `error` event
  carrying the message verbatim, then re-raises as OrchestrationError
"""

from __future__ import annotations

from collections import Counter

import structlog

from sitescope.core.errors import OrchestrationError
from sitescope.engines.ai.engine import AIReadinessEngine
from sitescope.engines.base import AnalysisEngine, Corpus, EngineResult, EventLevel, RunStatus, RunStep
from sitescope.engines.clustering.engine import ClusteringEngine
from sitescope.engines.content.engine import ContentEngine
from sitescope.engines.context import RunContext, RunOptions
from sitescope.engines.crawler.engine import CrawlerEngine
from sitescope.engines.crawler.fetcher import Fetcher
from sitescope.engines.scoring.engine import ScoringEngine
from sitescope.engines.technical.engine import TechnicalSEOEngine
from sitescope.storage.base import CorpusStore

logger = structlog.get_logger(__name__)

ANALYSIS_STEPS: list[tuple[type[AnalysisEngine], float, RunStep]] = [
    (TechnicalSEOEngine, 60.0, RunStep.TECHNICAL_COMPLETE),
    (ContentEngine, 75.0, RunStep.CONTENT_COMPLETE),
    (AIReadinessEngine, 90.0, RunStep.AI_COMPLETE),
]


class RunPipeline:
    """
    Executes every stage of a run against a CorpusStore.

    Usage:
        ctx = RunContext(run=run, store=store)
        await RunPipeline(ctx).execute()
    """

    def __init__(self, ctx: RunContext, fetcher: Fetcher | None = None):
        self.ctx = ctx
        self.fetcher = fetcher
        self.scoring = ScoringEngine()
        self.clustering = ClusteringEngine()

    async def execute(self) -> None:
        try:
            await self._execute()
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            await self._fail(message)
            if isinstance(exc, OrchestrationError):
                raise
            raise OrchestrationError(message) from exc

    async def _fail(self, message: str) -> None:
        try:
            await self.ctx.events.emit(RunStep.ERROR, message, EventLevel.ERROR)
            await self.ctx.events.progress(self.ctx.events.run.progress, status=RunStatus.FAILED)
        except Exception as exc:
            self.ctx.logger.error("Could not mark run failed", error=str(exc), exc_info=True)

    async def _execute(self) -> None:
        events = self.ctx.events
        run = self.ctx.run

        await events.progress(0.0, status=RunStatus.RUNNING)
        await events.emit(RunStep.INIT, f"Analysis started for {run.url}", url=run.url)

        await events.emit(
            RunStep.CRAWL_START,
            "Crawl started",
            max_pages=run.max_pages,
            max_depth=run.max_depth,
        )
        stats = await CrawlerEngine(self.ctx, fetcher=self.fetcher).crawl()
        if await self._cancelled("crawl"):
            return
        await events.progress(50.0)
        await events.emit(RunStep.CRAWL_COMPLETE, "Crawl complete", pages=stats.pages_saved)

        corpus = await self.ctx.store.load_corpus(run.id)
        results = await self.analyse(corpus)
        if await self._cancelled("analysis"):
            return

        await self.report(corpus, results)
        if await self._cancelled("reports"):
            return

        await events.progress(100.0, status=RunStatus.COMPLETED)
        await events.emit(RunStep.COMPLETE, "Analysis complete")

    async def _cancelled(self, stage: str) -> bool:
        if await self.ctx.is_cancelled():
            self.ctx.logger.info("Run cancelled, remaining steps skipped", stage=stage)
            return True
        return False

    async def analyse(self, corpus: Corpus) -> list[EngineResult]:
        """Runs each engine in turn, stopping early once the run is cancelled."""
        results = []
        for engine_class, checkpoint, step in ANALYSIS_STEPS:
            if await self.ctx.is_cancelled():
                break
            result = await engine_class().execute(corpus)
            results.append(result)
            await self.ctx.events.progress(checkpoint)
            await self.ctx.events.emit(
                step,
                f"{result.engine_name.capitalize()} analysis complete",
                level=EventLevel.WARNING if result.failed_rules or result.error_message else EventLevel.INFO,
                issues=len(result.issues),
                status=result.status.value,
                failed_rules=result.failed_rules,
            )
        return results

    async def report(self, corpus: Corpus, results: list[EngineResult]) -> None:
        store = self.ctx.store
        run_id = corpus.run.id

        issues = self.scoring.score(results)
        await store.replace_issues(run_id, issues)

        clusters = self.clustering.cluster(corpus)
        await store.replace_clusters(run_id, clusters)

        normalized = await store.normalize_priorities(run_id)

        top_types = Counter(issue.type.value for issue in issues).most_common(5)
        await self.ctx.events.emit(
            RunStep.REPORTS_COMPLETE,
            "Reports generated",
            issues=len(issues),
            clusters=len(clusters),
            normalized=normalized,
            top_issue_types=[{"type": t, "count": c} for t, c in top_types],
        )


async def run_analysis(
    store: CorpusStore,
    run_id,
    options: RunOptions | None = None,
    fetcher: Fetcher | None = None,
) -> None:
    """Load a run from the store and execute the full pipeline."""
    run = await store.get_run(run_id)
    if run is None:
        raise OrchestrationError(f"Run {run_id} not found")
    if run.status.is_terminal:
        logger.info("Run already finished, skipping", run_id=str(run_id), status=run.status.value)
        return
    ctx = RunContext(run=run, store=store, options=options or RunOptions())
    await RunPipeline(ctx, fetcher=fetcher).execute()
