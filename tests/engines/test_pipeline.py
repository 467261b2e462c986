"""
End-to-end tests for the run pipeline and the progress/result views.
"""

from datetime import timedelta

import pytest
from conftest import html_doc, make_run

from sitescope.core.errors import OrchestrationError
from sitescope.engines.base import EventLevel, IssueType, RunEvent, RunStatus, RunStep, utcnow
from sitescope.engines.content.engine import ContentEngine
from sitescope.engines.context import RunContext
from sitescope.engines.pipeline import RunPipeline, run_analysis
from sitescope.engines.results import build_progress, build_results, estimate_eta

SITE_ROOT = "https://example.com/"


def small_site(site):
    site.html(SITE_ROOT, html_doc(
        "Coffee brewing at home for beginners",
        '<h1>Coffee</h1><a href="/a">A</a><a href="/missing">Missing</a>',
    ))
    site.html(f"{SITE_ROOT}a", html_doc("Coffee grinders comparison", "<h1>Grinders</h1>"))


async def completed_run(site, store, options, **run_kwargs):
    small_site(site)
    run = make_run(**run_kwargs)
    await store.create_run(run)
    await run_analysis(store, run.id, options=options, fetcher=site.fetcher())
    return run


class TestRunPipeline:

    @pytest.mark.asyncio
    async def test_run_completes(self, site, store, options):
        run = await completed_run(site, store, options)

        stored = store.runs[run.id]
        assert stored.status == RunStatus.COMPLETED
        assert stored.progress == 100.0
        assert stored.started_at is not None
        assert stored.finished_at >= stored.started_at
        assert store.issues[run.id]

    @pytest.mark.asyncio
    async def test_steps_in_order(self, site, store, options):
        run = await completed_run(site, store, options)

        steps = [event.step for event in store.events[run.id]]
        expected = [
            RunStep.INIT,
            RunStep.CRAWL_START,
            RunStep.CRAWL_COMPLETE,
            RunStep.TECHNICAL_COMPLETE,
            RunStep.CONTENT_COMPLETE,
            RunStep.AI_COMPLETE,
            RunStep.REPORTS_COMPLETE,
            RunStep.COMPLETE,
        ]
        positions = [steps.index(step) for step in expected]
        assert positions == sorted(positions)
        assert steps[-1] == RunStep.COMPLETE

    @pytest.mark.asyncio
    async def test_broken_link_attributed_to_linking_page(self, site, store, options):
        run = await completed_run(site, store, options)

        broken = [i for i in store.issues[run.id] if i.type == IssueType.BROKEN_INTERNAL_LINK]
        assert len(broken) == 1
        assert broken[0].page_url == SITE_ROOT
        assert broken[0].data["target_url"] == f"{SITE_ROOT}missing"

    @pytest.mark.asyncio
    async def test_depth_one_crawls_root_and_children(self, site, store, options):
        run = await completed_run(site, store, options, max_depth=1)

        urls = [page.url for page in store.pages[run.id]]
        assert urls[:2] == [SITE_ROOT, f"{SITE_ROOT}a"]

    @pytest.mark.asyncio
    async def test_issues_stored_ranked_and_scored(self, site, store, options):
        run = await completed_run(site, store, options)

        issues = await store.list_issues(run.id)
        priorities = [issue.priority_score for issue in issues]
        assert priorities == sorted(priorities, reverse=True)
        assert all(issue.impact_score > 0 for issue in issues)
        assert all(issue.run_id == run.id for issue in issues)

    @pytest.mark.asyncio
    async def test_clusters_stored(self, site, store, options):
        run = await completed_run(site, store, options)

        clusters = await store.list_clusters(run.id)
        assert [(c.name, c.page_count) for c in clusters] == [("coffee", 2)]

    @pytest.mark.asyncio
    async def test_failure_marks_run_failed(self, site, store, options, monkeypatch):
        small_site(site)
        run = make_run()
        await store.create_run(run)

        async def broken_load(run_id):
            raise RuntimeError("corpus unavailable")

        monkeypatch.setattr(store, "load_corpus", broken_load)

        with pytest.raises(OrchestrationError, match="corpus unavailable"):
            await run_analysis(store, run.id, options=options, fetcher=site.fetcher())

        stored = store.runs[run.id]
        assert stored.status == RunStatus.FAILED
        assert stored.progress == 50.0
        error = await store.latest_error(run.id)
        assert error.step == RunStep.ERROR
        assert error.message == "corpus unavailable"

    @pytest.mark.asyncio
    async def test_unknown_run(self, store):
        with pytest.raises(OrchestrationError):
            await run_analysis(store, make_run().id)

    @pytest.mark.asyncio
    async def test_finished_run_not_rerun(self, site, store, options):
        run = make_run(status=RunStatus.COMPLETED)
        await store.create_run(run)

        await run_analysis(store, run.id, options=options, fetcher=site.fetcher())

        assert store.events[run.id] == []
        assert site.requests == []

    @pytest.mark.asyncio
    async def test_run_failed_during_analysis_stays_failed(self, site, store, options, monkeypatch):
        small_site(site)
        run = make_run()
        await store.create_run(run)
        execute = ContentEngine.execute

        async def fail_run_then_execute(engine, corpus):
            await store.update_run(run.id, status=RunStatus.FAILED)
            return await execute(engine, corpus)

        monkeypatch.setattr(ContentEngine, "execute", fail_run_then_execute)

        await run_analysis(store, run.id, options=options, fetcher=site.fetcher())

        assert store.runs[run.id].status == RunStatus.FAILED
        steps = [event.step for event in store.events[run.id]]
        assert RunStep.CONTENT_COMPLETE in steps
        assert RunStep.AI_COMPLETE not in steps
        assert RunStep.REPORTS_COMPLETE not in steps
        assert RunStep.COMPLETE not in steps
        assert await store.list_issues(run.id) == []

    @pytest.mark.asyncio
    async def test_terminal_status_is_final(self, store):
        run = make_run()
        await store.create_run(run)
        failed = await store.update_run(run.id, status=RunStatus.FAILED)

        updated = await store.update_run(run.id, status=RunStatus.COMPLETED, progress=100.0)

        assert updated.status == RunStatus.FAILED
        assert updated.finished_at == failed.finished_at
        assert updated.progress == 100.0

    @pytest.mark.asyncio
    async def test_rescoring_unchanged_corpus_is_identical(self, site, sql_store, options):
        small_site(site)
        run = make_run()
        await sql_store.create_run(run)
        await run_analysis(sql_store, run.id, options=options, fetcher=site.fetcher())
        corpus = await sql_store.load_corpus(run.id)
        pipeline = RunPipeline(RunContext(run=corpus.run, store=sql_store, options=options))

        passes = []
        for _ in range(2):
            await pipeline.report(corpus, await pipeline.analyse(corpus))
            issues = await sql_store.list_issues(run.id)
            passes.append([issue.model_dump(exclude={"id", "created_at"}) for issue in issues])

        assert passes[0]
        assert passes[0] == passes[1]
        for issue in issues:
            assert issue.priority_score == pytest.approx(issue.impact_score * 0.7 + (100 - issue.effort_score) * 0.3)


# ─────────────────────────────────────────────
# Progress view
# ─────────────────────────────────────────────

class TestProgressView:

    def test_eta_for_running_run(self):
        now = utcnow()
        run = make_run(status=RunStatus.RUNNING, progress=25.0, started_at=now - timedelta(seconds=10))
        assert estimate_eta(run, now) == pytest.approx(30.0)

    def test_no_eta_unless_running_with_progress(self):
        now = utcnow()
        assert estimate_eta(make_run(), now) is None
        assert estimate_eta(make_run(status=RunStatus.RUNNING, started_at=now), now) is None
        assert estimate_eta(make_run(status=RunStatus.COMPLETED, progress=100.0, started_at=now), now) is None

    def test_error_only_reported_for_failed_runs(self):
        run = make_run(status=RunStatus.FAILED)
        error = RunEvent(run_id=run.id, step=RunStep.ERROR, level=EventLevel.ERROR, message="boom")
        assert build_progress(run, [error], error).error == "boom"
        assert build_progress(make_run(status=RunStatus.RUNNING), [], error).error is None

    @pytest.mark.asyncio
    async def test_summary_from_reports_event(self, site, store, options):
        run = await completed_run(site, store, options)

        progress = build_progress(store.runs[run.id], await store.recent_events(run.id, 50))
        assert progress.status == RunStatus.COMPLETED
        assert progress.progress == 100.0
        assert progress.eta_seconds is None
        assert progress.summary["issues"] == len(store.issues[run.id])


# ─────────────────────────────────────────────
# Results view
# ─────────────────────────────────────────────

class TestResultsView:

    @pytest.mark.asyncio
    async def test_results_payload(self, site, store, options):
        run = await completed_run(site, store, options)
        corpus = await store.load_corpus(run.id)
        issues = await store.list_issues(run.id)

        results = build_results(corpus, issues, await store.list_clusters(run.id))

        assert results.url == SITE_ROOT
        assert results.summary.total_pages == 3
        assert results.summary.pages_ok == 2
        assert results.summary.opportunities == len(issues)
        assert results.summary.warnings + results.summary.errors == len(issues)
        assert results.summary.duration_seconds is not None
        assert results.charts["status_distribution"] == {"200": 2, "404": 1}
        assert sum(results.charts["performance_distribution"].values()) == 2
        assert sum(results.issues_by_severity.values()) == len(issues)
        assert sum(results.issues_by_category.values()) == len(issues)
        assert results.technical["summary"]["broken_internal_link"] == 1
        assert results.technical["summary"]["client_error_page"] == 1
        assert len(results.technical["pages"]) == 3
        assert len(results.content["pages"]) == 2
        assert set(results.ai["content_shapes"]) == {"faq", "howto", "comparison", "definition"}
        assert results.ai["content_shapes"]["comparison"] == 1
        assert results.clusters[0].name == "coffee"

    def test_empty_corpus(self):
        from sitescope.engines.base import Corpus

        results = build_results(Corpus(run=make_run()), [], [])
        assert results.summary.total_pages == 0
        assert results.ai["eeat"]["total"] == 0
        assert results.charts["performance_distribution"] == {"<1s": 0, "1-2s": 0, "2-3s": 0, "3-5s": 0, ">5s": 0}
