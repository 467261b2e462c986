"""
Tests for the SQLAlchemy store against a throwaway SQLite database.
"""

import pytest
from conftest import make_run

from sitescope.engines.base import (
    ContentCluster,
    EventLevel,
    FetchFailure,
    ImageRecord,
    Issue,
    IssueCategory,
    IssueType,
    LinkRecord,
    LinkType,
    OpportunityLevel,
    PageContent,
    PageRecord,
    RobotsRecord,
    RunEvent,
    RunStatus,
    RunStep,
    Severity,
    SitemapEntry,
    SitemapRecord,
)
from sitescope.engines.scoring.engine import score_issue


def page_for(run, path: str, **kwargs) -> PageRecord:
    return PageRecord(run_id=run.id, url=f"https://example.com{path}", status_code=200, content_type="text/html", **kwargs)


def issue(severity: Severity, category: IssueCategory, issue_type: IssueType, url: str) -> Issue:
    return score_issue(Issue(
        type=issue_type,
        category=category,
        severity=severity,
        title=issue_type.value,
        description=f"{issue_type.value} on {url}",
        page_url=url,
        data={"url": url},
    ))


# ─────────────────────────────────────────────
# Runs
# ─────────────────────────────────────────────

class TestRuns:

    @pytest.mark.asyncio
    async def test_create_and_get(self, sql_store):
        run = make_run(max_pages=5, include_external=True)
        await sql_store.create_run(run)

        loaded = await sql_store.get_run(run.id)
        assert loaded.id == run.id
        assert loaded.max_pages == 5
        assert loaded.include_external is True
        assert loaded.status == RunStatus.PENDING
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_unknown_run(self, sql_store):
        assert await sql_store.get_run(make_run().id) is None

    @pytest.mark.asyncio
    async def test_find_active_run(self, sql_store):
        done = make_run(status=RunStatus.COMPLETED)
        active = make_run()
        await sql_store.create_run(done)
        await sql_store.create_run(active)

        found = await sql_store.find_active_run("example.com")
        assert found.id == active.id
        assert await sql_store.find_active_run("other.org") is None

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self, sql_store):
        run = make_run()
        await sql_store.create_run(run)

        await sql_store.update_run(run.id, progress=40.0)
        updated = await sql_store.update_run(run.id, progress=20.0)
        assert updated.progress == 40.0
        updated = await sql_store.update_run(run.id, progress=250.0)
        assert updated.progress == 100.0

    @pytest.mark.asyncio
    async def test_status_timestamps(self, sql_store):
        run = make_run()
        await sql_store.create_run(run)

        running = await sql_store.update_run(run.id, status=RunStatus.RUNNING)
        assert running.started_at is not None
        assert running.finished_at is None
        again = await sql_store.update_run(run.id, status=RunStatus.RUNNING)
        assert again.started_at == running.started_at
        done = await sql_store.update_run(run.id, status=RunStatus.COMPLETED, progress=100.0)
        assert done.finished_at is not None
        assert done.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_terminal_status_is_final(self, sql_store):
        run = make_run()
        await sql_store.create_run(run)
        failed = await sql_store.update_run(run.id, status=RunStatus.FAILED)

        for status in (RunStatus.RUNNING, RunStatus.COMPLETED):
            updated = await sql_store.update_run(run.id, status=status)
            assert updated.status == RunStatus.FAILED
            assert updated.finished_at == failed.finished_at

        stored = await sql_store.get_run(run.id)
        assert stored.status == RunStatus.FAILED
        assert await sql_store.find_active_run(run.domain) is None


# ─────────────────────────────────────────────
# Corpus
# ─────────────────────────────────────────────

class TestCorpus:

    @pytest.mark.asyncio
    async def test_duplicate_page_rejected(self, sql_store):
        run = make_run()
        await sql_store.create_run(run)

        assert await sql_store.add_page(page_for(run, "/"))
        assert not await sql_store.add_page(page_for(run, "/"))

        other = make_run()
        await sql_store.create_run(other)
        assert await sql_store.add_page(page_for(other, "/"))

    @pytest.mark.asyncio
    async def test_load_corpus_round_trip(self, sql_store):
        run = make_run()
        await sql_store.create_run(run)
        home = page_for(run, "/", headers={"content-type": "text/html"})
        about = page_for(run, "/about", depth=1)
        await sql_store.add_page(home)
        await sql_store.add_page(about)
        await sql_store.add_page_content(PageContent(
            page_id=home.id,
            title="Home",
            title_length=4,
            keyword_density={"coffee": 4.5},
            structured_data_types=["WebPage"],
        ))
        await sql_store.add_links([
            LinkRecord(source_page_id=home.id, target_url=about.url, link_type=LinkType.INTERNAL, position=0),
            LinkRecord(source_page_id=home.id, target_url="https://other.org/", link_type=LinkType.EXTERNAL, position=1),
        ])
        await sql_store.add_images([ImageRecord(page_id=home.id, src="https://example.com/a.png", alt="A")])
        await sql_store.add_robots_record(RobotsRecord(
            run_id=run.id,
            robots_url="https://example.com/robots.txt",
            is_accessible=True,
            sitemap_urls=["https://example.com/sitemap.xml"],
        ))
        await sql_store.add_sitemap_record(SitemapRecord(
            run_id=run.id,
            sitemap_url="https://example.com/sitemap.xml",
            total_urls=1,
            valid_urls=1,
            entries=[SitemapEntry(loc="https://example.com/", priority=0.8)],
        ))
        await sql_store.add_fetch_failure(FetchFailure(run_id=run.id, url="https://example.com/down", kind="timeout"))

        corpus = await sql_store.load_corpus(run.id)

        assert [p.url for p in corpus.pages] == [home.url, about.url]
        assert corpus.pages[0].headers == {"content-type": "text/html"}
        assert corpus.pages[1].depth == 1
        assert corpus.contents[0].keyword_density == {"coffee": 4.5}
        assert [link.link_type for link in corpus.links] == [LinkType.INTERNAL, LinkType.EXTERNAL]
        assert corpus.images[0].alt == "A"
        assert corpus.robots[0].sitemap_urls == ["https://example.com/sitemap.xml"]
        assert corpus.sitemaps[0].entries[0].priority == 0.8
        assert corpus.failed_urls == {"https://example.com/down"}
        assert corpus.html_pages()[0][1].title == "Home"

    @pytest.mark.asyncio
    async def test_content_for_unknown_page(self, sql_store):
        with pytest.raises(KeyError):
            await sql_store.add_page_content(PageContent(page_id=make_run().id))


# ─────────────────────────────────────────────
# Issues and clusters
# ─────────────────────────────────────────────

class TestAnalysisOutput:

    @pytest.mark.asyncio
    async def test_issues_ranked_filtered_and_paged(self, sql_store):
        run = make_run()
        await sql_store.create_run(run)
        issues = [
            issue(Severity.LOW, IssueCategory.AI, IssueType.MISSING_STRUCTURED_DATA, "https://example.com/a"),
            issue(Severity.CRITICAL, IssueCategory.TECHNICAL, IssueType.MISSING_TITLE, "https://example.com/a"),
            issue(Severity.HIGH, IssueCategory.CONTENT, IssueType.MISSING_H1, "https://example.com/b"),
            issue(Severity.HIGH, IssueCategory.CONTENT, IssueType.MISSING_H1, "https://example.com/a"),
        ]
        await sql_store.replace_issues(run.id, issues)

        ranked = await sql_store.list_issues(run.id)
        assert [(i.type, i.page_url) for i in ranked] == [
            (IssueType.MISSING_TITLE, "https://example.com/a"),
            (IssueType.MISSING_H1, "https://example.com/a"),
            (IssueType.MISSING_H1, "https://example.com/b"),
            (IssueType.MISSING_STRUCTURED_DATA, "https://example.com/a"),
        ]
        assert ranked[0].data == {"url": "https://example.com/a"}
        assert ranked[0].run_id == run.id

        high = await sql_store.list_issues(run.id, severity=Severity.HIGH)
        assert len(high) == 2
        assert await sql_store.count_issues(run.id, category=IssueCategory.CONTENT) == 2
        assert await sql_store.count_issues(run.id) == 4

        page_two = await sql_store.list_issues(run.id, offset=2, limit=2)
        assert [i.id for i in page_two] == [i.id for i in ranked[2:]]

    @pytest.mark.asyncio
    async def test_replace_issues_discards_previous(self, sql_store):
        run = make_run()
        await sql_store.create_run(run)
        first = issue(Severity.LOW, IssueCategory.AI, IssueType.MISSING_STRUCTURED_DATA, "https://example.com/")
        second = issue(Severity.HIGH, IssueCategory.CONTENT, IssueType.MISSING_H1, "https://example.com/")

        await sql_store.replace_issues(run.id, [first])
        await sql_store.replace_issues(run.id, [second])

        assert [i.id for i in await sql_store.list_issues(run.id)] == [second.id]

    @pytest.mark.asyncio
    async def test_normalize_priorities(self, sql_store):
        run = make_run()
        await sql_store.create_run(run)
        skewed = issue(Severity.CRITICAL, IssueCategory.TECHNICAL, IssueType.MISSING_TITLE, "https://example.com/")
        skewed = skewed.model_copy(update={"priority_score": 1.0})
        await sql_store.replace_issues(run.id, [skewed])

        assert await sql_store.normalize_priorities(run.id) == 1
        (stored,) = await sql_store.list_issues(run.id)
        assert stored.priority_score == pytest.approx(87.0)

    @pytest.mark.asyncio
    async def test_clusters_keep_order(self, sql_store):
        run = make_run()
        await sql_store.create_run(run)
        page = page_for(run, "/")
        clusters = [
            ContentCluster(name="zebra", topic="Zebra", page_ids=[page.id], page_urls=[page.url], page_count=6,
                           opportunity_level=OpportunityLevel.MEDIUM),
            ContentCluster(name="apple", topic="Apple", page_count=2),
        ]
        await sql_store.replace_clusters(run.id, clusters)

        stored = await sql_store.list_clusters(run.id)
        assert [c.name for c in stored] == ["zebra", "apple"]
        assert stored[0].page_ids == [page.id]
        assert stored[0].opportunity_level == OpportunityLevel.MEDIUM
        assert stored[0].run_id == run.id


# ─────────────────────────────────────────────
# Events
# ─────────────────────────────────────────────

class TestEvents:

    @pytest.mark.asyncio
    async def test_recent_events_oldest_first(self, sql_store):
        run = make_run()
        await sql_store.create_run(run)
        for i in range(5):
            await sql_store.add_event(RunEvent(run_id=run.id, step=RunStep.INIT, message=f"event {i}", data={"i": i}))

        events = await sql_store.recent_events(run.id, 3)
        assert [e.message for e in events] == ["event 2", "event 3", "event 4"]
        assert events[0].data == {"i": 2}
        assert await sql_store.recent_events(run.id, 0) == []

    @pytest.mark.asyncio
    async def test_latest_error(self, sql_store):
        run = make_run()
        await sql_store.create_run(run)
        assert await sql_store.latest_error(run.id) is None

        await sql_store.add_event(RunEvent(run_id=run.id, step=RunStep.ERROR, level=EventLevel.ERROR, message="first"))
        await sql_store.add_event(RunEvent(run_id=run.id, step=RunStep.ERROR, level=EventLevel.ERROR, message="second"))
        await sql_store.add_event(RunEvent(run_id=run.id, step=RunStep.COMPLETE, message="later info"))

        error = await sql_store.latest_error(run.id)
        assert error.message == "second"
        assert error.level == EventLevel.ERROR
