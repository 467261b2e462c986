"""
Tests for issue scoring, ranking and content clustering.
"""

import uuid

import pytest
from conftest import make_run

from sitescope.core import rule_engine
from sitescope.core.rule_engine import (
    calculate_effort_score,
    calculate_impact_score,
    calculate_priority_score,
    validate_score_tables,
)
from sitescope.engines.base import (
    Corpus,
    EngineResult,
    EngineStatus,
    Issue,
    IssueCategory,
    IssueType,
    OpportunityLevel,
    PageContent,
    PageRecord,
    Severity,
)
from sitescope.engines.clustering.engine import ClusteringEngine, cluster_token, opportunity_level
from sitescope.engines.scoring.engine import ScoringEngine, rank_issues, score_issue


def make_issue(
    issue_type: IssueType = IssueType.MISSING_H1,
    category: IssueCategory = IssueCategory.CONTENT,
    severity: Severity = Severity.HIGH,
    page_url: str | None = "https://example.com/",
    description: str = "desc",
) -> Issue:
    return Issue(
        type=issue_type,
        category=category,
        severity=severity,
        title=issue_type.value,
        description=description,
        page_url=page_url,
    )


def engine_result(issues: list[Issue], status: EngineStatus = EngineStatus.SUCCESS, name: str = "technical") -> EngineResult:
    return EngineResult(engine_name=name, run_id=uuid.uuid4(), status=status, issues=issues)


# ─────────────────────────────────────────────
# Score formulas
# ─────────────────────────────────────────────

class TestScoreFormulas:

    @pytest.mark.parametrize("severity,category,expected", [
        (Severity.CRITICAL, IssueCategory.TECHNICAL, 90),
        (Severity.LOW, IssueCategory.PERFORMANCE, 23),
        (Severity.HIGH, IssueCategory.ACCESSIBILITY, 53),
        (Severity.MEDIUM, IssueCategory.CONTENT, 40),
        (Severity.LOW, IssueCategory.AI, 15),
    ])
    def test_impact(self, severity, category, expected):
        assert calculate_impact_score(severity, category) == expected

    def test_effort_table(self):
        assert calculate_effort_score(IssueType.MISSING_TITLE) == 20
        assert calculate_effort_score(IssueType.LOW_EAT_SCORE) == 80
        assert calculate_effort_score(IssueType.GENERIC_TITLE) == 50

    def test_priority(self):
        assert calculate_priority_score(90, 20) == pytest.approx(87.0)
        assert calculate_priority_score(0, 100) == pytest.approx(0.0)
        assert calculate_priority_score(100, 0) == pytest.approx(100.0)

    def test_score_tables_complete(self):
        validate_score_tables()

    def test_missing_table_entry_fails_fast(self, monkeypatch):
        effort = dict(rule_engine.EFFORT_SCORES)
        del effort[IssueType.SLOW_PAGE]
        monkeypatch.setattr(rule_engine, "EFFORT_SCORES", effort)
        with pytest.raises(RuntimeError, match="effort:slow_page"):
            validate_score_tables()


# ─────────────────────────────────────────────
# Scoring engine
# ─────────────────────────────────────────────

class TestScoringEngine:

    def test_score_issue(self):
        scored = score_issue(make_issue(IssueType.MISSING_TITLE, IssueCategory.TECHNICAL, Severity.CRITICAL))
        assert scored.impact_score == 90
        assert scored.effort_score == 20
        assert scored.priority_score == pytest.approx(87.0)

    def test_ranked_by_priority_descending(self):
        issues = ScoringEngine().score([
            engine_result([
                make_issue(IssueType.MISSING_STRUCTURED_DATA, IssueCategory.AI, Severity.LOW),
                make_issue(IssueType.MISSING_TITLE, IssueCategory.TECHNICAL, Severity.CRITICAL),
                make_issue(IssueType.MISSING_H1, IssueCategory.CONTENT, Severity.HIGH),
            ])
        ])
        assert [i.type for i in issues] == [
            IssueType.MISSING_TITLE,
            IssueType.MISSING_H1,
            IssueType.MISSING_STRUCTURED_DATA,
        ]
        priorities = [i.priority_score for i in issues]
        assert priorities == sorted(priorities, reverse=True)

    def test_ties_broken_by_category_type_url_description(self):
        a = make_issue(page_url="https://example.com/b")
        b = make_issue(page_url="https://example.com/a", description="z")
        c = make_issue(page_url="https://example.com/a", description="a")
        d = make_issue(page_url=None)
        ranked = rank_issues([score_issue(i) for i in (a, b, c, d)])
        assert [(i.page_url, i.description) for i in ranked] == [
            (None, "desc"),
            ("https://example.com/a", "a"),
            ("https://example.com/a", "z"),
            ("https://example.com/b", "desc"),
        ]

    def test_failed_engine_skipped(self):
        issues = ScoringEngine().score([
            engine_result([make_issue()], name="content"),
            engine_result([make_issue(IssueType.MISSING_TITLE, IssueCategory.TECHNICAL)], status=EngineStatus.FAILED),
        ])
        assert [i.type for i in issues] == [IssueType.MISSING_H1]

    def test_partial_engine_issues_kept(self):
        issues = ScoringEngine().score([engine_result([make_issue()], status=EngineStatus.PARTIAL)])
        assert len(issues) == 1

    def test_rescoring_is_reproducible(self):
        results = [
            engine_result([
                make_issue(IssueType.SLOW_PAGE, IssueCategory.PERFORMANCE, Severity.MEDIUM),
                make_issue(IssueType.ORPHAN_PAGE, IssueCategory.CONTENT, Severity.MEDIUM),
            ])
        ]
        first = ScoringEngine().score(results)
        second = ScoringEngine().score(results)
        strip = {"id", "created_at"}
        assert [i.model_dump(exclude=strip) for i in first] == [i.model_dump(exclude=strip) for i in second]

    def test_no_issues(self):
        assert ScoringEngine().score([]) == []


# ─────────────────────────────────────────────
# Clustering
# ─────────────────────────────────────────────

def corpus_with_titles(*titles: str) -> Corpus:
    run = make_run()
    corpus = Corpus(run=run)
    for i, title in enumerate(titles):
        page = PageRecord(run_id=run.id, url=f"https://example.com/{i}", status_code=200, content_type="text/html")
        corpus.pages.append(page)
        corpus.contents.append(PageContent(page_id=page.id, title=title))
    return Corpus.model_validate(corpus.model_dump())


class TestClustering:

    def test_cluster_token(self):
        assert cluster_token("The Coffee Guide") == "coffee"
        assert cluster_token("A to Z") is None
        assert cluster_token("") is None

    @pytest.mark.parametrize("size,level", [
        (2, OpportunityLevel.LOW),
        (5, OpportunityLevel.MEDIUM),
        (9, OpportunityLevel.MEDIUM),
        (10, OpportunityLevel.HIGH),
    ])
    def test_opportunity_level(self, size, level):
        assert opportunity_level(size) == level

    def test_groups_by_first_significant_token(self):
        corpus = corpus_with_titles(
            "Coffee beans explained",
            "coffee: grinders",
            "Brewing basics",
            "Brewing with a press",
            "Brewing cold",
            "Singleton page",
        )
        clusters = ClusteringEngine().cluster(corpus)
        assert [(c.name, c.page_count) for c in clusters] == [("brewing", 3), ("coffee", 2)]
        assert clusters[1].topic == "Coffee"
        assert clusters[1].page_urls == ["https://example.com/0", "https://example.com/1"]
        assert all(c.run_id == corpus.run.id for c in clusters)

    def test_ties_ordered_by_name(self):
        corpus = corpus_with_titles("Zebra one", "Zebra two", "Apple one", "Apple two")
        assert [c.name for c in ClusteringEngine().cluster(corpus)] == ["apple", "zebra"]

    def test_large_cluster_is_high_opportunity(self):
        corpus = corpus_with_titles(*[f"Recipes part {i}" for i in range(10)])
        (cluster,) = ClusteringEngine().cluster(corpus)
        assert cluster.opportunity_level == OpportunityLevel.HIGH
