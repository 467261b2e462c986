"""
Progress and result views over a run.

Both builders are pure: the caller loads the run, events, corpus, issues and
clusters from the store and passes them in.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from sitescope.engines.ai.engine import detect_shapes, eeat_score
from sitescope.engines.base import (
    ContentCluster,
    Corpus,
    CrawlRun,
    Issue,
    IssueCategory,
    IssueType,
    RunEvent,
    RunStatus,
    RunStep,
    Severity,
    utcnow,
)

PAGE_DETAIL_LIMIT = 100
PERFORMANCE_BUCKETS: list[tuple[str, float, float]] = [
    ("<1s", 0, 1000),
    ("1-2s", 1000, 2000),
    ("2-3s", 2000, 3000),
    ("3-5s", 3000, 5000),
    (">5s", 5000, float("inf")),
]


# ─────────────────────────────────────────────
# Progress
# ─────────────────────────────────────────────

class RunProgress(BaseModel):
    run_id: str
    status: RunStatus
    progress: float
    eta_seconds: float | None = None
    events: list[RunEvent] = Field(default_factory=list)
    error: str | None = None
    summary: dict[str, Any] | None = None


def estimate_eta(run: CrawlRun, now: datetime | None = None) -> float | None:
    """elapsed / progress x 100 - elapsed, for running runs only."""
    if run.status != RunStatus.RUNNING or run.started_at is None or run.progress <= 0:
        return None
    now = now or utcnow()
    started_at = run.started_at
    if started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=timezone.utc)
    elapsed = (now - started_at).total_seconds()
    return max(0.0, round(elapsed / run.progress * 100 - elapsed, 1))


def build_progress(
    run: CrawlRun,
    events: list[RunEvent],
    latest_error: RunEvent | None = None,
    now: datetime | None = None,
) -> RunProgress:
    summary = None
    for event in reversed(events):
        if event.step == RunStep.REPORTS_COMPLETE:
            summary = event.data
            break

    return RunProgress(
        run_id=str(run.id),
        status=run.status,
        progress=round(run.progress, 2),
        eta_seconds=estimate_eta(run, now),
        events=events,
        error=latest_error.message if run.status == RunStatus.FAILED and latest_error else None,
        summary=summary,
    )


# ─────────────────────────────────────────────
# Results
# ─────────────────────────────────────────────

class ResultSummary(BaseModel):
    pages_ok: int
    total_pages: int
    warnings: int
    errors: int
    opportunities: int
    duration_seconds: float | None = None


class RunResults(BaseModel):
    run_id: str
    url: str
    summary: ResultSummary
    charts: dict[str, dict[str, int]]
    issues_by_severity: dict[str, int]
    issues_by_category: dict[str, int]
    issues: list[Issue]
    technical: dict[str, Any]
    content: dict[str, Any]
    ai: dict[str, Any]
    clusters: list[ContentCluster]


def _summary(corpus: Corpus, issues: list[Issue]) -> ResultSummary:
    by_severity = Counter(issue.severity for issue in issues)
    run = corpus.run
    duration = None
    if run.started_at and run.finished_at:
        duration = round((run.finished_at - run.started_at).total_seconds(), 2)
    return ResultSummary(
        pages_ok=sum(1 for page in corpus.pages if page.status_code == 200),
        total_pages=len(corpus.pages),
        warnings=by_severity[Severity.LOW] + by_severity[Severity.MEDIUM],
        errors=by_severity[Severity.HIGH] + by_severity[Severity.CRITICAL],
        opportunities=len(issues),
        duration_seconds=duration,
    )


def _charts(corpus: Corpus) -> dict[str, dict[str, int]]:
    status = Counter(str(page.status_code) for page in corpus.pages)
    performance = {label: 0 for label, _, _ in PERFORMANCE_BUCKETS}
    for page in corpus.pages:
        if page.status_code != 200:
            continue
        for label, low, high in PERFORMANCE_BUCKETS:
            if low <= page.load_time_ms < high:
                performance[label] += 1
                break
    return {
        "status_distribution": dict(sorted(status.items())),
        "performance_distribution": performance,
    }


def _issue_titles(issues: list[Issue], category: IssueCategory) -> dict[Any, list[str]]:
    titles: dict[Any, list[str]] = {}
    for issue in issues:
        if issue.page_id is None or issue.category != category:
            continue
        page_titles = titles.setdefault(issue.page_id, [])
        if issue.title not in page_titles:
            page_titles.append(issue.title)
    return titles


def _count_types(issues: list[Issue], *types: IssueType) -> dict[str, int]:
    counts = Counter(issue.type for issue in issues)
    return {issue_type.value: counts[issue_type] for issue_type in types}


def _technical(corpus: Corpus, issues: list[Issue]) -> dict[str, Any]:
    titles = _issue_titles(issues, IssueCategory.TECHNICAL)
    pages = []
    for page in sorted(corpus.pages, key=lambda p: (-p.load_time_ms, p.url))[:PAGE_DETAIL_LIMIT]:
        content = corpus.content_for(page)
        pages.append({
            "url": page.url,
            "status_code": page.status_code,
            "load_time_ms": page.load_time_ms,
            "size_bytes": page.size_bytes,
            "title": content.title if content else None,
            "title_length": content.title_length if content else None,
            "meta_description_length": content.meta_description_length if content else None,
            "is_indexable": page.is_indexable,
            "issues": titles.get(page.id, []),
        })
    summary = _count_types(
        issues,
        IssueType.DUPLICATE_TITLES,
        IssueType.MISSING_META_DESCRIPTION,
        IssueType.CLIENT_ERROR_PAGE,
        IssueType.SERVER_ERROR,
        IssueType.SLOW_PAGE,
        IssueType.BROKEN_INTERNAL_LINK,
        IssueType.MISSING_CANONICAL,
    )
    return {"summary": summary, "pages": pages}


def _content(corpus: Corpus, issues: list[Issue]) -> dict[str, Any]:
    titles = _issue_titles(issues, IssueCategory.CONTENT)
    html_pages = sorted(corpus.html_pages(), key=lambda pair: (pair[1].word_count, pair[0].url))
    pages = [
        {
            "url": page.url,
            "title": content.title,
            "title_length": content.title_length,
            "h1": content.h1,
            "word_count": content.word_count,
            "main_keywords": content.main_keywords,
            "opportunities": titles.get(page.id, []),
        }
        for page, content in html_pages[:PAGE_DETAIL_LIMIT]
    ]
    opportunities = _count_types(
        issues,
        IssueType.MISSING_H1,
        IssueType.SHORT_CONTENT,
        IssueType.GENERIC_TITLE,
        IssueType.ORPHAN_PAGE,
        IssueType.FEATURED_SNIPPET_OPPORTUNITY,
    )
    return {"opportunities": opportunities, "pages": pages}


def _ai(corpus: Corpus, issues: list[Issue]) -> dict[str, Any]:
    shapes: Counter[str] = Counter()
    schema_types: Counter[str] = Counter()
    scores = []
    for _, content in corpus.html_pages():
        shapes.update(detect_shapes(content.title, content.h1))
        schema_types.update(content.structured_data_types)
        scores.append(eeat_score(content))

    def average(attr: str) -> int:
        if not scores:
            return 0
        return round(sum(getattr(score, attr) for score in scores) / len(scores))

    return {
        "content_shapes": {shape: shapes[shape] for shape in ("faq", "howto", "comparison", "definition")},
        "opportunities": _count_types(
            issues,
            IssueType.FAQ_SCHEMA_OPPORTUNITY,
            IssueType.HOWTO_SCHEMA_OPPORTUNITY,
            IssueType.COMPARISON_CONTENT_OPPORTUNITY,
            IssueType.MISSING_STRUCTURED_DATA,
            IssueType.HIGH_AI_POTENTIAL,
        ),
        "structured_data": {
            "pages_with_schema": sum(1 for _, content in corpus.html_pages() if content.structured_data_types),
            "types": dict(sorted(schema_types.items())),
        },
        "eeat": {
            "experience": average("experience"),
            "expertise": average("expertise"),
            "authoritativeness": average("authoritativeness"),
            "trustworthiness": average("trustworthiness"),
            "total": average("total"),
        },
    }


def build_results(corpus: Corpus, issues: list[Issue], clusters: list[ContentCluster]) -> RunResults:
    """Full result payload of a completed run. `issues` must already be ranked."""
    return RunResults(
        run_id=str(corpus.run.id),
        url=corpus.run.url,
        summary=_summary(corpus, issues),
        charts=_charts(corpus),
        issues_by_severity={s.value: sum(1 for i in issues if i.severity == s) for s in Severity},
        issues_by_category={c.value: sum(1 for i in issues if i.category == c) for c in IssueCategory},
        issues=issues,
        technical=_technical(corpus, issues),
        content=_content(corpus, issues),
        ai=_ai(corpus, issues),
        clusters=clusters,
    )
