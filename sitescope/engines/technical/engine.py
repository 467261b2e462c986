"""
Technical SEO Engine

Analyzes:
- Duplicate, missing and badly sized titles and meta descriptions
- 4xx / 5xx responses and followed redirects
- Broken internal links and, when probed, broken external links
- Parameterised URLs without a canonical
- noindex pages that still receive internal links
- Sitemap URLs that were not crawled or returned an error
- Slow and heavy pages (performance)
"""

from __future__ import annotations

from collections import defaultdict

import structlog

from sitescope.core.rule_engine import IssueDraft, registry
from sitescope.engines.base import (
    AnalysisEngine,
    Corpus,
    IssueCategory,
    IssueType,
    LinkType,
    PageRecord,
    Severity,
)
from sitescope.engines.crawler.frontier import normalize_url

logger = structlog.get_logger(__name__)

TITLE_MIN, TITLE_MAX = 30, 60
META_MIN, META_MAX = 120, 160
SLOW_PAGE_MS, VERY_SLOW_PAGE_MS = 3000, 5000
MIB = 1024 * 1024


class TechnicalSEOEngine(AnalysisEngine):
    """Server-level and protocol-level checks, plus page performance."""

    ENGINE_NAME = "technical"
    CATEGORIES = (IssueCategory.TECHNICAL, IssueCategory.PERFORMANCE)


def _ok_pages(corpus: Corpus) -> list[PageRecord]:
    return [p for p in corpus.pages if p.is_internal and p.status_code == 200]


def _is_broken(corpus: Corpus, url: str) -> tuple[bool, int | None]:
    target = normalize_url(url)
    page = corpus.pages_by_url.get(target)
    if page is not None:
        return page.status_code >= 400, page.status_code
    return target in corpus.failed_urls, None


# ─────────────────────────────────────────────
# Titles
# ─────────────────────────────────────────────

@registry.rule(IssueType.DUPLICATE_TITLES, IssueCategory.TECHNICAL)
def duplicate_titles(corpus: Corpus) -> list[IssueDraft]:
    groups: dict[str, list[str]] = defaultdict(list)
    for page, content in corpus.html_pages():
        if content.title:
            groups[content.title].append(page.url)

    return [
        IssueDraft(
            severity=Severity.HIGH,
            title="Duplicate titles",
            description=f"The title '{title}' appears on {len(urls)} pages",
            recommendation="Every page should have a unique, descriptive title",
            data={"title": title, "count": len(urls), "urls": urls},
        )
        for title, urls in groups.items()
        if len(urls) > 1
    ]


@registry.rule(IssueType.TITLE_LENGTH, IssueCategory.TECHNICAL)
def title_length(corpus: Corpus) -> list[IssueDraft]:
    drafts = []
    for page, content in corpus.html_pages():
        length = content.title_length
        if not content.title or TITLE_MIN <= length <= TITLE_MAX:
            continue
        severity = Severity.HIGH if length < 20 or length > 70 else Severity.MEDIUM
        problem = "too short" if length < TITLE_MIN else "too long"
        drafts.append(IssueDraft(
            severity=severity,
            title=f"Title {problem}",
            description=f"Page {page.url} has a {length}-character title",
            recommendation=f"Titles should be {TITLE_MIN}-{TITLE_MAX} characters to display fully in search results",
            page=page,
            data={"url": page.url, "title_length": length},
        ))
    return drafts


@registry.rule(IssueType.MISSING_TITLE, IssueCategory.TECHNICAL)
def missing_title(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.CRITICAL,
            title="Missing title",
            description=f"Page {page.url} has no title",
            recommendation="Add a <title> element with a unique description of the page",
            page=page,
            data={"url": page.url},
        )
        for page, content in corpus.html_pages()
        if page.is_html and not content.title
    ]


# ─────────────────────────────────────────────
# Meta descriptions
# ─────────────────────────────────────────────

@registry.rule(IssueType.MISSING_META_DESCRIPTION, IssueCategory.TECHNICAL)
def missing_meta_description(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.MEDIUM,
            title="Missing meta description",
            description=f"Page {page.url} has no meta description",
            recommendation=f"Add a meta description of {META_MIN}-{META_MAX} characters",
            page=page,
            data={"url": page.url},
        )
        for page, content in corpus.html_pages()
        if page.is_html and not content.meta_description
    ]


@registry.rule(IssueType.DUPLICATE_META_DESCRIPTIONS, IssueCategory.TECHNICAL)
def duplicate_meta_descriptions(corpus: Corpus) -> list[IssueDraft]:
    groups: dict[str, list[str]] = defaultdict(list)
    for page, content in corpus.html_pages():
        if content.meta_description:
            groups[content.meta_description].append(page.url)

    return [
        IssueDraft(
            severity=Severity.MEDIUM,
            title="Duplicate meta descriptions",
            description=f"The same meta description appears on {len(urls)} pages",
            recommendation="Every page should have a unique meta description",
            data={"meta_description": description[:100], "count": len(urls), "urls": urls},
        )
        for description, urls in groups.items()
        if len(urls) > 1
    ]


@registry.rule(IssueType.META_DESCRIPTION_LENGTH, IssueCategory.TECHNICAL)
def meta_description_length(corpus: Corpus) -> list[IssueDraft]:
    drafts = []
    for page, content in corpus.html_pages():
        length = content.meta_description_length
        if not content.meta_description or META_MIN <= length <= META_MAX:
            continue
        severity = Severity.MEDIUM if length < 50 or length > 200 else Severity.LOW
        problem = "too short" if length < META_MIN else "too long"
        drafts.append(IssueDraft(
            severity=severity,
            title=f"Meta description {problem}",
            description=f"Page {page.url} has a {length}-character meta description",
            recommendation=f"Meta descriptions should be {META_MIN}-{META_MAX} characters",
            page=page,
            data={"url": page.url, "length": length},
        ))
    return drafts


# ─────────────────────────────────────────────
# Status codes and redirects
# ─────────────────────────────────────────────

@registry.rule(IssueType.CLIENT_ERROR_PAGE, IssueCategory.TECHNICAL)
def client_error_page(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.HIGH,
            title=f"Client error ({page.status_code})",
            description=f"Page {page.url} returns HTTP {page.status_code}",
            recommendation="Fix the link or add a 301 redirect to the right URL",
            page=page,
            data={"url": page.url, "status_code": page.status_code},
        )
        for page in corpus.pages
        if page.is_internal and 400 <= page.status_code < 500
    ]


@registry.rule(IssueType.SERVER_ERROR, IssueCategory.TECHNICAL)
def server_error(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.CRITICAL,
            title="Server error",
            description=f"Page {page.url} returns HTTP {page.status_code}",
            recommendation="Investigate and fix the server error. These pages cannot be indexed",
            page=page,
            data={"url": page.url, "status_code": page.status_code},
        )
        for page in corpus.pages
        if page.is_internal and page.status_code >= 500
    ]


@registry.rule(IssueType.REDIRECT_CHAIN, IssueCategory.TECHNICAL)
def redirect_chain(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.MEDIUM if page.redirect_count > 1 else Severity.LOW,
            title="Redirect chain" if page.redirect_count > 1 else "Redirect",
            description=f"Page {page.url} redirects to {page.redirect_url} in {page.redirect_count} hop(s)",
            recommendation="Check the redirect is needed and point internal links straight at the final URL",
            page=page,
            data={"url": page.url, "redirect_url": page.redirect_url, "hops": page.redirect_count},
        )
        for page in corpus.pages
        if page.is_internal and page.redirect_count > 0
    ]


# ─────────────────────────────────────────────
# Links
# ─────────────────────────────────────────────

@registry.rule(IssueType.BROKEN_INTERNAL_LINK, IssueCategory.TECHNICAL)
def broken_internal_link(corpus: Corpus) -> list[IssueDraft]:
    drafts = []
    seen: set[tuple] = set()
    for link in corpus.links_of_type(LinkType.INTERNAL):
        source = corpus.pages_by_id.get(link.source_page_id)
        if source is None:
            continue
        key = (source.id, normalize_url(link.target_url))
        if key in seen:
            continue
        seen.add(key)

        broken, status = _is_broken(corpus, link.target_url)
        if not broken:
            continue
        drafts.append(IssueDraft(
            severity=Severity.MEDIUM,
            title="Broken internal link",
            description=f"Link from {source.url} to {link.target_url} is broken",
            recommendation="Fix the target URL or remove the link",
            page=source,
            data={"source_url": source.url, "target_url": link.target_url, "status_code": status},
        ))
    return drafts


@registry.rule(IssueType.BROKEN_EXTERNAL_LINK, IssueCategory.TECHNICAL)
def broken_external_link(corpus: Corpus) -> list[IssueDraft]:
    if not corpus.run.include_external:
        return []

    sources: dict[str, list[str]] = defaultdict(list)
    for link in corpus.links_of_type(LinkType.EXTERNAL):
        source = corpus.pages_by_id.get(link.source_page_id)
        if source is not None and source.url not in sources[normalize_url(link.target_url)]:
            sources[normalize_url(link.target_url)].append(source.url)

    drafts = []
    for target, source_urls in sources.items():
        broken, status = _is_broken(corpus, target)
        if not broken:
            continue
        drafts.append(IssueDraft(
            severity=Severity.LOW,
            title="Broken external link",
            description=f"External URL {target} is linked from {len(source_urls)} page(s) and is unreachable",
            recommendation="Update or remove links to the external URL",
            data={"url": target, "status_code": status, "sources": source_urls},
        ))
    return drafts


@registry.rule(IssueType.MISSING_CANONICAL, IssueCategory.TECHNICAL)
def missing_canonical(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.LOW,
            title="Missing canonical",
            description=f"Parameterised page {page.url} has no canonical",
            recommendation="Add a canonical link to avoid duplicate content",
            page=page,
            data={"url": page.url},
        )
        for page in _ok_pages(corpus)
        if page.is_html and "?" in page.url and not page.canonical_url
    ]


@registry.rule(IssueType.BLOCKED_BUT_LINKED, IssueCategory.TECHNICAL)
def blocked_but_linked(corpus: Corpus) -> list[IssueDraft]:
    blocked = {page.url: page for page in corpus.pages if page.is_internal and not page.is_indexable}
    if not blocked:
        return []

    inbound: dict[str, set[str]] = defaultdict(set)
    for link in corpus.links_of_type(LinkType.INTERNAL):
        target = normalize_url(link.target_url)
        source = corpus.pages_by_id.get(link.source_page_id)
        if target in blocked and source is not None and source.url != target:
            inbound[target].add(source.url)

    return [
        IssueDraft(
            severity=Severity.MEDIUM,
            title="noindex page receives internal links",
            description=f"Page {url} is marked noindex but is linked from {len(inbound[url])} page(s)",
            recommendation="Remove links to noindex pages or allow indexing",
            page=page,
            data={"url": url, "inbound_links": len(inbound[url])},
        )
        for url, page in blocked.items()
        if inbound[url]
    ]


@registry.rule(IssueType.SITEMAP_ERROR_URL, IssueCategory.TECHNICAL)
def sitemap_error_url(corpus: Corpus) -> list[IssueDraft]:
    locs = list(dict.fromkeys(entry.loc for record in corpus.sitemaps for entry in record.entries))
    drafts = []
    for loc in locs:
        page = corpus.pages_by_url.get(normalize_url(loc))
        if page is not None and page.status_code < 400:
            continue
        reason = f"returns HTTP {page.status_code}" if page is not None else "was not found by the crawl"
        drafts.append(IssueDraft(
            severity=Severity.MEDIUM,
            title="Sitemap URL with error",
            description=f"URL {loc} is listed in the sitemap but {reason}",
            recommendation="Fix the URL or remove it from the sitemap",
            page=page,
            data={"url": loc, "status_code": page.status_code if page else None},
        ))
    return drafts


# ─────────────────────────────────────────────
# Performance
# ─────────────────────────────────────────────

@registry.rule(IssueType.SLOW_PAGE, IssueCategory.PERFORMANCE)
def slow_page(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.HIGH if page.load_time_ms > VERY_SLOW_PAGE_MS else Severity.MEDIUM,
            title="Slow page",
            description=f"Page {page.url} loads in {round(page.load_time_ms)}ms",
            recommendation="Optimize images, minify CSS/JS, use caching and a CDN",
            page=page,
            data={"url": page.url, "load_time_ms": page.load_time_ms},
        )
        for page in _ok_pages(corpus)
        if page.load_time_ms > SLOW_PAGE_MS
    ]


@registry.rule(IssueType.HEAVY_PAGE, IssueCategory.PERFORMANCE)
def heavy_page(corpus: Corpus) -> list[IssueDraft]:
    drafts = []
    for page in _ok_pages(corpus):
        if page.size_bytes <= MIB:
            continue
        size_mb = round(page.size_bytes / MIB, 2)
        drafts.append(IssueDraft(
            severity=Severity.MEDIUM if page.size_bytes > 2 * MIB else Severity.LOW,
            title="Heavy page",
            description=f"Page {page.url} weighs {size_mb}MB",
            recommendation="Optimize images, compress markup and drop unneeded resources",
            page=page,
            data={"url": page.url, "size_mb": size_mb},
        ))
    return drafts
