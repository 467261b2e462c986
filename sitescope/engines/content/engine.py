"""
Content Engine

Analyzes per-page content signals:
- H1 presence and uniqueness
- Thin content
- Generic titles
- Orphan pages (no inbound internal links)
- Featured-snippet shaped titles
- Keyword stuffing
- Image alt text (accessibility)
"""

from __future__ import annotations

import re
from collections import defaultdict

import structlog

from sitescope.core.rule_engine import IssueDraft, registry
from sitescope.engines.base import AnalysisEngine, Corpus, IssueCategory, IssueType, LinkType, Severity
from sitescope.engines.crawler.frontier import normalize_url

logger = structlog.get_logger(__name__)

MIN_WORD_COUNT = 300
THIN_WORD_COUNT = 100
KEYWORD_STUFFING_DENSITY = 3.0

GENERIC_TITLE_TERMS = (
    "Home", "Início", "Principal", "Página Inicial",
    "Sobre", "About", "Contato", "Contact",
    "Produto", "Serviço", "Categoria",
)
GENERIC_TITLE_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(term) for term in GENERIC_TITLE_TERMS) + r")\b",
    re.IGNORECASE,
)
SNIPPET_TITLE_PATTERN = re.compile(r"\b(como|what|how|melhores|best|top)\b", re.IGNORECASE)


class ContentEngine(AnalysisEngine):

    ENGINE_NAME = "content"
    CATEGORIES = (IssueCategory.CONTENT, IssueCategory.ACCESSIBILITY)


@registry.rule(IssueType.MISSING_H1, IssueCategory.CONTENT)
def missing_h1(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.HIGH,
            title="Missing H1",
            description=f"Page {page.url} has no H1",
            recommendation="Add a single descriptive H1",
            page=page,
            data={"url": page.url},
        )
        for page, content in corpus.html_pages()
        if content.h1_count == 0 or not content.h1
    ]


@registry.rule(IssueType.MULTIPLE_H1, IssueCategory.CONTENT)
def multiple_h1(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.MEDIUM,
            title="Multiple H1",
            description=f"Page {page.url} has {content.h1_count} H1 elements",
            recommendation="Use exactly one H1 per page",
            page=page,
            data={"url": page.url, "h1_count": content.h1_count},
        )
        for page, content in corpus.html_pages()
        if content.h1_count > 1
    ]


@registry.rule(IssueType.SHORT_CONTENT, IssueCategory.CONTENT)
def short_content(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.HIGH if content.word_count < THIN_WORD_COUNT else Severity.MEDIUM,
            title="Thin content",
            description=f"Page {page.url} has only {content.word_count} words",
            recommendation="Expand the page with relevant, useful information",
            page=page,
            data={"url": page.url, "word_count": content.word_count},
        )
        for page, content in corpus.html_pages()
        if content.word_count < MIN_WORD_COUNT
    ]


@registry.rule(IssueType.GENERIC_TITLE, IssueCategory.CONTENT)
def generic_title(corpus: Corpus) -> list[IssueDraft]:
    drafts = []
    for page, content in corpus.html_pages():
        match = GENERIC_TITLE_PATTERN.search(content.title)
        if not match:
            continue
        drafts.append(IssueDraft(
            severity=Severity.MEDIUM,
            title="Generic title",
            description=f"Page {page.url} has a generic title: {content.title}",
            recommendation="Write a more specific, descriptive title",
            page=page,
            data={"url": page.url, "title": content.title, "term": match.group(1)},
        ))
    return drafts


@registry.rule(IssueType.ORPHAN_PAGE, IssueCategory.CONTENT)
def orphan_page(corpus: Corpus) -> list[IssueDraft]:
    inbound: dict[str, int] = defaultdict(int)
    for link in corpus.links_of_type(LinkType.INTERNAL):
        source = corpus.pages_by_id.get(link.source_page_id)
        target = normalize_url(link.target_url)
        if source is not None and source.url != target:
            inbound[target] += 1

    return [
        IssueDraft(
            severity=Severity.MEDIUM,
            title="Orphan page",
            description=f"No internal links point to page {page.url}",
            recommendation="Link to this page from relevant pages of the site",
            page=page,
            data={"url": page.url},
        )
        for page, _ in corpus.html_pages()
        if page.depth > 0 and inbound[page.url] == 0
    ]


@registry.rule(IssueType.FEATURED_SNIPPET_OPPORTUNITY, IssueCategory.CONTENT)
def featured_snippet_opportunity(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.MEDIUM,
            title="Featured snippet opportunity",
            description=f"Page {page.url} could win a featured snippet",
            recommendation="Structure the content as lists, tables or direct answers",
            page=page,
            data={"url": page.url, "title": content.title},
        )
        for page, content in corpus.html_pages()
        if SNIPPET_TITLE_PATTERN.search(content.title)
    ]


@registry.rule(IssueType.KEYWORD_STUFFING, IssueCategory.CONTENT)
def keyword_stuffing(corpus: Corpus) -> list[IssueDraft]:
    drafts = []
    for page, content in corpus.html_pages():
        stuffed = {word: density for word, density in content.keyword_density.items() if density > KEYWORD_STUFFING_DENSITY}
        if not stuffed:
            continue
        keyword = max(stuffed, key=stuffed.get)
        drafts.append(IssueDraft(
            severity=Severity.MEDIUM,
            title="Possible keyword stuffing",
            description=f"Page {page.url} has a {stuffed[keyword]}% density for '{keyword}'",
            recommendation="Lower the keyword density and vary wording with synonyms",
            page=page,
            data={"url": page.url, "keyword": keyword, "density": stuffed[keyword], "keywords": stuffed},
        ))
    return drafts


@registry.rule(IssueType.IMAGES_WITHOUT_ALT, IssueCategory.ACCESSIBILITY)
def images_without_alt(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.MEDIUM,
            title="Images without alt text",
            description=f"Page {page.url} has {content.images_without_alt} images without alternative text",
            recommendation="Add a descriptive alt attribute to every image",
            page=page,
            data={"url": page.url, "count": content.images_without_alt},
        )
        for page, content in corpus.html_pages()
        if content.images_without_alt > 0
    ]
