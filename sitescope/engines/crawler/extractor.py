"""
Content extraction from raw HTML.

Uses BeautifulSoup with the lenient lxml parser: broken markup yields
whatever could be recovered, and a parser failure degrades to an empty
extraction instead of failing the page.
"""

from __future__ import annotations

import json
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

import structlog
from bs4 import BeautifulSoup

from sitescope.core.errors import ParseError
from sitescope.engines.base import LinkType
from sitescope.engines.crawler.frontier import URLNormalizer

logger = structlog.get_logger(__name__)

NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]
SKIPPED_HREF_PREFIXES = ("javascript:", "data:")
TOKEN_STRIP = "".join(
    sorted(set("!\"#$%&'()*+,-./:;<=>?@[\\]^_`{|}~" + "«»“”‘’…–—¿¡"))
)
MIN_TOKEN_LENGTH = 4
KEYWORD_LIMIT = 10
PRIMARY_KEYWORD_LIMIT = 5


# ─────────────────────────────────────────────
# Text Utilities
# ─────────────────────────────────────────────

def tokenize(text: str) -> list[str]:
    """Case-folded tokens with surrounding punctuation stripped, longer than 3 chars."""
    tokens = []
    for raw in text.lower().split():
        token = raw.strip(TOKEN_STRIP)
        if len(token) >= MIN_TOKEN_LENGTH:
            tokens.append(token)
    return tokens


def keyword_density(tokens: list[str], limit: int = KEYWORD_LIMIT) -> dict[str, float]:
    """
    Top keywords as a percentage of all filtered tokens.
    Counter.most_common keeps first-occurrence order among equal counts.
    """
    if not tokens:
        return {}
    total = len(tokens)
    return {word: round(count / total * 100, 2) for word, count in Counter(tokens).most_common(limit)}


def primary_keywords(title: str, h1: str, limit: int = PRIMARY_KEYWORD_LIMIT) -> list[str]:
    tokens = tokenize(f"{title} {h1}")
    return [word for word, _ in Counter(tokens).most_common(limit)]


def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


def has_noindex(robots_meta: str | None, headers: dict[str, str] | None = None) -> bool:
    if robots_meta and "noindex" in robots_meta.lower():
        return True
    for name, value in (headers or {}).items():
        if name.lower() == "x-robots-tag" and "noindex" in value.lower():
            return True
    return False


# ─────────────────────────────────────────────
# Data Structures
# ─────────────────────────────────────────────

@dataclass
class ExtractedLink:
    target_url: str
    anchor_text: str
    link_type: LinkType
    is_follow: bool
    position: int


@dataclass
class ExtractedImage:
    src: str
    alt: str = ""
    title: str = ""
    loading: str = ""

    @property
    def is_lazy(self) -> bool:
        return self.loading.lower() == "lazy"

    @property
    def has_alt(self) -> bool:
        return bool(self.alt.strip())


@dataclass
class ExtractedPage:
    title: str = ""
    meta_description: str = ""
    h1: str = ""
    heading_counts: dict[str, int] = field(default_factory=lambda: {f"h{i}": 0 for i in range(1, 7)})
    robots_meta: str | None = None
    canonical_url: str | None = None
    structured_data_types: list[str] = field(default_factory=list)
    images: list[ExtractedImage] = field(default_factory=list)
    links: list[ExtractedLink] = field(default_factory=list)
    word_count: int = 0
    keyword_density: dict[str, float] = field(default_factory=dict)
    main_keywords: list[str] = field(default_factory=list)

    @property
    def images_without_alt(self) -> int:
        return sum(1 for image in self.images if not image.has_alt)

    @property
    def internal_links_count(self) -> int:
        return sum(1 for link in self.links if link.link_type == LinkType.INTERNAL)

    @property
    def external_links_count(self) -> int:
        return sum(1 for link in self.links if link.link_type == LinkType.EXTERNAL)


# ─────────────────────────────────────────────
# Extractor
# ─────────────────────────────────────────────

class ContentExtractor:
    """Extracts the content profile, images and links of one HTML page."""

    def __init__(self, domain: str):
        self.domain = domain.lower()

    def extract(self, html: str, source_url: str) -> ExtractedPage:
        try:
            return self._extract(html, source_url)
        except Exception as exc:
            error = ParseError(f"HTML extraction failed: {exc}", source=source_url)
            logger.warning("HTML parse error", url=source_url, error=str(error))
            return ExtractedPage()

    def _extract(self, html: str, source_url: str) -> ExtractedPage:
        soup = BeautifulSoup(html, "lxml")
        page = ExtractedPage()

        title_tag = soup.find("title")
        if title_tag:
            page.title = collapse_whitespace(title_tag.get_text())

        description = soup.find("meta", attrs={"name": re.compile(r"^description$", re.I)})
        if description and description.get("content"):
            page.meta_description = collapse_whitespace(description["content"])

        robots = soup.find("meta", attrs={"name": re.compile(r"^robots$", re.I)})
        if robots and robots.get("content") is not None:
            page.robots_meta = robots["content"].strip()

        canonical = soup.find("link", rel=lambda rel: rel is not None and "canonical" in str(rel).lower())
        if canonical and canonical.get("href"):
            page.canonical_url = urljoin(source_url, canonical["href"].strip())

        for level in range(1, 7):
            headings = soup.find_all(f"h{level}")
            page.heading_counts[f"h{level}"] = len(headings)
            if level == 1 and headings:
                page.h1 = collapse_whitespace(headings[0].get_text(" "))

        page.structured_data_types = self._structured_data_types(soup)
        page.images = self._images(soup)
        page.links = self._links(soup, source_url)

        for tag in soup(NON_CONTENT_TAGS):
            tag.decompose()
        text = soup.get_text(separator=" ")
        page.word_count = len(text.split())
        page.keyword_density = keyword_density(tokenize(text))
        page.main_keywords = primary_keywords(page.title, page.h1)

        return page

    # ── Structured data ───────────────────────

    def _structured_data_types(self, soup: BeautifulSoup) -> list[str]:
        types: list[str] = []

        def collect(node: Any) -> None:
            if isinstance(node, list):
                for item in node:
                    collect(item)
                return
            if not isinstance(node, dict):
                return
            declared = node.get("@type")
            for value in declared if isinstance(declared, list) else [declared]:
                if isinstance(value, str) and value:
                    types.append(value)
            if "@graph" in node:
                collect(node["@graph"])

        for script in soup.find_all("script", attrs={"type": re.compile(r"^application/ld\+json$", re.I)}):
            try:
                collect(json.loads(script.string or ""))
            except ValueError:
                logger.debug("Invalid JSON-LD block skipped")

        for element in soup.find_all(attrs={"itemtype": True}):
            for itemtype in element["itemtype"].split():
                name = itemtype.rstrip("/").rsplit("/", 1)[-1]
                if name:
                    types.append(name)

        return list(dict.fromkeys(types))

    # ── Images ────────────────────────────────

    def _images(self, soup: BeautifulSoup) -> list[ExtractedImage]:
        images = []
        for img in soup.find_all("img", src=True):
            images.append(
                ExtractedImage(
                    src=img["src"].strip(),
                    alt=img.get("alt") or "",
                    title=img.get("title") or "",
                    loading=img.get("loading") or "",
                )
            )
        return images

    # ── Links ─────────────────────────────────

    def classify(self, url: str) -> LinkType:
        return LinkType.INTERNAL if URLNormalizer.is_same_host(url, self.domain) else LinkType.EXTERNAL

    def _links(self, soup: BeautifulSoup, source_url: str) -> list[ExtractedLink]:
        links: list[ExtractedLink] = []
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            lowered = href.lower()
            if not href or href == "#" or lowered.startswith(SKIPPED_HREF_PREFIXES):
                continue

            if lowered.startswith("mailto:"):
                target, link_type = href, LinkType.MAILTO
            elif lowered.startswith("tel:"):
                target, link_type = href, LinkType.TEL
            else:
                target = urljoin(source_url, href)
                link_type = self.classify(target)

            rel = anchor.get("rel") or []
            rel_values = rel if isinstance(rel, list) else str(rel).split()
            is_follow = "nofollow" not in {value.lower() for value in rel_values}

            links.append(
                ExtractedLink(
                    target_url=target,
                    anchor_text=collapse_whitespace(anchor.get_text(" ")),
                    link_type=link_type,
                    is_follow=is_follow,
                    position=len(links),
                )
            )
        return links
