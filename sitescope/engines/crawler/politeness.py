"""
Politeness: robots.txt rules and sitemap discovery.

Robots matching:
- Groups are keyed by lowercased user-agent token
- The group matching our agent is checked first, then the `*` group
- Within a group, allow patterns are checked before disallow patterns and the
  first match wins, so `Allow: /a` + `Disallow: /a/b` allows `/a/b`
- Patterns are prefix-anchored and case-insensitive, `*` matches any
  sequence and a trailing `$` anchors the end
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlsplit
from uuid import UUID

import structlog
from bs4 import BeautifulSoup

from sitescope.core.config import get_settings
from sitescope.core.errors import ParseError
from sitescope.engines.base import RobotsRecord, SitemapEntry, SitemapRecord
from sitescope.engines.crawler.fetcher import Fetcher, FetchError

logger = structlog.get_logger(__name__)
settings = get_settings()

SITEMAP_CANDIDATES = ("/sitemap.xml", "/sitemap_index.xml", "/sitemaps.xml")


# ─────────────────────────────────────────────
# Robots.txt Rules
# ─────────────────────────────────────────────

@dataclass
class RobotsGroup:
    allow: list[str] = field(default_factory=list)
    disallow: list[str] = field(default_factory=list)
    crawl_delay: float | None = None


def _compile_pattern(pattern: str) -> re.Pattern[str]:
    anchored = pattern.endswith("$")
    if anchored:
        pattern = pattern[:-1]
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile("^" + regex + ("$" if anchored else ""), re.IGNORECASE)


def pattern_matches(pattern: str, path: str) -> bool:
    return _compile_pattern(pattern).match(path) is not None


class RobotsRules:
    """Parsed robots.txt directives."""

    def __init__(self, groups: dict[str, RobotsGroup] | None = None, sitemaps: list[str] | None = None):
        self.groups = groups or {}
        self.sitemaps = sitemaps or []

    @classmethod
    def allow_all(cls) -> RobotsRules:
        return cls()

    @classmethod
    def parse(cls, text: str) -> RobotsRules:
        groups: dict[str, RobotsGroup] = {}
        sitemaps: list[str] = []
        current: list[RobotsGroup] = []
        collecting_agents = False

        for raw_line in text.splitlines():
            line = raw_line.split("#", 1)[0].strip()
            if not line or ":" not in line:
                continue
            key, value = line.split(":", 1)
            key = key.strip().lower()
            value = value.strip()

            if key == "user-agent":
                if not collecting_agents:
                    current = []
                    collecting_agents = True
                agent = value.lower()
                current.append(groups.setdefault(agent, RobotsGroup()))
                continue

            collecting_agents = False
            if key == "sitemap":
                if value:
                    sitemaps.append(value)
            elif key in ("allow", "disallow"):
                if not value:
                    continue
                for group in current:
                    getattr(group, key).append(value)
            elif key == "crawl-delay":
                try:
                    delay = float(value)
                except ValueError:
                    logger.debug("Invalid crawl-delay", value=value)
                    continue
                for group in current:
                    group.crawl_delay = delay

        return cls(groups=groups, sitemaps=sitemaps)

    def _group_for(self, agent: str) -> RobotsGroup | None:
        agent = agent.lower()
        for key, group in self.groups.items():
            if key and key != "*" and key in agent:
                return group
        return None

    @staticmethod
    def _match_group(group: RobotsGroup, path: str) -> bool | None:
        for pattern in group.allow:
            if pattern_matches(pattern, path):
                return True
        for pattern in group.disallow:
            if pattern_matches(pattern, path):
                return False
        return None

    def is_allowed(self, path: str, agent: str) -> bool:
        if not path:
            path = "/"
        for group in (self._group_for(agent), self.groups.get("*")):
            if group is None:
                continue
            verdict = self._match_group(group, path)
            if verdict is not None:
                return verdict
        return True

    def can_fetch(self, url: str, agent: str) -> bool:
        parts = urlsplit(url)
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"
        return self.is_allowed(path, agent)

    def crawl_delay(self, agent: str) -> float | None:
        for group in (self._group_for(agent), self.groups.get("*")):
            if group is not None and group.crawl_delay is not None:
                return group.crawl_delay
        return None


# ─────────────────────────────────────────────
# Sitemap Parser
# ─────────────────────────────────────────────

@dataclass
class ParsedSitemap:
    is_index: bool
    entries: list[SitemapEntry] = field(default_factory=list)
    children: list[str] = field(default_factory=list)
    total: int = 0


def _text(node, name: str) -> str | None:
    child = node.find(name)
    if child is None:
        return None
    value = child.get_text(strip=True)
    return value or None


def parse_sitemap(xml: str, source: str | None = None) -> ParsedSitemap:
    """Parse a urlset or sitemapindex document."""
    try:
        soup = BeautifulSoup(xml, "xml")
    except Exception as exc:
        raise ParseError(f"Unparsable sitemap: {exc}", source=source) from exc

    index = soup.find("sitemapindex")
    if index is not None:
        children = [loc for loc in (_text(node, "loc") for node in index.find_all("sitemap")) if loc]
        return ParsedSitemap(is_index=True, children=children, total=len(children))

    urlset = soup.find("urlset")
    if urlset is None:
        raise ParseError("Document is neither a urlset nor a sitemapindex", source=source)

    nodes = urlset.find_all("url")
    entries = []
    for node in nodes:
        loc = _text(node, "loc")
        if not loc:
            continue
        priority = _text(node, "priority")
        try:
            priority_value = float(priority) if priority is not None else None
        except ValueError:
            priority_value = None
        entries.append(
            SitemapEntry(
                loc=loc,
                lastmod=_text(node, "lastmod"),
                priority=priority_value,
                changefreq=_text(node, "changefreq"),
            )
        )
    return ParsedSitemap(is_index=False, entries=entries, total=len(nodes))


@dataclass
class SitemapResolution:
    records: list[SitemapRecord] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.records)


# ─────────────────────────────────────────────
# Resolver
# ─────────────────────────────────────────────

def site_root(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


class PolitenessResolver:
    """Fetches and interprets robots.txt and sitemaps for one run."""

    def __init__(self, fetcher: Fetcher, run_id: UUID, agent: str | None = None):
        self.fetcher = fetcher
        self.run_id = run_id
        self.agent = agent or settings.CRAWLER_AGENT_TOKEN
        self.logger = logger.bind(run_id=str(run_id))

    async def resolve_robots(self, base_url: str) -> tuple[RobotsRecord, RobotsRules]:
        robots_url = urljoin(site_root(base_url), "/robots.txt")
        result = await self.fetcher.fetch(robots_url)

        if isinstance(result, FetchError):
            self.logger.info("robots.txt unreachable", url=robots_url, kind=result.kind)
            record = RobotsRecord(run_id=self.run_id, robots_url=robots_url, error_message=result.message)
            return record, RobotsRules.allow_all()

        if result.status_code != 200:
            record = RobotsRecord(
                run_id=self.run_id,
                robots_url=robots_url,
                error_message=f"HTTP {result.status_code}",
            )
            return record, RobotsRules.allow_all()

        try:
            rules = RobotsRules.parse(result.text)
        except Exception as exc:
            error = ParseError(f"Unparsable robots.txt: {exc}", source=robots_url)
            self.logger.warning("robots.txt parse failed", url=robots_url, error=str(error))
            record = RobotsRecord(
                run_id=self.run_id,
                robots_url=robots_url,
                is_accessible=True,
                content=result.text,
                error_message=str(error),
            )
            return record, RobotsRules.allow_all()

        record = RobotsRecord(
            run_id=self.run_id,
            robots_url=robots_url,
            is_accessible=True,
            content=result.text,
            sitemap_urls=list(rules.sitemaps),
        )
        return record, rules

    async def _fetch_sitemap(self, url: str) -> ParsedSitemap | None:
        result = await self.fetcher.fetch(url)
        if isinstance(result, FetchError) or result.status_code != 200:
            return None
        try:
            return parse_sitemap(result.text, source=url)
        except ParseError as exc:
            self.logger.warning("Sitemap parse failed", url=url, error=str(exc))
            return ParsedSitemap(is_index=False)

    def _record(self, url: str, parsed: ParsedSitemap) -> SitemapRecord:
        return SitemapRecord(
            run_id=self.run_id,
            sitemap_url=url,
            total_urls=parsed.total,
            valid_urls=len(parsed.entries),
            entries=parsed.entries,
        )

    async def resolve_sitemap(self, base_url: str, declared: list[str] | None = None) -> SitemapResolution:
        root = site_root(base_url)
        candidates = list(declared or []) + [urljoin(root, path) for path in SITEMAP_CANDIDATES]
        resolution = SitemapResolution()

        for candidate in dict.fromkeys(candidates):
            parsed = await self._fetch_sitemap(candidate)
            if parsed is None:
                continue

            if not parsed.is_index:
                resolution.records.append(self._record(candidate, parsed))
                resolution.urls.extend(entry.loc for entry in parsed.entries)
                break

            index_record = SitemapRecord(
                run_id=self.run_id,
                sitemap_url=candidate,
                total_urls=parsed.total,
                valid_urls=parsed.total,
            )
            resolution.records.append(index_record)
            # One level only: nested indexes are recorded but not expanded
            for child_url in parsed.children:
                child = await self._fetch_sitemap(child_url)
                if child is None or child.is_index:
                    continue
                resolution.records.append(self._record(child_url, child))
                resolution.urls.extend(entry.loc for entry in child.entries)
            break

        resolution.urls = list(dict.fromkeys(resolution.urls))
        return resolution
