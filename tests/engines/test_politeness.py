"""
Tests for robots.txt matching and sitemap discovery.
"""

import uuid

import pytest

from sitescope.core.errors import ParseError
from sitescope.engines.crawler.politeness import PolitenessResolver, RobotsRules, parse_sitemap, pattern_matches

AGENT = "SiteScopeBot"

SITEMAP_XML = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://example.com/</loc><lastmod>2024-01-01</lastmod><priority>1.0</priority></url>
  <url><loc>https://example.com/a</loc><changefreq>weekly</changefreq><priority>high</priority></url>
  <url><priority>0.3</priority></url>
</urlset>"""

SITEMAP_INDEX_XML = """<?xml version="1.0" encoding="UTF-8"?>
<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <sitemap><loc>https://example.com/posts.xml</loc></sitemap>
  <sitemap><loc>https://example.com/nested-index.xml</loc></sitemap>
</sitemapindex>"""


# ─────────────────────────────────────────────
# Robots Rules Tests
# ─────────────────────────────────────────────

class TestRobotsRules:

    def test_allow_takes_precedence_over_disallow(self):
        rules = RobotsRules.parse("User-agent: *\nAllow: /a\nDisallow: /a/b\n")
        assert rules.is_allowed("/a/b", AGENT)

    def test_disallow_blocks_prefix(self):
        rules = RobotsRules.parse("User-agent: *\nDisallow: /private\n")
        assert not rules.is_allowed("/private/page", AGENT)
        assert rules.is_allowed("/public", AGENT)

    def test_empty_disallow_allows_everything(self):
        rules = RobotsRules.parse("User-agent: *\nDisallow:\n")
        assert rules.is_allowed("/anything", AGENT)

    def test_agent_group_checked_before_wildcard(self):
        robots = (
            "User-agent: sitescopebot\nDisallow: /secret\n\n"
            "User-agent: *\nAllow: /secret\nDisallow: /\n"
        )
        rules = RobotsRules.parse(robots)
        assert not rules.is_allowed("/secret", AGENT)
        # Falls through to * when the agent group has no matching pattern
        assert not rules.is_allowed("/other", AGENT)
        assert rules.is_allowed("/secret", "OtherBot")

    def test_shared_group_for_consecutive_agents(self):
        rules = RobotsRules.parse("User-agent: a\nUser-agent: sitescopebot\nDisallow: /x\n")
        assert not rules.is_allowed("/x", AGENT)

    def test_wildcards_and_anchor(self):
        assert pattern_matches("/*.pdf$", "/files/report.pdf")
        assert not pattern_matches("/*.pdf$", "/files/report.pdf?download=1")
        assert pattern_matches("/search*", "/search?q=x")

    def test_matching_is_case_insensitive(self):
        rules = RobotsRules.parse("User-agent: *\nDisallow: /Admin\n")
        assert not rules.can_fetch("https://example.com/admin/login", AGENT)

    def test_query_is_part_of_the_match(self):
        rules = RobotsRules.parse("User-agent: *\nDisallow: /*?sort=\n")
        assert not rules.can_fetch("https://example.com/list?sort=asc", AGENT)
        assert rules.can_fetch("https://example.com/list", AGENT)

    def test_comments_sitemaps_and_crawl_delay(self):
        robots = (
            "# comment\n"
            "User-agent: *  # everyone\n"
            "Crawl-delay: 2.5\n"
            "Disallow: /tmp\n"
            "Sitemap: https://example.com/sm.xml\n"
        )
        rules = RobotsRules.parse(robots)
        assert rules.sitemaps == ["https://example.com/sm.xml"]
        assert rules.crawl_delay(AGENT) == 2.5

    def test_invalid_crawl_delay_ignored(self):
        rules = RobotsRules.parse("User-agent: *\nCrawl-delay: soon\n")
        assert rules.crawl_delay(AGENT) is None

    def test_allow_all(self):
        assert RobotsRules.allow_all().can_fetch("https://example.com/anything", AGENT)


# ─────────────────────────────────────────────
# Sitemap Parser Tests
# ─────────────────────────────────────────────

class TestSitemapParser:

    def test_urlset_entries(self):
        parsed = parse_sitemap(SITEMAP_XML)
        assert not parsed.is_index
        assert parsed.total == 3
        assert [entry.loc for entry in parsed.entries] == ["https://example.com/", "https://example.com/a"]
        assert parsed.entries[0].lastmod == "2024-01-01"
        assert parsed.entries[0].priority == 1.0
        assert parsed.entries[1].priority is None
        assert parsed.entries[1].changefreq == "weekly"

    def test_index_children(self):
        parsed = parse_sitemap(SITEMAP_INDEX_XML)
        assert parsed.is_index
        assert parsed.children == ["https://example.com/posts.xml", "https://example.com/nested-index.xml"]

    def test_rejects_other_documents(self):
        with pytest.raises(ParseError):
            parse_sitemap("<html><body>nope</body></html>", source="https://example.com/sitemap.xml")


# ─────────────────────────────────────────────
# Resolver Tests
# ─────────────────────────────────────────────

class TestPolitenessResolver:

    @pytest.mark.asyncio
    async def test_robots_found(self, site):
        site.text("https://example.com/robots.txt", "User-agent: *\nDisallow: /admin\nSitemap: https://example.com/sm.xml\n")
        resolver = PolitenessResolver(site.fetcher(), uuid.uuid4(), agent=AGENT)
        record, rules = await resolver.resolve_robots("https://example.com/start")
        assert record.is_accessible
        assert record.robots_url == "https://example.com/robots.txt"
        assert record.sitemap_urls == ["https://example.com/sm.xml"]
        assert not rules.can_fetch("https://example.com/admin", AGENT)

    @pytest.mark.asyncio
    async def test_robots_missing_allows_all(self, site):
        resolver = PolitenessResolver(site.fetcher(), uuid.uuid4(), agent=AGENT)
        record, rules = await resolver.resolve_robots("https://example.com/")
        assert not record.is_accessible
        assert record.error_message == "HTTP 404"
        assert rules.can_fetch("https://example.com/admin", AGENT)

    @pytest.mark.asyncio
    async def test_robots_unreachable_allows_all(self, site):
        site.fail("https://example.com/robots.txt")
        resolver = PolitenessResolver(site.fetcher(), uuid.uuid4(), agent=AGENT)
        record, rules = await resolver.resolve_robots("https://example.com/")
        assert not record.is_accessible
        assert record.error_message
        assert rules.can_fetch("https://example.com/x", AGENT)

    @pytest.mark.asyncio
    async def test_declared_sitemap_wins(self, site):
        site.text("https://example.com/sm.xml", SITEMAP_XML, content_type="application/xml")
        site.text("https://example.com/sitemap.xml", SITEMAP_XML, content_type="application/xml")
        resolver = PolitenessResolver(site.fetcher(), uuid.uuid4(), agent=AGENT)
        resolution = await resolver.resolve_sitemap("https://example.com/", ["https://example.com/sm.xml"])
        assert resolution.found
        assert [record.sitemap_url for record in resolution.records] == ["https://example.com/sm.xml"]
        assert not site.fetched("https://example.com/sitemap.xml")

    @pytest.mark.asyncio
    async def test_falls_back_to_well_known_paths(self, site):
        site.text("https://example.com/sitemap_index.xml", SITEMAP_XML, content_type="application/xml")
        resolver = PolitenessResolver(site.fetcher(), uuid.uuid4(), agent=AGENT)
        resolution = await resolver.resolve_sitemap("https://example.com/")
        assert resolution.records[0].sitemap_url == "https://example.com/sitemap_index.xml"
        assert resolution.records[0].valid_urls == 2
        assert resolution.urls == ["https://example.com/", "https://example.com/a"]

    @pytest.mark.asyncio
    async def test_index_followed_one_level(self, site):
        site.text("https://example.com/sitemap.xml", SITEMAP_INDEX_XML, content_type="application/xml")
        site.text("https://example.com/posts.xml", SITEMAP_XML, content_type="application/xml")
        site.text("https://example.com/nested-index.xml", SITEMAP_INDEX_XML, content_type="application/xml")
        resolver = PolitenessResolver(site.fetcher(), uuid.uuid4(), agent=AGENT)
        resolution = await resolver.resolve_sitemap("https://example.com/")
        assert [record.sitemap_url for record in resolution.records] == [
            "https://example.com/sitemap.xml",
            "https://example.com/posts.xml",
        ]
        assert resolution.urls == ["https://example.com/", "https://example.com/a"]

    @pytest.mark.asyncio
    async def test_no_sitemap(self, site):
        resolver = PolitenessResolver(site.fetcher(), uuid.uuid4(), agent=AGENT)
        resolution = await resolver.resolve_sitemap("https://example.com/")
        assert not resolution.found
        assert resolution.urls == []
