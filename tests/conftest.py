"""
Shared fixtures: an in-memory store, a throwaway SQLite-backed SQL store,
fast run options and a fake website served through httpx.MockTransport.
"""

from __future__ import annotations

from urllib.parse import urlsplit

import httpx
import pytest

import sitescope.models.models  # noqa: F401
from sitescope.core.database import Base, build_engine, make_sessionmaker
from sitescope.engines.base import CrawlRun
from sitescope.engines.context import RunContext, RunOptions
from sitescope.engines.crawler.fetcher import Fetcher
from sitescope.storage.memory import InMemoryCorpusStore
from sitescope.storage.sql import SQLAlchemyCorpusStore

HTML = "text/html; charset=utf-8"


def html_doc(title: str = "", body: str = "", head: str = "") -> str:
    return f"<html><head><title>{title}</title>{head}</head><body>{body}</body></html>"


def make_run(url: str = "https://example.com/", **kwargs) -> CrawlRun:
    return CrawlRun(url=url, domain=urlsplit(url).hostname, **kwargs)


class FakeSite:
    """Routes full URLs to canned responses. Unknown URLs return 404."""

    def __init__(self):
        self.routes: dict[str, tuple[int, dict[str, str], str] | Exception] = {}
        self.requests: list[str] = []

    def html(self, url: str, body: str, status: int = 200, headers: dict[str, str] | None = None) -> None:
        self.routes[url] = (status, {"content-type": HTML, **(headers or {})}, body)

    def text(self, url: str, body: str, content_type: str = "text/plain", status: int = 200) -> None:
        self.routes[url] = (status, {"content-type": content_type}, body)

    def redirect(self, url: str, location: str, status: int = 301) -> None:
        self.routes[url] = (status, {"location": location}, "")

    def fail(self, url: str, message: str = "connection refused") -> None:
        self.routes[url] = httpx.ConnectError(message)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404, headers={"content-type": HTML}, text="<html><body>Not found</body></html>")
        if isinstance(route, Exception):
            raise route
        status, headers, body = route
        return httpx.Response(status, headers=headers, text=body)

    def fetcher(self) -> Fetcher:
        return Fetcher(transport=httpx.MockTransport(self.handler))

    def fetched(self, url: str) -> bool:
        return url in self.requests


@pytest.fixture
def store() -> InMemoryCorpusStore:
    return InMemoryCorpusStore()


@pytest.fixture
async def sql_store(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SQLAlchemyCorpusStore(make_sessionmaker(engine))
    await engine.dispose()


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture
def options() -> RunOptions:
    return RunOptions(request_delay=0, concurrency=1, seed_from_sitemap=False)


@pytest.fixture
def run_context(store, options):
    async def build(run: CrawlRun) -> RunContext:
        await store.create_run(run)
        return RunContext(run=run, store=store, options=options)
    return build
