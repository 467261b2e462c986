"""
Page fetcher.

One GET per URL through a shared httpx.AsyncClient. Transport failures never
raise out of fetch(); they come back as a FetchError value so the crawl loop
can record them and move on.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

import httpx
import structlog

from sitescope.core.config import get_settings

logger = structlog.get_logger(__name__)
settings = get_settings()


# ─────────────────────────────────────────────
# Result Values
# ─────────────────────────────────────────────

@dataclass
class PageFetchResult:
    url: str
    final_url: str
    status_code: int
    content_type: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    text: str = ""
    elapsed_ms: float = 0.0
    redirect_count: int = 0

    @property
    def size_bytes(self) -> int:
        return len(self.body)

    @property
    def redirect_url(self) -> str | None:
        return self.final_url if self.redirect_count else None

    @property
    def is_html(self) -> bool:
        content_type = self.content_type.lower()
        return self.status_code == 200 and (
            "text/html" in content_type or "application/xhtml+xml" in content_type
        )


@dataclass
class FetchError:
    url: str
    kind: str        # timeout | connect | too_many_redirects | invalid_url | protocol | request
    message: str


def classify_error(exc: Exception) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    if isinstance(exc, httpx.TooManyRedirects):
        return "too_many_redirects"
    if isinstance(exc, httpx.ConnectError):
        return "connect"
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return "invalid_url"
    if isinstance(exc, httpx.ProtocolError):
        return "protocol"
    return "request"


# ─────────────────────────────────────────────
# Fetcher
# ─────────────────────────────────────────────

class Fetcher:
    """
    Thin wrapper around httpx.AsyncClient.

    Usage:
        async with Fetcher() as fetcher:
            result = await fetcher.fetch("https://example.com/")
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        user_agent: str | None = None,
        timeout: float | None = None,
        max_redirects: int | None = None,
    ):
        self._owns_client = client is None
        self.client = client or self.build_client(
            transport=transport,
            user_agent=user_agent,
            timeout=timeout,
            max_redirects=max_redirects,
        )

    @staticmethod
    def build_client(
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        user_agent: str | None = None,
        timeout: float | None = None,
        max_redirects: int | None = None,
    ) -> httpx.AsyncClient:
        headers = {
            "User-Agent": user_agent or settings.CRAWLER_USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,*/*;q=0.8",
            "Accept-Encoding": "gzip, deflate",
        }
        return httpx.AsyncClient(
            headers=headers,
            follow_redirects=True,
            max_redirects=max_redirects if max_redirects is not None else settings.CRAWLER_MAX_REDIRECTS,
            timeout=timeout if timeout is not None else settings.CRAWLER_REQUEST_TIMEOUT,
            verify=False,  # Targets with self-signed or broken certificates must stay reachable
            transport=transport,
        )

    async def fetch(self, url: str) -> PageFetchResult | FetchError:
        start = time.perf_counter()
        try:
            response = await self.client.get(url)
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            kind = classify_error(exc)
            logger.debug("Fetch failed", url=url, kind=kind, error=str(exc))
            return FetchError(url=url, kind=kind, message=str(exc) or kind)

        elapsed = (time.perf_counter() - start) * 1000
        return PageFetchResult(
            url=url,
            final_url=str(response.url),
            status_code=response.status_code,
            content_type=response.headers.get("content-type", ""),
            headers=dict(response.headers),
            body=response.content,
            text=response.text,
            elapsed_ms=elapsed,
            redirect_count=len(response.history),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> Fetcher:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
