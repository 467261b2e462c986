"""
URL frontier, URL normalization and per-host request spacing.

The frontier is a FIFO (breadth-first) queue with two sets: URLs waiting in
the queue and URLs already taken off it. Both are keyed by the normalized URL.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


# ─────────────────────────────────────────────
# URL Utilities
# ─────────────────────────────────────────────

class URLNormalizer:
    """Canonical form used for frontier dedup and page identity."""

    ALLOWED_PARAMS = ("page", "p", "category", "cat", "id", "slug")
    DEFAULT_PORTS = {"http": 80, "https": 443}

    @classmethod
    def normalize(cls, url: str) -> str:
        url = url.strip()
        parts = urlsplit(url)
        if not parts.hostname:
            return url

        scheme = parts.scheme.lower()
        host = parts.hostname.lower()
        if ":" in host:
            host = f"[{host}]"
        try:
            port = parts.port
        except ValueError:
            return url
        netloc = host
        if port is not None and cls.DEFAULT_PORTS.get(scheme) != port:
            netloc = f"{host}:{port}"
        if parts.username:
            credentials = parts.username + (f":{parts.password}" if parts.password else "")
            netloc = f"{credentials}@{netloc}"

        query = ""
        if parts.query:
            kept = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k in cls.ALLOWED_PARAMS]
            query = urlencode(kept)

        return urlunsplit((scheme, netloc, parts.path or "/", query, ""))

    @classmethod
    def host_of(cls, url: str) -> str:
        return (urlsplit(url).hostname or "").lower()

    @classmethod
    def is_same_host(cls, url: str, domain: str) -> bool:
        """Exact, case-insensitive host comparison. Subdomains are external."""
        return cls.host_of(url) == domain.lower()


def normalize_url(url: str) -> str:
    return URLNormalizer.normalize(url)


# ─────────────────────────────────────────────
# Frontier
# ─────────────────────────────────────────────

@dataclass
class CrawlURL:
    """URL in the crawl queue with metadata."""
    url: str
    depth: int
    probe_only: bool = False     # external target: fetch status, never expand


class URLFrontier:
    """
    Breadth-first frontier with admission control.

    admit() never awaits, so under a single event loop admission is atomic
    even with several workers draining the queue.
    """

    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        self._queue: deque[CrawlURL] = deque()
        self._queued: set[str] = set()
        self._visited: set[str] = set()

    def admit(self, url: str, depth: int, probe_only: bool = False) -> bool:
        normalized = normalize_url(url)
        if depth > self.max_depth:
            return False
        if normalized in self._visited or normalized in self._queued:
            return False
        self._queue.append(CrawlURL(url=normalized, depth=depth, probe_only=probe_only))
        self._queued.add(normalized)
        return True

    def next(self) -> CrawlURL | None:
        while self._queue:
            item = self._queue.popleft()
            self._queued.discard(item.url)
            if item.url in self._visited:
                continue
            return item
        return None

    def mark_visited(self, url: str) -> None:
        self._visited.add(normalize_url(url))

    def is_visited(self, url: str) -> bool:
        return normalize_url(url) in self._visited

    def is_queued(self, url: str) -> bool:
        return normalize_url(url) in self._queued

    @property
    def visited_count(self) -> int:
        return len(self._visited)

    def __len__(self) -> int:
        return len(self._queue)


# ─────────────────────────────────────────────
# Per-host Scheduler
# ─────────────────────────────────────────────

@dataclass
class _HostSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_start: float | None = None
    interval: float | None = None


class HostScheduler:
    """
    Enforces a minimum spacing between request starts to the same host.

    Each host has its own lock, so workers hitting different hosts never wait
    on each other while workers hitting the same host queue up behind it.
    """

    def __init__(self, interval: float, clock=time.monotonic, sleep=asyncio.sleep):
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._slots: dict[str, _HostSlot] = {}

    def _slot(self, host: str) -> _HostSlot:
        host = host.lower()
        if host not in self._slots:
            self._slots[host] = _HostSlot()
        return self._slots[host]

    def set_interval(self, host: str, seconds: float) -> None:
        """Widen the spacing for one host (robots Crawl-delay). Never narrows it."""
        slot = self._slot(host)
        slot.interval = max(self.interval, seconds)

    def interval_for(self, host: str) -> float:
        slot = self._slots.get(host.lower())
        if slot is None or slot.interval is None:
            return self.interval
        return slot.interval

    async def wait(self, host: str) -> None:
        slot = self._slot(host)
        async with slot.lock:
            interval = self.interval_for(host)
            if slot.last_start is not None:
                remaining = slot.last_start + interval - self._clock()
                if remaining > 0:
                    await self._sleep(remaining)
            slot.last_start = self._clock()
