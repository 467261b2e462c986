"""
Error taxonomy.

Only OrchestrationError is fatal to a run. Everything that goes wrong for a
single page is recovered locally: transport failures come back from the
fetcher as a FetchError value, ParseError degrades extraction to partial or
empty results.
"""

from __future__ import annotations


class SiteScopeError(Exception):
    """Base class for all SiteScope errors."""


class ParseError(SiteScopeError):
    """Malformed markup, robots.txt or sitemap document."""

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message)
        self.source = source


class RunValidationError(SiteScopeError):
    """A run request was rejected before any run was created."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class OrchestrationError(SiteScopeError):
    """Setup-phase or pipeline failure. Transitions the run to failed."""
