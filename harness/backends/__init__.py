"""Browser and HTTP backends the harness drives."""

from __future__ import annotations

from typing import TYPE_CHECKING

from harness.backends.base import (
    BrowserBackend,
    BrowserSession,
    HttpClient,
    HttpResponse,
    Locator,
)

if TYPE_CHECKING:
    from harness.config import Config


def create_browser_backend(config: "Config") -> BrowserBackend:
    """Build the Playwright backend described by ``config`` (not yet launched)."""
    from harness.backends.playwright_backend import PlaywrightBackend

    return PlaywrightBackend(
        config.browser,
        headless=config.headless,
        artifact_dir=config.artifact_dir,
        record_video=config.record_video,
        action_timeout_ms=config.action_timeout_ms,
    )


def create_http_client(config: "Config") -> HttpClient:
    """Build the requests-backed HTTP client described by ``config``."""
    from harness.backends.http import RequestsHttpClient

    return RequestsHttpClient(timeout=config.http_timeout_s)


__all__ = [
    "BrowserBackend",
    "BrowserSession",
    "HttpClient",
    "HttpResponse",
    "Locator",
    "create_browser_backend",
    "create_http_client",
]
