"""
Playwright browser backend.

Wraps ``playwright.sync_api`` behind the ``BrowserBackend`` interface. One
backend owns one Playwright driver and one browser process; every
``new_session()`` opens a fresh ``BrowserContext`` so cookies, localStorage
and session data never leak from one spec into the next.

The sync API is bound to the thread that started it, so a backend must be
launched and used from the same worker thread.

Key Concepts Demonstrated:
- Browser context per spec for isolation
- Locator strategies (data-testid, CSS, text, role, label)
- Screenshots and videos as failure artifacts
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Mapping

from playwright.sync_api import Browser, BrowserContext, Page, sync_playwright

from harness.backends.base import BrowserBackend, BrowserSession, Locator
from harness.errors import ElementNotFound, SetupFailure

logger = logging.getLogger(__name__)

# Logical browser name -> (Playwright browser type, release channel)
BROWSERS: dict[str, tuple[str, str | None]] = {
    "chromium": ("chromium", None),
    "chrome": ("chromium", "chrome"),
    "edge": ("chromium", "msedge"),
    "firefox": ("firefox", None),
    "webkit": ("webkit", None),
}

DEFAULT_CONTEXT_ARGS: dict[str, Any] = {
    "viewport": {"width": 1280, "height": 720},
    "ignore_https_errors": True,
}


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", name).strip("_") or "artifact"


class PlaywrightSession(BrowserSession):
    """A single browser context with one page."""

    def __init__(
        self,
        context: BrowserContext,
        page: Page,
        artifact_dir: Path,
        action_timeout_ms: int,
    ):
        self.context = context
        self.page = page
        self.artifact_dir = artifact_dir
        self.action_timeout_ms = action_timeout_ms

    def navigate(self, url: str) -> None:
        self.page.goto(url)
        self.page.wait_for_load_state("networkidle")

    def _locate(self, locator: Locator):
        options = dict(locator.options)
        if locator.strategy == "test_id":
            return self.page.get_by_test_id(locator.value)
        if locator.strategy == "css":
            return self.page.locator(locator.value)
        if locator.strategy == "xpath":
            return self.page.locator(f"xpath={locator.value}")
        if locator.strategy == "text":
            return self.page.get_by_text(locator.value, exact=options.get("exact", False))
        if locator.strategy == "label":
            return self.page.get_by_label(locator.value)
        return self.page.get_by_role(locator.value, **options)

    def resolve(self, locator: Locator):
        # count() does not wait, so a missing element is reported at once and
        # the wait engine decides whether to poll again.
        handle = self._locate(locator)
        if handle.count() == 0:
            raise ElementNotFound(locator)
        return handle

    def interact(self, handle, action: str, args: Mapping[str, Any] | None = None) -> Any:
        args = dict(args or {})
        element = handle.first
        timeout = args.pop("timeout", self.action_timeout_ms)

        if action == "click":
            element.click(timeout=timeout)
            return None
        if action == "fill":
            element.fill(str(args["value"]), timeout=timeout)
            return None
        if action == "press":
            element.press(args["key"], timeout=timeout)
            return None
        if action == "check":
            element.check(timeout=timeout)
            return None
        if action == "select":
            element.select_option(args["value"], timeout=timeout)
            return None
        if action == "hover":
            element.hover(timeout=timeout)
            return None
        if action == "text":
            return element.inner_text(timeout=timeout)
        if action == "value":
            return element.input_value(timeout=timeout)
        if action == "visible":
            return element.is_visible()
        if action == "attribute":
            return element.get_attribute(args["name"], timeout=timeout)
        if action == "count":
            return handle.count()
        raise ValueError(f"Unsupported interaction: {action!r}")

    def current_url(self) -> str:
        return self.page.url

    def capture_artifact(self, kind: str, name: str) -> str | None:
        if kind == "screenshot":
            self.artifact_dir.mkdir(parents=True, exist_ok=True)
            path = self.artifact_dir / f"{_safe_name(name)}.png"
            self.page.screenshot(path=str(path), full_page=True)
            return str(path)
        if kind == "video":
            video = self.page.video
            return str(video.path()) if video else None
        raise ValueError(f"Unsupported artifact kind: {kind!r}")

    def close(self) -> None:
        self.context.close()


class PlaywrightBackend(BrowserBackend):
    """
    Launches one browser and opens isolated contexts on demand.

    Args:
        browser: Logical browser name (see ``BROWSERS``).
        headless: Run without a visible window.
        artifact_dir: Where screenshots (and videos) are written.
        record_video: Record a video per session.
        action_timeout_ms: Default timeout for individual interactions.
        context_args: Extra ``browser.new_context`` keyword arguments.
    """

    def __init__(
        self,
        browser: str = "chromium",
        *,
        headless: bool = True,
        artifact_dir: str | Path = "test-results/artifacts",
        record_video: bool = False,
        action_timeout_ms: int = 5000,
        context_args: Mapping[str, Any] | None = None,
    ):
        if browser not in BROWSERS:
            raise SetupFailure(
                f"Unsupported browser {browser!r}; expected one of {', '.join(BROWSERS)}"
            )
        self.name = browser
        self.headless = headless
        self.artifact_dir = Path(artifact_dir)
        self.record_video = record_video
        self.action_timeout_ms = action_timeout_ms
        self.context_args = {**DEFAULT_CONTEXT_ARGS, **(context_args or {})}
        self._playwright = None
        self._browser: Browser | None = None

    def launch(self) -> None:
        browser_type_name, channel = BROWSERS[self.name]
        self._playwright = sync_playwright().start()
        browser_type = getattr(self._playwright, browser_type_name)
        launch_args: dict[str, Any] = {"headless": self.headless}
        if channel:
            launch_args["channel"] = channel
        try:
            self._browser = browser_type.launch(**launch_args)
        except Exception:
            self._playwright.stop()
            self._playwright = None
            raise
        logger.info("Launched %s (headless=%s)", self.name, self.headless)

    def new_session(self) -> PlaywrightSession:
        if self._browser is None:
            raise RuntimeError("Backend not launched")
        context_args = dict(self.context_args)
        if self.record_video:
            context_args["record_video_dir"] = str(self.artifact_dir / "videos")
        context = self._browser.new_context(**context_args)
        context.set_default_timeout(self.action_timeout_ms)
        page = context.new_page()
        return PlaywrightSession(context, page, self.artifact_dir, self.action_timeout_ms)

    def close(self) -> None:
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None
