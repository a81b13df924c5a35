"""
Collaborator interfaces consumed by the harness.

The harness never drives a browser or speaks HTTP itself; it calls these
interfaces and lets the concrete backends (Playwright, requests) do the work.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping

LOCATOR_STRATEGIES = ("test_id", "css", "text", "role", "label", "xpath")

INTERACTIONS = (
    "click",
    "fill",
    "press",
    "check",
    "select",
    "hover",
    "text",
    "value",
    "visible",
    "attribute",
    "count",
)

ARTIFACT_KINDS = ("screenshot", "video")


@dataclass(frozen=True)
class Locator:
    """
    How to find an element; resolved lazily against a live session.

    Attributes:
        strategy: One of ``LOCATOR_STRATEGIES``. ``data-testid`` is preferred
            because test ids are stable and designed for testing.
        value: Selector, test id, text or role name.
        options: Strategy-specific extras (e.g. ``{"name": "Save"}`` for roles).
    """

    strategy: str
    value: str
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.strategy not in LOCATOR_STRATEGIES:
            raise ValueError(
                f"Unknown locator strategy {self.strategy!r}; "
                f"expected one of {', '.join(LOCATOR_STRATEGIES)}"
            )

    def __str__(self) -> str:
        return f"{self.strategy}={self.value}"


@dataclass(frozen=True)
class HttpResponse:
    status: int
    headers: Mapping[str, str]
    body: Any

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "headers": dict(self.headers), "body": self.body}


class BrowserSession(ABC):
    """One isolated browser context; never shared between workers."""

    @abstractmethod
    def navigate(self, url: str) -> None:
        ...

    @abstractmethod
    def resolve(self, locator: Locator) -> Any:
        """Return a handle to a live element, or raise ``ElementNotFound``."""

    @abstractmethod
    def interact(self, handle: Any, action: str, args: Mapping[str, Any] | None = None) -> Any:
        """Perform ``action`` (one of ``INTERACTIONS``) on a resolved element."""

    @abstractmethod
    def current_url(self) -> str:
        ...

    @abstractmethod
    def capture_artifact(self, kind: str, name: str) -> str | None:
        """Write an artifact and return its path (``None`` if unavailable)."""

    @abstractmethod
    def close(self) -> None:
        ...


class BrowserBackend(ABC):
    """Owns one browser process; hands out fresh sessions."""

    name: str = "browser"

    @abstractmethod
    def launch(self) -> None:
        ...

    @abstractmethod
    def new_session(self) -> BrowserSession:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class HttpClient(ABC):
    """Sends HTTP requests for API steps and the preflight check."""

    @abstractmethod
    def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> HttpResponse:
        ...

    def close(self) -> None:
        """Release pooled connections."""
