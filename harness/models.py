"""
Data model for the test harness.

Everything here is an immutable value: specs and steps are frozen once
parsed, results are written once and never updated, and the report is
assembled from results in discovery order.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Union


def _freeze(value: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(value or {}))


class StepKind(str, Enum):
    """Discriminator for the Step variants."""

    UI_ACTION = "ui_action"
    API_CALL = "api_call"
    ASSERTION = "assertion"
    NAVIGATE = "navigate"


class RunStatus(str, Enum):
    """Final outcome of one spec."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class SpecState(str, Enum):
    """Lifecycle of a spec inside the runner."""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded polling policy for asynchronous state.

    Attributes:
        timeout_ms: Cumulative budget measured from the first attempt.
        interval_ms: Delay before the second attempt.
        backoff_factor: Multiplier applied to the delay after each miss.
    """

    timeout_ms: int = 5000
    interval_ms: int = 100
    backoff_factor: float = 1.5

    def __post_init__(self):
        if self.timeout_ms < 0:
            raise ValueError("timeout_ms must be >= 0")
        if self.interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")

    def clipped(self, budget_ms: float | None) -> "RetryPolicy":
        """Return a copy whose timeout is capped at ``budget_ms`` (rounded up to whole ms)."""
        if budget_ms is None or budget_ms >= self.timeout_ms:
            return self
        return RetryPolicy(
            timeout_ms=max(0, math.ceil(budget_ms)),
            interval_ms=self.interval_ms,
            backoff_factor=self.backoff_factor,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, base: "RetryPolicy | None" = None) -> "RetryPolicy":
        """Build a policy from a (possibly partial) mapping, filling gaps from ``base``."""
        base = base or cls()
        data = data or {}
        return cls(
            timeout_ms=int(data.get("timeout_ms", base.timeout_ms)),
            interval_ms=int(data.get("interval_ms", base.interval_ms)),
            backoff_factor=float(data.get("backoff_factor", base.backoff_factor)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timeout_ms": self.timeout_ms,
            "interval_ms": self.interval_ms,
            "backoff_factor": self.backoff_factor,
        }


# -----------------------------------------------------------------------------
# Steps
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class UIAction:
    """Invoke a named action on a registered Page Object."""

    page: str
    action: str
    args: Mapping[str, Any] = field(default_factory=dict)

    kind = StepKind.UI_ACTION

    def __post_init__(self):
        object.__setattr__(self, "args", _freeze(self.args))

    def describe(self) -> str:
        return f"ui {self.page}.{self.action}"


@dataclass(frozen=True)
class APICall:
    """Send one HTTP request; the response becomes ``last_response``."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    save_as: str | None = None

    kind = StepKind.API_CALL

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _freeze(self.headers))

    def describe(self) -> str:
        return f"api {self.method} {self.url}"


@dataclass(frozen=True)
class Assertion:
    """Compare a source value against an expectation, polling until it matches."""

    source: str
    expected: Any = None
    matcher: str = "equals"
    policy: RetryPolicy | None = None

    kind = StepKind.ASSERTION

    def describe(self) -> str:
        return f"assert {self.source} {self.matcher} {self.expected!r}"


@dataclass(frozen=True)
class Navigate:
    """Open a path relative to the base URL."""

    path: str

    kind = StepKind.NAVIGATE

    def describe(self) -> str:
        return f"navigate {self.path}"


Step = Union[UIAction, APICall, Assertion, Navigate]


@dataclass(frozen=True)
class TestSpec:
    """One test scenario: an ordered, immutable sequence of steps."""

    __test__ = False  # not a pytest test class

    id: str
    steps: tuple[Step, ...]
    tags: frozenset[str] = frozenset()
    source: Path | None = None
    timeout_ms: int | None = None
    fixtures: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "tags", frozenset(self.tags))
        object.__setattr__(self, "fixtures", tuple(self.fixtures))


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class FailureDetail:
    """Where and why a spec stopped."""

    step_index: int
    step: str | None
    error_type: str
    message: str
    diagnostics: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "diagnostics", _freeze(self.diagnostics))

    @classmethod
    def from_exception(cls, step_index: int, step: str | None, exc: BaseException) -> "FailureDetail":
        diagnostics = exc.diagnostics() if hasattr(exc, "diagnostics") else {}
        return cls(
            step_index=step_index,
            step=step,
            error_type=type(exc).__name__,
            message=str(exc),
            diagnostics=diagnostics,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_index": self.step_index,
            "step": self.step,
            "error_type": self.error_type,
            "message": self.message,
            "diagnostics": dict(self.diagnostics),
        }


@dataclass(frozen=True)
class RunResult:
    """Outcome of one spec, written exactly once."""

    spec_id: str
    status: RunStatus
    duration_ms: float
    failure: FailureDetail | None = None
    artifacts: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "artifacts", tuple(self.artifacts))

    def to_dict(self) -> dict[str, Any]:
        return {
            "spec_id": self.spec_id,
            "status": self.status.value,
            "duration_ms": round(self.duration_ms, 1),
            "failure": self.failure.to_dict() if self.failure else None,
            "artifacts": list(self.artifacts),
        }


@dataclass(frozen=True)
class Report:
    """Aggregate of all results plus run metadata."""

    started_at: str
    finished_at: str
    browser: str
    base_url: str
    parallelism: int
    results: tuple[RunResult, ...]

    def count(self, status: RunStatus) -> int:
        return sum(1 for result in self.results if result.status is status)

    @property
    def totals(self) -> dict[str, int]:
        return {
            "total": len(self.results),
            "passed": self.count(RunStatus.PASSED),
            "failed": self.count(RunStatus.FAILED),
            "skipped": self.count(RunStatus.SKIPPED),
        }

    @property
    def passed(self) -> bool:
        """True when no spec failed (skipped specs do not fail a run)."""
        return self.count(RunStatus.FAILED) == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "run": {
                "started_at": self.started_at,
                "finished_at": self.finished_at,
                "browser": self.browser,
                "base_url": self.base_url,
                "parallelism": self.parallelism,
            },
            "totals": self.totals,
            "results": [result.to_dict() for result in self.results],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Report":
        run = data["run"]
        results = []
        for item in data.get("results", []):
            failure = item.get("failure")
            results.append(
                RunResult(
                    spec_id=item["spec_id"],
                    status=RunStatus(item["status"]),
                    duration_ms=float(item["duration_ms"]),
                    failure=FailureDetail(**failure) if failure else None,
                    artifacts=tuple(item.get("artifacts", ())),
                )
            )
        return cls(
            started_at=run["started_at"],
            finished_at=run["finished_at"],
            browser=run["browser"],
            base_url=run["base_url"],
            parallelism=int(run["parallelism"]),
            results=tuple(results),
        )
