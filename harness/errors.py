"""
Error taxonomy for the test harness.

Every failure the harness can raise belongs to one of three families:

- ``SetupFailure`` -- fatal for the whole run; the process exits with code 2
  before any spec is scheduled.
- ``StepFailure`` -- scoped to a single spec; the runner converts it into a
  ``failed`` result and moves on to the next spec.
- Programming-invariant violations (``DuplicateResultError``,
  ``ReportFinalizedError``) -- never caught by the runner.

``TransientProbeError`` sits outside all three: it only ever travels from a
probe to the wait engine, which retries it.
"""

from __future__ import annotations

from typing import Any


class HarnessError(Exception):
    """Base class for every error raised by the harness."""


# -----------------------------------------------------------------------------
# Setup failures
# -----------------------------------------------------------------------------


class SetupFailure(HarnessError):
    """The run cannot start (unreachable base URL, browser launch error, ...)."""


class ConfigError(SetupFailure):
    """Configuration is missing or invalid."""


class SpecParseError(SetupFailure):
    """A spec file could not be parsed into TestSpecs."""

    def __init__(self, source: Any, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


# -----------------------------------------------------------------------------
# Step failures
# -----------------------------------------------------------------------------


class StepFailure(HarnessError):
    """A step could not complete; fails the current spec only."""

    def diagnostics(self) -> dict[str, Any]:
        """Structured details copied into the spec's failure record."""
        return {}


class ActionFailure(StepFailure):
    """A Page Object action raised; wraps the backend error as ``cause``."""

    def __init__(self, page_name: str, action_name: str, cause: BaseException):
        self.page_name = page_name
        self.action_name = action_name
        self.cause = cause
        super().__init__(
            f"{page_name}.{action_name} failed: {type(cause).__name__}: {cause}"
        )

    def diagnostics(self) -> dict[str, Any]:
        return {
            "page": self.page_name,
            "action": self.action_name,
            "cause": f"{type(self.cause).__name__}: {self.cause}",
        }


class UnknownPageError(StepFailure):
    """No Page Object is registered under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown page: {name!r}")


class UnknownActionError(StepFailure):
    """The Page Object exists but has no action of that name."""

    def __init__(self, page_name: str, action_name: str):
        self.page_name = page_name
        self.action_name = action_name
        super().__init__(f"Page {page_name!r} has no action {action_name!r}")


class NotFoundError(StepFailure):
    """A fixture (or a key inside one) does not exist."""


class ParseError(StepFailure):
    """Fixture data is malformed."""


class FixtureConflictError(StepFailure):
    """Two merged fixtures define the same top-level key."""

    def __init__(self, key: str, first: str, second: str):
        self.key = key
        super().__init__(f"Key {key!r} defined by both fixture {first!r} and {second!r}")


class UnknownMatcherError(StepFailure):
    """An assertion names a matcher that does not exist."""


class AssertionMismatch(StepFailure):
    """A non-retried assertion compared unequal."""


class HttpError(StepFailure):
    """The HTTP collaborator could not complete a request."""


class WaitTimeoutError(StepFailure):
    """A polled condition never became true within its policy budget."""

    def __init__(self, last_seen: Any, attempts: int, elapsed_ms: float):
        self.last_seen = last_seen
        self.attempts = attempts
        self.elapsed_ms = elapsed_ms
        super().__init__(
            f"Condition not met after {attempts} attempt(s) in {elapsed_ms:.0f}ms; "
            f"last seen: {last_seen!r}"
        )

    def diagnostics(self) -> dict[str, Any]:
        last_seen = self.last_seen
        if isinstance(last_seen, BaseException):
            last_seen = f"{type(last_seen).__name__}: {last_seen}"
        return {
            "last_seen": last_seen,
            "attempts": self.attempts,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


class AssertionTimeout(WaitTimeoutError):
    """An assertion step timed out; carries the wait diagnostics plus the matcher."""

    def __init__(self, description: str, timeout: WaitTimeoutError):
        super().__init__(timeout.last_seen, timeout.attempts, timeout.elapsed_ms)
        self.description = description
        self.args = (f"{description}: {timeout}",)

    def diagnostics(self) -> dict[str, Any]:
        data = super().diagnostics()
        data["assertion"] = self.description
        return data


class SpecTimeout(StepFailure):
    """The spec exceeded its overall time ceiling."""

    def __init__(self, spec_id: str, timeout_ms: int, elapsed_ms: float):
        self.spec_id = spec_id
        self.timeout_ms = timeout_ms
        self.elapsed_ms = elapsed_ms
        super().__init__(
            f"Spec {spec_id!r} exceeded {timeout_ms}ms (ran {elapsed_ms:.0f}ms)"
        )

    def diagnostics(self) -> dict[str, Any]:
        return {"timeout_ms": self.timeout_ms, "elapsed_ms": round(self.elapsed_ms, 1)}


class CancelledError(StepFailure):
    """The run was cancelled while (or before) the spec was running."""


# -----------------------------------------------------------------------------
# Probe failures (retried)
# -----------------------------------------------------------------------------


class TransientProbeError(HarnessError):
    """A probe could not observe state yet; the wait engine retries it."""


class ElementNotFound(TransientProbeError):
    """A locator did not resolve to a live element (yet)."""

    def __init__(self, locator: Any):
        self.locator = locator
        super().__init__(f"Element not found: {locator}")


# -----------------------------------------------------------------------------
# Invariant violations
# -----------------------------------------------------------------------------


class DuplicateResultError(HarnessError):
    """A result was recorded twice for the same spec id."""

    def __init__(self, spec_id: str):
        self.spec_id = spec_id
        super().__init__(f"Result already recorded for spec {spec_id!r}")


class ReportFinalizedError(HarnessError):
    """The report was already finalized."""
