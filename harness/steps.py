"""
Step execution.

Each spec runs with its own ``SpecContext``: an explicit bundle of
everything a step (or a setup/teardown hook) may touch. There is no ambient
global state; two workers running two specs hold two contexts and two
browser sessions.

String arguments may reference run data with placeholders:

- ``${fixture:login.valid.username}`` -- a value inside a fixture,
- ``${var:token.body.token}`` -- a value saved by an earlier step,
- ``${env:API_KEY}`` -- an environment variable.

A string consisting of exactly one placeholder keeps the referenced value's
type (so ``${fixture:cart.items}`` can inject a list).
"""

from __future__ import annotations

import logging
import os
import re
import time
from collections.abc import Callable
from typing import Any, Mapping

from harness.backends.base import BrowserSession, HttpClient, HttpResponse
from harness.errors import (
    ActionFailure,
    AssertionMismatch,
    AssertionTimeout,
    ElementNotFound,
    NotFoundError,
    StepFailure,
    TransientProbeError,
    WaitTimeoutError,
)
from harness.fixtures import FixtureStore, lookup, thaw
from harness.matchers import get_matcher
from harness.models import APICall, Assertion, Navigate, RetryPolicy, Step, TestSpec, UIAction
from harness.pages import PageContext, PageRegistry, join_url
from harness.waiting import NotYet, await_condition

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\$\{(fixture|var|env):([^}]+)\}")

ELEMENT_PROPERTIES = ("text", "value", "visible", "count")

# Only these are re-sent while a response assertion polls.
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class SpecContext:
    """
    Per-spec execution context.

    Attributes:
        spec: The spec being executed.
        pages: Shared, read-only Page Object registry.
        fixtures: Shared fixture store.
        http: HTTP client owned by this spec.
        base_url: Application root URL.
        policy: Default retry policy for assertions.
        deadline: Monotonic time after which the spec is over budget.
        variables: Values saved by steps (``save_as``) or hooks.
        artifacts: Artifact references collected for the result.
    """

    def __init__(
        self,
        spec: TestSpec,
        *,
        pages: PageRegistry,
        fixtures: FixtureStore,
        http: HttpClient,
        base_url: str,
        policy: RetryPolicy,
        session_factory: Callable[[], BrowserSession],
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.spec = spec
        self.pages = pages
        self.fixtures = fixtures
        self.http = http
        self.base_url = base_url
        self.policy = policy
        self.deadline = deadline
        self.clock = clock
        self.variables: dict[str, Any] = {}
        self.artifacts: list[str] = []
        self.last_response: HttpResponse | None = None
        self.last_request: APICall | None = None
        self.last_result: Any = None
        self._session_factory = session_factory
        self._session: BrowserSession | None = None

    @property
    def session(self) -> BrowserSession:
        """Browser session, opened on first use so API-only specs never open one."""
        if self._session is None:
            self._session = self._session_factory()
        return self._session

    @property
    def has_session(self) -> bool:
        return self._session is not None

    def close_session(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            session.close()

    def remaining_ms(self) -> float | None:
        if self.deadline is None:
            return None
        return (self.deadline - self.clock()) * 1000.0

    def page(self, name: str) -> PageContext:
        """A PageContext for ``name`` bound to this spec's session."""
        return PageContext(self.pages.get(name), self.session, self.base_url)


# -----------------------------------------------------------------------------
# Interpolation
# -----------------------------------------------------------------------------


def _placeholder_value(ctx: SpecContext, kind: str, ref: str) -> Any:
    if kind == "env":
        if ref not in os.environ:
            raise NotFoundError(f"Environment variable {ref!r} is not set")
        return os.environ[ref]
    name, _, path = ref.partition(".")
    if kind == "fixture":
        return thaw(ctx.fixtures.get(name, path))
    if name not in ctx.variables:
        raise NotFoundError(f"Variable {name!r} has not been set")
    return thaw(lookup(ctx.variables[name], path, label=f"variable {name!r}"))


def interpolate(value: Any, ctx: SpecContext) -> Any:
    """Substitute placeholders in strings, recursively through dicts and lists."""
    if isinstance(value, str):
        whole = PLACEHOLDER.fullmatch(value)
        if whole:
            return _placeholder_value(ctx, whole.group(1), whole.group(2))
        return PLACEHOLDER.sub(
            lambda match: str(_placeholder_value(ctx, match.group(1), match.group(2))), value
        )
    if isinstance(value, Mapping):
        return {key: interpolate(item, ctx) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [interpolate(item, ctx) for item in value]
    return value


# -----------------------------------------------------------------------------
# Step kinds
# -----------------------------------------------------------------------------


def _send(ctx: SpecContext, call: APICall, *, save: bool = True) -> HttpResponse:
    response = ctx.http.send(
        call.method,
        join_url(ctx.base_url, interpolate(call.url, ctx)),
        headers=interpolate(dict(call.headers), ctx),
        body=interpolate(call.body, ctx),
    )
    ctx.last_request = call
    ctx.last_response = response
    if save and call.save_as:
        ctx.variables[call.save_as] = response.to_dict()
    return response


def _response_reader(ctx: SpecContext, path: str) -> Callable[[], Any]:
    """
    Read a field of the last response.

    The first read uses the response already received. Later reads (while
    an assertion is polling) re-send the request when its method is safe,
    so an assertion can wait for server-side state to settle; ``save_as``
    keeps the original response.
    """
    if ctx.last_response is None:
        raise StepFailure("Assertion on 'response' but no API call has been made")
    first = True

    def read() -> Any:
        nonlocal first
        response = ctx.last_response
        if not first and ctx.last_request is not None:
            response = _send(ctx, ctx.last_request, save=False)
        first = False
        data = response.to_dict()
        if path.startswith("headers."):
            wanted = path[len("headers."):].lower()
            for name, value in data["headers"].items():
                if name.lower() == wanted:
                    return value
            return None
        try:
            return lookup(data, path, label="response")
        except NotFoundError:
            return None

    return read


def _element_reader(ctx: SpecContext, ref: str) -> Callable[[], Any]:
    target, _, prop = ref.partition(":")
    prop = prop or "text"
    page_name, _, alias = target.partition(".")
    if not page_name or not alias:
        raise StepFailure(f"Element source must look like 'page.element[:property]', got {ref!r}")
    if prop not in ELEMENT_PROPERTIES:
        raise StepFailure(f"Unknown element property {prop!r}; expected one of {ELEMENT_PROPERTIES}")

    def read() -> Any:
        page = ctx.page(page_name)
        try:
            return page.interact(alias, prop)
        except ElementNotFound:
            if prop in ("count", "visible"):
                return 0 if prop == "count" else False
            raise

    return read


def _action_reader(ctx: SpecContext, ref: str) -> Callable[[], Any]:
    page_name, _, action = ref.partition(".")

    def read() -> Any:
        try:
            return ctx.pages.perform(ctx.session, page_name, action, base_url=ctx.base_url)
        except ActionFailure as exc:
            if isinstance(exc.cause, TransientProbeError):
                raise exc.cause
            raise

    return read


def _resendable(call: APICall | None) -> bool:
    return call is not None and call.method.upper() in SAFE_METHODS


def resolve_source(ctx: SpecContext, source: str) -> tuple[Callable[[], Any], bool]:
    """
    Build a reader for an assertion source.

    Returns:
        ``(read, live)``; ``live`` is False for sources that cannot change
        while polling (saved variables, fixtures, the response to a
        non-idempotent request), which get a single attempt.
    """
    if source == "url":
        return (lambda: ctx.session.current_url()), True
    if source == "response" or source.startswith("response."):
        read = _response_reader(ctx, source[len("response."):] if "." in source else "")
        return read, _resendable(ctx.last_request)
    if source.startswith("element:"):
        return _element_reader(ctx, source[len("element:"):]), True
    if source.startswith("action:"):
        return _action_reader(ctx, source[len("action:"):]), True
    if source.startswith("var:"):
        ref = source[len("var:"):]
        return (lambda: _placeholder_value(ctx, "var", ref)), False
    if source.startswith("fixture:"):
        ref = source[len("fixture:"):]
        return (lambda: _placeholder_value(ctx, "fixture", ref)), False
    raise StepFailure(f"Unknown assertion source {source!r}")


def _assert(ctx: SpecContext, step: Assertion) -> Any:
    matcher = get_matcher(step.matcher)
    expected = interpolate(step.expected, ctx)
    read, live = resolve_source(ctx, step.source)

    if not live:
        actual = read()
        if not matcher(actual, expected):
            raise AssertionMismatch(f"{step.describe()}: got {actual!r}")
        return actual

    def probe() -> Any:
        actual = read()
        if matcher(actual, expected):
            return actual
        return NotYet(actual)

    policy = (step.policy or ctx.policy).clipped(ctx.remaining_ms())
    try:
        result = await_condition(probe, policy)
    except WaitTimeoutError as exc:
        raise AssertionTimeout(step.describe(), exc) from exc
    return result.value


def execute_step(step: Step, ctx: SpecContext) -> Any:
    """
    Run one step against ``ctx``.

    Returns:
        The step's value (action result, response, or asserted value).

    Raises:
        StepFailure: Any failure scoped to this spec.
    """
    logger.debug("[%s] %s", ctx.spec.id, step.describe())

    if isinstance(step, UIAction):
        result = ctx.pages.perform(
            ctx.session, step.page, step.action, interpolate(dict(step.args), ctx), base_url=ctx.base_url
        )
        ctx.last_result = result
        return result

    if isinstance(step, APICall):
        return _send(ctx, step)

    if isinstance(step, Navigate):
        ctx.session.navigate(join_url(ctx.base_url, interpolate(step.path, ctx)))
        return None

    if isinstance(step, Assertion):
        return _assert(ctx, step)

    raise StepFailure(f"Unsupported step type: {type(step).__name__}")
