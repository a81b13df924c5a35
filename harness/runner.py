"""
Spec Runner.

Executes discovered specs against one browser backend configuration:

- a preflight check turns an unreachable base URL or a browser that will not
  launch into a ``SetupFailure`` before any spec is scheduled;
- ``parallelism`` worker threads each own one backend for their lifetime and
  pull specs from a shared queue;
- every spec gets a fresh browser session (a clean context), so results do
  not depend on run order;
- a spec stops at its first failing step, other specs keep running;
- ``cancel()`` lets each worker finish its current step, marks the in-flight
  spec ``skipped`` and stops the queue;
- a per-spec time ceiling fails the spec with ``SpecTimeout`` and makes the
  worker replace its backend before the next spec.

Key Concepts Demonstrated:
- Worker pool with per-worker resources (the sync Playwright API is bound to
  the thread that started it)
- Fail-fast inside a spec, isolation across specs
- Explicit setup/teardown hooks instead of ambient global state
- Screenshot capture on failure
"""

from __future__ import annotations

import importlib
import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Iterable

from harness.backends import create_browser_backend, create_http_client
from harness.backends.base import BrowserBackend, HttpClient
from harness.config import Config
from harness.errors import CancelledError, HttpError, SetupFailure, SpecTimeout
from harness.fixtures import FixtureStore
from harness.models import FailureDetail, Report, RunResult, RunStatus, SpecState, TestSpec
from harness.pages import PageRegistry
from harness.reporting import ResultAggregator
from harness.steps import SpecContext, execute_step

logger = logging.getLogger(__name__)

EXIT_PASS = 0
EXIT_FAILED = 1
EXIT_SETUP_FAILURE = 2

HOOK_NAMES = ("before_all", "before_each", "after_each", "after_all")


@dataclass
class Hooks:
    """
    Setup/teardown callbacks.

    Attributes:
        before_all: Called with the spec list once workers are ready; an
            exception aborts the run as a ``SetupFailure``.
        before_each: Called with the ``SpecContext`` before the first step;
            an exception fails the spec.
        after_each: Called with the ``SpecContext`` after the last step, even
            when the spec failed.
        after_all: Called with the final ``Report``.
    """

    before_all: Callable[[list[TestSpec]], Any] | None = None
    before_each: Callable[[SpecContext], Any] | None = None
    after_each: Callable[[SpecContext], Any] | None = None
    after_all: Callable[[Report], Any] | None = None

    @classmethod
    def combine(cls, hooks: Iterable["Hooks"]) -> "Hooks":
        """Chain several hook sets; each callback runs in the given order."""
        hooks = list(hooks)
        combined = cls()
        for name in HOOK_NAMES:
            callbacks = [getattr(item, name) for item in hooks if getattr(item, name)]
            if not callbacks:
                continue

            def chained(arg, _callbacks=callbacks):
                for callback in _callbacks:
                    callback(arg)

            setattr(combined, name, chained)
        return combined


def load_plugins(names: Iterable[str], pages: PageRegistry) -> Hooks:
    """
    Import plugin modules, let them register pages, and collect their hooks.

    A plugin is any importable module; it may define ``register_pages(registry)``
    and any of ``before_all``, ``before_each``, ``after_each``, ``after_all``.
    """
    collected = []
    for name in names:
        try:
            module = importlib.import_module(name)
        except ImportError as exc:
            raise SetupFailure(f"Cannot import plugin {name!r}: {exc}") from exc
        register = getattr(module, "register_pages", None)
        if register is not None:
            register(pages)
        collected.append(Hooks(**{hook: getattr(module, hook, None) for hook in HOOK_NAMES}))
        logger.info("Loaded plugin %s", name)
    return Hooks.combine(collected)


def exit_code(report: Report) -> int:
    """0 when no spec failed, 1 otherwise."""
    return EXIT_PASS if report.passed else EXIT_FAILED


class _Worker(threading.Thread):
    """Owns one backend and runs specs from the shared queue until it is empty."""

    def __init__(self, runner: "SpecRunner", index: int, specs: "queue.Queue[TestSpec]"):
        super().__init__(name=f"harness-worker-{index}", daemon=True)
        self.runner = runner
        self.specs = specs
        self.backend: BrowserBackend | None = None
        self.launched = threading.Event()
        self.launch_error: BaseException | None = None
        self.error: BaseException | None = None

    def _launch(self) -> None:
        self.backend = self.runner.backend_factory()
        self.backend.launch()

    def _close_backend(self) -> None:
        backend, self.backend = self.backend, None
        if backend is None:
            return
        try:
            backend.close()
        except Exception as exc:
            logger.warning("%s: failed to close backend: %s", self.name, exc)

    def run(self) -> None:
        try:
            self._launch()
        except Exception as exc:
            self.launch_error = exc
            self._close_backend()
        finally:
            self.launched.set()
        if self.launch_error is not None:
            return

        self.runner._go.wait()
        try:
            if not self.runner._abort.is_set():
                self._drain()
        except BaseException as exc:
            self.error = exc
        finally:
            self._close_backend()

    def _drain(self) -> None:
        while not self.runner.cancelled:
            try:
                spec = self.specs.get_nowait()
            except queue.Empty:
                return
            discard = self.runner._run_spec(spec, self.backend)
            if discard:
                logger.warning("%s: replacing browser after timeout in %s", self.name, spec.id)
                self._close_backend()
                try:
                    self._launch()
                except Exception as exc:
                    logger.error("%s: could not relaunch browser, worker stopping: %s", self.name, exc)
                    self._close_backend()
                    return


class SpecRunner:
    """
    Runs specs and produces a Report.

    Args:
        config: Run configuration.
        pages: Registry of Page Objects (shared read-only by all workers).
        fixtures: Fixture store (shared; loads each fixture once).
        backend_factory: Builds an unlaunched browser backend; called once
            per worker (and again when a worker replaces its backend).
        http_factory: Builds an HTTP client; called per spec and for preflight.
        hooks: Setup/teardown callbacks.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        config: Config,
        *,
        pages: PageRegistry | None = None,
        fixtures: FixtureStore | None = None,
        backend_factory: Callable[[], BrowserBackend] | None = None,
        http_factory: Callable[[], HttpClient] | None = None,
        hooks: Hooks | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.pages = pages or PageRegistry()
        self.fixtures = fixtures or FixtureStore.from_directory(config.fixture_root)
        self.backend_factory = backend_factory or (lambda: create_browser_backend(config))
        self.http_factory = http_factory or (lambda: create_http_client(config))
        self.hooks = hooks or Hooks()
        self.clock = clock
        self.states: dict[str, SpecState] = {}
        self.aggregator: ResultAggregator | None = None
        self._states_lock = threading.Lock()
        self._cancel = threading.Event()
        self._go = threading.Event()
        self._abort = threading.Event()

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def cancel(self) -> None:
        """Ask workers to stop after their current step."""
        if not self._cancel.is_set():
            logger.warning("Run cancelled; finishing current steps")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _set_state(self, spec_id: str, state: SpecState) -> None:
        with self._states_lock:
            self.states[spec_id] = state

    def preflight(self) -> None:
        """
        Check that the base URL answers at all.

        Any HTTP response counts as reachable; only transport errors fail.

        Raises:
            SetupFailure: The base URL cannot be reached.
        """
        http = self.http_factory()
        try:
            response = http.send("GET", self.config.base_url)
        except HttpError as exc:
            raise SetupFailure(f"Base URL {self.config.base_url} is unreachable: {exc}") from exc
        finally:
            http.close()
        logger.info("Preflight: %s answered %s", self.config.base_url, response.status)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self, specs: Iterable[TestSpec]) -> Report:
        """
        Execute ``specs`` and return the finalized report.

        Raises:
            SetupFailure: Preflight failed, a browser could not be launched,
                or ``before_all`` raised. No result is recorded in that case.
        """
        specs = list(specs)
        if self.config.preflight:
            self.preflight()

        self.aggregator = ResultAggregator(
            [spec.id for spec in specs],
            browser=self.config.browser,
            base_url=self.config.base_url,
            parallelism=self.config.parallelism,
        )
        for spec in specs:
            self._set_state(spec.id, SpecState.PENDING)

        pending: queue.Queue[TestSpec] = queue.Queue()
        for spec in specs:
            pending.put(spec)

        worker_count = min(self.config.parallelism, len(specs))
        workers = [_Worker(self, index, pending) for index in range(worker_count)]
        logger.info(
            "Running %d spec(s) on %d worker(s) against %s",
            len(specs),
            worker_count,
            self.config.base_url,
        )
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.launched.wait()

        launch_errors = [worker.launch_error for worker in workers if worker.launch_error]
        if launch_errors:
            self._abort_workers(workers)
            raise SetupFailure(f"Browser failed to launch: {launch_errors[0]}") from launch_errors[0]

        if self.hooks.before_all:
            try:
                self.hooks.before_all(specs)
            except Exception as exc:
                self._abort_workers(workers)
                raise SetupFailure(f"before_all hook failed: {exc}") from exc

        self._go.set()
        self._join(workers)

        for worker in workers:
            if worker.error is not None:
                raise worker.error

        self._record_unstarted(specs)
        report = self.aggregator.finalize()
        if self.hooks.after_all:
            self.hooks.after_all(report)
        logger.info("Run finished: %s", report.totals)
        return report

    def _abort_workers(self, workers: list[_Worker]) -> None:
        self._abort.set()
        self._go.set()
        for worker in workers:
            worker.join()

    def _join(self, workers: list[_Worker]) -> None:
        # Short join timeouts keep the main thread responsive to Ctrl-C.
        while any(worker.is_alive() for worker in workers):
            try:
                for worker in workers:
                    worker.join(timeout=0.2)
            except KeyboardInterrupt:
                self.cancel()

    def _record_unstarted(self, specs: list[TestSpec]) -> None:
        for spec_id in self.aggregator.pending():
            if self.cancelled:
                status = RunStatus.SKIPPED
                failure = FailureDetail(-1, None, CancelledError.__name__, "Run cancelled before spec started")
            else:
                status = RunStatus.FAILED
                failure = FailureDetail(-1, None, SetupFailure.__name__, "No browser available to run spec")
            self.aggregator.record(spec_id, RunResult(spec_id, status, 0.0, failure))
            self._set_state(spec_id, SpecState(status.value))

    # -------------------------------------------------------------------------
    # One spec
    # -------------------------------------------------------------------------

    def _capture_artifacts(self, ctx: SpecContext) -> None:
        if not ctx.has_session:
            return
        kinds = ["screenshot"] + (["video"] if self.config.record_video else [])
        for kind in kinds:
            try:
                path = ctx.session.capture_artifact(kind, f"{ctx.spec.id}-{kind}")
            except Exception as exc:
                logger.warning("Failed to capture %s for %s: %s", kind, ctx.spec.id, exc)
                continue
            if path:
                ctx.artifacts.append(path)

    @staticmethod
    def _timeout_failure(
        index: int,
        step: str,
        spec: TestSpec,
        timeout_ms: int,
        elapsed_ms: float,
        cause: Exception | None,
    ) -> FailureDetail:
        timeout = SpecTimeout(spec.id, timeout_ms, elapsed_ms)
        diagnostics = timeout.diagnostics()
        if cause is not None:
            diagnostics["cause"] = f"{type(cause).__name__}: {cause}"
        return FailureDetail(index, step, type(timeout).__name__, str(timeout), diagnostics)

    @staticmethod
    def _cancel_failure(index: int, spec: TestSpec, cause: Exception | None = None) -> FailureDetail:
        """Failure detail for a spec stopped by ``cancel()`` before step ``index``."""
        step = spec.steps[index].describe() if index < len(spec.steps) else None
        diagnostics = {}
        if cause is not None:
            diagnostics["cause"] = f"{type(cause).__name__}: {cause}"
        error = CancelledError("Run cancelled during spec")
        return FailureDetail(index, step, type(error).__name__, str(error), diagnostics)

    def _run_spec(self, spec: TestSpec, backend: BrowserBackend) -> bool:
        """
        Run one spec to completion and record its result.

        Returns:
            True when the spec hit its time ceiling and the worker must
            discard its backend.
        """
        self._set_state(spec.id, SpecState.RUNNING)
        start = self.clock()
        timeout_ms = spec.timeout_ms or self.config.spec_timeout_ms
        deadline = start + timeout_ms / 1000.0 if timeout_ms else None

        http = self.http_factory()
        ctx = SpecContext(
            spec,
            pages=self.pages,
            fixtures=self.fixtures,
            http=http,
            base_url=self.config.base_url,
            policy=self.config.default_retry_policy,
            session_factory=backend.new_session,
            deadline=deadline,
            clock=self.clock,
        )

        failure: FailureDetail | None = None
        cancelled = False
        timed_out = False

        try:
            for name in spec.fixtures:
                self.fixtures.load(name)
            if self.hooks.before_each:
                self.hooks.before_each(ctx)
        except Exception as exc:
            failure = FailureDetail.from_exception(-1, "setup", exc)
            self._capture_artifacts(ctx)

        if failure is None:
            for index, step in enumerate(spec.steps):
                if self.cancelled:
                    cancelled = True
                    failure = self._cancel_failure(index, spec)
                    break
                cause: Exception | None = None
                try:
                    execute_step(step, ctx)
                except Exception as exc:
                    logger.info("[%s] step %d failed: %s", spec.id, index, exc)
                    cause = exc
                # cancelled mid-step: skip even if this was the last step or it failed
                if self.cancelled:
                    cancelled = True
                    failure = self._cancel_failure(index + 1, spec, cause)
                    break
                remaining = ctx.remaining_ms()
                if remaining is not None and remaining <= 0:
                    timed_out = True
                    elapsed_ms = (self.clock() - start) * 1000.0
                    failure = self._timeout_failure(index, step.describe(), spec, timeout_ms, elapsed_ms, cause)
                elif cause is not None:
                    failure = FailureDetail.from_exception(index, step.describe(), cause)
                if failure is not None:
                    self._capture_artifacts(ctx)
                    break

        if self.hooks.after_each:
            try:
                self.hooks.after_each(ctx)
            except Exception as exc:
                if failure is None:
                    failure = FailureDetail.from_exception(len(spec.steps), "teardown", exc)
                else:
                    logger.warning("[%s] after_each hook failed: %s", spec.id, exc)

        try:
            ctx.close_session()
        except Exception as exc:
            logger.warning("[%s] failed to close session: %s", spec.id, exc)
        http.close()

        if cancelled:
            status = RunStatus.SKIPPED
        elif failure is not None:
            status = RunStatus.FAILED
        else:
            status = RunStatus.PASSED

        duration_ms = (self.clock() - start) * 1000.0
        self.aggregator.record(
            spec.id,
            RunResult(spec.id, status, duration_ms, failure, tuple(ctx.artifacts)),
        )
        self._set_state(spec.id, SpecState(status.value))
        return timed_out
