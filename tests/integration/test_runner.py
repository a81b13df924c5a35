"""
Integration tests for the Spec Runner.

Runs real specs through the full runner (workers, hooks, aggregator)
against fake browser and HTTP backends.

Key Concepts Demonstrated:
- Fail-fast within a spec, isolation across specs
- Deterministic report order under parallel execution
- Cancellation and per-spec time ceilings
"""

from __future__ import annotations

import dataclasses
import time

import pytest

from harness.errors import SetupFailure
from harness.fixtures import FixtureStore
from harness.models import APICall, Assertion, Navigate, RetryPolicy, RunStatus, SpecState, UIAction
from harness.pages import PageDefinition
from harness.runner import EXIT_FAILED, EXIT_PASS, Hooks, SpecRunner, exit_code, load_plugins
from tests.conftest import BASE_URL
from tests.fakes import BackendPool, FakeHttpClient, json_response

pytestmark = pytest.mark.integration


@pytest.fixture
def make_runner(config, registry, fixture_store, backend_pool, http_client):
    def _make(**kwargs) -> SpecRunner:
        options = {
            "pages": registry,
            "fixtures": fixture_store,
            "backend_factory": backend_pool,
            "http_factory": lambda: http_client,
        }
        settings = {key: kwargs.pop(key) for key in list(kwargs) if key in {f.name for f in dataclasses.fields(config)}}
        options.update(kwargs)
        return SpecRunner(dataclasses.replace(config, **settings), **options)

    return _make


def login_steps(password: str = "secret"):
    return [
        UIAction("login", "sign_in", {"username": "demo", "password": password}),
        Assertion("url", "/", "ends_with"),
        Assertion("element:home.title", "Tasks"),
    ]


class TestOutcomes:
    def test_passing_spec(self, make_runner, spec_factory):
        # Arrange
        spec = spec_factory("login-ok", login_steps())

        # Act
        report = make_runner().run([spec])

        # Assert
        (result,) = report.results
        assert result.status is RunStatus.PASSED
        assert result.failure is None
        assert exit_code(report) == EXIT_PASS

    def test_failing_assertion_stops_spec_at_that_step(self, make_runner, spec_factory, backend_pool):
        # Arrange
        spec = spec_factory(
            "stays-on-login",
            [Navigate("/login"), Assertion("url", "/dashboard", "ends_with"), Navigate("/never")],
        )

        # Act
        report = make_runner().run([spec])

        # Assert
        (result,) = report.results
        assert result.status is RunStatus.FAILED
        assert result.failure.step_index == 1
        assert result.failure.error_type == "AssertionTimeout"
        assert result.failure.diagnostics["last_seen"] == f"{BASE_URL}/login"
        assert backend_pool.sessions[0].history == [f"{BASE_URL}/login"]
        assert exit_code(report) == EXIT_FAILED

    def test_wrong_password_fails_and_other_specs_still_run(self, make_runner, spec_factory):
        # Arrange
        specs = [
            spec_factory("bad-login", login_steps(password="wrong")),
            spec_factory("good-login", login_steps()),
        ]

        # Act
        report = make_runner().run(specs)

        # Assert
        statuses = {result.spec_id: result.status for result in report.results}
        assert statuses == {"bad-login": RunStatus.FAILED, "good-login": RunStatus.PASSED}
        assert report.results[0].failure.step_index == 1

    def test_unknown_page_fails_only_that_spec(self, make_runner, spec_factory):
        specs = [spec_factory("typo", [UIAction("logn", "sign_in")]), spec_factory("fine", [Navigate("/")])]

        report = make_runner().run(specs)

        assert report.results[0].failure.error_type == "UnknownPageError"
        assert report.results[1].status is RunStatus.PASSED

    def test_api_only_spec_never_opens_a_browser_session(self, make_runner, spec_factory, backend_pool):
        spec = spec_factory("health", [APICall("GET", "/api/health"), Assertion("response.status", 200)])

        report = make_runner().run([spec])

        assert report.results[0].status is RunStatus.PASSED
        assert backend_pool.sessions == []

    def test_failure_captures_screenshot(self, make_runner, spec_factory):
        spec = spec_factory("shot", [Navigate("/login"), Assertion("url", "/nope", "ends_with")])

        report = make_runner(record_video=True).run([spec])

        assert report.results[0].artifacts == ("artifacts/shot-screenshot.png", "artifacts/shot-video.webm")

    def test_artifact_errors_do_not_mask_the_failure(self, make_runner, spec_factory):
        spec = spec_factory("shot", [Navigate("/login"), Assertion("url", "/nope", "ends_with")])

        report = make_runner(backend_factory=BackendPool(fail_artifacts=True)).run([spec])

        result = report.results[0]
        assert result.failure.error_type == "AssertionTimeout"
        assert result.artifacts == ()


class TestIsolationAndParallelism:
    def test_every_spec_gets_a_fresh_session(self, make_runner, spec_factory, backend_pool):
        # Arrange -- the second spec would see "demo" if state leaked
        specs = [
            spec_factory("writer", [UIAction("login", "fill", {"element": "username", "value": "demo"})]),
            spec_factory("reader", [Assertion("element:login.username:value", "")]),
        ]

        # Act
        report = make_runner().run(specs)

        # Assert
        assert [result.status for result in report.results] == [RunStatus.PASSED, RunStatus.PASSED]
        assert len(backend_pool.sessions) == 2
        assert all(session.closed for session in backend_pool.sessions)

    def test_parallel_report_keeps_discovery_order(self, make_runner, spec_factory, backend_pool):
        # Arrange
        slow = PageDefinition("slow")

        @slow.action
        def wait(ctx, ms):
            time.sleep(ms / 1000)

        runner = make_runner(parallelism=3)
        runner.pages.register("slow", slow)
        specs = [
            spec_factory(f"spec-{i}", [UIAction("slow", "wait", {"ms": delay})])
            for i, delay in enumerate([60, 10, 40, 0, 30, 5])
        ]

        # Act
        report = runner.run(specs)

        # Assert
        assert [result.spec_id for result in report.results] == [f"spec-{i}" for i in range(6)]
        assert len(backend_pool.backends) == 3
        assert all(backend.closed for backend in backend_pool.backends)
        assert all(backend.thread_name.startswith("harness-worker-") for backend in backend_pool.backends)
        assert runner.states == {f"spec-{i}": SpecState.PASSED for i in range(6)}

    def test_workers_never_exceed_spec_count(self, make_runner, spec_factory, backend_pool):
        make_runner(parallelism=8).run([spec_factory("only", [Navigate("/")])])

        assert len(backend_pool.backends) == 1

    def test_empty_run_produces_empty_report(self, make_runner, backend_pool):
        report = make_runner().run([])

        assert report.results == ()
        assert backend_pool.backends == []
        assert exit_code(report) == EXIT_PASS


class TestCancellation:
    def test_cancel_finishes_current_step_and_skips_the_rest(self, make_runner, spec_factory, backend_pool):
        # Arrange
        runner = make_runner()
        trigger = PageDefinition("trigger")

        @trigger.action
        def cancel_run(ctx):
            runner.cancel()

        runner.pages.register("trigger", trigger)
        specs = [
            spec_factory("a", [Navigate("/")]),
            spec_factory("b", [UIAction("trigger", "cancel_run"), Navigate("/after-cancel")]),
            spec_factory("c", [Navigate("/never")]),
        ]

        # Act
        report = runner.run(specs)

        # Assert
        a, b, c = report.results
        assert a.status is RunStatus.PASSED
        assert b.status is RunStatus.SKIPPED
        assert b.failure.step_index == 1
        assert b.failure.error_type == "CancelledError"
        assert c.status is RunStatus.SKIPPED
        assert c.failure.step_index == -1
        assert len(backend_pool.sessions) == 2
        assert all(f"{BASE_URL}/after-cancel" not in session.history for session in backend_pool.sessions)
        assert exit_code(report) == EXIT_PASS

    def test_cancel_during_last_step_still_skips_spec(self, make_runner, spec_factory):
        # Arrange
        runner = make_runner()
        trigger = PageDefinition("trigger")

        @trigger.action
        def cancel_run(ctx):
            runner.cancel()

        runner.pages.register("trigger", trigger)
        specs = [
            spec_factory("a", [Navigate("/")]),
            spec_factory("b", [Navigate("/"), UIAction("trigger", "cancel_run")]),
            spec_factory("c", [Navigate("/never")]),
        ]

        # Act
        report = runner.run(specs)

        # Assert
        a, b, c = report.results
        assert a.status is RunStatus.PASSED
        assert b.status is RunStatus.SKIPPED
        assert b.failure.error_type == "CancelledError"
        assert b.failure.step_index == 2
        assert b.failure.step is None
        assert c.status is RunStatus.SKIPPED

    def test_cancel_during_failing_step_skips_and_keeps_cause(self, make_runner, spec_factory):
        # Arrange
        runner = make_runner()
        trigger = PageDefinition("trigger")

        @trigger.action
        def cancel_and_break(ctx):
            runner.cancel()
            raise RuntimeError("boom")

        runner.pages.register("trigger", trigger)
        spec = spec_factory("b", [UIAction("trigger", "cancel_and_break"), Navigate("/after-cancel")])

        # Act
        report = runner.run([spec])

        # Assert
        (result,) = report.results
        assert result.status is RunStatus.SKIPPED
        assert result.failure.error_type == "CancelledError"
        assert result.failure.step_index == 1
        assert "boom" in result.failure.diagnostics["cause"]
        assert exit_code(report) == EXIT_PASS


class TestSpecTimeout:
    def test_spec_over_budget_fails_and_worker_replaces_backend(self, make_runner, spec_factory, backend_pool):
        # Arrange
        slow = PageDefinition("slow")

        @slow.action
        def hang(ctx):
            time.sleep(0.15)

        runner = make_runner()
        runner.pages.register("slow", slow)
        specs = [
            spec_factory("hangs", [UIAction("slow", "hang"), Navigate("/unreached")], timeout_ms=50),
            spec_factory("after", [Navigate("/")]),
        ]

        # Act
        report = runner.run(specs)

        # Assert
        hangs, after = report.results
        assert hangs.status is RunStatus.FAILED
        assert hangs.failure.error_type == "SpecTimeout"
        assert hangs.failure.step_index == 0
        assert hangs.failure.diagnostics["timeout_ms"] == 50
        assert after.status is RunStatus.PASSED
        assert len(backend_pool.backends) == 2
        assert backend_pool.backends[0].closed is True

    def test_assertion_wait_is_clipped_to_spec_budget(self, make_runner, spec_factory):
        # Arrange -- the default policy would poll for 5s
        spec = spec_factory("clipped", [Navigate("/login"), Assertion("url", "/never", "ends_with")], timeout_ms=100)
        start = time.monotonic()

        # Act
        report = make_runner(default_retry_policy=RetryPolicy(5000, 10, 1.0)).run([spec])

        # Assert
        assert report.results[0].failure.error_type == "SpecTimeout"
        assert time.monotonic() - start < 2


class TestSetupFailures:
    def test_unreachable_base_url_fails_before_any_spec(self, make_runner, spec_factory, backend_pool):
        runner = make_runner(preflight=True, http_factory=lambda: FakeHttpClient(unreachable=True))

        with pytest.raises(SetupFailure, match="unreachable"):
            runner.run([spec_factory("x", [Navigate("/")])])

        assert backend_pool.backends == []
        assert runner.aggregator is None

    def test_preflight_accepts_any_http_response(self, make_runner, spec_factory):
        http = FakeHttpClient({("GET", BASE_URL): json_response(503, {})})
        runner = make_runner(preflight=True, http_factory=lambda: http)

        report = runner.run([spec_factory("x", [Navigate("/")])])

        assert report.results[0].status is RunStatus.PASSED

    def test_browser_launch_failure_records_no_results(self, make_runner, spec_factory):
        # Arrange
        pool = BackendPool(launch_error=RuntimeError("Executable doesn't exist"))
        runner = make_runner(backend_factory=pool, parallelism=2)
        specs = [spec_factory("x", [Navigate("/")]), spec_factory("y", [Navigate("/")])]

        # Act
        with pytest.raises(SetupFailure, match="Executable doesn't exist"):
            runner.run(specs)

        # Assert
        assert runner.aggregator.pending() == ["x", "y"]

    def test_before_all_failure_is_a_setup_failure(self, make_runner, spec_factory, backend_pool):
        def before_all(specs):
            raise RuntimeError("seed failed")

        runner = make_runner(hooks=Hooks(before_all=before_all))

        with pytest.raises(SetupFailure, match="seed failed"):
            runner.run([spec_factory("x", [Navigate("/")])])

        assert backend_pool.sessions == []
        assert all(backend.closed for backend in backend_pool.backends)


class TestHooksAndFixtures:
    def test_hooks_run_around_every_spec(self, make_runner, spec_factory):
        # Arrange
        calls = []
        hooks = Hooks(
            before_all=lambda specs: calls.append(("before_all", len(specs))),
            before_each=lambda ctx: calls.append(("before_each", ctx.spec.id)),
            after_each=lambda ctx: calls.append(("after_each", ctx.spec.id)),
            after_all=lambda report: calls.append(("after_all", report.totals["total"])),
        )

        # Act
        make_runner(hooks=hooks).run([spec_factory("a", [Navigate("/")]), spec_factory("b", [Navigate("/")])])

        # Assert
        assert calls == [
            ("before_all", 2),
            ("before_each", "a"),
            ("after_each", "a"),
            ("before_each", "b"),
            ("after_each", "b"),
            ("after_all", 2),
        ]

    def test_before_each_can_seed_variables(self, make_runner, spec_factory):
        def before_each(ctx):
            ctx.variables["token"] = "t-123"

        spec = spec_factory("uses-var", [Assertion("var:token", "t-123")])

        report = make_runner(hooks=Hooks(before_each=before_each)).run([spec])

        assert report.results[0].status is RunStatus.PASSED

    def test_before_each_failure_fails_spec_at_setup(self, make_runner, spec_factory):
        def before_each(ctx):
            raise RuntimeError("no seed data")

        report = make_runner(hooks=Hooks(before_each=before_each)).run([spec_factory("x", [Navigate("/")])])

        failure = report.results[0].failure
        assert (failure.step_index, failure.step, failure.error_type) == (-1, "setup", "RuntimeError")

    def test_after_each_failure_fails_a_passing_spec(self, make_runner, spec_factory):
        def after_each(ctx):
            raise RuntimeError("cleanup failed")

        report = make_runner(hooks=Hooks(after_each=after_each)).run(
            [spec_factory("x", [Navigate("/"), Navigate("/login")])]
        )

        failure = report.results[0].failure
        assert (failure.step_index, failure.step) == (2, "teardown")

    def test_after_each_failure_keeps_original_failure(self, make_runner, spec_factory):
        def after_each(ctx):
            raise RuntimeError("cleanup failed")

        report = make_runner(hooks=Hooks(after_each=after_each)).run(
            [spec_factory("x", [UIAction("nowhere", "go")])]
        )

        assert report.results[0].failure.error_type == "UnknownPageError"

    def test_missing_fixture_fails_spec_at_setup(self, make_runner, spec_factory):
        report = make_runner().run([spec_factory("x", [Navigate("/")], fixtures=("nope",))])

        failure = report.results[0].failure
        assert (failure.step_index, failure.error_type) == (-1, "NotFoundError")

    def test_shared_fixture_is_read_once_across_workers(self, make_runner, spec_factory):
        # Arrange
        class CountingSource:
            reads = 0

            def read(self, name):
                CountingSource.reads += 1
                return "valid: {username: demo, password: secret}\n"

        runner = make_runner(parallelism=3, fixtures=FixtureStore(CountingSource()))
        specs = [
            spec_factory(f"s{i}", [Assertion("fixture:login.valid.username", "demo")], fixtures=("login",))
            for i in range(6)
        ]

        # Act
        report = runner.run(specs)

        # Assert
        assert report.totals["passed"] == 6
        assert CountingSource.reads == 1


class TestPlugins:
    def test_example_plugin_registers_pages_and_hooks(self, registry):
        hooks = load_plugins(["examples.taskapp.pages"], registry)

        assert {"login", "register", "task_list", "task_form"} <= set(registry.names())
        assert hooks.before_each is not None
        assert hooks.after_all is None

    def test_missing_plugin_is_a_setup_failure(self, registry):
        with pytest.raises(SetupFailure, match="no_such_plugin"):
            load_plugins(["no_such_plugin"], registry)
