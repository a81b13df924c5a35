"""
Shared pytest fixtures for the harness test suite.

Key Concepts Demonstrated:
- Fake collaborators (browser backend, HTTP client) for deterministic runs
- Factory fixtures for specs and fixture data
- A live Flask server in a background thread for real HTTP traffic
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
import requests
import yaml
from faker import Faker
from werkzeug.serving import make_server

from harness.config import Config
from harness.fixtures import FixtureStore
from harness.models import RetryPolicy, Step, TestSpec
from harness.pages import PageDefinition, PageRegistry, by_test_id
from tests.fakes import BackendPool, FakeElement, FakeHttpClient, json_response
from tests.support.demo_app import create_app

fake = Faker()

BASE_URL = "http://app.test"


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Fast config for fake-backend runs (no preflight, short waits)."""
    return Config(
        base_url=BASE_URL,
        browser="chromium",
        parallelism=1,
        default_retry_policy=RetryPolicy(timeout_ms=200, interval_ms=10, backoff_factor=1.0),
        spec_root=tmp_path / "specs",
        fixture_root=tmp_path / "fixtures",
        report_output_path=tmp_path / "report.json",
        artifact_dir=tmp_path / "artifacts",
        preflight=False,
    )


# -----------------------------------------------------------------------------
# Collaborators
# -----------------------------------------------------------------------------


def login_elements() -> dict[str, FakeElement]:
    """A fresh login page whose submit button 'logs in' by changing the URL."""
    elements = {
        "login-username-input": FakeElement(),
        "login-password-input": FakeElement(),
        "page-title": FakeElement(text="Tasks"),
    }

    def submit(session):
        if elements["login-password-input"].value == "secret":
            session.navigate(f"{BASE_URL}/")
        else:
            elements["flash-error"] = FakeElement(text="Invalid username or password")

    elements["login-submit"] = FakeElement(on_click=submit)
    return elements


@pytest.fixture
def backend_pool() -> BackendPool:
    return BackendPool(login_elements)


@pytest.fixture
def http_client() -> FakeHttpClient:
    return FakeHttpClient({("GET", f"{BASE_URL}/api/health"): json_response(200, {"status": "healthy"})})


@pytest.fixture
def registry() -> PageRegistry:
    login = PageDefinition(
        "login",
        path="/login",
        locators={
            "username": by_test_id("login-username-input"),
            "password": by_test_id("login-password-input"),
            "submit": by_test_id("login-submit"),
            "error": by_test_id("flash-error"),
        },
    )

    @login.action
    def sign_in(ctx, username, password):
        ctx.navigate()
        ctx.fill("username", username)
        ctx.fill("password", password)
        ctx.click("submit")

    @login.action
    def error_message(ctx):
        return ctx.text_of("error")

    home = PageDefinition("home", path="/", locators={"title": by_test_id("page-title")})

    pages = PageRegistry()
    pages.register("login", login)
    pages.register("home", home)
    return pages


# -----------------------------------------------------------------------------
# Data factories
# -----------------------------------------------------------------------------


@pytest.fixture
def fixture_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "fixtures"
    directory.mkdir()
    return directory


@pytest.fixture
def write_fixture(fixture_dir: Path) -> Callable[[str, object], Path]:
    """Write a YAML fixture file and return its path."""

    def _write(name: str, data: object, suffix: str = ".yaml") -> Path:
        path = fixture_dir / f"{name}{suffix}"
        path.write_text(yaml.safe_dump(data) if not isinstance(data, str) else data, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def fixture_store(write_fixture, fixture_dir: Path) -> FixtureStore:
    write_fixture(
        "login",
        {
            "valid": {"username": fake.user_name(), "password": "secret"},
            "invalid": {"username": fake.user_name(), "password": fake.password()},
        },
    )
    return FixtureStore.from_directory(fixture_dir)


@pytest.fixture
def spec_factory() -> Callable[..., TestSpec]:
    def _make(spec_id: str | None = None, steps: list[Step] | None = None, **kwargs) -> TestSpec:
        return TestSpec(id=spec_id or f"spec-{fake.unique.slug()}", steps=tuple(steps or ()), **kwargs)

    return _make


# -----------------------------------------------------------------------------
# Live server
# -----------------------------------------------------------------------------


def _wait_for_healthy(url: str, timeout: float = 10, interval: float = 0.1) -> None:
    """Poll the health endpoint until ready or timeout."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            if requests.get(f"{url}/api/health", timeout=1).status_code == 200:
                return
        except requests.RequestException:
            pass
        time.sleep(interval)
    raise RuntimeError(f"Demo app at {url} not healthy after {timeout}s")


@pytest.fixture(scope="session")
def live_server() -> Generator[str, None, None]:
    """
    Serve the demo application from a background thread.

    Binds to an ephemeral port so parallel test sessions never collide.

    Yields:
        str: Base URL of the running server.
    """
    server = make_server("127.0.0.1", 0, create_app(), threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    base_url = f"http://127.0.0.1:{server.server_port}"
    _wait_for_healthy(base_url)

    yield base_url

    server.shutdown()
    thread.join(timeout=5)
