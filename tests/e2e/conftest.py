"""Fixtures for running the bundled example suite in a real browser."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from harness.backends.playwright_backend import PlaywrightBackend
from harness.config import Config
from harness.models import RetryPolicy

EXAMPLE_ROOT = Path(__file__).resolve().parents[2] / "examples" / "taskapp"


@pytest.fixture(scope="session")
def browser_available() -> None:
    """Skip unless a Playwright Chromium build is installed."""
    backend = PlaywrightBackend("chromium")
    try:
        backend.launch()
    except Exception as exc:
        pytest.skip(f"Chromium not available ({exc}); run 'playwright install chromium'")
    finally:
        backend.close()


@pytest.fixture
def e2e_config(live_server: str, tmp_path: Path, browser_available) -> Config:
    return Config(
        base_url=live_server,
        browser="chromium",
        parallelism=2,
        default_retry_policy=RetryPolicy(timeout_ms=5000, interval_ms=100, backoff_factor=1.5),
        spec_root=EXAMPLE_ROOT / "specs",
        fixture_root=EXAMPLE_ROOT / "fixtures",
        report_output_path=tmp_path / "report.json",
        artifact_dir=tmp_path / "artifacts",
        spec_timeout_ms=60000,
        plugins=("examples.taskapp.pages",),
    )


@pytest.fixture
def make_e2e_config(e2e_config: Config):
    def _make(**changes) -> Config:
        return dataclasses.replace(e2e_config, **changes)

    return _make
