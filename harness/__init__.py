"""
Browser end-to-end test harness.

Discovers YAML test specs, drives a browser through stateless Page Objects,
polls asynchronous UI/API state with bounded retry policies, and aggregates
outcomes into a deterministic JSON report.
"""

from harness.config import Config, get_config
from harness.discovery import discover_specs
from harness.fixtures import FixtureStore
from harness.models import (
    APICall,
    Assertion,
    Navigate,
    Report,
    RetryPolicy,
    RunResult,
    RunStatus,
    TestSpec,
    UIAction,
)
from harness.pages import PageDefinition, PageObject, PageRegistry, by_css, by_label, by_role, by_test_id, by_text
from harness.runner import Hooks, SpecRunner
from harness.waiting import NOT_YET, NotYet, await_condition

__version__ = "0.1.0"

__all__ = [
    "APICall",
    "Assertion",
    "Config",
    "FixtureStore",
    "Hooks",
    "NOT_YET",
    "Navigate",
    "NotYet",
    "PageDefinition",
    "PageObject",
    "PageRegistry",
    "Report",
    "RetryPolicy",
    "RunResult",
    "RunStatus",
    "SpecRunner",
    "TestSpec",
    "UIAction",
    "await_condition",
    "by_css",
    "by_label",
    "by_role",
    "by_test_id",
    "by_text",
    "discover_specs",
    "get_config",
]
