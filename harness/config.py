"""
Harness configuration.

Configuration is loaded once at process start from, in increasing order of
precedence:

1. the defaults on ``Config``,
2. an optional YAML file (``harness.yml`` in the working directory, or the
   path given with ``--config``), optionally narrowed to a named profile,
3. environment variables (``TEST_BASE_URL``, ``HARNESS_*``),
4. explicit overrides from the command line.

A config file may define profiles the same way an application defines
development/testing/production environments::

    base_url: http://localhost:5000
    profiles:
      ci:
        headless: true
        parallelism: 4

The active profile comes from ``HARNESS_ENV`` (or the ``profile`` argument).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from harness.errors import ConfigError
from harness.models import RetryPolicy

DEFAULT_CONFIG_FILE = "harness.yml"

SUPPORTED_BROWSERS = ("chromium", "chrome", "edge", "firefox", "webkit")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class Config:
    """Immutable run configuration."""

    base_url: str = "http://localhost:5000"
    browser: str = "chromium"
    headless: bool = True
    parallelism: int = 1
    default_retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    spec_root: Path = Path("specs")
    spec_pattern: str = "**/*.spec.yaml"
    fixture_root: Path = Path("fixtures")
    report_output_path: Path = Path("test-results/report.json")
    artifact_dir: Path = Path("test-results/artifacts")
    spec_timeout_ms: int | None = None
    action_timeout_ms: int = 5000
    http_timeout_s: float = 10
    record_video: bool = False
    tags: tuple[str, ...] = ()
    plugins: tuple[str, ...] = ()
    preflight: bool = True

    def validate(self) -> "Config":
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigError(f"base_url must be an http(s) URL, got {self.base_url!r}")
        if self.browser not in SUPPORTED_BROWSERS:
            raise ConfigError(
                f"Unsupported browser {self.browser!r}; "
                f"expected one of {', '.join(SUPPORTED_BROWSERS)}"
            )
        if self.parallelism < 1:
            raise ConfigError(f"parallelism must be >= 1, got {self.parallelism}")
        if self.spec_timeout_ms is not None and self.spec_timeout_ms <= 0:
            raise ConfigError("spec_timeout_ms must be positive when set")
        return self


# -----------------------------------------------------------------------------
# Coercion helpers
# -----------------------------------------------------------------------------


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"Expected a boolean, got {value!r}")


def _to_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    return tuple(str(item) for item in value)


def _coerce(name: str, value: Any, current: Config) -> Any:
    try:
        if name in {"headless", "record_video", "preflight"}:
            return _to_bool(value)
        if name in {"parallelism", "action_timeout_ms"}:
            return int(value)
        if name == "spec_timeout_ms":
            return None if value in (None, "") else int(value)
        if name == "http_timeout_s":
            return float(value)
        if name in {"spec_root", "fixture_root", "report_output_path", "artifact_dir"}:
            return Path(value)
        if name in {"tags", "plugins"}:
            return _to_list(value)
        if name == "default_retry_policy":
            if isinstance(value, RetryPolicy):
                return value
            return RetryPolicy.from_dict(value, base=current.default_retry_policy)
        return str(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {name}: {value!r} ({exc})") from exc


def _apply(config: Config, values: Mapping[str, Any], origin: str) -> Config:
    known = {f.name for f in fields(Config)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"Unknown setting(s) in {origin}: {', '.join(unknown)}")
    changes = {name: _coerce(name, value, config) for name, value in values.items()}
    return replace(config, **changes)


# -----------------------------------------------------------------------------
# Sources
# -----------------------------------------------------------------------------


def load_file(path: str | Path, profile: str | None = None) -> dict[str, Any]:
    """Read settings from a YAML file, merging in ``profiles[profile]`` if given."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    profiles = data.pop("profiles", None) or {}
    if profile:
        if profile not in profiles:
            raise ConfigError(f"Profile {profile!r} not defined in {path}")
        data.update(profiles[profile] or {})
    return data


def load_env(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect settings from environment variables that are set."""
    values: dict[str, Any] = {}
    simple = {
        "TEST_BASE_URL": "base_url",
        "HARNESS_BROWSER": "browser",
        "HARNESS_HEADLESS": "headless",
        "HARNESS_PARALLEL": "parallelism",
        "HARNESS_SPEC_ROOT": "spec_root",
        "HARNESS_SPEC_PATTERN": "spec_pattern",
        "HARNESS_FIXTURE_ROOT": "fixture_root",
        "HARNESS_REPORT_PATH": "report_output_path",
        "HARNESS_ARTIFACT_DIR": "artifact_dir",
        "HARNESS_SPEC_TIMEOUT_MS": "spec_timeout_ms",
        "HARNESS_HTTP_TIMEOUT": "http_timeout_s",
        "HARNESS_RECORD_VIDEO": "record_video",
        "HARNESS_PLUGINS": "plugins",
    }
    for env_name, setting in simple.items():
        if env_name in environ:
            values[setting] = environ[env_name]

    policy = {
        "timeout_ms": environ.get("HARNESS_RETRY_TIMEOUT_MS"),
        "interval_ms": environ.get("HARNESS_RETRY_INTERVAL_MS"),
        "backoff_factor": environ.get("HARNESS_RETRY_BACKOFF"),
    }
    policy = {key: value for key, value in policy.items() if value is not None}
    if policy:
        values["default_retry_policy"] = policy
    return values


def get_config(
    path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    *,
    profile: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """
    Build the run configuration.

    Args:
        path: Config file; if None, ``harness.yml`` is used when it exists.
        overrides: Highest-precedence values (``None`` entries are ignored).
        profile: Profile name; defaults to ``HARNESS_ENV``.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        A validated ``Config``.

    Raises:
        ConfigError: A source is unreadable or a value is invalid.
    """
    environ = os.environ if environ is None else environ
    profile = profile or environ.get("HARNESS_ENV") or None

    config = Config()
    if path is None and Path(DEFAULT_CONFIG_FILE).is_file():
        path = DEFAULT_CONFIG_FILE
    if path is not None:
        config = _apply(config, load_file(path, profile), str(path))

    config = _apply(config, load_env(environ), "environment")

    cli_values = {key: value for key, value in (overrides or {}).items() if value is not None}
    config = _apply(config, cli_values, "overrides")
    return config.validate()
