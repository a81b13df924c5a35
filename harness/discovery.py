"""
Spec discovery and parsing.

Specs are YAML documents found under the spec root. A file holds either a
single spec or a ``specs:`` list::

    id: login-happy-path
    tags: [ui, smoke]
    fixtures: [login]
    steps:
      - navigate: /login
      - ui: login.sign_in
        args:
          username: ${fixture:login.valid.username}
          password: ${fixture:login.valid.password}
      - assert: url
        matcher: ends_with
        expected: /
      - api: GET /api/health
      - assert: response.status
        equals: 200
        retry: {timeout_ms: 2000}

Discovery order (sorted relative path, then position in file) is the order
results appear in the report, whatever order specs finish in.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from harness.errors import SpecParseError
from harness.matchers import MATCHERS
from harness.models import APICall, Assertion, Navigate, RetryPolicy, Step, TestSpec, UIAction

logger = logging.getLogger(__name__)

STEP_KEYS = ("ui", "api", "assert", "navigate")


def parse_step(raw: Any, source: Any, index: int) -> Step:
    """Turn one YAML step mapping into a Step value."""
    where = f"step {index}"
    if not isinstance(raw, Mapping):
        raise SpecParseError(source, f"{where} must be a mapping, got {type(raw).__name__}")

    present = [key for key in STEP_KEYS if key in raw]
    if len(present) != 1:
        raise SpecParseError(
            source, f"{where} must have exactly one of {', '.join(STEP_KEYS)}; found {present or 'none'}"
        )
    kind = present[0]

    if kind == "ui":
        target = str(raw["ui"])
        page, _, action = target.partition(".")
        if not page or not action:
            raise SpecParseError(source, f"{where}: ui target must look like 'page.action', got {target!r}")
        args = raw.get("args") or {}
        if not isinstance(args, Mapping):
            raise SpecParseError(source, f"{where}: args must be a mapping")
        return UIAction(page=page, action=action, args=args)

    if kind == "api":
        parts = str(raw["api"]).split(None, 1)
        if len(parts) != 2:
            raise SpecParseError(source, f"{where}: api must look like 'METHOD url', got {raw['api']!r}")
        headers = raw.get("headers") or {}
        if not isinstance(headers, Mapping):
            raise SpecParseError(source, f"{where}: headers must be a mapping")
        save_as = raw.get("save_as")
        if save_as is not None and not isinstance(save_as, str):
            raise SpecParseError(source, f"{where}: save_as must be a name, got {save_as!r}")
        return APICall(
            method=parts[0],
            url=parts[1],
            headers=headers,
            body=raw.get("body"),
            save_as=save_as,
        )

    if kind == "navigate":
        return Navigate(path=str(raw["navigate"]))

    matcher = raw.get("matcher", "equals")
    expected = raw.get("expected")
    shorthand = [name for name in MATCHERS if name in raw]
    if shorthand:
        if len(shorthand) > 1 or "matcher" in raw:
            raise SpecParseError(source, f"{where}: give one matcher, found {shorthand}")
        matcher = shorthand[0]
        expected = raw[matcher]
    if matcher not in MATCHERS:
        raise SpecParseError(source, f"{where}: unknown matcher {matcher!r}")

    policy = None
    if "retry" in raw:
        try:
            policy = RetryPolicy.from_dict(raw["retry"])
        except (TypeError, ValueError, AttributeError) as exc:
            raise SpecParseError(source, f"{where}: invalid retry policy: {exc}") from exc

    return Assertion(source=str(raw["assert"]), expected=expected, matcher=matcher, policy=policy)


def _names(raw: Mapping[str, Any], key: str, label: Any) -> list[str]:
    """A string or a list of scalars, as strings."""
    value = raw.get(key) or []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or any(isinstance(item, (Mapping, list)) for item in value):
        raise SpecParseError(label, f"'{key}' must be a name or a list of names, got {value!r}")
    return [str(item) for item in value]


def _timeout(value: Any, label: Any) -> int | None:
    if value is None:
        return None
    message = f"timeout_ms must be a positive integer, got {value!r}"
    if isinstance(value, bool):
        raise SpecParseError(label, message)
    try:
        timeout_ms = int(value)
    except (TypeError, ValueError):
        raise SpecParseError(label, message) from None
    if timeout_ms <= 0:
        raise SpecParseError(label, message)
    return timeout_ms


def parse_spec(raw: Any, source: Path | None, default_id: str) -> TestSpec:
    """Turn one YAML spec mapping into a TestSpec."""
    label = source or default_id
    if not isinstance(raw, Mapping):
        raise SpecParseError(label, "spec must be a mapping")
    steps_raw = raw.get("steps")
    if not isinstance(steps_raw, list) or not steps_raw:
        raise SpecParseError(label, "spec needs a non-empty 'steps' list")

    tags = _names(raw, "tags", label)
    fixtures = _names(raw, "fixtures", label)
    timeout_ms = _timeout(raw.get("timeout_ms"), label)
    return TestSpec(
        id=str(raw.get("id") or default_id),
        steps=tuple(parse_step(step, label, index) for index, step in enumerate(steps_raw)),
        tags=frozenset(tags),
        source=source,
        timeout_ms=timeout_ms,
        fixtures=tuple(fixtures),
    )


def load_spec_file(path: Path) -> list[TestSpec]:
    """Parse every spec in one file, in file order."""
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise SpecParseError(path, f"invalid YAML: {exc}") from exc

    stem = path.name.split(".", 1)[0]
    if isinstance(data, Mapping) and "specs" in data:
        items = data["specs"]
        if not isinstance(items, list):
            raise SpecParseError(path, "'specs' must be a list")
        return [parse_spec(item, path, f"{stem}-{index}") for index, item in enumerate(items)]
    return [parse_spec(data, path, stem)]


def discover_specs(
    root: str | Path,
    pattern: str = "**/*.spec.yaml",
    tags: Iterable[str] | None = None,
) -> list[TestSpec]:
    """
    Find and parse spec files under ``root``.

    Args:
        root: Directory scanned for specs.
        pattern: Glob relative to ``root``.
        tags: When given, keep only specs carrying at least one of them.

    Returns:
        Specs in discovery order.

    Raises:
        SpecParseError: A file is malformed, the root is missing, or two
            specs share an id.
    """
    root = Path(root)
    if not root.is_dir():
        raise SpecParseError(root, "spec root does not exist")

    paths = sorted(
        (path for path in root.glob(pattern) if path.is_file()),
        key=lambda path: path.relative_to(root).as_posix(),
    )
    specs: list[TestSpec] = []
    seen: dict[str, Path | None] = {}
    for path in paths:
        for spec in load_spec_file(path):
            if spec.id in seen:
                raise SpecParseError(path, f"duplicate spec id {spec.id!r} (first in {seen[spec.id]})")
            seen[spec.id] = spec.source
            specs.append(spec)

    wanted = set(tags or ())
    if wanted:
        specs = [spec for spec in specs if spec.tags & wanted]

    logger.info("Discovered %d spec(s) in %d file(s) under %s", len(specs), len(paths), root)
    return specs
