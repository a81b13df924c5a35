"""
Fixture Store.

Static test data (credentials, payloads, expected texts) lives in YAML or
JSON files keyed by scenario name. The store parses each file at most once
per run and hands out the same read-only mapping to every spec, including
specs running concurrently on other workers.

Key Concepts Demonstrated:
- Read-through cache guarded by a lock (safe for concurrent readers)
- Immutable fixture values (``MappingProxyType`` all the way down)
- Explicit merge policy when several fixtures are combined
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Protocol

import yaml

from harness.errors import FixtureConflictError, NotFoundError, ParseError

logger = logging.getLogger(__name__)

Fixture = Mapping[str, Any]

FIXTURE_SUFFIXES = (".yaml", ".yml", ".json")


class MergePolicy(str, Enum):
    """How ``FixtureStore.merge`` treats a key defined by several fixtures."""

    ERROR = "error"
    LAST_WINS = "last_wins"


class FixtureSource(Protocol):
    """Backing data source: returns the raw text of a named fixture."""

    def read(self, name: str) -> str:
        ...


class DirectorySource:
    """Reads ``<root>/<name>.yaml`` (or ``.yml`` / ``.json``)."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def read(self, name: str) -> str:
        for suffix in FIXTURE_SUFFIXES:
            path = self.root / f"{name}{suffix}"
            if path.is_file():
                return path.read_text(encoding="utf-8")
        raise NotFoundError(f"Fixture {name!r} not found under {self.root}")


def _deep_freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({key: _deep_freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_deep_freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Return a plain ``dict``/``list`` copy of a frozen fixture value."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


def lookup(data: Any, path: str, *, label: str = "value") -> Any:
    """
    Walk a dotted path through nested mappings and sequences.

    Numeric segments index into sequences (``items.0.name``).

    Raises:
        NotFoundError: A segment does not exist.
    """
    current = data
    if not path:
        return current
    for segment in path.split("."):
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.lstrip("-").isdigit():
            try:
                current = current[int(segment)]
            except IndexError:
                raise NotFoundError(f"{label}: index {segment} out of range in {path!r}") from None
        else:
            raise NotFoundError(f"{label}: no key {segment!r} in {path!r}")
    return current


class FixtureStore:
    """Loads fixtures once per run and serves them read-only."""

    def __init__(self, source: FixtureSource):
        self.source = source
        self._cache: dict[str, Fixture] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_directory(cls, root: str | Path) -> "FixtureStore":
        return cls(DirectorySource(root))

    def load(self, name: str) -> Fixture:
        """
        Return the fixture called ``name``, parsing it on first use.

        Raises:
            NotFoundError: The source has no such fixture.
            ParseError: The data is not valid YAML/JSON or not a mapping.
        """
        cached = self._cache.get(name)
        if cached is not None:
            logger.debug("Fixture %s served from cache", name)
            return cached

        with self._lock:
            cached = self._cache.get(name)
            if cached is not None:
                return cached

            raw = self.source.read(name)
            try:
                data = yaml.safe_load(raw)
            except yaml.YAMLError as exc:
                raise ParseError(f"Fixture {name!r} is malformed: {exc}") from exc
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ParseError(
                    f"Fixture {name!r} must be a mapping, got {type(data).__name__}"
                )

            fixture = _deep_freeze(data)
            self._cache[name] = fixture
            logger.debug("Fixture %s loaded (%d keys)", name, len(fixture))
            return fixture

    def get(self, name: str, path: str = "") -> Any:
        """Return a value inside a fixture by dotted path."""
        return lookup(self.load(name), path, label=f"fixture {name!r}")

    def merge(self, *names: str, policy: MergePolicy = MergePolicy.ERROR) -> Fixture:
        """
        Combine several fixtures into one read-only mapping.

        Args:
            names: Fixture names, merged in order.
            policy: ``ERROR`` raises on a shared top-level key;
                ``LAST_WINS`` keeps the value from the later fixture.

        Raises:
            FixtureConflictError: Two fixtures share a key under ``ERROR``.
        """
        merged: dict[str, Any] = {}
        owners: dict[str, str] = {}
        for name in names:
            for key, value in self.load(name).items():
                if key in merged and policy is MergePolicy.ERROR:
                    raise FixtureConflictError(key, owners[key], name)
                merged[key] = value
                owners[key] = name
        return MappingProxyType(merged)

    def loaded(self) -> list[str]:
        """Names currently in the cache, in load order."""
        return list(self._cache)
