"""Named comparison functions used by assertion steps."""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

from harness.errors import UnknownMatcherError

Matcher = Callable[[Any, Any], bool]


def _contains(actual: Any, expected: Any) -> bool:
    if actual is None:
        return False
    if isinstance(actual, Mapping):
        return expected in actual
    if isinstance(actual, (list, tuple, set, frozenset)):
        return expected in actual
    return str(expected) in str(actual)


def _matches(actual: Any, expected: Any) -> bool:
    if actual is None:
        return False
    return re.search(str(expected), str(actual)) is not None


def _length(actual: Any, expected: Any) -> bool:
    try:
        return len(actual) == int(expected)
    except (TypeError, ValueError):
        return False


def _numeric(op: Callable[[float, float], bool]) -> Matcher:
    def compare(actual: Any, expected: Any) -> bool:
        try:
            return op(float(actual), float(expected))
        except (TypeError, ValueError):
            return False

    return compare


MATCHERS: dict[str, Matcher] = {
    "equals": lambda actual, expected: actual == expected,
    "not_equals": lambda actual, expected: actual != expected,
    "contains": _contains,
    "not_contains": lambda actual, expected: not _contains(actual, expected),
    "matches": _matches,
    "starts_with": lambda actual, expected: actual is not None and str(actual).startswith(str(expected)),
    "ends_with": lambda actual, expected: actual is not None and str(actual).endswith(str(expected)),
    "greater_than": _numeric(lambda a, b: a > b),
    "less_than": _numeric(lambda a, b: a < b),
    "truthy": lambda actual, _expected: bool(actual),
    "falsy": lambda actual, _expected: not actual,
    "length": _length,
    "exists": lambda actual, _expected: actual is not None,
}


def get_matcher(name: str) -> Matcher:
    """Return the matcher registered under ``name``."""
    try:
        return MATCHERS[name]
    except KeyError:
        raise UnknownMatcherError(
            f"Unknown matcher {name!r}; expected one of {', '.join(sorted(MATCHERS))}"
        ) from None
