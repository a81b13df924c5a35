"""
Wait/Retry policy engine.

Polls a zero-argument probe until it produces a satisfying value or the
policy budget runs out. This generalises the health-polling loops used to
wait for a live stack (``deadline = now + timeout; while now < deadline``)
with exponential backoff and a clear split between transient probe errors,
which are retried, and terminal ones, which abort at once.

Probe protocol:

- return any value other than ``NOT_YET`` -> success, value is returned;
- return ``NOT_YET`` or ``NotYet(seen)`` -> retry later, ``seen`` is kept
  as the last observed value for diagnostics;
- raise an exception listed in ``transient`` -> retry later;
- raise anything else -> propagate immediately.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from harness.errors import TransientProbeError, WaitTimeoutError
from harness.models import RetryPolicy

logger = logging.getLogger(__name__)


class NotYet:
    """Marker returned by a probe whose condition is not satisfied yet."""

    __slots__ = ("seen",)

    def __init__(self, seen: Any = None):
        self.seen = seen

    def __repr__(self) -> str:
        return f"NotYet({self.seen!r})"


NOT_YET = NotYet()


@dataclass(frozen=True)
class WaitResult:
    value: Any
    elapsed_ms: float
    attempts: int


def await_condition(
    probe: Callable[[], Any],
    policy: RetryPolicy,
    *,
    transient: tuple[type[BaseException], ...] = (TransientProbeError,),
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> WaitResult:
    """
    Poll ``probe`` under ``policy`` until it is satisfied.

    Args:
        probe: Zero-argument callable following the probe protocol above.
        policy: Timeout, initial interval and backoff factor.
        transient: Exception types that mean "not observable yet".
        clock: Monotonic clock in seconds (injectable for tests).
        sleep: Sleep function in seconds (injectable for tests).

    Returns:
        The satisfying value with elapsed time and attempt count.

    Raises:
        WaitTimeoutError: The budget was exhausted without success.
    """
    timeout_s = policy.timeout_ms / 1000.0
    interval_s = policy.interval_ms / 1000.0
    start = clock()
    attempts = 0
    last_seen: Any = None

    while True:
        attempts += 1
        try:
            value = probe()
        except transient as exc:
            last_seen = exc
        else:
            if not isinstance(value, NotYet):
                elapsed_ms = (clock() - start) * 1000.0
                logger.debug("Condition met after %d attempt(s) in %.0fms", attempts, elapsed_ms)
                return WaitResult(value=value, elapsed_ms=elapsed_ms, attempts=attempts)
            if value is not NOT_YET:
                last_seen = value.seen

        elapsed_s = clock() - start
        remaining_s = timeout_s - elapsed_s
        if remaining_s <= 0:
            raise WaitTimeoutError(last_seen, attempts, elapsed_s * 1000.0)

        sleep(min(interval_s, remaining_s))
        interval_s *= policy.backoff_factor
