"""
Result aggregation and reporting.

Workers stream results into a single ``ResultAggregator``. Each spec id can
be recorded exactly once; a second ``record`` for the same id is a bug
(typically a retried spec being double-counted) and raises instead of
silently overwriting. ``finalize`` orders results by discovery order so a
parallel run produces the same report as a sequential one.

The aggregator only stores artifact references; the files themselves are
written (and owned) by the browser backend.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from harness.errors import DuplicateResultError, ReportFinalizedError
from harness.models import Report, RunResult

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class ResultAggregator:
    """
    Thread-safe, write-once collection of RunResults.

    Args:
        spec_ids: Spec ids in discovery order; defines report order.
        browser: Browser name recorded in the run metadata.
        base_url: Base URL recorded in the run metadata.
        parallelism: Worker count recorded in the run metadata.
    """

    def __init__(
        self,
        spec_ids: Iterable[str],
        *,
        browser: str = "",
        base_url: str = "",
        parallelism: int = 1,
    ):
        self._order = list(spec_ids)
        self._known = set(self._order)
        self._results: dict[str, RunResult] = {}
        self._lock = threading.Lock()
        self._report: Report | None = None
        self.browser = browser
        self.base_url = base_url
        self.parallelism = parallelism
        self.started_at = utc_now()

    def record(self, spec_id: str, result: RunResult) -> None:
        """
        Store the result for ``spec_id``.

        Raises:
            DuplicateResultError: A result for this id already exists; the
                first one is kept unchanged.
            ReportFinalizedError: ``finalize`` was already called.
            KeyError: ``spec_id`` was not part of this run.
        """
        if spec_id not in self._known:
            raise KeyError(f"Spec {spec_id!r} is not part of this run")
        with self._lock:
            if self._report is not None:
                raise ReportFinalizedError("Cannot record results after finalize()")
            if spec_id in self._results:
                raise DuplicateResultError(spec_id)
            self._results[spec_id] = result
        logger.info("%s %s (%.0fms)", result.status.value.upper(), spec_id, result.duration_ms)

    def has_result(self, spec_id: str) -> bool:
        return spec_id in self._results

    def result(self, spec_id: str) -> RunResult | None:
        return self._results.get(spec_id)

    def pending(self) -> list[str]:
        """Spec ids without a result, in discovery order."""
        return [spec_id for spec_id in self._order if spec_id not in self._results]

    def finalize(self) -> Report:
        """
        Build the report; callable exactly once.

        Specs without a recorded result are left out.

        Raises:
            ReportFinalizedError: Called a second time.
        """
        with self._lock:
            if self._report is not None:
                raise ReportFinalizedError("Report already finalized")
            results = tuple(
                self._results[spec_id] for spec_id in self._order if spec_id in self._results
            )
            self._report = Report(
                started_at=self.started_at,
                finished_at=utc_now(),
                browser=self.browser,
                base_url=self.base_url,
                parallelism=self.parallelism,
                results=results,
            )
            return self._report


def write_report(report: Report, path: str | Path) -> Path:
    """Write ``report`` as deterministic JSON (sorted keys, 2-space indent)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(report.to_dict(), handle, indent=2, sort_keys=True)
        handle.write("\n")
    logger.info("Report written to %s", path)
    return path


def load_report(path: str | Path) -> Report:
    with Path(path).open("r", encoding="utf-8") as handle:
        return Report.from_dict(json.load(handle))


def format_summary(report: Report) -> str:
    """Human-readable results table for CI logs."""
    lines = [
        f"Run against {report.base_url} ({report.browser}, parallel={report.parallelism})",
        "-" * 72,
        f"{'Spec':<44}{'Status':>10}{'Duration (ms)':>18}",
        "-" * 72,
    ]
    for result in report.results:
        lines.append(f"{result.spec_id[:43]:<44}{result.status.value.upper():>10}{result.duration_ms:>18.0f}")
        if result.failure:
            lines.append(f"    step {result.failure.step_index}: {result.failure.error_type}: {result.failure.message}")
            for artifact in result.artifacts:
                lines.append(f"    artifact: {artifact}")
    totals = report.totals
    lines.append("-" * 72)
    lines.append(
        f"Total: {totals['total']}  Passed: {totals['passed']}  "
        f"Failed: {totals['failed']}  Skipped: {totals['skipped']}"
    )
    lines.append(f"Overall: {'PASS' if report.passed else 'FAIL'}")
    return "\n".join(lines)
