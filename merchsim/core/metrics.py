from __future__ import annotations

import threading
from typing import Any, Iterable, Sequence

from merchsim.core.models import OutcomeSample, RunVerdict, Threshold
from merchsim.core.thresholds import evaluate_thresholds, percentile
from merchsim.logger import Logger, session_logger

_REPORT_PERCENTILES = (0.50, 0.90, 0.95, 0.99)


class OutcomeAggregator:
    """Collects per-request outcome samples for a run.

    ``record`` is append-only and safe from any thread or task; the lock is
    held only for the append, never across a request. Evaluation and
    reporting work on an immutable snapshot, so repeating them over the same
    samples gives the same answer.
    """

    def __init__(self, *, logger: Logger | None = None) -> None:
        self._logger = logger or session_logger
        self._lock = threading.Lock()
        self._samples: list[OutcomeSample] = []

    def record(self, sample: OutcomeSample) -> None:
        with self._lock:
            self._samples.append(sample)

        if sample.failed:
            self._logger.debug(
                "sim.metric_error_recorded",
                action=sample.action.value,
                status=sample.status,
                error_type=sample.error_type,
            )

    def snapshot(self) -> tuple[OutcomeSample, ...]:
        with self._lock:
            return tuple(self._samples)

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def evaluate(
        self,
        thresholds: Iterable[Threshold],
        samples: Sequence[OutcomeSample] | None = None,
    ) -> RunVerdict:
        """Check every threshold over ``samples`` (default: a fresh snapshot)."""
        return evaluate_thresholds(thresholds, self.snapshot() if samples is None else samples)

    def build_report(self, samples: Sequence[OutcomeSample] | None = None) -> dict[str, Any]:
        samples = self.snapshot() if samples is None else samples

        by_action: dict[str, list[OutcomeSample]] = {}
        for sample in samples:
            by_action.setdefault(sample.action.value, []).append(sample)

        return {
            "overall": _summarize(samples),
            "by_action": {name: _summarize(group) for name, group in sorted(by_action.items())},
        }


def _summarize(samples: Sequence[OutcomeSample]) -> dict[str, Any]:
    count = len(samples)
    error_count = 0
    error_types: dict[str, int] = {}
    statuses: dict[str, int] = {}
    for sample in samples:
        if sample.failed:
            error_count += 1
            et = sample.error_type or "unknown"
            error_types[et] = error_types.get(et, 0) + 1
        if sample.status is not None:
            key = str(sample.status)
            statuses[key] = statuses.get(key, 0) + 1

    values = sorted(s.latency_ms for s in samples)
    report: dict[str, Any] = {
        "count": count,
        "error_count": error_count,
        "failed_rate": (error_count / count) if count else None,
        "error_types": error_types,
        "statuses": statuses,
        "min_ms": values[0] if values else None,
        "max_ms": values[-1] if values else None,
        "mean_ms": (sum(values) / count) if count else None,
    }
    for p in _REPORT_PERCENTILES:
        report[f"p{int(p * 100)}_ms"] = percentile(values, p)
    return report
