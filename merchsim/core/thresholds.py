"""Threshold predicates over aggregated outcome samples.

Predicates use k6 syntax: ``rate<0.0001`` for the failed-request rate and
``p(90)<50`` / ``avg<20`` / ``max<=500`` / ``med<10`` / ``min>0`` for request
duration in milliseconds.

Percentiles use linear interpolation between closest ranks. A metric with no
samples has no observed value; its thresholds are reported as insufficient
data and count as passing.
"""

from __future__ import annotations

import math
import operator
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from merchsim.core.models import (
    MetricKind,
    OutcomeSample,
    RunVerdict,
    Threshold,
    ThresholdResult,
    Verdict,
)
from merchsim.exceptions import ConfigError

_PREDICATE_RE = re.compile(
    r"^\s*(?P<agg>rate|avg|min|max|med|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*"
    r"(?P<value>-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$"
)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_AGGREGATIONS: dict[MetricKind, frozenset[str]] = {
    MetricKind.REQUEST_FAILED: frozenset({"rate"}),
    MetricKind.REQUEST_DURATION: frozenset({"avg", "min", "max", "med", "p"}),
}


@dataclass(frozen=True)
class Predicate:
    aggregation: str
    percentile: float | None
    op: str
    value: float

    def holds(self, observed: float) -> bool:
        return _OPERATORS[self.op](observed, self.value)


def percentile(sorted_values: Sequence[float], p: float) -> float | None:
    """Compute percentile using linear interpolation.

    Expects sorted_values sorted ascending and p in [0, 1].
    """

    if not sorted_values:
        return None

    if p <= 0:
        return float(sorted_values[0])
    if p >= 1:
        return float(sorted_values[-1])

    k = (len(sorted_values) - 1) * p
    f = int(math.floor(k))
    c = int(math.ceil(k))
    if f == c:
        return float(sorted_values[f])
    d0 = sorted_values[f] * (c - k)
    d1 = sorted_values[c] * (k - f)
    return float(d0 + d1)


def parse_predicate(threshold: Threshold) -> Predicate:
    match = _PREDICATE_RE.match(threshold.predicate)
    if not match:
        raise ConfigError(
            "INVALID_THRESHOLD",
            "predicate must look like rate<0.01 or p(90)<50",
            {"metric": threshold.metric.value, "predicate": threshold.predicate},
        )

    agg = match.group("agg")
    pct: float | None = None
    if agg.startswith("p("):
        agg = "p"
        pct = float(match.group("pct"))
        if pct > 100:
            raise ConfigError(
                "INVALID_THRESHOLD",
                "percentile must be within [0, 100]",
                {"metric": threshold.metric.value, "predicate": threshold.predicate},
            )

    if agg not in _AGGREGATIONS[threshold.metric]:
        raise ConfigError(
            "INVALID_THRESHOLD",
            f"aggregation {agg!r} is not available for {threshold.metric.value}",
            {"metric": threshold.metric.value, "predicate": threshold.predicate},
        )

    return Predicate(aggregation=agg, percentile=pct, op=match.group("op"), value=float(match.group("value")))


def parse_threshold(raw: str) -> Threshold:
    """Parse ``<metric>=<predicate>``, e.g. ``http_req_duration=p(90)<50``."""
    metric_name, sep, predicate = raw.partition("=")
    if not sep:
        raise ConfigError("INVALID_THRESHOLD", "threshold must be written as <metric>=<predicate>", {"provided": raw})
    try:
        metric = MetricKind(metric_name.strip())
    except ValueError:
        raise ConfigError(
            "INVALID_THRESHOLD",
            f"unknown metric {metric_name.strip()!r}",
            {"provided": raw, "metrics": [m.value for m in MetricKind]},
        ) from None

    threshold = Threshold(metric=metric, predicate=predicate.strip())
    parse_predicate(threshold)
    return threshold


def observe(metric: MetricKind, predicate: Predicate, samples: Sequence[OutcomeSample]) -> float | None:
    if not samples:
        return None

    if metric == MetricKind.REQUEST_FAILED:
        return sum(1 for s in samples if s.failed) / len(samples)

    latencies = sorted(s.latency_ms for s in samples)
    if predicate.aggregation == "avg":
        return sum(latencies) / len(latencies)
    if predicate.aggregation == "min":
        return latencies[0]
    if predicate.aggregation == "max":
        return latencies[-1]
    if predicate.aggregation == "med":
        return percentile(latencies, 0.5)
    if predicate.aggregation == "p" and predicate.percentile is not None:
        return percentile(latencies, predicate.percentile / 100.0)
    raise ConfigError(
        "INVALID_THRESHOLD",
        f"aggregation {predicate.aggregation!r} is not available for {metric.value}",
        {"metric": metric.value},
    )


def evaluate_thresholds(thresholds: Iterable[Threshold], samples: Sequence[OutcomeSample]) -> RunVerdict:
    results: list[ThresholdResult] = []
    for threshold in thresholds:
        predicate = parse_predicate(threshold)
        observed = observe(threshold.metric, predicate, samples)
        passed = True if observed is None else predicate.holds(observed)
        results.append(ThresholdResult(threshold=threshold, observed=observed, passed=passed))

    verdict = Verdict.PASS if all(r.passed for r in results) else Verdict.FAIL
    return RunVerdict(verdict=verdict, results=tuple(results))
