from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union


class ActionKind(str, Enum):
    """Weighted actions a virtual user can take against the merch API."""

    FETCH_INFO = "fetch_info"
    BUY_ITEM = "buy_item"
    SEND_COIN = "send_coin"


class VUState(str, Enum):
    """Virtual user lifecycle. Transitions only move forward."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class MetricKind(str, Enum):
    """Aggregate metrics a threshold can gate on.

    Names follow the k6 built-ins the service's load profile was written for.
    """

    REQUEST_FAILED = "http_req_failed"
    REQUEST_DURATION = "http_req_duration"


class Verdict(str, Enum):
    PASS = "pass"
    FAIL = "fail"


@dataclass(frozen=True)
class UserRecord:
    """A user from the dataset. Identity is the record's position in the dataset."""

    username: str
    extra: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FetchInfo:
    kind = ActionKind.FETCH_INFO


@dataclass(frozen=True)
class BuyItem:
    item_name: str

    kind = ActionKind.BUY_ITEM


@dataclass(frozen=True)
class SendCoin:
    to_username: str
    amount: int

    kind = ActionKind.SEND_COIN


Action = Union[FetchInfo, BuyItem, SendCoin]


@dataclass(frozen=True)
class ActionWeight:
    """One row of a cumulative distribution table over ``[0, 1)``."""

    upper_bound: float
    kind: ActionKind


@dataclass(frozen=True)
class Request:
    method: str
    url: str
    headers: Mapping[str, str]
    body: bytes | None = None


@dataclass(frozen=True)
class Response:
    status: int
    headers: Mapping[str, str]
    body: bytes

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class RampStage:
    duration_seconds: float
    target: int


@dataclass(frozen=True)
class Threshold:
    """A pass/fail predicate over an aggregate metric, e.g. ``p(90)<50``."""

    metric: MetricKind
    predicate: str

    def __str__(self) -> str:
        return f"{self.metric.value}: {self.predicate}"


@dataclass(frozen=True)
class OutcomeSample:
    timestamp: float
    latency_ms: float
    failed: bool
    action: ActionKind
    status: int | None = None
    error_type: str | None = None


@dataclass(frozen=True)
class ThresholdResult:
    threshold: Threshold
    observed: float | None
    passed: bool

    @property
    def insufficient_data(self) -> bool:
        return self.observed is None


@dataclass(frozen=True)
class RunVerdict:
    verdict: Verdict
    results: tuple[ThresholdResult, ...]

    @property
    def passed(self) -> bool:
        return self.verdict == Verdict.PASS

    @property
    def violations(self) -> list[ThresholdResult]:
        return [r for r in self.results if not r.passed]


@dataclass(frozen=True)
class SimulationConfig:
    base_url: str
    users_file: str
    auth_tokens_file: str
    stages: tuple[RampStage, ...]
    thresholds: tuple[Threshold, ...]
    think_time_seconds: float = 0.01
    tick_seconds: float = 0.1
    timeout_seconds: float = 60.0
    evaluation_interval_seconds: float | None = None
    seed: int | None = None


@dataclass
class SimulationResult:
    started_at_monotonic: float
    ended_at_monotonic: float
    request_count: int
    error_count: int
    peak_vus: int
    verdict: RunVerdict
    metrics_report: dict[str, Any] | None = None

    @property
    def duration_seconds(self) -> float:
        return max(0.0, self.ended_at_monotonic - self.started_at_monotonic)

    @property
    def throughput_rps(self) -> float:
        duration = self.duration_seconds
        return (self.request_count / duration) if duration > 0 else 0.0
