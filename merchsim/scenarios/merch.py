"""Merch scenario: the service's standard ramped load profile.

Virtual users ramp 0 -> 15 over 2m, 15 -> 30 over 1m, 30 -> 0 over 1m and
0 -> 20 over 1m. The run passes when fewer than 0.01% of requests fail and
the 90th percentile request duration is under 50ms.

Usage from CLI::

    APPTEST_USER_FILE=/data/users.json APPTEST_AUTH_TOKEN_FILE=/data/tokens.json \\
        python -m merchsim.run --url http://127.0.0.1:8080

Usage as library::

    from merchsim.scenarios.merch import run_merch_scenario

    result = await run_merch_scenario(
        users_file="/data/users.json",
        auth_tokens_file="/data/tokens.json",
    )
"""

from __future__ import annotations

from typing import Sequence

from merchsim.core.dataset import Dataset
from merchsim.core.engine import Simulator
from merchsim.core.models import MetricKind, RampStage, SimulationConfig, SimulationResult, Threshold
from merchsim.core.transport import Transport

DEFAULT_BASE_URL = "http://127.0.0.1:8080"

DEFAULT_STAGES: tuple[RampStage, ...] = (
    RampStage(duration_seconds=120.0, target=15),
    RampStage(duration_seconds=60.0, target=30),
    RampStage(duration_seconds=60.0, target=0),
    RampStage(duration_seconds=60.0, target=20),
)

DEFAULT_THRESHOLDS: tuple[Threshold, ...] = (
    # 99.99% of requests should be successful.
    Threshold(MetricKind.REQUEST_FAILED, "rate<0.0001"),
    # 90% of requests should have a latency of 50ms or less.
    Threshold(MetricKind.REQUEST_DURATION, "p(90)<50"),
)


def build_merch_config(
    *,
    base_url: str = DEFAULT_BASE_URL,
    users_file: str = "",
    auth_tokens_file: str = "",
    stages: Sequence[RampStage] = DEFAULT_STAGES,
    thresholds: Sequence[Threshold] = DEFAULT_THRESHOLDS,
    think_time_seconds: float = 0.01,
    tick_seconds: float = 0.1,
    timeout_seconds: float = 60.0,
    evaluation_interval_seconds: float | None = None,
    seed: int | None = None,
) -> SimulationConfig:
    """Build a ``SimulationConfig`` for the merch profile.

    Paths are validated when the run loads its dataset, not here.
    """
    return SimulationConfig(
        base_url=base_url,
        users_file=users_file,
        auth_tokens_file=auth_tokens_file,
        stages=tuple(stages),
        thresholds=tuple(thresholds),
        think_time_seconds=think_time_seconds,
        tick_seconds=tick_seconds,
        timeout_seconds=timeout_seconds,
        evaluation_interval_seconds=evaluation_interval_seconds,
        seed=seed,
    )


async def run_merch_scenario(
    *,
    base_url: str = DEFAULT_BASE_URL,
    users_file: str = "",
    auth_tokens_file: str = "",
    stages: Sequence[RampStage] = DEFAULT_STAGES,
    thresholds: Sequence[Threshold] = DEFAULT_THRESHOLDS,
    think_time_seconds: float = 0.01,
    tick_seconds: float = 0.1,
    seed: int | None = None,
    dataset: Dataset | None = None,
    transport: Transport | None = None,
) -> SimulationResult:
    """Run the merch scenario and return the result.

    This is the programmatic entry point used by integration tests and CI.
    """
    config = build_merch_config(
        base_url=base_url,
        users_file=users_file,
        auth_tokens_file=auth_tokens_file,
        stages=stages,
        thresholds=thresholds,
        think_time_seconds=think_time_seconds,
        tick_seconds=tick_seconds,
        seed=seed,
    )
    sim = Simulator(config, dataset=dataset, transport=transport)
    return await sim.run()
