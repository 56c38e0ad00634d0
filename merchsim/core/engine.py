from __future__ import annotations

import asyncio
import signal
import time
from random import Random

import httpx

from merchsim.core.actions import ActionSelector
from merchsim.core.dataset import Dataset, load_dataset
from merchsim.core.metrics import OutcomeAggregator
from merchsim.core.models import ActionKind, SimulationConfig, SimulationResult, Threshold
from merchsim.core.ramp import RampProfile, RampScheduler
from merchsim.core.thresholds import parse_predicate
from merchsim.core.transport import HTTPXTransport, Transport
from merchsim.core.virtual_user import VirtualUser, VirtualUserConfig
from merchsim.exceptions import ConfigError, InvariantError
from merchsim.logger import Logger, session_logger


class Simulator:
    """Runs one load test: load data, ramp virtual users, gate on thresholds.

    ``dataset`` and ``transport`` may be injected; otherwise the dataset is
    read from the configured files and an httpx transport is created (and
    closed) for the run.
    """

    def __init__(
        self,
        config: SimulationConfig,
        *,
        logger: Logger | None = None,
        dataset: Dataset | None = None,
        transport: Transport | None = None,
        selector: ActionSelector | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or session_logger
        self._dataset = dataset
        self._transport = transport
        self._selector = selector or ActionSelector()
        self.scheduler: RampScheduler | None = None

    async def run(self) -> SimulationResult:
        config = self._config

        # Fail on configuration before any traffic is generated.
        _validate_config(config)
        profile = RampProfile(config.stages)
        for threshold in config.thresholds:
            parse_predicate(threshold)

        dataset = self._dataset or load_dataset(config.users_file, config.auth_tokens_file)
        if ActionKind.SEND_COIN in self._selector.kinds and len(dataset) < 2:
            raise InvariantError(
                "DATASET_TOO_SMALL",
                "coin transfers need at least two users",
                {"users": len(dataset)},
            )

        aggregator = OutcomeAggregator(logger=self._logger)
        seeder = Random(config.seed) if config.seed is not None else None

        owned_transport: HTTPXTransport | None = None
        transport = self._transport
        if transport is None:
            owned_transport = HTTPXTransport(timeout_seconds=config.timeout_seconds)
            transport = owned_transport

        def _new_vu(vu_id: int) -> VirtualUser:
            vu_config = VirtualUserConfig(
                vu_id=vu_id,
                base_url=config.base_url,
                think_time_seconds=config.think_time_seconds,
                seed=seeder.getrandbits(64) if seeder is not None else None,
            )
            return VirtualUser(vu_config, dataset, self._selector, transport, aggregator, logger=self._logger)

        scheduler = RampScheduler(profile, _new_vu, tick_seconds=config.tick_seconds, logger=self._logger)
        self.scheduler = scheduler

        self._logger.info(
            "sim.start",
            base_url=config.base_url,
            users=len(dataset),
            stages=[(s.duration_seconds, s.target) for s in profile.stages],
            duration_seconds=profile.total_duration,
            max_vus=profile.max_target,
            thresholds=[str(t) for t in config.thresholds],
            seed=config.seed,
        )

        def _handle_signal(signum: int, _frame) -> None:  # pragma: no cover
            self._logger.warning("sim.signal", signum=signum)
            scheduler.stop()

        started = time.monotonic()
        monitor: asyncio.Task[None] | None = None
        try:
            with _SignalHandlers(_handle_signal):
                if config.evaluation_interval_seconds:
                    monitor = asyncio.create_task(
                        _evaluate_periodically(
                            aggregator,
                            config.thresholds,
                            config.evaluation_interval_seconds,
                            self._logger,
                        )
                    )
                await scheduler.run()
        finally:
            if monitor is not None:
                monitor.cancel()
                await asyncio.gather(monitor, return_exceptions=True)
            if owned_transport is not None:
                await owned_transport.aclose()
        ended = time.monotonic()

        samples = aggregator.snapshot()
        verdict = aggregator.evaluate(config.thresholds, samples)
        error_count = sum(1 for s in samples if s.failed)

        result = SimulationResult(
            started_at_monotonic=started,
            ended_at_monotonic=ended,
            request_count=len(samples),
            error_count=error_count,
            peak_vus=scheduler.peak_running,
            verdict=verdict,
            metrics_report=aggregator.build_report(samples),
        )

        for r in verdict.results:
            log = self._logger.info if r.passed else self._logger.error
            log(
                "sim.threshold",
                threshold=str(r.threshold),
                observed=r.observed,
                passed=r.passed,
                insufficient_data=r.insufficient_data,
            )

        self._logger.info(
            "sim.end",
            verdict=verdict.verdict.value,
            request_count=result.request_count,
            error_count=result.error_count,
            peak_vus=result.peak_vus,
            duration_seconds=result.duration_seconds,
            throughput_rps=result.throughput_rps,
        )

        return result


def _validate_config(config: SimulationConfig) -> None:
    try:
        url = httpx.URL(config.base_url)
    except httpx.InvalidURL as exc:
        raise ConfigError("INVALID_URL", f"base URL does not parse: {exc}", {"base_url": config.base_url}) from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigError(
            "INVALID_URL",
            "base URL must be an absolute http:// or https:// URL",
            {"base_url": config.base_url},
        )

    if config.think_time_seconds < 0:
        raise ConfigError("INVALID_THINK_TIME", "think time must be >= 0", {"provided": config.think_time_seconds})
    if config.timeout_seconds <= 0:
        raise ConfigError("INVALID_TIMEOUT", "timeout must be > 0", {"provided": config.timeout_seconds})
    interval = config.evaluation_interval_seconds
    if interval is not None and interval <= 0:
        raise ConfigError("INVALID_EVAL_INTERVAL", "evaluation interval must be > 0", {"provided": interval})


async def _evaluate_periodically(
    aggregator: OutcomeAggregator,
    thresholds: tuple[Threshold, ...],
    interval_seconds: float,
    logger: Logger,
) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        verdict = aggregator.evaluate(thresholds)
        logger.info(
            "sim.thresholds_interim",
            verdict=verdict.verdict.value,
            samples=len(aggregator),
            violations=[str(r.threshold) for r in verdict.violations],
        )


class _SignalHandlers:
    def __init__(self, handler) -> None:
        self._handler = handler
        self._previous: dict[int, object] = {}

    def __enter__(self):
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._previous[signum] = signal.signal(signum, self._handler)
            except ValueError:
                # Only the main thread may install handlers.
                pass
        return self

    def __exit__(self, exc_type, exc, tb):
        for signum, previous in self._previous.items():
            signal.signal(signum, previous)  # type: ignore[arg-type]
        return False
