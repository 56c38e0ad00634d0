from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from random import Random

from merchsim.core.actions import ActionSelector, build_request, check_response
from merchsim.core.dataset import Dataset
from merchsim.core.metrics import OutcomeAggregator
from merchsim.core.models import OutcomeSample, VUState
from merchsim.core.sampling import random_index
from merchsim.core.transport import Transport, send_request
from merchsim.exceptions import InvariantError, RequestOutcomeFailure, TransportError
from merchsim.logger import Logger, session_logger


@dataclass(frozen=True)
class VirtualUserConfig:
    vu_id: int
    base_url: str
    think_time_seconds: float = 0.01
    seed: int | None = None


class VirtualUser:
    """A single simulated client.

    Each iteration acts as a random dataset user: pick the action, send it,
    classify the response, record the sample, then pause for the think
    time. ``stop()`` takes effect at the next iteration boundary; an
    in-flight request always completes.
    """

    def __init__(
        self,
        config: VirtualUserConfig,
        dataset: Dataset,
        selector: ActionSelector,
        transport: Transport,
        aggregator: OutcomeAggregator,
        *,
        logger: Logger | None = None,
    ) -> None:
        self._config = config
        self._dataset = dataset
        self._selector = selector
        self._transport = transport
        self._aggregator = aggregator
        self._logger = logger or session_logger
        self._rng = Random(config.seed)

        self._state = VUState.IDLE
        self._stop_requested = False
        self.iterations = 0

    @property
    def vu_id(self) -> int:
        return self._config.vu_id

    @property
    def state(self) -> VUState:
        return self._state

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def stop(self) -> None:
        self._stop_requested = True

    async def run(self) -> None:
        if self._state != VUState.IDLE:
            raise InvariantError(
                "VU_ALREADY_STARTED",
                "a virtual user runs at most once",
                {"vu_id": self.vu_id, "state": self._state.value},
            )

        self._state = VUState.RUNNING
        try:
            while not self._stop_requested:
                await self.iterate()
                await asyncio.sleep(self._config.think_time_seconds)
        finally:
            self._state = VUState.STOPPED

    async def iterate(self) -> OutcomeSample:
        user_index = random_index(len(self._dataset), self._rng)
        token = self._dataset.auth_tokens[user_index]

        kind = self._selector.select(self._rng.random())
        action = self._selector.build(kind, user_index, self._dataset, self._rng)
        request = build_request(action, self._config.base_url, token)

        status: int | None = None
        error_type: str | None = None
        timestamp = time.time()
        start = time.perf_counter()
        try:
            response = await send_request(self._transport, request)
        except TransportError as exc:
            response = None
            error_type = exc.error_type
        latency_ms = (time.perf_counter() - start) * 1000.0

        if response is not None:
            status = response.status
            try:
                check_response(kind, response)
            except RequestOutcomeFailure as exc:
                error_type = exc.error_type

        sample = OutcomeSample(
            timestamp=timestamp,
            latency_ms=latency_ms,
            failed=error_type is not None,
            action=kind,
            status=status,
            error_type=error_type,
        )
        self._aggregator.record(sample)
        self.iterations += 1

        if error_type is None:
            self._logger.debug(
                "sim.vu_request_ok",
                vu_id=self.vu_id,
                action=kind.value,
                status=status,
                duration_ms=round(latency_ms, 3),
            )
        else:
            self._logger.debug(
                "sim.vu_request_failed",
                vu_id=self.vu_id,
                action=kind.value,
                method=request.method,
                url=request.url,
                status=status,
                duration_ms=round(latency_ms, 3),
                error_type=error_type,
            )

        return sample
