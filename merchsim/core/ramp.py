from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from merchsim.core.models import RampStage, VUState
from merchsim.core.virtual_user import VirtualUser
from merchsim.exceptions import ConfigError
from merchsim.logger import Logger, session_logger


class RampProfile:
    """Target concurrency over time, from an ordered list of stages.

    Each stage moves linearly from the previous stage's target (0 before
    the first stage) to its own target over its duration. Targets are
    rounded half-up to whole virtual users.
    """

    def __init__(self, stages: Sequence[RampStage]) -> None:
        if not stages:
            raise ConfigError("EMPTY_PROFILE", "ramp profile needs at least one stage")
        for i, stage in enumerate(stages):
            if stage.target < 0:
                raise ConfigError("INVALID_STAGE", "stage target must be >= 0", {"index": i, "target": stage.target})
            if stage.duration_seconds < 0:
                raise ConfigError(
                    "INVALID_STAGE",
                    "stage duration must be >= 0",
                    {"index": i, "duration_seconds": stage.duration_seconds},
                )

        self._stages = tuple(stages)
        ends: list[float] = []
        total = 0.0
        for stage in self._stages:
            total += stage.duration_seconds
            ends.append(total)
        self._ends = tuple(ends)

    @property
    def stages(self) -> tuple[RampStage, ...]:
        return self._stages

    @property
    def total_duration(self) -> float:
        return self._ends[-1]

    @property
    def max_target(self) -> int:
        return max(stage.target for stage in self._stages)

    def raw_target_at(self, elapsed: float) -> float:
        previous = 0
        start = 0.0
        for stage, end in zip(self._stages, self._ends):
            if elapsed < end:
                progress = (elapsed - start) / stage.duration_seconds if stage.duration_seconds > 0 else 1.0
                progress = min(1.0, max(0.0, progress))
                return previous + (stage.target - previous) * progress
            previous = stage.target
            start = end
        return float(self._stages[-1].target)

    def target_at(self, elapsed: float) -> int:
        return int(math.floor(self.raw_target_at(elapsed) + 0.5))


@dataclass(frozen=True)
class RampTick:
    elapsed: float
    target: int
    running: int
    stopping: int = 0


class RampScheduler:
    """Starts and stops virtual users to follow a RampProfile.

    On every tick the running count is reconciled with the target: new
    users are started below target, and above target the most recently
    started users are asked to stop first. A user asked to stop still counts
    as running until its in-flight iteration ends, so replacements are only
    started once it has actually stopped. When the profile ends (or
    ``stop()`` is called) every remaining user is asked to stop and the run
    returns once all of them have finished their current iteration.

    A virtual user that dies with an exception aborts the whole run.
    """

    def __init__(
        self,
        profile: RampProfile,
        vu_factory: Callable[[int], VirtualUser],
        *,
        tick_seconds: float = 0.1,
        logger: Logger | None = None,
    ) -> None:
        if tick_seconds <= 0:
            raise ConfigError("INVALID_TICK", "tick_seconds must be > 0", {"tick_seconds": tick_seconds})

        self._profile = profile
        self._vu_factory = vu_factory
        self._tick_seconds = tick_seconds
        self._logger = logger or session_logger

        self._stop_event = asyncio.Event()
        self._active: list[VirtualUser] = []
        self._stopping: list[VirtualUser] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._next_vu_id = 0

        self.timeline: list[RampTick] = []
        self.peak_running = 0

    @property
    def running_count(self) -> int:
        return len(self._active) + len(self._stopping)

    @property
    def stopping_count(self) -> int:
        return len(self._stopping)

    @property
    def started_count(self) -> int:
        return self._next_vu_id

    def stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> None:
        started = time.monotonic()
        total = self._profile.total_duration
        last_target: int | None = None

        try:
            while not self._stop_event.is_set():
                elapsed = time.monotonic() - started
                if elapsed >= total:
                    break

                self._raise_failed_tasks()
                self._prune_stopped()

                target = self._profile.target_at(elapsed)
                if target != last_target:
                    self._logger.info(
                        "sim.ramp_target",
                        elapsed_seconds=round(elapsed, 3),
                        target=target,
                        running=self.running_count,
                    )
                    last_target = target

                self._reconcile(target)
                self.timeline.append(
                    RampTick(
                        elapsed=elapsed,
                        target=target,
                        running=self.running_count,
                        stopping=self.stopping_count,
                    )
                )
                self.peak_running = max(self.peak_running, self.running_count)

                await asyncio.sleep(min(self._tick_seconds, max(0.0, total - elapsed)))
        finally:
            for vu in self._active:
                vu.stop()
            self._active.clear()
            self._stopping.clear()
            results = await asyncio.gather(*self._tasks, return_exceptions=True)

        self.timeline.append(RampTick(elapsed=time.monotonic() - started, target=0, running=0))

        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                raise result

    def _reconcile(self, target: int) -> None:
        while self.running_count < target:
            vu = self._vu_factory(self._next_vu_id)
            self._next_vu_id += 1
            self._active.append(vu)
            self._tasks.append(asyncio.create_task(vu.run(), name=f"vu-{vu.vu_id}"))
            self._logger.debug("sim.vu_started", vu_id=vu.vu_id)

        while len(self._active) > target:
            vu = self._active.pop()
            vu.stop()
            self._stopping.append(vu)
            self._logger.debug("sim.vu_stop_requested", vu_id=vu.vu_id)

    def _prune_stopped(self) -> None:
        self._stopping = [vu for vu in self._stopping if vu.state != VUState.STOPPED]

    def _raise_failed_tasks(self) -> None:
        pending: list[asyncio.Task[None]] = []
        for task in self._tasks:
            if not task.done():
                pending.append(task)
                continue
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]
        self._tasks = pending
