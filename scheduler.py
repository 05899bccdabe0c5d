"""Periodic job scheduler - wall-clock aligned ticks with overlapping runs"""
import asyncio
import logging
import math
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicJob:
    """
    Runs an async action on a fixed, wall-clock aligned period.

    Ticks fire at every instant ``t`` where ``(t - offset) % period == 0``
    (Unix time, seconds). A period of 10 with offset 1 fires at second
    1, 11, 21, ... of each minute; a period of 3600 with offset 120 fires
    two minutes past every hour.

    A tick never waits for the previous invocation: slow runs overlap.
    Actions must therefore be safe to run twice concurrently.
    """

    def __init__(
        self,
        name: str,
        period: float,
        action: Callable[[], Awaitable[object]],
        offset: float = 0.0,
        run_at_start: bool = False,
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            name: Job name used in log messages
            period: Seconds between ticks
            action: Coroutine function run on every tick
            offset: Seconds past the period boundary to fire at (default: 0.0)
            run_at_start: Also run once immediately (default: False)
            clock: Wall-clock source, replaceable in tests
        """
        if period <= 0:
            raise ValueError("period must be positive")
        self.name = name
        self.period = period
        self.action = action
        self.offset = offset
        self.run_at_start = run_at_start
        self.clock = clock
        self.started = 0
        self.running = 0

    def next_delay(self, now: float) -> float:
        """Seconds from ``now`` until the next tick."""
        return self.next_tick(now)[1]

    def next_tick(self, now: float, last_tick: int | None = None) -> tuple[int, float]:
        """
        Index of the next tick to fire and the seconds until it.

        Tick ``n`` is due at ``n * period + offset``. A tick at or before
        ``last_tick`` is never returned, so a wall clock stepped back
        (NTP correction) waits for the following boundary instead of
        firing the same tick again.
        """
        tick = math.floor((now - self.offset) / self.period) + 1
        if last_tick is not None and tick <= last_tick:
            logger.debug(f"Scheduler: Tick {tick} of job {self.name} already fired, waiting for tick {last_tick + 1}")
            tick = last_tick + 1
        return tick, max(0.0, tick * self.period + self.offset - now)

    async def _invoke(self) -> None:
        self.started += 1
        self.running += 1
        run_id = self.started
        logger.info(f"Scheduler: Executing job {self.name} (run {run_id})")
        try:
            await self.action()
        finally:
            self.running -= 1
        logger.info(f"Scheduler: Job {self.name} run {run_id} was completed")

    async def run(self, tg: asyncio.TaskGroup) -> None:
        """Tick forever, spawning each invocation into ``tg``."""
        if self.run_at_start:
            tg.create_task(self._invoke())
        last_tick = None
        while True:
            last_tick, delay = self.next_tick(self.clock(), last_tick)
            await asyncio.sleep(delay)
            if self.running:
                logger.debug(f"Scheduler: Job {self.name} still running ({self.running}), starting another run")
            tg.create_task(self._invoke())


class Scheduler:
    """
    Runs a set of periodic jobs side by side.

    All invocations live in one task group. An exception escaping any
    invocation cancels everything and propagates out of run(); recoverable
    failures must be handled inside the job action.
    """

    def __init__(self, jobs: list[PeriodicJob] | None = None):
        self.jobs = list(jobs or [])

    def add(self, job: PeriodicJob) -> None:
        self.jobs.append(job)

    async def run(self) -> None:
        for job in self.jobs:
            logger.info(f"Scheduler: Job {job.name} every {job.period:g}s (offset {job.offset:g}s)")
        async with asyncio.TaskGroup() as tg:
            for job in self.jobs:
                tg.create_task(job.run(tg))
