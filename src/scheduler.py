# scheduler.py
"""Periodic housekeeping around the engine.

Each job runs on its own task and only *posts* into the engine; none of them
mutate trading state directly.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional

from engine import RolloverMessage
from utils import logger


class PeriodicJob:
    def __init__(self, name: str, interval: float, action: Callable[[], Awaitable[None]]):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._action = action
        self._closing = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.runs = 0
        self.failures = 0

    async def run_once(self) -> None:
        try:
            await self._action()
            self.runs += 1
        except Exception:
            self.failures += 1
            logger.exception("job failed | name=%s", self.name)

    async def _loop(self) -> None:
        while not self._closing.is_set():
            try:
                await asyncio.wait_for(self._closing.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                await self.run_once()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._closing.clear()
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._closing.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class Scheduler:
    def __init__(self, jobs: Optional[List[PeriodicJob]] = None):
        self.jobs: List[PeriodicJob] = list(jobs or [])

    def add(self, job: PeriodicJob) -> PeriodicJob:
        self.jobs.append(job)
        return job

    def start(self) -> None:
        for job in self.jobs:
            job.start()
        logger.info(
            "scheduler started | jobs=%s",
            ",".join(f"{j.name}@{j.interval:g}s" for j in self.jobs),
        )

    async def stop(self) -> None:
        await asyncio.gather(*(job.stop() for job in self.jobs))


def engine_jobs(engine, config) -> Scheduler:
    """Balance poll, filters poll and the stats window rollover."""

    async def _rollover() -> None:
        engine.post(RolloverMessage())

    return Scheduler(
        [
            PeriodicJob("balances", config.balance_refresh_sec, engine.refresh_balances),
            PeriodicJob("filters", config.filters_refresh_sec, engine.refresh_filters),
            PeriodicJob("stats", config.stats_window_sec, _rollover),
        ]
    )
