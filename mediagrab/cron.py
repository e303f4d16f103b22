"""Periodic background jobs built on asyncio tasks"""

# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.

import asyncio
import logging
import time
from typing import Protocol

logger = logging.getLogger(__name__)


class Condition(Protocol):
    """Decide whether the job should run its task on this tick."""

    def __call__(self) -> bool:  # pragma: no cover # noqa: D102
        ...


class Task(Protocol):
    """Coroutine run by the job."""

    async def __call__(self) -> None:  # pragma: no cover # noqa: D102
        ...


class Job:
    """Run a task every `interval` seconds while a condition holds.

    A failing task is logged and retried on the next tick, it never stops the job.
    Cancel the asyncio task wrapping the job to stop it.
    """

    name: str
    interval: float
    condition: Condition
    task: Task

    def __init__(self, *, name: str, interval: float, condition: Condition, task: Task) -> None:
        self.name = name
        self.interval = interval
        self.condition = condition
        self.task = task

    async def __call__(self) -> None:  # noqa: D102
        while True:
            tick_started = time.monotonic()
            if self.condition():
                await self._run_once()

            elapsed = time.monotonic() - tick_started
            await asyncio.sleep(max(0.0, self.interval - elapsed))

    async def _run_once(self) -> None:
        begin = time.perf_counter()
        try:
            await self.task()
        except Exception as e:
            logger.warning(
                f"Cron: failed to run task {self.name}",
                extra={"error message": f"{e}"},
            )
        else:
            logger.info(
                f"Cron: successfully ran task {self.name}",
                extra={"duration": time.perf_counter() - begin},
            )
