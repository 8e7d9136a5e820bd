"""Schedules a delayed reboot while problems are reported, and cancels it when they clear."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

logger = logging.getLogger(__name__)

RESTART_DELAY = 5 * 60.0
ENABLE_INTERVAL = 15 * 60.0
REBOOT_COMMAND = ("reboot", "now")


class Police:
    """Tracks reported problems and reboots the device if they persist."""

    def __init__(
        self,
        *,
        restart_delay: float = RESTART_DELAY,
        enable_interval: float = ENABLE_INTERVAL,
        reboot_command: Sequence[str] = REBOOT_COMMAND,
    ) -> None:
        self.restart_delay = restart_delay
        self.enable_interval = enable_interval
        self.reboot_command = tuple(reboot_command)
        self.should_restart = False
        self._restart: asyncio.Task[None] | None = None
        self._next_id = 0
        self._problems: list[int] = []

    @property
    def problems(self) -> tuple[int, ...]:
        return tuple(self._problems)

    @property
    def restart_scheduled(self) -> bool:
        return self._restart is not None and not self._restart.done()

    def enable_restarts(self) -> None:
        self.should_restart = True

    async def _reboot_later(self) -> None:
        logger.warning("Restarting in %s seconds", self.restart_delay)
        # Waiting first keeps the device reachable for a while before it goes down.
        await asyncio.sleep(self.restart_delay)
        logger.error("Restarting now!")
        process = await asyncio.create_subprocess_exec(*self.reboot_command)
        await process.wait()

    async def report_problem_starting(self) -> int | None:
        """Record a problem; return its id, or None while restarts are not yet enabled."""
        if not self.should_restart:
            logger.warning("Restart not to be scheduled yet")
            return None
        self._next_id += 1
        self._problems.append(self._next_id)
        if self._restart is None:
            self._restart = asyncio.create_task(self._reboot_later())
        else:
            logger.warning("Restart already scheduled")
        return self._next_id

    async def report_problem_solved(self, problem_id: int) -> None:
        """Forget a problem; cancel the restart once no problems remain."""
        self._problems = [item for item in self._problems if item != problem_id]
        if self._restart is not None and not self._problems:
            logger.info("Problem solved, restart aborted")
            self._restart.cancel()
            self._restart = None

    async def run(self, shutdown: asyncio.Event) -> None:
        """Enable restarts every ``enable_interval`` seconds until ``shutdown`` is set."""
        logger.info("Police running")
        while True:
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=self.enable_interval)
                break
            except TimeoutError:
                logger.info("Enabling police restarts by default")
                self.enable_restarts()
        logger.info("Police task shut down")