"""Runs the configured start-up checks until they all pass."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from smithagent.config import ConfigCheck
from smithagent.magic import MagicHandle
from smithagent.police import Police

logger = logging.getLogger(__name__)

RETRY_DELAY = 10.0


class CheckFailed(Exception):
    """A check command exited unsuccessfully."""


@dataclass
class InitialCheck:
    name: str
    cmd: str
    success: bool = False
    data: str | None = None

    @classmethod
    def from_config(cls, check: ConfigCheck) -> InitialCheck:
        return cls(name=check.name, cmd=check.cmd)

    async def execute(self) -> None:
        """Run the command through the shell; raise CheckFailed if it fails."""
        process = await asyncio.create_subprocess_exec(
            "sh",
            "-c",
            self.cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await process.communicate()
        self.success = process.returncode == 0
        self.data = (self.data or "") + stdout.decode("utf-8").strip()

        if not self.success:
            logger.error("[FAIL] [%s] [%s]", self.name, self.cmd)
            raise CheckFailed("Check failed!")
        logger.info("[ OK ] [%s] [%s]", self.name, self.cmd)


class Bouncer:
    """Runs the checks from the magic file and reports lasting failures to the police."""

    def __init__(self, magic: MagicHandle, police: Police) -> None:
        self._magic = magic
        self._police = police
        self.problem: int | None = None
        self.checks: list[InitialCheck] | None = None

    async def run_checks(self) -> bool:
        """Run every check once; return whether all of them passed."""
        logger.info("Bouncer Running Checks")
        checks = [InitialCheck.from_config(check) for check in await self._magic.checks()]
        all_passed = True
        for check in checks:
            try:
                await check.execute()
            except (CheckFailed, OSError, ValueError):
                all_passed = False
        self.checks = checks

        if not all_passed and self.problem is None:
            self.problem = await self._police.report_problem_starting()
        elif all_passed and self.problem is not None:
            await self._police.report_problem_solved(self.problem)
            self.problem = None
        return all_passed

    async def ok(self, retry_delay: float = RETRY_DELAY) -> None:
        """Return once all checks pass, retrying every ``retry_delay`` seconds."""
        while not await self.run_checks():
            logger.error("Some checks failed, retrying in %s seconds", retry_delay)
            await asyncio.sleep(retry_delay)
        logger.info("All checks passed")