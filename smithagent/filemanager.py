"""Extracting archives and running system commands on behalf of the agent."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterator, Sequence
from pathlib import Path

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1.0


class CommandFailed(Exception):
    """A system command could not be started or exited unsuccessfully."""


async def _capture(
    args: Sequence[str], cwd: str | Path | None = None
) -> tuple[int | None, str, str]:
    process = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
    )
    stdout, stderr = await process.communicate()
    return (
        process.returncode,
        stdout.decode(errors="replace"),
        stderr.decode(errors="replace"),
    )


async def extract_file_here(file: str | Path) -> str:
    """Extract ``file`` into the directory that holds it."""
    return await extract_file(file, Path(file).parent)


async def extract_file(file: str | Path, target: str | Path) -> str:
    """Extract the tar archive ``file`` into ``target``, keeping permissions."""
    try:
        returncode, _, stderr = await _capture(
            ["tar", "-xpf", str(file), "-C", str(target)]
        )
    except OSError as err:
        raise CommandFailed(f"Failed to extract file: {err}") from err
    if returncode != 0:
        raise CommandFailed(f"Failed to extract tar.gz file: {stderr}")
    logger.info("File extracted successfully: %s", file)
    return f"Successfully extracted {file}"


async def execute_script(
    file: str, arguments: Sequence[str] = (), folder: str | Path | None = None
) -> str:
    """Run ``file`` with bash, passing ``arguments``, inside ``folder`` if given."""
    return await execute_system_command("bash", [file, *arguments], folder)


async def execute_system_command(
    command: str, arguments: Sequence[str] = (), folder: str | Path | None = None
) -> str:
    """Run ``command`` with ``arguments``, inside ``folder`` if given."""
    try:
        returncode, stdout, stderr = await _capture([command, *arguments], cwd=folder)
    except OSError as err:
        raise CommandFailed(str(err)) from err
    if returncode != 0:
        raise CommandFailed(f"stderr: {stderr}stdout: {stdout}")
    logger.info("System command executed successfully: %s", command)
    return f"Successfully executed {command} - {stdout}"


class FileManager:
    """Runs file and system actions and knows whether any is still in progress."""

    def __init__(self, *, poll_interval: float = POLL_INTERVAL) -> None:
        self.poll_interval = poll_interval
        self._active = 0

    @property
    def busy(self) -> bool:
        return self._active > 0

    @contextlib.contextmanager
    def _processing(self) -> Iterator[None]:
        self._active += 1
        try:
            yield
        finally:
            self._active -= 1

    async def extract_here(self, file: str | Path) -> str:
        with self._processing():
            return await extract_file_here(file)

    async def extract(self, file: str | Path, target: str | Path) -> str:
        with self._processing():
            return await extract_file(file, target)

    async def execute_script(
        self, file: str, arguments: Sequence[str] = (), folder: str | Path | None = None
    ) -> str:
        with self._processing():
            return await execute_script(file, arguments, folder)

    async def execute_system_command(
        self, command: str, arguments: Sequence[str] = (), folder: str | Path | None = None
    ) -> str:
        with self._processing():
            return await execute_system_command(command, arguments, folder)

    async def wait_idle(self) -> None:
        """Return once no action is running, polling every ``poll_interval`` seconds."""
        while self.busy:
            logger.info("Waiting for file manager task to finish")
            await asyncio.sleep(self.poll_interval)
        logger.info("File manager task shutting down gracefully")