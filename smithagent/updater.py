"""Keeps the installed packages in line with the release the server targets."""

from __future__ import annotations

import asyncio
import enum
import logging
import subprocess
import time
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from smithagent.config import ConfigPackage, parse_dpkg_version
from smithagent.magic import MagicHandle
from smithagent.network import NetworkClient

logger = logging.getLogger(__name__)

CHECK_INTERVAL = 60.0
SMITH_PACKAGES = ("smith", "smith_amd64")

CommandRunner = Callable[[Sequence[str]], Awaitable[subprocess.CompletedProcess]]


async def _run_command(args: Sequence[str]) -> subprocess.CompletedProcess:
    process = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return subprocess.CompletedProcess(list(args), process.returncode, stdout, stderr)


def format_ago(seconds: float) -> str:
    """Describe an elapsed time in its largest whole unit."""
    seconds = int(seconds)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return f"{days} days ago"
    if hours > 0:
        return f"{hours} hours ago"
    if minutes > 0:
        return f"{minutes} minutes ago"
    return f"{seconds} seconds ago"


def _describe(outcome: float | BaseException | None) -> str:
    if outcome is None:
        return "Never"
    if isinstance(outcome, BaseException):
        return f"Error: {outcome}"
    return format_ago(time.monotonic() - outcome)


class UpdaterStatus(enum.Enum):
    IDLE = "idle"
    UPDATING = "updating"
    UPGRADING = "upgrading"


class Updater:
    """Fetches the packages of the target release and installs them."""

    def __init__(
        self,
        magic: MagicHandle,
        network: NetworkClient | None = None,
        *,
        run_command: CommandRunner | None = None,
        packages_dir: str | Path | None = None,
        magic_path: str | Path | None = None,
        check_interval: float = CHECK_INTERVAL,
    ) -> None:
        self._magic = magic
        self._network = network if network is not None else NetworkClient()
        self._run = run_command if run_command is not None else _run_command
        self._packages_dir = Path(packages_dir) if packages_dir is not None else None
        self._magic_path = magic_path
        self.check_interval = check_interval
        self.state = UpdaterStatus.IDLE
        self._last_update: float | BaseException | None = None
        self._last_upgrade: float | BaseException | None = None
        self._lock = asyncio.Lock()

    @property
    def packages_dir(self) -> Path:
        if self._packages_dir is not None:
            return self._packages_dir
        return Path.cwd() / "packages"

    async def check_for_updates(self) -> bool:
        """Fetch the target release's packages and record the outcome."""
        async with self._lock:
            await self._update()
        return True

    async def upgrade_device(self) -> None:
        """Install the fetched packages and record the outcome."""
        async with self._lock:
            await self._upgrade()

    async def status(self) -> str:
        return (
            f"Last Update: {_describe(self._last_update)} | "
            f"Last Upgrade: {_describe(self._last_upgrade)}"
        )

    async def run(self, shutdown: asyncio.Event) -> None:
        """Move to the target release every ``check_interval`` seconds until shutdown."""
        logger.info("Updater Starting")
        self._network.hostname = await self._magic.server()
        while not shutdown.is_set():
            async with self._lock:
                await self._checking()
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=self.check_interval)
            except TimeoutError:
                continue
        logger.info("Updater shutting down")

    async def _checking(self) -> None:
        release_id = await self._magic.release_id()
        target_release_id = await self._magic.target_release_id()
        if release_id == target_release_id:
            return
        logger.info(
            "Upgrading from release_id %s to target_release_id %s",
            release_id,
            target_release_id,
        )
        await self._update()
        if not isinstance(self._last_update, float):
            return
        await self._upgrade()
        if not isinstance(self._last_upgrade, float):
            return
        await self._magic.update_release_id(target_release_id)

    async def _update(self) -> None:
        logger.info("Checking for updates")
        self.state = UpdaterStatus.UPDATING
        try:
            await self._fetch_release()
        except Exception as err:
            logger.info("Check for updates result: %s", err)
            self._last_update = err
        else:
            logger.info("Check for updates succeeded")
            self._last_update = time.monotonic()
        finally:
            self.state = UpdaterStatus.IDLE

    async def _upgrade(self) -> None:
        logger.info("Upgrading device")
        self.state = UpdaterStatus.UPGRADING
        try:
            await self._install_packages()
        except Exception as err:
            logger.info("Upgrading result: %s", err)
            self._last_upgrade = err
        else:
            logger.info("Upgrading succeeded")
            self._last_upgrade = time.monotonic()
        finally:
            self.state = UpdaterStatus.IDLE

    async def _is_installed(self, name: str) -> bool:
        try:
            output = await self._run(["dpkg", "-l", name])
        except OSError:
            return False
        return output.returncode == 0

    async def _fetch_release(self) -> None:
        try:
            await self._run(["sh", "-c", "apt update -y"])
        except OSError as err:
            raise RuntimeError("Failed to run apt update") from err

        target_release_id = await self._magic.target_release_id()
        if target_release_id is None:
            raise RuntimeError("Failed to get Target Release ID")
        token = await self._magic.token() or ""
        logger.info("Target release id: %s", target_release_id)

        local_packages = await self._magic.packages()
        target_packages = await self._network.get_release_packages(target_release_id, token)

        logger.info("== Current packages ==")
        for package in local_packages:
            logger.info("Local: %s %s %s", package.name, package.version, package.file)
        logger.info("++ Release packages ++")
        for package in target_packages:
            logger.info("Remote: %s %s %s", package.name, package.version, package.file)

        up_to_date = True
        for package in target_packages:
            missing_from_magic = package not in local_packages
            if missing_from_magic or not await self._is_installed(package.name):
                logger.info("Package %s is not installed", package.name)
                up_to_date = False
                await self._network.get_package(package.file, token)

        if not up_to_date:
            await self._magic.replace_packages(target_packages)

    async def _installed_matches(self, package: ConfigPackage) -> bool:
        try:
            output = await self._run(["dpkg", "-l", package.name])
        except OSError as err:
            raise _SkipPackage(f"Failed to execute dpkg command for {package.name}: {err}") from err
        if output.returncode != 0:
            return False
        try:
            version = parse_dpkg_version(output.stdout.decode())
        except UnicodeDecodeError:
            logger.error("Failed to parse dpkg output for %s", package.name)
            return False
        except ValueError as err:
            logger.error("%s for %s", err, package.name)
            return False
        logger.info("> %s | %s => %s", package.name, version, package.version)
        return version == package.version

    async def _install_packages(self) -> None:
        if isinstance(self._last_update, float):
            logger.info(
                "Previous update was successful %.0fs ago",
                time.monotonic() - self._last_update,
            )
        elif self._last_update is not None:
            logger.warning("Previous update was not successful")
            return
        else:
            logger.info("No previous update, continuing anyway")

        packages = await self._magic.packages()
        folder = self.packages_dir

        for package in packages:
            logger.info("Checking package: %s", package.name)
            if not (folder / package.file).exists():
                logger.info("Package %s does not exist locally", package.name)
                raise RuntimeError(f"Package {package.name} does not exist locally")
            logger.info("Package %s exists locally", package.name)

        update_smith = False
        for package in packages:
            try:
                installed = await self._installed_matches(package)
            except _SkipPackage as err:
                logger.error("%s", err)
                continue
            if installed:
                continue
            if package.name in SMITH_PACKAGES:
                update_smith = True
                continue
            command = f"sudo apt install {folder / package.file} -y --allow-downgrades"
            try:
                result = await self._run(["sh", "-c", command])
            except OSError as err:
                logger.error("Failed to execute install command for %s: %s", package.name, err)
                continue
            if result.returncode == 0:
                logger.info("Successfully installed package %s", package.name)
            else:
                logger.error(
                    "Failed to install package %s: %s",
                    package.name,
                    result.stderr.decode(errors="replace"),
                )

        if update_smith:
            try:
                result = await self._run(["sh", "-c", "sudo systemctl start smith-updater"])
            except OSError as err:
                raise RuntimeError("Failed to stop smith service") from err
            if result.returncode != 0:
                logger.error("Failed to start smith updater %s", result)

        await self._verify_packages()

    async def _verify_packages(self) -> None:
        """Raise unless every package in a freshly loaded magic file is installed."""
        magic = MagicHandle()
        await magic.load(self._magic_path)
        for package in await magic.packages():
            output = await self._run(["dpkg", "-l", package.name])
            installed = parse_dpkg_version(output.stdout.decode(errors="replace"))
            if installed != package.version:
                raise RuntimeError(f"Package {package.name} is not up to date")


class _SkipPackage(Exception):
    pass