"""Rate-limited downloads of files handed out by the fleet server."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

from smithagent.magic import MagicHandle

logger = logging.getLogger(__name__)

STOP_TIMEOUT = 60
POLL_INTERVAL = 1.0
STARTED_MESSAGE = "Download started, not waiting for result"


class StopFlag(Protocol):
    def is_set(self) -> bool: ...


@dataclass
class DownloadStats:
    bytes_downloaded: int = 0
    elapsed_seconds: float = 0.0
    average_speed_mbps: float = 0.0
    success: bool = False
    error_message: str | None = None

    def describe(self, local_path: str | Path) -> str:
        """A one-line summary of the download of ``local_path``."""
        if self.success:
            return (
                f"Download of {local_path} succeeded - Downloaded file in "
                f"{self.elapsed_seconds:.2f} seconds at {self.average_speed_mbps:.2f} MB/sec"
            )
        error = "None" if self.error_message is None else f'Some("{self.error_message}")'
        return f"Download of {local_path} failed - {error}"


class DownloadingStatus(enum.Enum):
    FAILED = "Failed"
    DOWNLOADING = "Downloading"
    SUCCESS = "Success"


class RateLimiter:
    """A token bucket of ``rate`` units per second that starts empty."""

    def __init__(
        self,
        rate: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.capacity = rate
        self._clock = clock
        self._sleep = sleep
        self._tokens = 0.0
        self._updated = clock()

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._updated) * self.rate)
        self._updated = now

    async def acquire(self, amount: int) -> None:
        """Wait until ``amount`` units are available and take them."""
        if amount <= 0:
            return
        if amount > self.capacity:
            raise ValueError(
                f"cannot acquire {amount} units from a bucket of {self.capacity}"
            )
        self._refill()
        if self._tokens < amount:
            await self._sleep((amount - self._tokens) / self.rate)
            self._refill()
        self._tokens -= amount


def _parse_length(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


async def download_package(
    magic: MagicHandle,
    remote_file: str,
    local_file: str | Path,
    rate: float,
    force_stop: StopFlag,
) -> str:
    """Download ``remote_file`` to ``local_file`` at ``rate`` MB per second."""
    bytes_per_second = int(rate * 1_000_000)
    logger.info("Rate limit: %s bytes/sec", bytes_per_second)
    return await _download_file(
        magic, Path(local_file), remote_file, bytes_per_second, force_stop, None
    )


async def _download_file(
    magic: MagicHandle,
    local_path: Path,
    remote_path: str,
    bytes_per_second: int,
    force_stop: StopFlag,
    recurse: int | None,
) -> str:
    stats = DownloadStats()
    rec_track = 0
    if recurse is not None:
        if recurse > 1:
            stats.error_message = "Downloaded 0 bytes too many times"
            return stats.describe(local_path)
        rec_track = recurse + 1

    server = await magic.server()
    token = await magic.token() or ""
    url = f"{server}/download" if not remote_path else f"{server}/download/{remote_path}"

    async with httpx.AsyncClient(follow_redirects=True, timeout=None) as client:
        initial = await client.get(url, headers={"Authorization": f"Bearer {token}"})
        if not (initial.is_success or initial.is_redirect):
            raise RuntimeError(f"Failed to download file: {initial.status_code}")

        presigned_url = initial.headers.get("Location")
        if presigned_url is None:
            raise RuntimeError("No pre-signed URL provided in response headers")

        limiter = RateLimiter(max(bytes_per_second, 1))
        downloaded = 0
        start = time.monotonic()

        async with client.stream("GET", presigned_url) as response:
            if not response.is_success:
                raise RuntimeError(
                    f"Failed to download file from pre-signed URL: {response.status_code}"
                )
            content_length = _parse_length(response.headers.get("Content-Length"))
            local_path.parent.mkdir(parents=True, exist_ok=True)

            with local_path.open("wb") as file:
                async for chunk in response.aiter_bytes():
                    if force_stop.is_set():
                        logger.info("Timeout interrupt - download stopping forcefully")
                        break
                    if not chunk:
                        continue
                    try:
                        await limiter.acquire(len(chunk))
                    except ValueError as err:
                        logger.warning("Rate limit exceeded: %s", err)
                    file.write(chunk)
                    downloaded += len(chunk)

    elapsed = time.monotonic() - start
    average = downloaded / elapsed if elapsed > 0 else 0.0
    stats.bytes_downloaded = downloaded
    stats.elapsed_seconds = elapsed
    stats.average_speed_mbps = average / 1_000_000

    try:
        file_size = local_path.stat().st_size
    except OSError as err:
        logger.error("Failed to verify file size on disk: %s", err)
        raise RuntimeError(f"Failed to verify file size on disk: {err}") from err

    if file_size != downloaded or file_size != content_length:
        message = (
            f"Size mismatch: file on disk ({file_size}), downloaded amount ({downloaded}), "
            f"expected content length ({content_length})"
        )
        logger.error("%s", message)
        raise RuntimeError(message)
    if file_size == 0:
        logger.error("File did not install properly. Re-installing")
        local_path.unlink()
        await _download_file(
            magic, local_path, remote_path, bytes_per_second, force_stop, rec_track
        )
    else:
        logger.info("Downloaded file verification passed")
        stats.success = True

    return stats.describe(local_path)


class Downloader:
    """Runs downloads in the background and reports how the last one went."""

    def __init__(
        self,
        magic: MagicHandle,
        *,
        timeout: int = STOP_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self._magic = magic
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.force_stop = asyncio.Event()
        self._active = 0
        self._last_success = False
        self._tasks: set[asyncio.Task[None]] = set()

    async def download(self, remote_file: str, local_file: str | Path, rate: float) -> str:
        """Start a download without waiting for it."""
        self._active += 1
        task = asyncio.create_task(self._download(remote_file, local_file, rate))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return STARTED_MESSAGE

    async def _download(self, remote_file: str, local_file: str | Path, rate: float) -> None:
        try:
            result = await download_package(
                self._magic, remote_file, local_file, rate, self.force_stop
            )
        except Exception as err:
            logger.error("Download of %s failed: %s", local_file, err)
            self._last_success = False
        else:
            logger.info("%s", result)
            self._last_success = True
        finally:
            self._active -= 1

    async def check_download_status(self) -> DownloadingStatus:
        if self._active > 0:
            return DownloadingStatus.DOWNLOADING
        if self._last_success:
            return DownloadingStatus.SUCCESS
        return DownloadingStatus.FAILED

    async def wait_finished(self) -> None:
        """Wait for running downloads, forcing them to stop after ``timeout`` polls."""
        count = 1
        while self._active > 0:
            logger.info("Waiting for download task to finish")
            await asyncio.sleep(self.poll_interval)
            if count > self.timeout:
                self.force_stop.set()
            count += 1
        logger.info("Download task shutting down gracefully")