"""HTTP access to the fleet server."""

from __future__ import annotations

import gzip
import json
import logging
import time
from pathlib import Path
from typing import Any

import httpx

from smithagent.config import ConfigPackage
from smithagent.system import get_serial_number

logger = logging.getLogger(__name__)

WLAN0_ADDRESS_PATH = Path("/sys/class/net/wlan0/address")
DEMO_MAC = "DE:MO:00:00:00:00"
REQUEST_TIMEOUT = 10.0
PACKAGE_TIMEOUT = 10 * 60.0


def compress_json(message: Any) -> bytes:
    """Serialise ``message`` to JSON and gzip it; unserialisable input gives an empty body."""
    value = message.to_json() if hasattr(message, "to_json") else message
    try:
        payload = json.dumps(value).encode()
    except (TypeError, ValueError):
        payload = b""
    return gzip.compress(payload)


class NetworkClient:
    """Talks to the fleet server on behalf of this device."""

    def __init__(
        self,
        hostname: str = "",
        *,
        serial: str | None = None,
        mac_path: str | Path = WLAN0_ADDRESS_PATH,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.hostname = hostname
        self.serial = serial if serial is not None else get_serial_number()
        self._mac_path = Path(mac_path)
        self._client = httpx.AsyncClient(timeout=timeout)

    def mac_wlan0(self) -> str:
        """The MAC address of wlan0, or a demo address when there is none."""
        try:
            return self._mac_path.read_text().strip()
        except (OSError, UnicodeDecodeError):
            return DEMO_MAC

    @staticmethod
    def _auth(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def send_compressed_post(self, token: str, endpoint: str, message: Any) -> httpx.Response:
        """POST ``message`` as gzipped JSON to ``endpoint`` on the server."""
        headers = {
            **self._auth(token),
            "Content-Type": "application/json",
            "Content-Encoding": "gzip",
        }
        return await self._client.post(
            f"{self.hostname}{endpoint}", headers=headers, content=compress_json(message)
        )

    async def get_release_packages(self, release_id: int, token: str) -> list[ConfigPackage]:
        """Fetch the package list of a release."""
        response = await self._client.get(
            f"{self.hostname}/releases/{release_id}/packages", headers=self._auth(token)
        )
        try:
            return [
                ConfigPackage(name=str(item["name"]), version=str(item["version"]), file=str(item["file"]))
                for item in response.json()
            ]
        except (ValueError, KeyError, TypeError) as err:
            raise ValueError("Failed to parse JSON response") from err

    async def get_package(self, package_name: str, token: str) -> None:
        """Download a package file into ./packages unless it is already there."""
        packages_folder = Path.cwd() / "packages"
        package_path = packages_folder / package_name
        temporary_path = package_path.with_suffix(".tmp")

        if package_path.exists():
            logger.info("Package already exists locally")
            return
        logger.info("Package does not exist locally, fetching...")

        start = time.monotonic()
        async with self._client.stream(
            "GET",
            f"{self.hostname}/package",
            params={"name": package_name},
            headers=self._auth(token),
            timeout=PACKAGE_TIMEOUT,
        ) as response:
            if response.status_code != 200:
                raise RuntimeError("Failed to get package")
            packages_folder.mkdir(parents=True, exist_ok=True)
            total_bytes = 0
            with temporary_path.open("wb") as file:
                async for chunk in response.aiter_bytes():
                    total_bytes += len(chunk)
                    file.write(chunk)

        if total_bytes == 0:
            logger.error("Downloaded 0 bytes for package %s, deleting temp file", package_name)
            temporary_path.unlink(missing_ok=True)
            raise RuntimeError(f"Package {package_name} download failed: 0 bytes received")

        temporary_path.replace(package_path)
        logger.info(
            "Package %s downloaded in %.2fs to %s",
            package_name,
            time.monotonic() - start,
            package_path,
        )

    async def aclose(self) -> None:
        await self._client.aclose()