"""Shared access to the magic configuration of the running agent."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from pathlib import Path

from smithagent.config import (
    DEFAULT_SERVER,
    ConfigCheck,
    ConfigPackage,
    ConfigTunnel,
    MagicFile,
)

logger = logging.getLogger(__name__)


class MagicHandle:
    """Holds the loaded magic file and writes changes back to where it came from."""

    def __init__(self) -> None:
        self._configuration: MagicFile | None = None
        self._path: Path | None = None
        self._lock = asyncio.Lock()

    async def load(self, path: str | Path | None = None) -> None:
        """Load the magic file from ``path``, or from the usual locations.

        A file that cannot be parsed is logged and the previous state is kept.
        """
        async with self._lock:
            try:
                configuration, location = MagicFile.load(path)
            except ValueError as err:
                logger.error("Failed to load Magic from file: %s", err)
                return
            self._configuration = configuration
            self._path = location

    def _persist(self) -> None:
        if self._configuration is None:
            return
        if self._path is None:
            logger.warning("No path to write to")
            return
        try:
            self._configuration.write_to_file(self._path)
        except OSError as err:
            logger.error("Failed to write magic file %s: %s", self._path, err)

    async def checks(self) -> list[ConfigCheck]:
        async with self._lock:
            if self._configuration is None or self._configuration.checks is None:
                return []
            return [dataclasses.replace(check) for check in self._configuration.checks]

    async def tunnel_details(self) -> ConfigTunnel:
        async with self._lock:
            if self._configuration is None or self._configuration.tunnel is None:
                return ConfigTunnel()
            return dataclasses.replace(self._configuration.tunnel)

    async def packages(self) -> list[ConfigPackage]:
        async with self._lock:
            if self._configuration is None or self._configuration.packages is None:
                return []
            return list(self._configuration.packages)

    async def replace_packages(self, packages: list[ConfigPackage]) -> None:
        async with self._lock:
            if self._configuration is None:
                return
            self._configuration.packages = list(packages)
            self._persist()

    async def server(self) -> str:
        async with self._lock:
            if self._configuration is None:
                logger.warning("No server configured, using default")
                return DEFAULT_SERVER
            return self._configuration.meta.server

    async def release_id(self) -> int | None:
        async with self._lock:
            if self._configuration is None:
                return None
            return self._configuration.meta.release_id

    async def update_release_id(self, release_id: int | None) -> None:
        async with self._lock:
            if self._configuration is None:
                return
            if self._configuration.meta.release_id == release_id:
                return
            self._configuration.meta.release_id = release_id
            self._persist()

    async def target_release_id(self) -> int | None:
        async with self._lock:
            if self._configuration is None:
                return None
            return self._configuration.meta.target_release_id

    async def update_target_release_id(self, target_release_id: int | None) -> None:
        async with self._lock:
            if self._configuration is None:
                return
            if self._configuration.meta.target_release_id == target_release_id:
                return
            self._configuration.meta.target_release_id = target_release_id
            self._persist()

    async def token(self) -> str | None:
        async with self._lock:
            if self._configuration is None:
                return None
            return self._configuration.meta.token

    async def _set_token(self, token: str | None) -> None:
        async with self._lock:
            if self._configuration is None:
                return
            self._configuration.meta.token = token
            self._persist()

    async def store_token(self, token: str) -> None:
        await self._set_token(token)

    async def delete_token(self) -> None:
        await self._set_token(None)

    async def wait_while_not_registered(self, interval: float = 1.0) -> None:
        """Return once a token is present, polling every ``interval`` seconds."""
        while await self.token() is None:
            logger.warning("No token found, waiting...")
            await asyncio.sleep(interval)