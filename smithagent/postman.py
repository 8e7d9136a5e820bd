"""Reports to the fleet server, registers the device and fetches new commands."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

import httpx

from smithagent.magic import MagicHandle
from smithagent.network import NetworkClient
from smithagent.schema import (
    DeviceRegistration,
    DeviceRegistrationResponse,
    HomePost,
    HomePostResponse,
    SafeCommandResponse,
    SafeCommandRx,
)
from smithagent.system import SystemInfo

logger = logging.getLogger(__name__)

KEEP_ALIVE_INTERVAL = 20.0
UPDATE_INTERVAL = 300.0


class RegistrationError(Exception):
    """The device could not obtain a token from the server."""


def _describe_error(err: BaseException) -> str:
    parts = [str(err)]
    cause = err.__cause__ or err.__context__
    while cause is not None:
        parts.append(f"Caused by: {cause}")
        cause = cause.__cause__ or cause.__context__
    return "\n\n".join(parts)


async def _collect_system_value() -> Any:
    info = SystemInfo.collect()
    if inspect.isawaitable(info):
        info = await info
    return info.to_value()


class Postman:
    """Pings the server regularly with results and hands received commands to the commander."""

    def __init__(
        self,
        police: Any,
        commander: Any,
        magic: MagicHandle,
        network: NetworkClient | None = None,
        *,
        keep_alive_interval: float = KEEP_ALIVE_INTERVAL,
        update_interval: float = UPDATE_INTERVAL,
        system_info: Callable[[], Any] | None = None,
    ) -> None:
        self._police = police
        self._commander = commander
        self._magic = magic
        self._owns_network = network is None
        self._network = network if network is not None else NetworkClient()
        self.keep_alive_interval = keep_alive_interval
        self.update_interval = update_interval
        self._system_info = system_info
        self.token: str | None = None
        self.problem: int | None = None

    async def _system_value(self) -> Any:
        if self._system_info is not None:
            return self._system_info()
        return await _collect_system_value()

    async def _system_info_response(self) -> SafeCommandResponse:
        return SafeCommandResponse(
            id=-2,
            command=SafeCommandRx("UpdateSystemInfo", {"system_info": await self._system_value()}),
            status=0,
        )

    async def ensure_token(self) -> None:
        """Register the device if it has no token; raise RegistrationError on failure."""
        if self.token is not None:
            return
        logger.warning("!NO TOKEN! trying to register device")
        registration = DeviceRegistration(
            serial_number=self._network.serial, wifi_mac=self._network.mac_wlan0()
        )
        try:
            response = await self.register_device(registration)
        except httpx.HTTPError as err:
            raise RegistrationError(f"Failed to register device: {err}") from err
        if response.status_code != 200:
            logger.error("Failed to register device: %s", response.status_code)
            raise RegistrationError("Failed to register device")
        try:
            answer = DeviceRegistrationResponse.from_json(response.json())
        except (ValueError, KeyError, TypeError) as err:
            raise RegistrationError(f"Invalid registration response: {err}") from err
        await self._magic.store_token(answer.token)
        self.token = answer.token

    async def ping_home(self, message: HomePost) -> HomePostResponse | None:
        """Post ``message``; return the server's answer, or None when there is none to use."""
        try:
            response = await self._network.send_compressed_post(
                self.token or "", "/home", message
            )
        except httpx.HTTPError as err:
            logger.error("POST FAILURE: %s", _describe_error(err))
            if self.problem is None:
                self.problem = await self._police.report_problem_starting()
            return None

        if response.status_code == 200:
            logger.info("Posting successful")
            if self.problem is not None:
                await self._police.report_problem_solved(self.problem)
                self.problem = None
            try:
                return HomePostResponse.from_json(response.json())
            except (ValueError, KeyError, TypeError) as err:
                logger.error("Invalid response from server: %s", err)
                return None
        if response.status_code == 401:
            logger.warning("Token expired, we are going to delete the token")
            await self.unregister_device()
            return None
        logger.error("Posting failed with status: %s %s", response.status_code, response.text)
        return None

    async def register_device(self, message: DeviceRegistration) -> httpx.Response:
        return await self._network.send_compressed_post(self.token or "", "/register", message)

    async def unregister_device(self) -> None:
        self.token = None
        await self._magic.delete_token()

    async def _keep_alive(self) -> None:
        try:
            await self.ensure_token()
        except RegistrationError as err:
            logger.error("Failed to register device: %s", err)
            return
        responses = await self._commander.get_results()
        release_id = await self._magic.release_id()
        answer = await self.ping_home(HomePost.create(responses, release_id))
        target_release_id = answer.target_release_id if answer is not None else None
        await self._magic.update_target_release_id(target_release_id)
        await self._commander.execute_api_batch(answer.commands if answer is not None else [])

    async def run(self, shutdown: asyncio.Event) -> None:
        """Report to the server on a schedule until ``shutdown`` is set."""
        logger.info("Postman running")
        loop = asyncio.get_running_loop()
        try:
            self._network.hostname = await self._magic.server()
            self.token = await self._magic.token()
            await self._commander.insert_result(
                [
                    SafeCommandResponse(id=-1, command=SafeCommandRx("GetVariables"), status=0),
                    await self._system_info_response(),
                    SafeCommandResponse(id=-4, command=SafeCommandRx("GetNetwork"), status=0),
                ]
            )
            next_keep_alive = next_update = loop.time()
            while not shutdown.is_set():
                if loop.time() >= next_keep_alive:
                    await self._keep_alive()
                    next_keep_alive = loop.time() + self.keep_alive_interval
                if loop.time() >= next_update:
                    await self._commander.insert_result([await self._system_info_response()])
                    next_update = loop.time() + self.update_interval
                delay = max(min(next_keep_alive, next_update) - loop.time(), 0.0)
                try:
                    await asyncio.wait_for(shutdown.wait(), timeout=delay)
                except TimeoutError:
                    continue
        finally:
            if self._owns_network:
                await self._network.aclose()
        logger.info("Postman task shut down")