"""Facts about the device the agent runs on."""

from __future__ import annotations

import dataclasses
import json
import logging
import socket
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import psutil

logger = logging.getLogger(__name__)

AGENT_VERSION = "0.2.23"

JETSON_SERIAL_PATH = Path("/sys/firmware/devicetree/base/serial-number")
BOARD_VENDOR_PATH = Path("/sys/class/dmi/id/board_vendor")
PRODUCT_SERIAL_PATH = Path("/sys/class/dmi/id/product_serial")
BOARD_SERIAL_PATH = Path("/sys/devices/virtual/dmi/id/board_serial")
DEFAULT_SERIAL = "1234"


def _read_text(path: str | Path) -> str | None:
    try:
        return Path(path).read_text()
    except (OSError, UnicodeDecodeError):
        return None


@dataclass
class Smith:
    version: str


@dataclass
class OsRelease:
    pretty_name: str
    version_id: str


@dataclass
class DeviceTree:
    serial_number: str
    model: str | None = None
    compatible: list[str] | None = None


@dataclass
class ProcStat:
    btime: int


@dataclass
class Proc:
    version: str
    stat: ProcStat


@dataclass
class NetworkItem:
    ips: list[str]
    mac_address: str


@dataclass
class NetworkInfo:
    interfaces: dict[str, NetworkItem] = field(default_factory=dict)


@dataclass
class NetworkConfig:
    connection_profile_name: str = ""
    connection_profile_uuid: str = ""
    device_type: str = ""
    device_name: str = ""


@dataclass
class ConnectionStatus:
    connection_name: str = ""
    connection_state: str = ""
    device_type: str = ""
    device_name: str = ""


def parse_os_release(text: str) -> OsRelease:
    """Read PRETTY_NAME and VERSION_ID from os-release content."""

    def value_of(key: str) -> str:
        prefix = f"{key}="
        for line in text.splitlines():
            if line.startswith(prefix):
                return line[len(prefix):].strip('"')
        return "Unknown"

    return OsRelease(pretty_name=value_of("PRETTY_NAME"), version_id=value_of("VERSION_ID"))


def parse_boot_time(text: str) -> int:
    """Return the btime value from /proc/stat content, or 0."""
    for line in text.splitlines():
        if line.startswith("btime"):
            fields = line.split()
            try:
                return int(fields[1])
            except (IndexError, ValueError):
                return 0
    return 0


def parse_connection_statuses(statuses: str) -> list[ConnectionStatus]:
    """Parse ``nmcli -t -f CONNECTION,STATE,TYPE,DEVICE device status`` output."""
    result = []
    for line in statuses.splitlines():
        fields = line.split(":")
        if len(fields) != 4:
            result.append(ConnectionStatus())
            continue
        name, state, device_type, device = fields
        result.append(ConnectionStatus(name, state, device_type, device))
    return result


def _connection_statuses() -> list[ConnectionStatus]:
    try:
        output = subprocess.run(
            ["nmcli", "-t", "-f", "CONNECTION,STATE,TYPE,DEVICE", "device", "status"],
            capture_output=True,
            check=False,
        )
    except OSError:
        return []
    return parse_connection_statuses(output.stdout.decode(errors="replace"))


def _network_info() -> NetworkInfo:
    interfaces = {}
    for name, addresses in psutil.net_if_addrs().items():
        ips = [
            address.address.split("%", 1)[0]
            for address in addresses
            if address.family in (socket.AF_INET, socket.AF_INET6)
        ]
        mac = next(
            (address.address.lower() for address in addresses if address.family == psutil.AF_LINK),
            "Unknown",
        )
        interfaces[name] = NetworkItem(ips=ips, mac_address=mac)
    return NetworkInfo(interfaces=interfaces)


def get_raw_serial_number() -> str | None:
    """Read the device serial from the first source that has one."""
    jetson_serial = _read_text(JETSON_SERIAL_PATH)
    if jetson_serial is not None:
        return jetson_serial

    vendor = _read_text(BOARD_VENDOR_PATH)
    if vendor is not None and vendor.strip() == "LENOVO":
        product_serial = _read_text(PRODUCT_SERIAL_PATH)
        if product_serial is not None:
            return product_serial

    board_serial = _read_text(BOARD_SERIAL_PATH)
    if board_serial is not None:
        return board_serial

    logger.error("Failed to read from all serial number files, using default value.")
    return None


def get_serial_number() -> str:
    raw = get_raw_serial_number()
    if raw is None:
        raw = DEFAULT_SERIAL
    return raw.strip().strip("\0")


@dataclass
class SystemInfo:
    smith: Smith
    hostname: str
    os_release: OsRelease
    proc: Proc
    network: NetworkInfo
    device_tree: DeviceTree
    connection_statuses: list[ConnectionStatus]

    @classmethod
    def collect(cls) -> SystemInfo:
        """Gather the system facts from the running host."""
        hostname = _read_text("/etc/hostname")
        proc_version = (_read_text("/proc/version") or "Unknown").split()
        model = _read_text("/proc/device-tree/model")
        compatible = _read_text("/proc/device-tree/compatible")
        return cls(
            smith=Smith(version=AGENT_VERSION),
            hostname=(hostname if hostname is not None else "Unknown").strip(),
            os_release=parse_os_release(_read_text("/etc/os-release") or ""),
            proc=Proc(
                version=proc_version[2] if len(proc_version) > 2 else "Unknown",
                stat=ProcStat(btime=parse_boot_time(_read_text("/proc/stat") or "")),
            ),
            network=_network_info(),
            device_tree=DeviceTree(
                serial_number=(
                    _read_text("/proc/device-tree/serial-number") or "Unknown"
                ).strip("\0"),
                model=model.strip("\0") if model is not None else None,
                compatible=(
                    [part.strip() for part in compatible.split("\0") if part]
                    if compatible is not None
                    else None
                ),
            ),
            connection_statuses=_connection_statuses(),
        )

    def to_value(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    def log(self) -> None:
        try:
            logger.info("%s", json.dumps(self.to_value(), indent=2))
        except (TypeError, ValueError):
            logger.error("Failed to parse system info")