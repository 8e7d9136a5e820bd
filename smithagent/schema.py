"""Messages exchanged between the agent and the fleet server."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar


def _duration_to_json(seconds: float) -> dict[str, int]:
    secs = int(seconds)
    nanos = int(round((seconds - secs) * 1_000_000_000))
    if nanos >= 1_000_000_000:
        secs += 1
        nanos -= 1_000_000_000
    return {"secs": secs, "nanos": nanos}


def _duration_from_json(value: Any) -> float:
    if not isinstance(value, dict):
        raise ValueError("duration must be an object with 'secs' and 'nanos'")
    try:
        return int(value["secs"]) + int(value["nanos"]) / 1_000_000_000
    except KeyError as err:
        raise ValueError(f"duration is missing {err}") from None


@dataclass
class _TaggedCommand:
    """A variant name with its named fields, encoded the externally tagged way."""

    # variant name -> (required fields, optional fields)
    VARIANTS: ClassVar[dict[str, tuple[tuple[str, ...], tuple[str, ...]]]] = {}
    DEFAULT: ClassVar[str] = ""

    kind: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.kind:
            self.kind = self.DEFAULT
        try:
            required, optional = self.VARIANTS[self.kind]
        except KeyError:
            raise ValueError(
                f"unknown {type(self).__name__} variant: {self.kind!r}"
            ) from None
        self.data = dict(self.data)
        missing = [name for name in required if name not in self.data]
        if missing:
            raise ValueError(f"{self.kind} is missing fields: {', '.join(missing)}")
        unknown = set(self.data) - set(required) - set(optional)
        if unknown:
            raise ValueError(
                f"{self.kind} has unknown fields: {', '.join(sorted(unknown))}"
            )
        for name in optional:
            self.data.setdefault(name, None)

    def __getitem__(self, name: str) -> Any:
        return self.data[name]

    @classmethod
    def _fields(cls, kind: str) -> tuple[str, ...]:
        required, optional = cls.VARIANTS[kind]
        return required + optional

    @classmethod
    def _encode(cls, name: str, value: Any) -> Any:
        return value

    @classmethod
    def _decode(cls, name: str, value: Any) -> Any:
        return value

    def to_json(self) -> Any:
        """Encode as a bare name for unit variants, else ``{name: fields}``."""
        if not self._fields(self.kind):
            return self.kind
        return {
            self.kind: {name: self._encode(name, value) for name, value in self.data.items()}
        }

    @classmethod
    def from_json(cls, value: Any):
        """Decode a variant from its JSON form."""
        if isinstance(value, str):
            kind, payload = value, {}
            if kind in cls.VARIANTS and cls._fields(kind):
                raise ValueError(f"{kind} needs fields but was given as a bare name")
        elif isinstance(value, dict) and len(value) == 1:
            ((kind, payload),) = value.items()
            if payload is None:
                payload = {}
            elif not isinstance(payload, dict):
                raise ValueError(f"fields of {kind} must be an object")
        else:
            raise ValueError(f"cannot decode {cls.__name__} from {value!r}")
        return cls(kind, {name: cls._decode(name, item) for name, item in payload.items()})


@dataclass
class SafeCommandRx(_TaggedCommand):
    """The result part of a command response sent back to the server."""

    VARIANTS: ClassVar[dict[str, tuple[tuple[str, ...], tuple[str, ...]]]] = {
        "Pong": ((), ()),
        "Restart": (("message",), ()),
        "FreeForm": (("stdout", "stderr"), ()),
        "OpenTunnel": (("port_server",), ()),
        "TunnelClosed": ((), ()),
        "GetVariables": ((), ()),
        "Upgraded": ((), ()),
        "UpdateVariables": ((), ()),
        "GetNetwork": ((), ()),
        "UpdateNetwork": ((), ()),
        "UpdateSystemInfo": (("system_info",), ()),
        "UpdatePackage": (("name", "version"), ()),
        "UpgradePackages": ((), ()),
        "WifiConnect": (("stdout", "stderr"), ()),
        "DownloadOTA": ((), ()),
        "CheckOTAStatus": (("status",), ()),
    }
    DEFAULT: ClassVar[str] = "Pong"

    def to_json(self) -> Any:
        return super().to_json()

    @classmethod
    def from_json(cls, value: Any) -> SafeCommandRx:
        return super().from_json(value)


@dataclass
class SafeCommandTx(_TaggedCommand):
    """A command the server asks the agent to run."""

    VARIANTS: ClassVar[dict[str, tuple[tuple[str, ...], tuple[str, ...]]]] = {
        "Ping": ((), ()),
        "Upgrade": ((), ()),
        "Restart": ((), ()),
        "FreeForm": (("cmd",), ()),
        "OpenTunnel": ((), ("port",)),
        "CloseTunnel": ((), ()),
        "UpdateNetwork": (("network",), ()),
        "UpdateVariables": (("variables",), ()),
        "DownloadOTA": (("tools", "payload", "rate"), ()),
        "CheckOTAStatus": ((), ()),
        "StartOTA": ((), ()),
    }
    DEFAULT: ClassVar[str] = "Ping"

    @classmethod
    def _encode(cls, name: str, value: Any) -> Any:
        if name == "network" and isinstance(value, Network):
            return value.to_json()
        if name == "variables":
            return dict(value)
        return value

    @classmethod
    def _decode(cls, name: str, value: Any) -> Any:
        if name == "network" and isinstance(value, dict):
            return Network.from_json(value)
        if name == "variables":
            if not isinstance(value, dict):
                raise ValueError("variables must be an object")
            return {str(key): str(item) for key, item in value.items()}
        return value

    def to_json(self) -> Any:
        return super().to_json()

    @classmethod
    def from_json(cls, value: Any) -> SafeCommandTx:
        return super().from_json(value)


@dataclass
class SafeCommandResponse:
    """The outcome of one command, identified by the command's id."""

    id: int
    command: SafeCommandRx = field(default_factory=SafeCommandRx)
    status: int = 0

    def to_json(self) -> dict[str, Any]:
        return {"id": self.id, "command": self.command.to_json(), "status": self.status}

    @classmethod
    def from_json(cls, value: dict[str, Any]) -> SafeCommandResponse:
        try:
            return cls(
                id=int(value["id"]),
                command=SafeCommandRx.from_json(value["command"]),
                status=int(value["status"]),
            )
        except KeyError as err:
            raise ValueError(f"command response is missing {err}") from None


@dataclass
class SafeCommandRequest:
    """A command queued by the server for this device."""

    id: int
    command: SafeCommandTx = field(default_factory=SafeCommandTx)
    continue_on_error: bool = False

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command.to_json(),
            "continue_on_error": self.continue_on_error,
        }

    @classmethod
    def from_json(cls, value: dict[str, Any]) -> SafeCommandRequest:
        try:
            return cls(
                id=int(value["id"]),
                command=SafeCommandTx.from_json(value["command"]),
                continue_on_error=bool(value["continue_on_error"]),
            )
        except KeyError as err:
            raise ValueError(f"command request is missing {err}") from None


@dataclass
class HomePost:
    """The periodic report the device posts home."""

    timestamp: float = 0.0
    responses: list[SafeCommandResponse] = field(default_factory=list)
    release_id: int | None = None

    @classmethod
    def create(cls, responses: list[SafeCommandResponse], release_id: int | None) -> HomePost:
        start = time.monotonic()
        return cls(
            timestamp=time.monotonic() - start,
            responses=list(responses),
            release_id=release_id,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "timestamp": _duration_to_json(self.timestamp),
            "responses": [response.to_json() for response in self.responses],
            "release_id": self.release_id,
        }


@dataclass
class HomePostResponse:
    """The server's answer to a home post."""

    timestamp: float = 0.0
    commands: list[SafeCommandRequest] = field(default_factory=list)
    target_release_id: int | None = None

    @classmethod
    def from_json(cls, value: dict[str, Any]) -> HomePostResponse:
        if not isinstance(value, dict):
            raise ValueError("home response must be an object")
        try:
            return cls(
                timestamp=_duration_from_json(value["timestamp"]),
                commands=[SafeCommandRequest.from_json(item) for item in value["commands"]],
                target_release_id=value.get("target_release_id"),
            )
        except KeyError as err:
            raise ValueError(f"home response is missing {err}") from None


@dataclass
class DeviceRegistration:
    serial_number: str = ""
    wifi_mac: str = ""

    def to_json(self) -> dict[str, Any]:
        return {"serial_number": self.serial_number, "wifi_mac": self.wifi_mac}


@dataclass
class DeviceRegistrationResponse:
    token: str = ""

    @classmethod
    def from_json(cls, value: dict[str, Any]) -> DeviceRegistrationResponse:
        try:
            return cls(token=str(value["token"]))
        except (KeyError, TypeError):
            raise ValueError("registration response has no token") from None


class NetworkType(enum.Enum):
    WIFI = "wifi"
    ETHERNET = "ethernet"
    DONGLE = "dongle"

    @classmethod
    def parse(cls, value: str | None) -> NetworkType:
        """Parse a network type name, ignoring case."""
        if value is None:
            raise ValueError("failed to get network type string")
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"invalid network type string: {value!r}") from None


@dataclass
class Network:
    id: int
    network_type: NetworkType
    is_network_hidden: bool
    name: str
    ssid: str | None = None
    description: str | None = None
    password: str | None = None

    @classmethod
    def from_json(cls, value: dict[str, Any]) -> Network:
        try:
            return cls(
                id=int(value["id"]),
                network_type=NetworkType(value["network_type"]),
                is_network_hidden=bool(value["is_network_hidden"]),
                name=str(value["name"]),
                ssid=value.get("ssid"),
                description=value.get("description"),
                password=value.get("password"),
            )
        except KeyError as err:
            raise ValueError(f"network is missing {err}") from None

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "network_type": self.network_type.value,
            "is_network_hidden": self.is_network_hidden,
            "ssid": self.ssid,
            "name": self.name,
            "description": self.description,
            "password": self.password,
        }


@dataclass
class NewNetwork:
    network_type: NetworkType
    is_network_hidden: bool
    name: str
    ssid: str | None = None
    description: str | None = None
    password: str | None = None


@dataclass
class Package:
    name: str
    version: str
    file: str
    id: int | None = None
    architecture: str | None = None
    created_at: datetime | None = None