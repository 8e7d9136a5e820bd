"""The magic configuration file and its sections."""

from __future__ import annotations

import asyncio
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w

logger = logging.getLogger(__name__)

DEFAULT_SERVER = "https://api.smith.example.com/smith"
DEFAULT_TUNNEL_SERVER = "bore.pub"
LOCAL_MAGIC_PATH = Path("./magic.toml")
ETC_MAGIC_PATH = Path("/etc/smith/magic.toml")

_DEFAULT_MAGIC = f"""
[meta]
magic_version = 2
server = "{DEFAULT_SERVER}"
"""


@dataclass
class ConfigMeta:
    magic_version: int
    server: str
    release_id: int | None = None
    target_release_id: int | None = None
    token: str | None = None


@dataclass
class ConfigCheck:
    name: str
    cmd: str


@dataclass
class ConfigMetric:
    log_only: bool
    name: str
    cmd: str


def parse_dpkg_version(output: str) -> str:
    """Pick the version column from the package line of ``dpkg -l`` output."""
    lines = output.splitlines()
    if len(lines) <= 5:
        raise ValueError("Failed to get package info")
    fields = lines[5].split()
    if len(fields) <= 2:
        raise ValueError("Failed to get package version")
    return fields[2]


@dataclass(frozen=True)
class ConfigPackage:
    name: str = ""
    version: str = ""
    file: str = ""

    async def system_version(self) -> str:
        """Return the version of this package installed on the system."""
        process = await asyncio.create_subprocess_exec(
            "dpkg",
            "-l",
            self.name,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await process.communicate()
        return parse_dpkg_version(stdout.decode(errors="replace"))


@dataclass
class ConfigTunnel:
    server: str = DEFAULT_TUNNEL_SERVER
    secret: str = ""


@dataclass
class ConfigScheduler:
    app: list[str] = field(default_factory=list)


@dataclass
class MagicFile:
    """The device configuration kept in ``magic.toml``."""

    meta: ConfigMeta
    tunnel: ConfigTunnel | None = None
    scheduler: ConfigScheduler | None = None
    checks: list[ConfigCheck] | None = None
    metrics: list[ConfigMetric] | None = None
    packages: list[ConfigPackage] | None = None

    @classmethod
    def default(cls) -> MagicFile:
        return cls.from_toml(_DEFAULT_MAGIC)

    @classmethod
    def from_toml(cls, text: str) -> MagicFile:
        data = tomllib.loads(text)
        try:
            meta = data["meta"]
            tunnel = data.get("tunnel")
            scheduler = data.get("scheduler")
            return cls(
                meta=ConfigMeta(
                    magic_version=int(meta["magic_version"]),
                    server=str(meta["server"]),
                    release_id=meta.get("release_id"),
                    target_release_id=meta.get("target_release_id"),
                    token=meta.get("token"),
                ),
                tunnel=(
                    ConfigTunnel(server=str(tunnel["server"]), secret=str(tunnel["secret"]))
                    if tunnel is not None
                    else None
                ),
                scheduler=(
                    ConfigScheduler(app=[str(app) for app in scheduler["app"]])
                    if scheduler is not None
                    else None
                ),
                checks=(
                    [ConfigCheck(name=c["name"], cmd=c["cmd"]) for c in data["check"]]
                    if "check" in data
                    else None
                ),
                metrics=(
                    [
                        ConfigMetric(log_only=bool(m["log_only"]), name=m["name"], cmd=m["cmd"])
                        for m in data["metric"]
                    ]
                    if "metric" in data
                    else None
                ),
                packages=(
                    [
                        ConfigPackage(name=p["name"], version=p["version"], file=p["file"])
                        for p in data["package"]
                    ]
                    if "package" in data
                    else None
                ),
            )
        except (KeyError, TypeError) as err:
            raise ValueError(f"invalid magic file: missing or malformed {err}") from err

    def to_toml(self) -> str:
        document: dict[str, Any] = {
            "meta": {
                key: value
                for key, value in vars(self.meta).items()
                if value is not None
            }
        }
        if self.tunnel is not None:
            document["tunnel"] = {"server": self.tunnel.server, "secret": self.tunnel.secret}
        if self.scheduler is not None:
            document["scheduler"] = {"app": list(self.scheduler.app)}
        if self.checks is not None:
            document["check"] = [{"name": c.name, "cmd": c.cmd} for c in self.checks]
        if self.metrics is not None:
            document["metric"] = [
                {"log_only": m.log_only, "name": m.name, "cmd": m.cmd} for m in self.metrics
            ]
        if self.packages is not None:
            document["package"] = [
                {"name": p.name, "version": p.version, "file": p.file} for p in self.packages
            ]
        return tomli_w.dumps(document)

    @classmethod
    def autoload(cls) -> tuple[MagicFile, Path | None]:
        """Load ``magic.toml`` from the working directory or /etc, else the default."""
        if LOCAL_MAGIC_PATH.exists():
            logger.info("Loading magic.toml: LOCAL")
            return cls.load_from_path(LOCAL_MAGIC_PATH)
        if ETC_MAGIC_PATH.exists():
            logger.info("Loading magic.toml: ETC")
            return cls.load_from_path(ETC_MAGIC_PATH)
        logger.error("Loading magic.toml: NO MAGIC FILE FOUND")
        return cls.default(), None

    @classmethod
    def load(cls, location: str | Path | None) -> tuple[MagicFile, Path | None]:
        if location is not None:
            logger.info("Loading magic.toml: %s", location)
            return cls.load_from_path(location)
        return cls.autoload()

    @classmethod
    def load_from_path(cls, location: str | Path) -> tuple[MagicFile, Path]:
        contents = Path(location).read_text()
        try:
            magic = cls.from_toml(contents)
        except ValueError as err:
            raise ValueError(f"Failed to parse magic file: {location}") from err
        return magic, Path(location)

    def write_to_file(self, path: str | Path) -> None:
        Path(path).write_text(self.to_toml())
        logger.info("Wrote magic file to: %s", path)