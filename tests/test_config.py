import pytest

from smithagent import config
from smithagent.config import (
    ConfigCheck,
    ConfigPackage,
    ConfigTunnel,
    MagicFile,
    parse_dpkg_version,
)

MAGIC_WITH_TUNNEL = """
[meta]
magic_version = 2
server 		  = "https://api.smith.example.com/smith"

[tunnel]
server = "localhost"
secret = "secret"

[[check]]
name = "disk"
cmd = "df -h"

[[package]]
name = "smith"
version = "0.2.23"
file = "smith_0.2.23_arm64.deb"
"""

DPKG_OUTPUT = """Desired=Unknown/Install/Remove/Purge/Hold
| Status=Not/Inst/Conf-files/Unpacked/halF-conf/Half-inst/trig-aWait/Trig-pend
|/ Err?=(none)/Reinst-required (Status,Err: uppercase=bad)
||/ Name           Version      Architecture Description
+++-==============-============-============-=================================
ii  smith          0.2.23       arm64        Smith Daemon
"""


@pytest.fixture
def no_magic_files(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config, "LOCAL_MAGIC_PATH", tmp_path / "magic.toml")
    monkeypatch.setattr(config, "ETC_MAGIC_PATH", tmp_path / "etc" / "magic.toml")
    return tmp_path


def test_autoload_works(no_magic_files):
    magic, path = MagicFile.autoload()
    assert path is None
    assert magic.meta.magic_version == 2
    assert magic.meta.server == config.DEFAULT_SERVER


def test_autoload_prefers_local_file(no_magic_files):
    local = no_magic_files / "magic.toml"
    local.write_text(MAGIC_WITH_TUNNEL)
    magic, path = MagicFile.autoload()
    assert path == local
    assert magic.tunnel == ConfigTunnel(server="localhost", secret="secret")


def test_load_with_location(tmp_path):
    target = tmp_path / "custom.toml"
    target.write_text(MAGIC_WITH_TUNNEL)
    magic, path = MagicFile.load(str(target))
    assert path == target
    assert magic.checks == [ConfigCheck(name="disk", cmd="df -h")]
    assert magic.packages == [ConfigPackage("smith", "0.2.23", "smith_0.2.23_arm64.deb")]


def test_default_has_no_optional_sections():
    magic = MagicFile.default()
    assert magic.tunnel is None
    assert magic.checks is None
    assert magic.meta.token is None


def test_toml_round_trip():
    magic = MagicFile.from_toml(MAGIC_WITH_TUNNEL)
    magic.meta.token = "token"
    magic.meta.release_id = 4
    assert MagicFile.from_toml(magic.to_toml()) == magic


def test_write_and_reload(tmp_path):
    magic = MagicFile.default()
    magic.packages = [ConfigPackage("a", "1", "a.deb")]
    target = tmp_path / "magic.toml"
    magic.write_to_file(target)
    loaded, _ = MagicFile.load_from_path(target)
    assert loaded == magic


def test_invalid_file_raises(tmp_path):
    target = tmp_path / "bad.toml"
    target.write_text("[meta]\nserver = 'x'\n")
    with pytest.raises(ValueError):
        MagicFile.load_from_path(target)


def test_tunnel_default_server():
    assert ConfigTunnel().server == "bore.pub"
    assert ConfigTunnel().secret == ""


def test_packages_compare_by_value():
    assert ConfigPackage("a", "1", "f") == ConfigPackage("a", "1", "f")
    assert len({ConfigPackage("a", "1", "f"), ConfigPackage("a", "1", "f")}) == 1


def test_parse_dpkg_version():
    assert parse_dpkg_version(DPKG_OUTPUT) == "0.2.23"


def test_parse_dpkg_version_short_output():
    with pytest.raises(ValueError):
        parse_dpkg_version("dpkg-query: no packages found matching smith\n")