import json

from smithagent.system import (
    AGENT_VERSION,
    ConnectionStatus,
    SystemInfo,
    get_raw_serial_number,
    get_serial_number,
    parse_boot_time,
    parse_connection_statuses,
    parse_os_release,
)


def test_parse_connection_statuses_example():
    statuses = parse_connection_statuses("Wired connection 1:connected:ethernet:eth1\n")
    assert statuses == [ConnectionStatus("Wired connection 1", "connected", "ethernet", "eth1")]


def test_parse_connection_statuses_malformed_line():
    statuses = parse_connection_statuses("garbage\nA:b:c:d\n")
    assert statuses[0] == ConnectionStatus()
    assert statuses[1].device_name == "d"
    assert parse_connection_statuses("") == []


def test_parse_os_release():
    text = 'NAME="Ubuntu"\nPRETTY_NAME="Ubuntu 22.04 LTS"\nVERSION_ID="22.04"\n'
    release = parse_os_release(text)
    assert release.pretty_name == "Ubuntu 22.04 LTS"
    assert release.version_id == "22.04"


def test_parse_os_release_missing_keys():
    release = parse_os_release("")
    assert release.pretty_name == "Unknown"
    assert release.version_id == "Unknown"


def test_parse_boot_time():
    assert parse_boot_time("cpu 1 2 3\nbtime 1700000000\nprocesses 5\n") == 1700000000
    assert parse_boot_time("cpu 1 2 3\n") == 0
    assert parse_boot_time("btime notanumber\n") == 0


def test_serial_number_is_clean():
    serial = get_serial_number()
    assert serial
    assert serial == serial.strip()
    assert not serial.startswith("\x00")
    assert not serial.endswith("\x00")


def test_serial_number_comes_from_raw_or_default():
    raw = get_raw_serial_number()
    serial = get_serial_number()
    assert raw is not None or serial == "1234"
    assert raw is None or serial in raw


def test_collect_produces_serialisable_value():
    info = SystemInfo.collect()
    value = info.to_value()
    assert value["smith"]["version"] == AGENT_VERSION
    assert set(value) == {
        "smith",
        "hostname",
        "os_release",
        "proc",
        "network",
        "device_tree",
        "connection_statuses",
    }
    assert json.loads(json.dumps(value)) == value
    assert value["proc"]["stat"]["btime"] >= 0