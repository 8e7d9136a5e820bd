import pytest

from smithagent.schema import (
    DeviceRegistration,
    DeviceRegistrationResponse,
    HomePost,
    HomePostResponse,
    Network,
    NetworkType,
    SafeCommandRequest,
    SafeCommandResponse,
    SafeCommandRx,
    SafeCommandTx,
)


def test_unit_variant_encodes_as_name():
    assert SafeCommandRx("Pong").to_json() == "Pong"
    assert SafeCommandTx("StartOTA").to_json() == "StartOTA"


def test_defaults_are_pong_and_ping():
    assert SafeCommandRx().kind == "Pong"
    assert SafeCommandTx().kind == "Ping"


def test_struct_variant_encoding():
    rx = SafeCommandRx("Restart", {"message": "bye"})
    assert rx.to_json() == {"Restart": {"message": "bye"}}


@pytest.mark.parametrize(
    "rx",
    [
        SafeCommandRx("FreeForm", {"stdout": "out", "stderr": "err"}),
        SafeCommandRx("OpenTunnel", {"port_server": 4000}),
        SafeCommandRx("GetNetwork"),
        SafeCommandRx("CheckOTAStatus", {"status": "Success"}),
    ],
)
def test_rx_round_trip(rx):
    assert SafeCommandRx.from_json(rx.to_json()) == rx


def test_unknown_variant_rejected():
    with pytest.raises(ValueError):
        SafeCommandRx.from_json("Bogus")


def test_missing_field_rejected():
    with pytest.raises(ValueError):
        SafeCommandRx.from_json({"FreeForm": {"stdout": "x"}})


def test_struct_variant_as_bare_name_rejected():
    with pytest.raises(ValueError):
        SafeCommandTx.from_json("FreeForm")


def test_open_tunnel_port_is_optional():
    tx = SafeCommandTx.from_json({"OpenTunnel": {}})
    assert tx["port"] is None


def test_update_network_decodes_network():
    payload = {
        "UpdateNetwork": {
            "network": {
                "id": 3,
                "network_type": "wifi",
                "is_network_hidden": False,
                "ssid": "office",
                "name": "office",
                "description": None,
                "password": "password",
            }
        }
    }
    tx = SafeCommandTx.from_json(payload)
    assert isinstance(tx["network"], Network)
    assert tx["network"].network_type is NetworkType.WIFI
    assert tx.to_json() == payload


def test_request_round_trip():
    request = SafeCommandRequest(
        id=7,
        command=SafeCommandTx("DownloadOTA", {"tools": "t.tbz2", "payload": "p.tar.gz", "rate": 1.5}),
        continue_on_error=True,
    )
    assert SafeCommandRequest.from_json(request.to_json()) == request


def test_response_round_trip():
    response = SafeCommandResponse(id=-2, command=SafeCommandRx("UpdateSystemInfo", {"system_info": {"a": 1}}))
    assert SafeCommandResponse.from_json(response.to_json()) == response


def test_request_requires_fields():
    with pytest.raises(ValueError):
        SafeCommandRequest.from_json({"id": 1, "command": "Ping"})


def test_home_post_timestamp_is_duration():
    post = HomePost.create([SafeCommandResponse(id=1)], 5)
    encoded = post.to_json()
    assert set(encoded["timestamp"]) == {"secs", "nanos"}
    assert encoded["release_id"] == 5
    assert encoded["responses"] == [{"id": 1, "command": "Pong", "status": 0}]


def test_home_post_response_parses():
    value = {
        "timestamp": {"secs": 3, "nanos": 0},
        "commands": [{"id": 9, "command": "Ping", "continue_on_error": False}],
        "target_release_id": 12,
    }
    response = HomePostResponse.from_json(value)
    assert response.timestamp == 3
    assert response.target_release_id == 12
    assert response.commands[0].id == 9


def test_home_post_response_missing_commands():
    with pytest.raises(ValueError):
        HomePostResponse.from_json({"timestamp": {"secs": 0, "nanos": 0}})


def test_registration_messages():
    assert DeviceRegistration("S1", "M1").to_json() == {"serial_number": "S1", "wifi_mac": "M1"}
    assert DeviceRegistrationResponse.from_json({"token": "token"}).token == "token"
    with pytest.raises(ValueError):
        DeviceRegistrationResponse.from_json({})


def test_network_type_parse():
    assert NetworkType.parse("Ethernet") is NetworkType.ETHERNET
    with pytest.raises(ValueError):
        NetworkType.parse(None)
    with pytest.raises(ValueError):
        NetworkType.parse("carrier-pigeon")