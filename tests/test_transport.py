"""Transport adapters: payload parsing, subscriptions, delivery failures."""

import json
from types import SimpleNamespace

import pytest

from devconfirm.errors import DeliveryError, InvalidFormat
from devconfirm.services.transport import (
    LoopbackTransport,
    MqttTransport,
    challenge_topic,
    device_id_from_response_topic,
    is_valid_device_id,
    parse_response_payload,
    response_topic,
)

SIG = "ab" * 32


def test_topics():
    assert challenge_topic("D1") == "devices/D1/challenge"
    assert response_topic("D1") == "devices/D1/response"
    assert device_id_from_response_topic("devices/D1/response") == "D1"
    assert device_id_from_response_topic("devices/D1/challenge") is None
    assert device_id_from_response_topic("devices//response") is None
    assert device_id_from_response_topic("other/D1/response") is None


@pytest.mark.parametrize("device_id", ["D1", "esp32-a1b2c3", "device.with_dots"])
def test_device_ids_that_fit_one_topic_level(device_id):
    assert is_valid_device_id(device_id)
    assert device_id_from_response_topic(response_topic(device_id)) == device_id


@pytest.mark.parametrize("device_id", ["", "a/b", "dev+1", "dev#", "nul\x00"])
def test_device_ids_that_break_topic_routing(device_id):
    assert not is_valid_device_id(device_id)



def test_parse_valid_payload_ignores_extra_fields():
    msg = parse_response_payload(json.dumps({
        "confirmationId": "c1",
        "signatureHex": SIG.upper(),
        "battery": 87,
        "nested": {"x": [1, 2]},
    }).encode())
    assert msg.confirmation_id == "c1"
    assert msg.signature_hex == SIG.upper()


@pytest.mark.parametrize("raw", [
    b"not json",
    b"\xff\xfe",
    b"[1, 2]",
    b'"text"',
    json.dumps({"signatureHex": SIG}).encode(),
    json.dumps({"confirmationId": "c1"}).encode(),
    json.dumps({"confirmationId": "", "signatureHex": SIG}).encode(),
    json.dumps({"confirmationId": 12, "signatureHex": SIG}).encode(),
    json.dumps({"confirmationId": "c1", "signatureHex": "zz" * 32}).encode(),
    json.dumps({"confirmationId": "c1", "signatureHex": SIG[:-2]}).encode(),
])
def test_parse_rejects_malformed(raw):
    with pytest.raises(InvalidFormat):
        parse_response_payload(raw)


def _collecting_transport():
    transport = LoopbackTransport()
    received = []
    transport.set_response_handler(lambda device_id, msg: received.append((device_id, msg)))
    return transport, received


def test_subscribe_is_idempotent_without_duplicate_delivery():
    transport, received = _collecting_transport()
    assert transport.subscribe_device_responses("D1") == "devices/D1/response"
    assert transport.subscribe_device_responses("D1") == "devices/D1/response"

    transport.inject_response("D1", {"confirmationId": "c1", "signatureHex": SIG})
    assert len(received) == 1
    assert received[0][0] == "D1"
    assert received[0][1].confirmation_id == "c1"


def test_unsubscribed_and_malformed_responses_are_dropped():
    transport, received = _collecting_transport()
    transport.inject_response("D1", {"confirmationId": "c1", "signatureHex": SIG})

    transport.subscribe_device_responses("D1")
    transport.inject_response("D1", b"{broken")
    transport.inject_response("D1", {"confirmationId": "c1"})

    transport.unsubscribe_device_responses("D1")
    transport.unsubscribe_device_responses("D1")
    transport.inject_response("D1", {"confirmationId": "c1", "signatureHex": SIG})
    assert received == []


def test_handler_errors_do_not_escape():
    transport = LoopbackTransport()

    def boom(device_id, msg):
        raise RuntimeError("handler bug")

    transport.set_response_handler(boom)
    transport.subscribe_device_responses("D1")
    transport.inject_response("D1", {"confirmationId": "c1", "signatureHex": SIG})


def test_loopback_records_and_fails_when_offline():
    transport = LoopbackTransport()
    transport.publish_challenge("D1", {"challenge": "00", "confirmationId": "c1"})
    assert transport.last_challenge("D1")["confirmationId"] == "c1"
    assert transport.last_challenge("D2") is None

    transport.online = False
    assert not transport.connected
    with pytest.raises(DeliveryError):
        transport.publish_challenge("D1", {"challenge": "00", "confirmationId": "c2"})


def test_loopback_keeps_only_newest_challenges():
    transport = LoopbackTransport(max_published=3)
    for i in range(5):
        transport.publish_challenge("D1", {"challenge": "00", "confirmationId": f"c{i}"})

    assert [payload["confirmationId"] for _, payload in transport.published] == ["c2", "c3", "c4"]
    assert transport.last_challenge("D1")["confirmationId"] == "c4"



def test_mqtt_rejects_unknown_scheme():
    with pytest.raises(ValueError):
        MqttTransport("http://broker.example.com")


def test_mqtt_publish_without_connection_is_delivery_error():
    transport = MqttTransport("mqtt://localhost:1883", client_id="test")
    assert not transport.connected
    with pytest.raises(DeliveryError):
        transport.publish_challenge("D1", {"challenge": "00"})


def test_mqtt_routes_response_topics_to_handler():
    transport = MqttTransport("mqtt://localhost:1883", client_id="test")
    received = []
    transport.set_response_handler(lambda device_id, msg: received.append((device_id, msg.confirmation_id)))
    transport.subscribe_device_responses("D1")

    payload = json.dumps({"confirmationId": "c1", "signatureHex": SIG}).encode()
    transport._on_message(None, None, SimpleNamespace(topic="devices/D1/response", payload=payload))
    transport._on_message(None, None, SimpleNamespace(topic="devices/D1/challenge", payload=payload))
    transport._on_message(None, None, SimpleNamespace(topic="devices/D2/response", payload=payload))
    assert received == [("D1", "c1")]
