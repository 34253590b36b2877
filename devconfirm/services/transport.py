"""Broker transport: challenge delivery to devices and device response intake.

The confirmation engine only sees ``publish_challenge`` succeed or raise
DeliveryError, and receives parsed responses through one handler. Connection
lifecycle, topic bookkeeping and payload parsing stay in here.
"""

import json
import logging
import ssl
import threading
from collections import deque
from typing import Callable, Optional
from urllib.parse import urlparse

import paho.mqtt.client as mqtt
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from devconfirm.errors import DeliveryError, InvalidFormat

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883, "ws": 80, "wss": 443}
TLS_SCHEMES = ("mqtts", "ssl", "wss")

# Level separator and wildcards, plus the null character MQTT forbids in topics
TOPIC_RESERVED = ("/", "+", "#", "\x00")


def is_valid_device_id(device_id: str) -> bool:
    """A device id must fit in a single topic level."""
    return (
        isinstance(device_id, str)
        and bool(device_id)
        and not any(c in device_id for c in TOPIC_RESERVED)
    )


def challenge_topic(device_id: str) -> str:
    return f"devices/{device_id}/challenge"


def response_topic(device_id: str) -> str:
    return f"devices/{device_id}/response"


def device_id_from_response_topic(topic: str) -> Optional[str]:
    parts = topic.split("/")
    if len(parts) == 3 and parts[0] == "devices" and parts[2] == "response" and parts[1]:
        return parts[1]
    return None


class DeviceResponseMessage(BaseModel):
    """Payload a device publishes on its response topic."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    confirmation_id: str = Field(alias="confirmationId", min_length=1)
    signature_hex: str = Field(alias="signatureHex", pattern=r"^[0-9a-fA-F]{64}$")


ResponseHandler = Callable[[str, DeviceResponseMessage], None]


def parse_response_payload(raw: bytes | str) -> DeviceResponseMessage:
    """Parse a raw response payload. Raises InvalidFormat."""
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise InvalidFormat("Response payload is not JSON") from e
    if not isinstance(data, dict):
        raise InvalidFormat("Response payload is not an object")
    try:
        return DeviceResponseMessage.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidFormat(f"Invalid response fields: {fields}") from e


class TransportAdapter:
    """Per-device publish/subscribe channel over some broker."""

    def __init__(self):
        self._handler: Optional[ResponseHandler] = None
        self._subscriptions: set[str] = set()
        self._lock = threading.Lock()

    def set_response_handler(self, handler: ResponseHandler) -> None:
        self._handler = handler

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    @property
    def connected(self) -> bool:
        raise NotImplementedError

    def is_subscribed(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._subscriptions

    def subscribe_device_responses(self, device_id: str) -> str:
        """Start listening on the device response topic. Idempotent; returns the topic."""
        with self._lock:
            if device_id in self._subscriptions:
                return response_topic(device_id)
            self._subscriptions.add(device_id)
        self._subscribe(device_id)
        return response_topic(device_id)

    def unsubscribe_device_responses(self, device_id: str) -> None:
        with self._lock:
            if device_id not in self._subscriptions:
                return
            self._subscriptions.discard(device_id)
        self._unsubscribe(device_id)

    def publish_challenge(self, device_id: str, payload: dict) -> None:
        raise NotImplementedError

    def _subscribe(self, device_id: str) -> None:
        pass

    def _unsubscribe(self, device_id: str) -> None:
        pass

    def _deliver(self, device_id: str, raw: bytes | str) -> None:
        """Parse an inbound payload and hand it to the response handler."""
        if not self.is_subscribed(device_id):
            logger.info("Ignoring response for unsubscribed device %s", device_id)
            return

        try:
            message = parse_response_payload(raw)
        except InvalidFormat as e:
            logger.warning("Dropping malformed response from device %s: %s", device_id, e)
            return

        handler = self._handler
        if handler is None:
            logger.warning("No response handler registered, dropping response from %s", device_id)
            return
        try:
            handler(device_id, message)
        except Exception:
            logger.exception("Response handler failed for device %s", device_id)


class MqttTransport(TransportAdapter):
    """MQTT adapter running paho's network loop in a background thread."""

    def __init__(
        self,
        broker_url: str,
        client_id: str = "",
        username: str = "",
        password: str = "",
        qos: int = 1,
        keepalive: int = 60,
        tls_insecure: bool = False,
        publish_timeout: float = 5.0,
        reconnect_min_delay: int = 1,
        reconnect_max_delay: int = 30,
    ):
        super().__init__()
        parsed = urlparse(broker_url)
        scheme = (parsed.scheme or "mqtt").lower()
        if scheme not in DEFAULT_PORTS:
            raise ValueError(f"Unsupported broker URL scheme: {scheme}")

        self._host = parsed.hostname or "localhost"
        self._port = parsed.port or DEFAULT_PORTS[scheme]
        self._qos = qos
        self._keepalive = keepalive
        self._publish_timeout = publish_timeout
        self._connected = threading.Event()

        transport = "websockets" if scheme in ("ws", "wss") else "tcp"
        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            transport=transport,
        )
        if transport == "websockets":
            self._client.ws_set_options(path=parsed.path or "/mqtt")
        if username:
            self._client.username_pw_set(username, password or None)
        if scheme in TLS_SCHEMES:
            if tls_insecure:
                self._client.tls_set(cert_reqs=ssl.CERT_NONE)
                self._client.tls_insecure_set(True)
            else:
                self._client.tls_set()
        self._client.reconnect_delay_set(min_delay=reconnect_min_delay, max_delay=reconnect_max_delay)

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def start(self) -> None:
        logger.info("Connecting to MQTT broker %s:%d", self._host, self._port)
        self._client.connect_async(self._host, self._port, keepalive=self._keepalive)
        self._client.loop_start()

    def stop(self) -> None:
        self._client.disconnect()
        self._client.loop_stop()
        self._connected.clear()
        logger.info("MQTT transport stopped")

    def publish_challenge(self, device_id: str, payload: dict) -> None:
        if not self.connected:
            raise DeliveryError("Broker connection unavailable")

        body = json.dumps(payload, separators=(",", ":"))
        try:
            info = self._client.publish(challenge_topic(device_id), body, qos=self._qos)
            info.wait_for_publish(timeout=self._publish_timeout)
        except (RuntimeError, ValueError) as e:
            raise DeliveryError(f"Failed to send challenge to device: {e}") from e

        if not info.is_published():
            raise DeliveryError("Broker did not acknowledge the challenge in time")
        logger.info("Challenge sent to device %s", device_id)

    def _subscribe(self, device_id: str) -> None:
        # Topics are replayed from _subscriptions on every (re)connect
        if not self.connected:
            return
        rc, _ = self._client.subscribe(response_topic(device_id), qos=self._qos)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error("Failed to subscribe to %s (rc=%s)", response_topic(device_id), rc)
        else:
            logger.info("Subscribed to %s", response_topic(device_id))

    def _unsubscribe(self, device_id: str) -> None:
        if self.connected:
            self._client.unsubscribe(response_topic(device_id))

    # --- paho callbacks (network thread) ---

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.error("MQTT connection refused: %s", reason_code)
            return
        self._connected.set()
        logger.info("MQTT connected")

        with self._lock:
            topics = [(response_topic(d), self._qos) for d in self._subscriptions]
        if topics:
            client.subscribe(topics)
            logger.info("Resubscribed to %d device response topic(s)", len(topics))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        self._connected.clear()
        logger.warning("MQTT offline: %s", reason_code)

    def _on_message(self, client, userdata, message):
        device_id = device_id_from_response_topic(message.topic)
        if device_id is None:
            logger.debug("Ignoring message on unexpected topic %s", message.topic)
            return
        self._deliver(device_id, message.payload)


class LoopbackTransport(TransportAdapter):
    """In-process broker stand-in for tests and local demos.

    Challenges are recorded in ``published``, which keeps the newest
    ``max_published`` entries. A responder attached to a device
    plays the device: it receives each challenge payload and may return a
    response payload, which is delivered on a separate thread.
    """

    def __init__(self, response_delay: float = 0.0, max_published: int = 1000):
        super().__init__()
        self.online = True
        self.response_delay = response_delay
        self.published: deque[tuple[str, dict]] = deque(maxlen=max_published)
        self._responders: dict[str, Callable[[dict], Optional[dict]]] = {}

    @property
    def connected(self) -> bool:
        return self.online

    def attach_device(self, device_id: str, responder: Callable[[dict], Optional[dict]]) -> None:
        self._responders[device_id] = responder

    def detach_device(self, device_id: str) -> None:
        self._responders.pop(device_id, None)

    def publish_challenge(self, device_id: str, payload: dict) -> None:
        if not self.online:
            raise DeliveryError("Broker connection unavailable")
        self.published.append((challenge_topic(device_id), dict(payload)))

        responder = self._responders.get(device_id)
        if responder is not None:
            reply = responder(dict(payload))
            if reply is not None:
                timer = threading.Timer(self.response_delay, self.inject_response, args=(device_id, reply))
                timer.daemon = True
                timer.start()

    def inject_response(self, device_id: str, payload: dict | bytes | str) -> None:
        """Simulate a device publishing on its response topic."""
        raw = payload if isinstance(payload, (bytes, str)) else json.dumps(payload)
        self._deliver(device_id, raw)

    def last_challenge(self, device_id: str) -> Optional[dict]:
        topic = challenge_topic(device_id)
        for t, payload in reversed(self.published):
            if t == topic:
                return payload
        return None


def create_transport(cfg) -> TransportAdapter:
    """Build the transport selected by settings."""
    if cfg.transport == "loopback":
        return LoopbackTransport()
    if cfg.transport == "mqtt":
        return MqttTransport(
            cfg.mqtt_broker,
            client_id=cfg.mqtt_client_id,
            username=cfg.mqtt_username,
            password=cfg.mqtt_password,
            qos=cfg.mqtt_qos,
            keepalive=cfg.mqtt_keepalive,
            tls_insecure=cfg.mqtt_tls_insecure,
            publish_timeout=cfg.mqtt_publish_timeout_seconds,
            reconnect_min_delay=cfg.mqtt_reconnect_min_delay,
            reconnect_max_delay=cfg.mqtt_reconnect_max_delay,
        )
    raise ValueError(f"Unknown transport: {cfg.transport}")
