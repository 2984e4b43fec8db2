from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

log = logging.getLogger("solix_bridge.publisher")

TOPIC_SITE_HOMEPAGE = "site_homepage"


class PublishError(RuntimeError):
    """Raised when a message could not be handed to the broker."""


class BusPublisher(Protocol):
    def publish(self, topic: str, payload: Any) -> None:
        ...


@dataclass(frozen=True)
class BrokerAddress:
    host: str
    port: int
    tls: bool
    transport: str


_DEFAULT_PORTS = {
    "mqtt": (1883, False, "tcp"),
    "tcp": (1883, False, "tcp"),
    "mqtts": (8883, True, "tcp"),
    "ssl": (8883, True, "tcp"),
    "ws": (80, False, "websockets"),
    "wss": (443, True, "websockets"),
}


def parse_broker_url(url: str) -> BrokerAddress:
    parsed = urlparse(url.strip())
    scheme = (parsed.scheme or "mqtt").lower()
    if scheme not in _DEFAULT_PORTS:
        raise ValueError(f"unsupported MQTT URL scheme: {scheme!r}")
    if not parsed.hostname:
        raise ValueError(f"MQTT URL has no host: {url!r}")
    default_port, tls, transport = _DEFAULT_PORTS[scheme]
    return BrokerAddress(host=parsed.hostname, port=parsed.port or default_port, tls=tls, transport=transport)


def site_topic_suffix(site_name: str, item: str) -> str:
    # Site names are used verbatim; whatever the broker does with odd characters stands.
    return f"site/{site_name}/{item}"


class PublishAdapter:
    """Prefixes topic suffixes and forwards payloads unchanged."""

    def __init__(self, publisher: BusPublisher, *, topic_prefix: str) -> None:
        self._publisher = publisher
        self.topic_prefix = topic_prefix.rstrip("/")

    def topic_for(self, topic_suffix: str) -> str:
        return f"{self.topic_prefix}/{topic_suffix}"

    def publish(self, topic_suffix: str, payload: Any) -> str:
        topic = self.topic_for(topic_suffix)
        self._publisher.publish(topic, payload)
        log.debug("published %s", topic)
        return topic


ClientFactory = Callable[[Optional[str], str], Any]


def _default_client_factory(client_id: Optional[str], transport: str) -> Any:
    return mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id or "",
        transport=transport,
    )


class MqttPublisher:
    """paho-mqtt publisher with lazy connect and per-message wait.

    Each publish blocks until the broker has the message (or the timeout
    expires), so messages of one cycle leave in call order.
    """

    def __init__(
        self,
        url: str,
        *,
        retain: bool = False,
        client_id: str | None = None,
        username: str | None = None,
        password: str | None = None,
        qos: int = 0,
        connect_timeout_s: float = 10.0,
        publish_timeout_s: float = 10.0,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.address = parse_broker_url(url)
        self.retain = bool(retain)
        self.qos = int(qos)
        self.connect_timeout_s = float(connect_timeout_s)
        self.publish_timeout_s = float(publish_timeout_s)

        factory = client_factory or _default_client_factory
        self._client = factory(client_id, self.address.transport)
        if username:
            self._client.username_pw_set(username, password)
        if self.address.tls:
            self._client.tls_set()
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect

        self._connected = threading.Event()
        self._loop_started = False

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if getattr(reason_code, "is_failure", False):
            log.warning("mqtt connect refused: %s", reason_code)
            return
        log.info("mqtt connected to %s:%s", self.address.host, self.address.port)
        self._connected.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self._connected.clear()
        log.debug("mqtt disconnected: %s", reason_code)

    def ensure_connected(self) -> None:
        if self._connected.is_set():
            return
        try:
            if not self._loop_started:
                self._client.connect(self.address.host, self.address.port, keepalive=60)
                self._client.loop_start()
                self._loop_started = True
            else:
                self._client.reconnect()
        except OSError as exc:
            raise PublishError(f"mqtt connect to {self.address.host}:{self.address.port} failed: {exc}") from exc

        if not self._connected.wait(self.connect_timeout_s):
            raise PublishError(f"mqtt connect timeout after {self.connect_timeout_s:.0f}s")

    def publish(self, topic: str, payload: Any) -> None:
        self.ensure_connected()
        try:
            body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise PublishError(f"payload for {topic} is not JSON serialisable: {exc}") from exc

        info = self._client.publish(topic, payload=body, qos=self.qos, retain=self.retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"publish to {topic} failed: {mqtt.error_string(info.rc)}")
        try:
            info.wait_for_publish(timeout=self.publish_timeout_s)
        except (RuntimeError, ValueError) as exc:
            raise PublishError(f"publish to {topic} failed: {exc}") from exc
        if not info.is_published():
            raise PublishError(f"publish to {topic} not acknowledged within {self.publish_timeout_s:.0f}s")

    def close(self) -> None:
        if not self._loop_started:
            return
        self._client.disconnect()
        self._client.loop_stop()
        self._loop_started = False
        self._connected.clear()
