"""Internal MQTT settings and threaded runtime helpers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

import paho.mqtt.client as mqtt

from pybulldog.config import FleetConfig
from pybulldog.exceptions import TransportError


@dataclass(frozen=True)
class MqttSettings:
    """Broker details required to connect and subscribe."""

    host: str
    port: int
    client_id: str
    username: str | None = None
    password: str | None = None
    topics: tuple[str, ...] = ()
    use_tls: bool = False
    keepalive: int = 60
    subscribe_qos: int = 0


@dataclass(frozen=True)
class MqttMessage:
    """Inbound PUBLISH, copied off the paho network thread."""

    topic: str
    payload: bytes
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def build_mqtt_settings(config: FleetConfig) -> MqttSettings:
    return MqttSettings(
        host=config.broker_host,
        port=config.broker_port,
        client_id=config.client_id,
        username=config.username,
        password=config.password,
        topics=tuple(config.subscribe_patterns),
        use_tls=config.use_tls,
        keepalive=config.keepalive,
        subscribe_qos=config.subscribe_qos,
    )


def _reason_value(reason_code: Any) -> int:
    value = getattr(reason_code, "value", reason_code)
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


class BulldogMqttRuntime:
    """Threaded paho-mqtt runtime that hands callbacks to an asyncio loop.

    paho's automatic reconnect is disabled; reconnect policy belongs to
    :class:`pybulldog.connection.ConnectionManager`. Every callback is
    marshalled with ``call_soon_threadsafe`` so nothing downstream runs on
    the network thread.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[MqttMessage], None],
        on_connect_result: Callable[[bool, str], None],
        on_connection_lost: Callable[[str], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._on_connect_result = on_connect_result
        self._on_connection_lost = on_connection_lost
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topics: tuple[str, ...] = ()
        self._subscribe_qos = 0
        self._host = ""

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def _post(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop already closed during teardown.
            self._logger.debug("Dropping MQTT callback %r; event loop closed", callback)

    def start(self, settings: MqttSettings) -> None:
        """Open the socket and start the network thread.

        Raises :class:`TransportError` when the socket cannot be opened.
        The CONNACK outcome is reported later through ``on_connect_result``.
        """
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topics=%s client_id=%s tls=%s",
            settings.host,
            settings.port,
            settings.topics,
            settings.client_id,
            settings.use_tls,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            protocol=mqtt.MQTTv311,
            reconnect_on_failure=False,
        )
        client.enable_logger(self._logger)
        if settings.username is not None:
            client.username_pw_set(settings.username, settings.password)
        if settings.use_tls:
            client.tls_set()

        self._topics = settings.topics
        self._subscribe_qos = settings.subscribe_qos
        self._host = settings.host

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            code = _reason_value(reason_code)
            if code != 0:
                self._logger.warning("MQTT connect refused by %s: %s", self._host, reason_code)
                self._post(self._on_connect_result, False, str(reason_code))
                return
            self._logger.debug("MQTT connected successfully reason=%s", reason_code)
            # Subscriptions are re-issued in full on every CONNACK.
            if self._topics:
                self._logger.debug("MQTT subscribing topics=%s qos=%s", self._topics, self._subscribe_qos)
                c.subscribe([(topic, self._subscribe_qos) for topic in self._topics])
            self._post(self._on_connect_result, True, str(reason_code))

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            message = MqttMessage(topic=msg.topic, payload=bytes(msg.payload))
            self._logger.debug("Received PUBLISH topic=%s bytes=%d", message.topic, len(message.payload))
            self._post(self._on_message, message)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)
                self._post(self._on_connection_lost, str(reason_code))

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(settings.host, settings.port, keepalive=settings.keepalive)
        except (OSError, ValueError) as exc:
            raise TransportError(
                f"Could not open MQTT connection to {settings.host}:{settings.port}: {exc}",
                host=settings.host,
            ) from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    def publish(self, topic: str, payload: bytes, *, qos: int = 1) -> int:
        """Publish *payload* and return the message id."""
        client = self._client
        if client is None or not self._running:
            raise TransportError("MQTT runtime is not running", host=self._host)
        info = client.publish(topic, payload, qos=qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(
                f"MQTT publish to {topic} failed: {mqtt.error_string(info.rc)}",
                host=self._host,
                reason_code=int(info.rc),
            )
        return int(info.mid)
