"""MQTT ingestion helpers.

This module translates raw MQTT messages into normalized state-store events.
Robots publish on ``{robotId}/r2s/{name}``; anything else on the broker
(``keepalive``, server-to-robot echoes, unknown names) is ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from pydantic import ValidationError

from pybulldog._constants import (
    ROBOT_TO_SERVER,
    TOPIC_BATTERY_STATUS,
    TOPIC_GPS,
    TOPIC_ROBOT_STATUS,
    TOPIC_SPEED,
)
from pybulldog.exceptions import DecodeError
from pybulldog.ingestion.decode import DEFAULT_MAX_PAYLOAD_BYTES, decode_payload
from pybulldog.ingestion.patch import build_event
from pybulldog.state.events import Channel, IngestionEvent, IngestionSource

_logger = logging.getLogger(__name__)

TOPIC_CHANNELS: dict[str, Channel] = {
    TOPIC_ROBOT_STATUS: Channel.STATUS,
    TOPIC_BATTERY_STATUS: Channel.BATTERY,
    TOPIC_GPS: Channel.LOCATION,
    TOPIC_SPEED: Channel.SPEED,
}


@dataclass(frozen=True)
class TopicRoute:
    robot_id: str
    channel: Channel


def route_topic(topic: str) -> TopicRoute | None:
    """Resolve an inbound topic to ``(robot_id, channel)``.

    Returns ``None`` for topics that are not robot-to-server telemetry.
    """
    parts = topic.split("/")
    if len(parts) != 3:
        return None
    robot_id, direction, name = parts
    robot_id = robot_id.strip()
    if not robot_id or direction != ROBOT_TO_SERVER:
        return None
    channel = TOPIC_CHANNELS.get(name)
    if channel is None:
        return None
    return TopicRoute(robot_id=robot_id, channel=channel)


def build_event_from_message(
    *,
    topic: str,
    payload: bytes,
    received_at: datetime | None = None,
    max_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
) -> IngestionEvent | None:
    """Decode one MQTT message into an ingestion event.

    Returns ``None`` for ignored topics. Raises :class:`DecodeError` when the
    payload cannot be decoded or does not fit the channel's model.
    """
    route = route_topic(topic)
    if route is None:
        _logger.debug("Ignoring MQTT topic %s", topic)
        return None

    decoded = decode_payload(payload, route.channel, max_bytes=max_bytes)
    if decoded.partial:
        _logger.debug(
            "Heuristic decode for topic=%s recovered fields=%s",
            topic,
            sorted(decoded.fields),
        )
    try:
        return build_event(
            robot_id=route.robot_id,
            channel=route.channel,
            fields=decoded.fields,
            source=IngestionSource.MQTT,
            received_at=received_at,
        )
    except ValidationError as exc:
        raise DecodeError(
            f"Payload on {topic} does not match the {route.channel} model: {exc.error_count()} error(s)",
            channel=route.channel,
            topic=topic,
        ) from exc
