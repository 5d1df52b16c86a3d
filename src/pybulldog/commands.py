"""Outbound command dispatch.

Commands are msgpack-encoded with the same codec the decoder reads and
published with QoS 1. Nothing is queued: without a live broker session
the caller gets :class:`NotConnectedError` immediately.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pybulldog._codec import encode_payload
from pybulldog._constants import TOPIC_COMMAND, TOPIC_ORDER, outbound_topic
from pybulldog._redact import redact_for_log
from pybulldog.config import FleetConfig
from pybulldog.connection import ConnectionManager
from pybulldog.exceptions import CommandPublishError, CommandRejectedError, NotConnectedError, TransportError
from pybulldog.ingestion.patch import build_order_patch
from pybulldog.models.command import (
    CommandAck,
    CommandType,
    EmergencyStopCommand,
    LidCommand,
    OrderCommand,
    Point,
)
from pybulldog.models.robot import Connectivity, CurrentOrder, GeoPoint
from pybulldog.state.events import Channel, IngestionEvent, IngestionSource
from pybulldog.state.store import StateStore

_logger = logging.getLogger(__name__)

# Commands that need a robot that is at least reachable.
_REQUIRES_REACHABLE = frozenset({CommandType.LID, CommandType.NAVIGATION, CommandType.MANUAL})


def command_topic(robot_id: str, command_type: CommandType) -> str:
    """Delivery orders go to ``s2r/order``; everything else to ``s2r/command``."""
    name = TOPIC_ORDER if command_type is CommandType.DELIVERY else TOPIC_COMMAND
    return outbound_topic(robot_id, name)


def _as_point(value: Point | GeoPoint | Mapping[str, Any]) -> Point:
    if isinstance(value, Point):
        return value
    if isinstance(value, GeoPoint):
        return Point(x=value.lat, y=value.lng)
    if "lat" in value:
        return Point(x=value["lat"], y=value.get("lng", value.get("lon")))
    return Point.model_validate(value)


def _as_geo(point: Point) -> GeoPoint:
    return GeoPoint(lat=point.x, lng=point.y)


class CommandDispatcher:
    """Validate, encode and publish commands for individual robots."""

    def __init__(
        self,
        config: FleetConfig,
        connection: ConnectionManager,
        store: StateStore,
        apply: Callable[[IngestionEvent], bool],
    ) -> None:
        self._config = config
        self._connection = connection
        self._store = store
        self._apply = apply

    def validate(self, robot_id: str, command_type: CommandType) -> None:
        """Raise :class:`CommandRejectedError` if the robot cannot take the command."""
        if command_type is CommandType.EMERGENCY or not self._config.command_validation:
            return
        robot = self._store.get_robot(robot_id)
        if robot is None:
            raise CommandRejectedError(
                f"Unknown robot {robot_id}",
                robot_id=robot_id,
                command_type=command_type,
            )
        if command_type is CommandType.DELIVERY:
            if robot.connectivity is not Connectivity.ONLINE:
                raise CommandRejectedError(
                    f"Robot {robot_id} is {robot.connectivity}; deliveries need an online robot",
                    robot_id=robot_id,
                    command_type=command_type,
                )
            minimum = self._config.min_delivery_battery_percent
            if robot.battery.percentage < minimum:
                raise CommandRejectedError(
                    f"Robot {robot_id} battery {robot.battery.percentage:.1f}% is below {minimum:.1f}%",
                    robot_id=robot_id,
                    command_type=command_type,
                )
        elif command_type in _REQUIRES_REACHABLE and robot.connectivity is Connectivity.OFFLINE:
            raise CommandRejectedError(
                f"Robot {robot_id} is offline",
                robot_id=robot_id,
                command_type=command_type,
            )

    async def send_command(
        self,
        robot_id: str,
        command_type: CommandType | str,
        payload: Mapping[str, Any] | Any = None,
    ) -> CommandAck:
        """Encode and publish one command.

        Raises
        ------
        NotConnectedError
            The broker session is not live; nothing was sent.
        CommandRejectedError
            The command type or payload is unsupported, or the robot's
            state does not allow the command.
        CommandPublishError
            The broker client refused the publish.
        """
        try:
            kind = CommandType(command_type)
        except ValueError as exc:
            raise CommandRejectedError(
                f"Unknown command type {command_type!r}",
                robot_id=robot_id,
                command_type=str(command_type),
            ) from exc

        if payload is None:
            body: dict[str, Any] = {}
        elif hasattr(payload, "to_wire"):
            body = payload.to_wire()
        elif isinstance(payload, Mapping):
            body = dict(payload)
        else:
            raise CommandRejectedError(
                f"Unsupported {kind} payload of type {type(payload).__name__}",
                robot_id=robot_id,
                command_type=kind,
            )

        if not self._connection.is_connected:
            raise NotConnectedError(
                f"Cannot send {kind} to {robot_id}: broker is {self._connection.status}",
                robot_id=robot_id,
                command_type=kind,
            )
        self.validate(robot_id, kind)

        topic = command_topic(robot_id, kind)
        qos = self._config.command_qos
        _logger.debug("Publishing %s command topic=%s payload=%s", kind, topic, redact_for_log(body))
        try:
            message_id = await self._connection.publish(topic, encode_payload(body), qos=qos)
        except TransportError as exc:
            raise CommandPublishError(
                f"Publishing {kind} to {robot_id} failed: {exc}",
                robot_id=robot_id,
                command_type=kind,
            ) from exc

        _logger.info("Sent %s command to %s (mid=%s)", kind, robot_id, message_id)
        return CommandAck(
            robot_id=robot_id,
            command_type=kind,
            topic=topic,
            payload=body,
            qos=qos,
            message_id=message_id,
            sent_at=datetime.now(UTC),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def start_delivery(
        self,
        robot_id: str,
        pickup: Point | GeoPoint | Mapping[str, Any],
        dropoff: Point | GeoPoint | Mapping[str, Any],
        *,
        order_id: str | None = None,
    ) -> CommandAck:
        """Send a start-delivery order and record it as the robot's current order."""
        store_location = _as_point(pickup)
        customer_location = _as_point(dropoff)
        command = OrderCommand.start_delivery(store_location, customer_location)
        ack = await self.send_command(robot_id, CommandType.DELIVERY, command)

        order = CurrentOrder(
            order_id=order_id or secrets.token_hex(8),
            status=command.server_cmd_state,
            pickup_location=_as_geo(store_location),
            delivery_location=_as_geo(customer_location),
        )
        self._apply(
            IngestionEvent(
                robot_id=robot_id,
                channel=Channel.ORDER,
                source=IngestionSource.COMMAND,
                observed_at=ack.sent_at,
                data=build_order_patch(order),
            )
        )
        return ack

    async def emergency_stop(self, robot_id: str) -> CommandAck:
        return await self.send_command(robot_id, CommandType.EMERGENCY, EmergencyStopCommand())

    async def control_lid(self, robot_id: str, open_lid: bool) -> CommandAck:
        return await self.send_command(robot_id, CommandType.LID, LidCommand.from_flag(open_lid))
