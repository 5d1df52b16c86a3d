"""High-level async client for a delivery-robot fleet."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from pybulldog._mqtt import MqttMessage
from pybulldog._redact import redact_for_log
from pybulldog.commands import CommandDispatcher
from pybulldog.config import FleetConfig
from pybulldog.connection import ConnectionManager, ConnectionStatus, RuntimeFactory
from pybulldog.exceptions import DecodeError
from pybulldog.ingestion.mqtt import build_event_from_message
from pybulldog.models.command import CommandAck, CommandType, Point
from pybulldog.models.robot import GeoPoint, RobotState
from pybulldog.simulation import SimulationFallback
from pybulldog.state.bus import NotificationBus, SnapshotCallback
from pybulldog.state.events import IngestionEvent
from pybulldog.state.store import StateStore

_logger = logging.getLogger(__name__)


class FleetClient:
    """Async client for live robot fleet state and commands.

    Owns the state store, notification bus, connection manager, simulation
    fallback and command dispatcher. Construct one per process and pass it
    to whatever needs fleet state.

    Usage::

        async with FleetClient(FleetConfig.from_env()) as fleet:
            unsubscribe = fleet.subscribe(render)
            await fleet.connect()
            ...
    """

    def __init__(
        self,
        config: FleetConfig | None = None,
        *,
        runtime_factory: RuntimeFactory | None = None,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config or FleetConfig()
        self._loop: asyncio.AbstractEventLoop | None = None

        store_kwargs: dict[str, Any] = {"accept_unknown_robots": self._config.accept_unknown_robots}
        sim_kwargs: dict[str, Any] = {}
        if clock is not None:
            store_kwargs["clock"] = clock
            sim_kwargs["clock"] = clock
        self._store = StateStore(**store_kwargs)
        for profile in self._config.robots:
            self._store.register(profile)

        self._bus = NotificationBus(
            snapshot_provider=self._store.get_snapshot,
            status_provider=self.get_connectivity_status,
        )
        self._simulator = SimulationFallback(
            snapshot=self._store.get_snapshot,
            apply_many=self._apply_many,
            profiles=self._config.robots,
            tick_seconds=self._config.simulation_tick_seconds,
            rng=rng,
            sleep=sleep,
            **sim_kwargs,
        )
        self._connection = ConnectionManager(
            self._config,
            on_message=self.ingest_message,
            on_status=self._bus.publish_connectivity,
            simulator=self._simulator,
            runtime_factory=runtime_factory,
            sleep=sleep,
        )
        self._commands = CommandDispatcher(self._config, self._connection, self._store, self._apply)
        _logger.debug("Fleet client configured: %s", redact_for_log(self._config_summary()))

    def _config_summary(self) -> dict[str, Any]:
        return {
            "broker": f"{self._config.broker_host}:{self._config.broker_port}",
            "username": self._config.username,
            "password": self._config.password,
            "client_id": self._config.client_id,
            "robots": [robot.id for robot in self._config.robots],
        }

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FleetClient:
        self._loop = asyncio.get_running_loop()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()
        self._loop = None

    async def connect(self) -> None:
        """Start connecting in the background. Returns immediately."""
        await self._connection.connect()

    async def disconnect(self) -> None:
        await self._connection.disconnect()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def _apply(self, event: IngestionEvent) -> bool:
        return self._apply_many((event,))

    def _apply_many(self, events: Iterable[IngestionEvent]) -> bool:
        with self._store.lock:
            changed = self._store.apply_many(events)
            snapshot = self._store.get_snapshot() if changed else None
        if snapshot is not None:
            self._bus.publish_snapshot(snapshot)
        return changed

    def ingest_message(self, message: MqttMessage) -> bool:
        """Decode one inbound MQTT message and merge it. Returns whether state changed."""
        try:
            event = build_event_from_message(
                topic=message.topic,
                payload=message.payload,
                received_at=message.received_at,
                max_bytes=self._config.max_payload_bytes,
            )
        except DecodeError as exc:
            _logger.warning("Skipping undecodable payload on %s: %s", message.topic, exc)
            return False
        if event is None:
            return False
        return self._apply(event)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def config(self) -> FleetConfig:
        return self._config

    def get_snapshot(self) -> Mapping[str, RobotState]:
        return self._store.get_snapshot()

    def get_robot(self, robot_id: str) -> RobotState | None:
        return self._store.get_robot(robot_id)

    def get_connectivity_status(self) -> ConnectionStatus:
        return self._connection.status

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Call *callback* now with the current snapshot, then on every change."""
        return self._bus.subscribe(callback)

    def subscribe_to_connectivity(self, callback: Callable[[ConnectionStatus], None]) -> Callable[[], None]:
        return self._bus.subscribe_to_connectivity(callback)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def send_command(
        self,
        robot_id: str,
        command_type: CommandType | str,
        payload: Mapping[str, Any] | Any = None,
    ) -> CommandAck:
        return await self._commands.send_command(robot_id, command_type, payload)

    async def start_delivery(
        self,
        robot_id: str,
        pickup: Point | GeoPoint | Mapping[str, Any],
        dropoff: Point | GeoPoint | Mapping[str, Any],
        *,
        order_id: str | None = None,
    ) -> CommandAck:
        return await self._commands.start_delivery(robot_id, pickup, dropoff, order_id=order_id)

    async def emergency_stop(self, robot_id: str) -> CommandAck:
        return await self._commands.emergency_stop(robot_id)

    async def control_lid(self, robot_id: str, open_lid: bool) -> CommandAck:
        return await self._commands.control_lid(robot_id, open_lid)
