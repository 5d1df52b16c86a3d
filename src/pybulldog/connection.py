"""Broker connection lifecycle.

Owns:
- starting/stopping the threaded MQTT runtime
- the reconnect state machine with exponential backoff
- handing over to the simulation fallback once the retry budget is spent,
  and probing the broker silently until it comes back
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from pybulldog._mqtt import BulldogMqttRuntime, MqttMessage, build_mqtt_settings
from pybulldog.config import FleetConfig
from pybulldog.exceptions import TransportError
from pybulldog.simulation import SimulationFallback

_logger = logging.getLogger(__name__)

RuntimeFactory = Callable[..., Any]
"""Builds a runtime with ``loop``, ``on_message``, ``on_connect_result``,
``on_connection_lost`` and ``logger`` keyword arguments."""


class ConnectionStatus(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SIMULATING = "simulating"


class ConnectionManager:
    """Keep one broker session alive, or fall back to simulation.

    ``connect()`` returns immediately; a background task runs the state
    machine until ``disconnect()`` cancels it. All callbacks (messages,
    status changes) are delivered on the event loop thread.
    """

    def __init__(
        self,
        config: FleetConfig,
        *,
        on_message: Callable[[MqttMessage], None],
        on_status: Callable[[ConnectionStatus], None] | None = None,
        simulator: SimulationFallback | None = None,
        runtime_factory: RuntimeFactory | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._settings = build_mqtt_settings(config)
        self._on_message = on_message
        self._on_status = on_status
        self._simulator = simulator
        self._runtime_factory: RuntimeFactory = runtime_factory or BulldogMqttRuntime
        self._sleep = sleep

        self._status = ConnectionStatus.DISCONNECTED
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None
        self._runtime: Any = None
        self._generation = 0
        self._connack: asyncio.Future[tuple[bool, str]] | None = None
        self._lost = asyncio.Event()

        self._attempt = 0
        self._delay = config.reconnect_base_delay

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    @property
    def attempt(self) -> int:
        """Reconnect attempts since the last successful connection."""
        return self._attempt

    @property
    def next_delay(self) -> float:
        """Delay before the next reconnect attempt."""
        return self._delay

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        _logger.info("Connection status %s -> %s", self._status, status)
        self._status = status
        if self._on_status is not None:
            try:
                self._on_status(status)
            except Exception:
                _logger.warning("Connection status callback raised", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Start the connection task. Returns without waiting for the broker."""
        if self._task is not None and not self._task.done():
            return
        self._loop = asyncio.get_running_loop()
        self._attempt = 0
        self._delay = self._config.reconnect_base_delay
        self._task = self._loop.create_task(self._run(), name="pybulldog-connection")

    async def disconnect(self) -> None:
        """Cancel reconnects, probes and simulation, then stop the runtime."""
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._stop_runtime()
        if self._simulator is not None:
            await self._simulator.stop()
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def publish(self, topic: str, payload: bytes, *, qos: int) -> int:
        """Publish through the live runtime; returns the MQTT message id."""
        runtime = self._runtime
        if runtime is None or not self.is_connected:
            raise TransportError("No live MQTT session", host=self._settings.host)
        loop = self._loop or asyncio.get_running_loop()
        return int(await loop.run_in_executor(None, functools.partial(runtime.publish, topic, payload, qos=qos)))

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        connected = await self._try_connect()
        while True:
            if connected:
                await self._hold_connection()
            elif self._attempt >= self._config.reconnect_max_attempts:
                connected = await self._fallback_until_reconnect()
                if not connected:
                    return
                continue

            delay = self._delay
            self._attempt += 1
            self._delay = delay * 2
            _logger.info(
                "Reconnecting to %s in %.1fs (attempt %d/%d)",
                self._settings.host,
                delay,
                self._attempt,
                self._config.reconnect_max_attempts,
            )
            await self._sleep(delay)
            connected = await self._try_connect()

    async def _try_connect(self, *, silent: bool = False) -> bool:
        loop = self._loop or asyncio.get_running_loop()
        if not silent:
            self._set_status(ConnectionStatus.CONNECTING)

        self._generation += 1
        generation = self._generation
        self._connack = loop.create_future()
        self._lost = asyncio.Event()
        runtime = self._runtime_factory(
            loop=loop,
            on_message=self._on_message,
            on_connect_result=functools.partial(self._handle_connect_result, generation),
            on_connection_lost=functools.partial(self._handle_connection_lost, generation),
            logger=logging.getLogger("pybulldog._mqtt"),
        )
        self._runtime = runtime
        try:
            await loop.run_in_executor(None, runtime.start, self._settings)
            try:
                ok, reason = await asyncio.wait_for(self._connack, self._config.connect_timeout)
            except TimeoutError as exc:
                raise TransportError(
                    f"No CONNACK from {self._settings.host} within {self._config.connect_timeout}s",
                    host=self._settings.host,
                ) from exc
            if not ok:
                raise TransportError(f"Broker refused connection: {reason}", host=self._settings.host)
        except TransportError as exc:
            if silent:
                _logger.debug("Reconnect probe failed: %s", exc)
            else:
                _logger.warning("MQTT connection attempt failed: %s", exc)
            await self._stop_runtime()
            if not silent:
                self._set_status(ConnectionStatus.DISCONNECTED)
            return False

        await self._on_connected()
        return True

    async def _on_connected(self) -> None:
        self._attempt = 0
        self._delay = self._config.reconnect_base_delay
        if self._simulator is not None and self._simulator.is_running:
            await self._simulator.stop()
        self._set_status(ConnectionStatus.CONNECTED)

    async def _hold_connection(self) -> None:
        await self._lost.wait()
        _logger.warning("MQTT connection to %s lost", self._settings.host)
        await self._stop_runtime()
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def _fallback_until_reconnect(self) -> bool:
        """Simulate (when enabled) and probe until the broker answers.

        Returns ``False`` when probing is disabled, ending the state machine.
        """
        if self._config.simulation_enabled and self._simulator is not None:
            _logger.warning(
                "Broker %s unreachable after %d attempts; switching to simulation",
                self._settings.host,
                self._attempt,
            )
            self._simulator.start()
            self._set_status(ConnectionStatus.SIMULATING)
        else:
            _logger.warning("Broker %s unreachable after %d attempts", self._settings.host, self._attempt)
            self._set_status(ConnectionStatus.DISCONNECTED)

        interval = self._config.simulation_probe_interval
        if interval <= 0:
            return False
        while True:
            await self._sleep(interval)
            if await self._try_connect(silent=True):
                return True

    async def _stop_runtime(self) -> None:
        runtime = self._runtime
        self._runtime = None
        if runtime is None:
            return
        loop = self._loop or asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, runtime.stop)
        except Exception:
            _logger.debug("MQTT runtime stop failed", exc_info=True)

    # ------------------------------------------------------------------
    # Runtime callbacks (event loop thread)
    # ------------------------------------------------------------------

    def _handle_connect_result(self, generation: int, ok: bool, reason: str) -> None:
        if generation != self._generation:
            return
        connack = self._connack
        if connack is not None and not connack.done():
            connack.set_result((ok, reason))

    def _handle_connection_lost(self, generation: int, reason: str) -> None:
        if generation != self._generation:
            return
        connack = self._connack
        if connack is not None and not connack.done():
            connack.set_result((False, reason))
            return
        _logger.debug("MQTT connection lost reason=%s", reason)
        self._lost.set()
