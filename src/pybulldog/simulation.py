"""Synthetic telemetry used while the broker is unreachable.

The fallback writes through the same ingestion events as live MQTT data,
tagged with :attr:`IngestionSource.SIMULATION` so the state store keeps
them out of the per-channel ordering guard.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from pybulldog._constants import (
    SIM_CHARGE_STEP_PERCENT,
    SIM_DRAIN_FLOOR_PERCENT,
    SIM_DRAIN_STEP_PERCENT,
    SIM_JITTER_DEGREES,
    SIM_MIN_SPEED,
    SIM_SPEED_SPREAD,
)
from pybulldog.config import RobotProfile
from pybulldog.ingestion.normalize import clamp
from pybulldog.models.robot import Connectivity, RobotState
from pybulldog.state.events import Channel, IngestionEvent, IngestionSource

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SimulationFallback:
    """Periodically synthesize plausible telemetry for every known robot."""

    def __init__(
        self,
        *,
        snapshot: Callable[[], Mapping[str, RobotState]],
        apply_many: Callable[[Iterable[IngestionEvent]], bool],
        profiles: Sequence[RobotProfile] = (),
        tick_seconds: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._snapshot = snapshot
        self._apply_many = apply_many
        self._profiles = {profile.id: profile for profile in profiles}
        self._tick_seconds = tick_seconds
        self._clock = clock
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _profile(self, robot_id: str) -> RobotProfile:
        return self._profiles.get(robot_id) or RobotProfile.from_id(robot_id)

    def _home(self, robot_id: str) -> tuple[float, float]:
        profile = self._profile(robot_id)
        return profile.home_latitude, profile.home_longitude

    def _event(self, robot_id: str, channel: Channel, data: dict[str, Any], observed_at: datetime) -> IngestionEvent:
        return IngestionEvent(
            robot_id=robot_id,
            channel=channel,
            source=IngestionSource.SIMULATION,
            observed_at=observed_at,
            data=data,
        )

    # ------------------------------------------------------------------
    # Event generation
    # ------------------------------------------------------------------

    def seed_events(self) -> list[IngestionEvent]:
        """Per-profile starting state for every robot without live data.

        Robots are reported online at their home location with the battery
        level and charging flag from their :class:`RobotProfile`.
        """
        now = self._clock()
        events: list[IngestionEvent] = []
        for robot_id, state in self._snapshot().items():
            if state.has_live_data:
                continue
            profile = self._profile(robot_id)
            location: dict[str, Any] = {"latitude": profile.home_latitude, "longitude": profile.home_longitude}
            if profile.home_accuracy_meters is not None:
                location["accuracy_meters"] = profile.home_accuracy_meters
            events.append(self._event(robot_id, Channel.STATUS, {"online": True}, now))
            events.append(
                self._event(
                    robot_id,
                    Channel.BATTERY,
                    {
                        "battery": {
                            "percentage": profile.seed_battery_percent,
                            "voltage_volts": profile.seed_voltage_volts,
                            "is_charging": profile.seed_charging,
                        }
                    },
                    now,
                )
            )
            events.append(self._event(robot_id, Channel.LOCATION, {"location": location}, now))
        return events

    def tick_events(self) -> list[IngestionEvent]:
        """Events for one simulation step over the current snapshot."""
        now = self._clock()
        events: list[IngestionEvent] = []
        for robot_id, state in self._snapshot().items():
            if state.connectivity is Connectivity.CHARGING:
                percentage = min(100.0, state.battery.percentage + SIM_CHARGE_STEP_PERCENT)
                done = percentage >= 100.0
                events.append(
                    self._event(
                        robot_id,
                        Channel.BATTERY,
                        {"battery": {"percentage": percentage, "is_charging": not done}},
                        now,
                    )
                )
                if done:
                    events.append(self._event(robot_id, Channel.STATUS, {"online": True}, now))
                events.append(self._event(robot_id, Channel.SPEED, {"speed_meters_per_second": 0.0}, now))
            elif state.connectivity is Connectivity.DELIVERING:
                percentage = max(SIM_DRAIN_FLOOR_PERCENT, state.battery.percentage - SIM_DRAIN_STEP_PERCENT)
                events.append(self._event(robot_id, Channel.BATTERY, {"battery": {"percentage": percentage}}, now))

                latitude, longitude = state.location.latitude, state.location.longitude
                if latitude == 0.0 and longitude == 0.0:
                    latitude, longitude = self._home(robot_id)
                latitude = clamp(latitude + (self._rng.random() - 0.5) * SIM_JITTER_DEGREES, -90.0, 90.0)
                longitude = clamp(longitude + (self._rng.random() - 0.5) * SIM_JITTER_DEGREES, -180.0, 180.0)
                events.append(
                    self._event(
                        robot_id,
                        Channel.LOCATION,
                        {"location": {"latitude": latitude, "longitude": longitude}},
                        now,
                    )
                )
                speed = SIM_MIN_SPEED + self._rng.random() * SIM_SPEED_SPREAD
                events.append(self._event(robot_id, Channel.SPEED, {"speed_meters_per_second": speed}, now))
            else:
                events.append(self._event(robot_id, Channel.SPEED, {"speed_meters_per_second": 0.0}, now))
        return events

    def tick(self) -> bool:
        """Run one simulation step. Returns whether any robot changed."""
        return self._apply_many(self.tick_events())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Seed robots without live data and start ticking. Requires a running loop."""
        if self.is_running:
            return
        seed = self.seed_events()
        if seed:
            _logger.info("Simulation seeding %d robot(s)", len({event.robot_id for event in seed}))
            self._apply_many(seed)
        self._task = asyncio.get_running_loop().create_task(self._run(), name="pybulldog-simulation")
        _logger.info("Simulation fallback started tick=%ss", self._tick_seconds)

    async def _run(self) -> None:
        while True:
            await self._sleep(self._tick_seconds)
            try:
                self.tick()
            except Exception:
                _logger.warning("Simulation tick failed", exc_info=True)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        _logger.info("Simulation fallback stopped")
