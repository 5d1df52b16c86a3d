from __future__ import annotations

import asyncio
import random
from collections.abc import Iterable
from datetime import UTC, datetime

import pytest

from pybulldog._constants import DEFAULT_HOME_LATITUDE, DEFAULT_HOME_LONGITUDE
from pybulldog.config import DEFAULT_ROBOTS
from pybulldog.models.robot import Connectivity, DeliveryState
from pybulldog.simulation import SimulationFallback
from pybulldog.state.events import Channel, IngestionEvent, IngestionSource
from pybulldog.state.store import StateStore

BD4 = "bulldog04_5f899b"
BD5 = "bulldog05_7a8b2c"


def _now() -> datetime:
    return datetime(2026, 1, 1, 12, tzinfo=UTC)


def _store() -> StateStore:
    store = StateStore(clock=_now)
    for profile in DEFAULT_ROBOTS:
        store.register(profile)
    return store


def _simulator(store: StateStore, **kwargs: object) -> SimulationFallback:
    return SimulationFallback(
        snapshot=store.get_snapshot,
        apply_many=store.apply_many,
        profiles=DEFAULT_ROBOTS,
        clock=_now,
        rng=random.Random(7),
        **kwargs,  # type: ignore[arg-type]
    )


def test_seed_uses_each_profiles_start_state() -> None:
    store = _store()
    simulator = _simulator(store)

    store.apply_many(simulator.seed_events())

    bd4 = store.get_robot(BD4)
    assert bd4 is not None
    assert bd4.connectivity == Connectivity.ONLINE
    assert bd4.battery.percentage == 85.0
    assert bd4.battery.voltage_volts == 47.2
    assert bd4.battery.is_charging is False
    assert (bd4.location.latitude, bd4.location.longitude) == (DEFAULT_HOME_LATITUDE, DEFAULT_HOME_LONGITUDE)
    assert bd4.location.accuracy_meters == 3.0

    bd5 = store.get_robot(BD5)
    assert bd5 is not None
    assert bd5.connectivity == Connectivity.CHARGING
    assert bd5.battery.percentage == 45.0
    assert bd5.battery.voltage_volts == 46.8
    assert bd5.battery.is_charging is True
    assert (bd5.location.latitude, bd5.location.longitude) == (16.068079, 108.226230)
    assert bd5.location.accuracy_meters == 2.0


def test_seed_falls_back_to_default_profile_for_unconfigured_robot() -> None:
    store = StateStore(clock=_now)
    store.ensure("bulldog99_ffffff")
    simulator = SimulationFallback(snapshot=store.get_snapshot, apply_many=store.apply_many, clock=_now)

    store.apply_many(simulator.seed_events())

    robot = store.get_robot("bulldog99_ffffff")
    assert robot is not None
    assert robot.connectivity == Connectivity.ONLINE
    assert robot.battery.percentage == 85.0
    assert (robot.location.latitude, robot.location.longitude) == (DEFAULT_HOME_LATITUDE, DEFAULT_HOME_LONGITUDE)
    assert robot.location.accuracy_meters is None


def test_seed_skips_robots_with_live_data() -> None:
    store = _store()
    store.apply_patch(BD4, Channel.BATTERY, {"battery": {"percentage": 42.0}}, _now())
    simulator = _simulator(store)

    events = simulator.seed_events()

    assert {event.robot_id for event in events} == {BD5}
    assert all(event.source == IngestionSource.SIMULATION for event in events)


def test_charging_robot_gains_one_percent() -> None:
    store = _store()
    store.apply_patch(BD4, Channel.BATTERY, {"battery": {"percentage": 50.0, "is_charging": True}}, _now())
    simulator = _simulator(store)

    simulator.tick()

    robot = store.get_robot(BD4)
    assert robot is not None
    assert robot.battery.percentage == 51.0
    assert robot.connectivity == Connectivity.CHARGING


def test_full_charge_returns_robot_online() -> None:
    store = _store()
    store.apply_patch(BD4, Channel.BATTERY, {"battery": {"percentage": 99.5, "is_charging": True}}, _now())
    simulator = _simulator(store)

    simulator.tick()

    robot = store.get_robot(BD4)
    assert robot is not None
    assert robot.battery.percentage == 100.0
    assert robot.battery.is_charging is False
    assert robot.connectivity == Connectivity.ONLINE


def test_delivering_robot_drains_moves_and_jitters() -> None:
    store = _store()
    store.apply_patch(BD4, Channel.STATUS, {"delivery_state": DeliveryState.IN_TRANSIT}, _now())
    store.apply_patch(BD4, Channel.BATTERY, {"battery": {"percentage": 10.1}}, _now())
    store.apply_patch(BD4, Channel.LOCATION, {"location": {"latitude": 16.05, "longitude": 108.2}}, _now())
    simulator = _simulator(store)

    simulator.tick()
    robot = store.get_robot(BD4)
    assert robot is not None
    assert robot.connectivity == Connectivity.DELIVERING
    assert robot.battery.percentage == pytest.approx(10.0)
    assert abs(robot.location.latitude - 16.05) <= 0.00005
    assert abs(robot.location.longitude - 108.2) <= 0.00005
    assert 0.8 <= robot.speed_meters_per_second <= 1.5

    simulator.tick()
    assert store.get_robot(BD4).battery.percentage == pytest.approx(10.0)  # type: ignore[union-attr]


def test_idle_robot_reports_zero_speed() -> None:
    store = _store()
    store.apply_patch(BD5, Channel.SPEED, {"speed_meters_per_second": 1.2}, _now())
    simulator = _simulator(store)

    simulator.tick()

    assert store.get_robot(BD5).speed_meters_per_second == 0.0  # type: ignore[union-attr]


def test_simulated_ticks_leave_channel_clocks_alone() -> None:
    store = _store()
    simulator = _simulator(store)

    store.apply_many(simulator.seed_events())
    simulator.tick()

    assert store.last_applied(BD4, Channel.BATTERY) is None
    assert store.last_applied(BD4, Channel.SPEED) is None


@pytest.mark.asyncio
async def test_task_ticks_until_stopped() -> None:
    store = _store()
    batches: list[list[IngestionEvent]] = []

    def apply_many(events: Iterable[IngestionEvent]) -> bool:
        batch = list(events)
        batches.append(batch)
        return store.apply_many(batch)

    async def fast_sleep(_delay: float) -> None:
        await asyncio.sleep(0)

    simulator = SimulationFallback(
        snapshot=store.get_snapshot,
        apply_many=apply_many,
        profiles=DEFAULT_ROBOTS,
        sleep=fast_sleep,
    )

    simulator.start()
    simulator.start()  # already running: no second seed
    for _ in range(5):
        await asyncio.sleep(0)
    await simulator.stop()
    ticks = len(batches)
    for _ in range(3):
        await asyncio.sleep(0)

    assert simulator.is_running is False
    assert ticks >= 2  # seed plus at least one tick
    assert len(batches) == ticks
    assert store.get_robot(BD4).connectivity == Connectivity.ONLINE  # type: ignore[union-attr]
