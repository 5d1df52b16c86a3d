from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import msgspec
import pytest

from pybulldog import FleetClient, FleetConfig
from pybulldog._codec import encode_payload
from pybulldog.connection import ConnectionStatus
from pybulldog.exceptions import NotConnectedError
from pybulldog.models.robot import Connectivity, RobotState

BD4 = "bulldog04_5f899b"
BD5 = "bulldog05_7a8b2c"


def _config(**overrides: Any) -> FleetConfig:
    base: dict[str, Any] = {
        "reconnect_base_delay": 0.01,
        "simulation_tick_seconds": 3600.0,
        "simulation_probe_interval": 0,
    }
    base.update(overrides)
    return FleetConfig(**base)


@pytest.mark.asyncio
async def test_subscriber_sees_initial_fleet_and_live_updates(fake_broker: Any, wait_until: Any) -> None:
    broker = fake_broker("accept")
    snapshots: list[Mapping[str, RobotState]] = []

    async with FleetClient(_config(), runtime_factory=broker) as fleet:
        fleet.subscribe(snapshots.append)
        assert set(snapshots[0]) == {BD4, BD5}
        assert snapshots[0][BD4].connectivity == Connectivity.OFFLINE

        await fleet.connect()
        await wait_until(lambda: fleet.get_connectivity_status() == ConnectionStatus.CONNECTED)

        broker.latest.deliver(f"{BD4}/r2s/robot_status", encode_payload({"status": 1, "delivery_state": 2}))
        await wait_until(lambda: len(snapshots) == 2)

    latest = snapshots[-1][BD4]
    assert latest.connectivity == Connectivity.DELIVERING
    assert latest.last_updated is not None
    assert snapshots[-1][BD5].connectivity == Connectivity.OFFLINE
    assert fleet.get_connectivity_status() == ConnectionStatus.DISCONNECTED
    assert broker.latest.stopped is True


@pytest.mark.asyncio
async def test_undecodable_payload_is_logged_and_skipped(
    fake_broker: Any, wait_until: Any, caplog: pytest.LogCaptureFixture
) -> None:
    broker = fake_broker("accept")

    async with FleetClient(_config(), runtime_factory=broker) as fleet:
        await fleet.connect()
        await wait_until(lambda: fleet.get_connectivity_status() == ConnectionStatus.CONNECTED)
        before = fleet.get_snapshot()

        with caplog.at_level(logging.WARNING, logger="pybulldog.client"):
            broker.latest.deliver(f"{BD4}/r2s/gps", b"")
            broker.latest.deliver(f"{BD4}/r2s/camera", b"\x01\x02")
            await wait_until(lambda: any("undecodable" in r.getMessage() for r in caplog.records))

        assert fleet.get_snapshot() == before


@pytest.mark.asyncio
async def test_commands_go_through_the_live_session(fake_broker: Any, wait_until: Any) -> None:
    broker = fake_broker("accept")

    async with FleetClient(_config(), runtime_factory=broker) as fleet:
        with pytest.raises(NotConnectedError):
            await fleet.emergency_stop(BD4)

        await fleet.connect()
        await wait_until(lambda: fleet.get_connectivity_status() == ConnectionStatus.CONNECTED)
        broker.latest.deliver(f"{BD4}/r2s/robot_status", encode_payload({"status": 1}))
        broker.latest.deliver(f"{BD4}/r2s/battery_status", encode_payload({"battery": 64, "voltage": 47.5}))
        await wait_until(lambda: fleet.get_robot(BD4).battery.percentage == 64.0)  # type: ignore[union-attr]

        await fleet.control_lid(BD4, True)
        ack = await fleet.start_delivery(BD4, {"lat": 16.05, "lng": 108.2}, {"lat": 16.06, "lng": 108.21})

    topics = [topic for topic, _payload, _qos in broker.published]
    assert topics == [f"{BD4}/s2r/command", f"{BD4}/s2r/order"]
    assert msgspec.msgpack.decode(broker.published[0][1]) == {"open_lid_cmd": 1}
    assert ack.message_id == 2
    assert fleet.get_robot(BD4).current_order is not None  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_exhausted_retries_switch_to_simulation(fake_broker: Any, wait_until: Any) -> None:
    broker = fake_broker("refuse")
    statuses: list[ConnectionStatus] = []

    async with FleetClient(_config(reconnect_max_attempts=2), runtime_factory=broker) as fleet:
        fleet.subscribe_to_connectivity(statuses.append)
        await fleet.connect()
        await wait_until(lambda: fleet.get_connectivity_status() == ConnectionStatus.SIMULATING)

        snapshot = fleet.get_snapshot()
        assert len(broker.runtimes) == 3
        assert snapshot[BD4].connectivity == Connectivity.ONLINE
        assert snapshot[BD4].battery.percentage == 85.0
        assert snapshot[BD5].connectivity == Connectivity.CHARGING
        assert snapshot[BD5].battery.percentage == 45.0

        with pytest.raises(NotConnectedError):
            await fleet.control_lid(BD4, True)

    assert statuses[0] == ConnectionStatus.DISCONNECTED
    assert ConnectionStatus.SIMULATING in statuses
    assert statuses[-1] == ConnectionStatus.DISCONNECTED
