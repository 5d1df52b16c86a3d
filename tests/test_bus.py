from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import pytest

from pybulldog.connection import ConnectionStatus
from pybulldog.models.robot import RobotState
from pybulldog.state.bus import NotificationBus


def _snapshot(name: str = "Bulldog 04") -> Mapping[str, RobotState]:
    return {"bd4": RobotState(id="bd4", name=name, code="BD-004")}


def _bus(status: ConnectionStatus = ConnectionStatus.DISCONNECTED) -> NotificationBus:
    return NotificationBus(snapshot_provider=_snapshot, status_provider=lambda: status)


def test_subscribe_delivers_current_snapshot_immediately() -> None:
    bus = _bus()
    received: list[Mapping[str, RobotState]] = []

    bus.subscribe(received.append)

    assert len(received) == 1
    assert received[0]["bd4"].name == "Bulldog 04"


def test_publish_reaches_every_subscriber_until_unsubscribed() -> None:
    bus = _bus()
    first: list[Any] = []
    second: list[Any] = []
    unsubscribe_first = bus.subscribe(first.append)
    bus.subscribe(second.append)

    bus.publish_snapshot(_snapshot("renamed"))
    unsubscribe_first()
    unsubscribe_first()  # idempotent
    bus.publish_snapshot(_snapshot("again"))

    assert [snap["bd4"].name for snap in first] == ["Bulldog 04", "renamed"]
    assert [snap["bd4"].name for snap in second] == ["Bulldog 04", "renamed", "again"]
    assert bus.subscriber_count == 1


def test_failing_subscriber_does_not_affect_others(caplog: pytest.LogCaptureFixture) -> None:
    bus = _bus()
    received: list[Any] = []
    calls = {"n": 0}

    def broken(_snapshot: Any) -> None:
        calls["n"] += 1
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(received.append)

    with caplog.at_level(logging.WARNING, logger="pybulldog.state.bus"):
        bus.publish_snapshot(_snapshot("next"))

    assert calls["n"] == 2
    assert [snap["bd4"].name for snap in received] == ["Bulldog 04", "next"]
    assert any("raised" in record.getMessage() for record in caplog.records)


def test_unsubscribe_during_fan_out_is_safe() -> None:
    bus = _bus()
    received: list[Any] = []
    handles: dict[str, Any] = {}

    def once(_snapshot: Any) -> None:
        if "self" in handles:
            handles["self"]()

    handles["self"] = bus.subscribe(once)
    bus.subscribe(received.append)

    bus.publish_snapshot(_snapshot("next"))
    bus.publish_snapshot(_snapshot("after"))

    assert [snap["bd4"].name for snap in received] == ["Bulldog 04", "next", "after"]
    assert bus.subscriber_count == 1


def test_connectivity_subscription() -> None:
    bus = _bus(ConnectionStatus.CONNECTING)
    statuses: list[ConnectionStatus] = []

    unsubscribe = bus.subscribe_to_connectivity(statuses.append)
    bus.publish_connectivity(ConnectionStatus.CONNECTED)
    unsubscribe()
    bus.publish_connectivity(ConnectionStatus.DISCONNECTED)

    assert statuses == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]
