from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import msgspec
import pytest

from pybulldog._codec import encode_payload
from pybulldog.commands import CommandDispatcher, command_topic
from pybulldog.config import DEFAULT_ROBOTS, FleetConfig
from pybulldog.connection import ConnectionStatus
from pybulldog.exceptions import CommandPublishError, CommandRejectedError, NotConnectedError, TransportError
from pybulldog.ingestion.decode import PayloadEncoding, decode_payload
from pybulldog.models.command import CommandType, OrderCommand, Point
from pybulldog.models.robot import Connectivity, GeoPoint
from pybulldog.state.events import Channel
from pybulldog.state.store import StateStore

BD4 = "bulldog04_5f899b"


class _StubConnection:
    def __init__(self, *, connected: bool = True, fail: bool = False) -> None:
        self.is_connected = connected
        self.status = ConnectionStatus.CONNECTED if connected else ConnectionStatus.SIMULATING
        self.fail = fail
        self.published: list[tuple[str, bytes, int]] = []

    async def publish(self, topic: str, payload: bytes, *, qos: int) -> int:
        if self.fail:
            raise TransportError("publish refused", host="broker.local", reason_code=4)
        self.published.append((topic, payload, qos))
        return len(self.published)


def _now() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


def _setup(
    *,
    online: bool | None = True,
    battery: float = 80.0,
    connection: _StubConnection | None = None,
    **config: Any,
) -> tuple[CommandDispatcher, _StubConnection, StateStore]:
    store = StateStore(clock=_now)
    for profile in DEFAULT_ROBOTS:
        store.register(profile)
    if online is not None:
        store.apply_patch(BD4, Channel.STATUS, {"online": online}, _now())
    store.apply_patch(BD4, Channel.BATTERY, {"battery": {"percentage": battery}}, _now())
    connection = connection or _StubConnection()
    dispatcher = CommandDispatcher(FleetConfig(**config), connection, store, store.apply)  # type: ignore[arg-type]
    return dispatcher, connection, store


def _decoded(connection: _StubConnection, index: int = -1) -> dict[str, Any]:
    return msgspec.msgpack.decode(connection.published[index][1])


def test_command_topics() -> None:
    assert command_topic(BD4, CommandType.DELIVERY) == f"{BD4}/s2r/order"
    assert command_topic(BD4, CommandType.LID) == f"{BD4}/s2r/command"
    assert command_topic(BD4, CommandType.EMERGENCY) == f"{BD4}/s2r/command"


@pytest.mark.asyncio
async def test_send_without_session_raises_not_connected() -> None:
    dispatcher, connection, _store = _setup(connection=_StubConnection(connected=False))

    with pytest.raises(NotConnectedError) as excinfo:
        await dispatcher.emergency_stop(BD4)

    assert excinfo.value.robot_id == BD4
    assert connection.published == []


@pytest.mark.asyncio
async def test_start_delivery_publishes_order_and_records_it() -> None:
    dispatcher, connection, store = _setup()

    ack = await dispatcher.start_delivery(
        BD4,
        GeoPoint(lat=16.05, lng=108.2),
        {"lat": 16.06, "lng": 108.21},
        order_id="order-1",
    )

    topic, _payload, qos = connection.published[-1]
    assert topic == f"{BD4}/s2r/order"
    assert qos == 1
    assert _decoded(connection) == {
        "operation_mode": 1,
        "server_cmd_state": 2,
        "store_location": {"x": 16.05, "y": 108.2},
        "customer_location": {"x": 16.06, "y": 108.21},
        "drive_tele_mode": 0,
        "open_lid_cmd": 0,
    }
    assert ack.command_type == CommandType.DELIVERY
    assert ack.message_id == 1

    robot = store.get_robot(BD4)
    assert robot is not None
    assert robot.current_order is not None
    assert robot.current_order.order_id == "order-1"
    assert robot.current_order.status == 2
    assert robot.current_order.delivery_location == GeoPoint(lat=16.06, lng=108.21)


@pytest.mark.asyncio
async def test_delivery_rejected_on_low_battery() -> None:
    dispatcher, connection, _store = _setup(battery=12.0)

    with pytest.raises(CommandRejectedError):
        await dispatcher.start_delivery(BD4, Point(x=1.0, y=2.0), Point(x=3.0, y=4.0))

    assert connection.published == []


@pytest.mark.asyncio
async def test_delivery_rejected_when_robot_offline() -> None:
    dispatcher, connection, store = _setup(online=False)
    assert store.get_robot(BD4).connectivity == Connectivity.OFFLINE  # type: ignore[union-attr]

    with pytest.raises(CommandRejectedError):
        await dispatcher.start_delivery(BD4, Point(x=1.0, y=2.0), Point(x=3.0, y=4.0))

    assert store.get_robot(BD4).current_order is None  # type: ignore[union-attr]
    assert connection.published == []


@pytest.mark.asyncio
async def test_emergency_stop_skips_validation() -> None:
    dispatcher, connection, _store = _setup(online=False, battery=1.0)

    ack = await dispatcher.emergency_stop("bulldog99_unknown")

    assert ack.topic == "bulldog99_unknown/s2r/command"
    assert _decoded(connection) == {"operation_mode": 3, "server_cmd_state": 0}


@pytest.mark.asyncio
async def test_lid_commands() -> None:
    dispatcher, connection, _store = _setup()

    await dispatcher.control_lid(BD4, True)
    await dispatcher.control_lid(BD4, False)

    assert _decoded(connection, 0) == {"open_lid_cmd": 1}
    assert _decoded(connection, 1) == {"open_lid_cmd": 0}


@pytest.mark.asyncio
async def test_lid_rejected_when_offline() -> None:
    dispatcher, connection, _store = _setup(online=False)

    with pytest.raises(CommandRejectedError) as excinfo:
        await dispatcher.control_lid(BD4, True)

    assert excinfo.value.command_type == CommandType.LID
    assert connection.published == []


@pytest.mark.asyncio
async def test_unknown_robot_rejected() -> None:
    dispatcher, connection, _store = _setup()

    with pytest.raises(CommandRejectedError):
        await dispatcher.control_lid("bulldog99_unknown", True)

    assert connection.published == []


@pytest.mark.asyncio
async def test_validation_can_be_disabled() -> None:
    dispatcher, connection, _store = _setup(online=False, battery=1.0, command_validation=False)

    await dispatcher.start_delivery(BD4, Point(x=1.0, y=2.0), Point(x=3.0, y=4.0))

    assert connection.published[-1][0] == f"{BD4}/s2r/order"


@pytest.mark.asyncio
async def test_publish_failure_is_wrapped() -> None:
    dispatcher, _connection, _store = _setup(connection=_StubConnection(fail=True))

    with pytest.raises(CommandPublishError) as excinfo:
        await dispatcher.emergency_stop(BD4)

    assert isinstance(excinfo.value.__cause__, TransportError)


@pytest.mark.asyncio
async def test_unknown_command_type_rejected() -> None:
    dispatcher, connection, _store = _setup()

    with pytest.raises(CommandRejectedError):
        await dispatcher.send_command(BD4, "teleport")

    assert connection.published == []


@pytest.mark.asyncio
async def test_raw_mapping_payload_and_string_type() -> None:
    dispatcher, connection, _store = _setup(command_qos=0)

    ack = await dispatcher.send_command(BD4, "navigation", {"emb_map": "floor-2"})

    assert ack.command_type == CommandType.NAVIGATION
    assert ack.qos == 0
    assert connection.published[-1][2] == 0
    assert _decoded(connection) == {"emb_map": "floor-2"}


def test_order_payload_reads_back_through_structured_decoder() -> None:
    wire = OrderCommand.start_delivery(Point(x=16.05, y=108.2), Point(x=16.06, y=108.21)).to_wire()

    decoded = decode_payload(encode_payload(wire), Channel.STATUS)

    assert decoded.encoding == PayloadEncoding.MSGPACK
    assert decoded.partial is False
    assert decoded.fields == wire


@pytest.mark.asyncio
async def test_non_mapping_payload_rejected() -> None:
    dispatcher, connection, _store = _setup()

    with pytest.raises(CommandRejectedError) as excinfo:
        await dispatcher.send_command(BD4, CommandType.NAVIGATION, ["not", "a", "map"])

    assert excinfo.value.command_type == CommandType.NAVIGATION
    assert connection.published == []
