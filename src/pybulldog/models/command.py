"""Outbound command models and acknowledgements.

Field names match the robot's wire schema exactly (snake_case), so
``to_wire()`` is a plain ``model_dump`` with unset optionals removed.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pybulldog._constants import (
    OPERATION_MODE_EMERGENCY,
    OPERATION_MODE_MANUAL,
    SERVER_CMD_IDLE,
    SERVER_CMD_START_DELIVERY,
)


class CommandType(enum.StrEnum):
    """Kinds of command a caller can send to a robot."""

    DELIVERY = "delivery"
    NAVIGATION = "navigation"
    MANUAL = "manual"
    LID = "lid"
    EMERGENCY = "emergency"


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    def to_wire(self) -> dict[str, Any]:
        """Dump to the plain dict that gets msgpack-encoded."""
        return self.model_dump(exclude_none=True)


class Point(_WireModel):
    """Planar point. The robot reads ``x`` as latitude and ``y`` as longitude."""

    x: float
    y: float


class Vector2(_WireModel):
    x: float = 0.0
    y: float = 0.0


class Vector3(_WireModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class TeleVelocity(_WireModel):
    linear: Vector2 = Field(default_factory=Vector2)
    angular: Vector3 = Field(default_factory=Vector3)


class OrderCommand(_WireModel):
    """Order/delivery command published on ``{robotId}/s2r/order``."""

    operation_mode: int
    server_cmd_state: int
    store_location: Point
    customer_location: Point
    drive_tele_mode: int | None = None
    open_lid_cmd: int | None = None
    tele_cmd_vel: TeleVelocity | None = None
    emb_map: str | None = None

    @classmethod
    def start_delivery(cls, pickup: Point, dropoff: Point) -> OrderCommand:
        return cls(
            operation_mode=OPERATION_MODE_MANUAL,
            server_cmd_state=SERVER_CMD_START_DELIVERY,
            store_location=pickup,
            customer_location=dropoff,
            drive_tele_mode=0,
            open_lid_cmd=0,
        )


class LidCommand(_WireModel):
    open_lid_cmd: int

    @classmethod
    def from_flag(cls, open_lid: bool) -> LidCommand:
        return cls(open_lid_cmd=1 if open_lid else 0)


class EmergencyStopCommand(_WireModel):
    operation_mode: int = OPERATION_MODE_EMERGENCY
    server_cmd_state: int = SERVER_CMD_IDLE


class CommandAck(BaseModel):
    """Local acknowledgement that a command was handed to the broker client.

    This is *not* a delivery receipt from the robot.
    """

    model_config = ConfigDict(frozen=True)

    robot_id: str
    command_type: CommandType
    topic: str
    payload: dict[str, Any]
    qos: int
    message_id: int | None = None
    sent_at: datetime
