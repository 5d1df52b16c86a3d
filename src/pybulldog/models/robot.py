"""Canonical per-robot state model.

Enum values mirror the integer codes the robot firmware publishes on the
``robot_status`` topic.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import Field

from pybulldog.models._base import RobotEnum, StateModel

# ------------------------------------------------------------------
# Enums
# ------------------------------------------------------------------


class Connectivity(StrEnum):
    """Derived robot availability. Only the state store writes this."""

    OFFLINE = "offline"
    CONNECTING = "connecting"
    ONLINE = "online"
    CHARGING = "charging"
    DELIVERING = "delivering"
    MAINTENANCE = "maintenance"
    ERROR = "error"


class OperationMode(RobotEnum):
    UNKNOWN = -1
    IDLE = 0
    MANUAL = 1
    AUTO = 2
    EMERGENCY = 3


class DriveMode(RobotEnum):
    UNKNOWN = -1
    STOP = 0
    FORWARD = 1
    BACKWARD = 2
    LEFT = 3
    RIGHT = 4


class DeliveryState(RobotEnum):
    """Order progress as reported by the robot.

    ``PICKING_UP`` through ``DELIVERING`` count as "in progress".
    """

    UNKNOWN = -1
    WAITING = 0
    PICKING_UP = 1
    IN_TRANSIT = 2
    DELIVERING = 3
    COMPLETED = 4
    CANCELLED = 5

    @property
    def in_progress(self) -> bool:
        return DeliveryState.PICKING_UP <= self <= DeliveryState.DELIVERING


class LidStatus(RobotEnum):
    UNKNOWN = -1
    CLOSED = 0
    OPENED = 1
    LOCKED = 2


class CruiseState(RobotEnum):
    UNKNOWN = -1
    CRUISE_RECEIVED = 0
    CRUISE_WAITING = 1
    ROUTE_AVAILABLE = 2
    CHECK_POINT_COMING = 3
    CHECK_POINT_ARRIVED = 4
    ROUTE_UNAVAILABLE = 5


# ------------------------------------------------------------------
# Nested records
# ------------------------------------------------------------------


class BatteryState(StateModel):
    percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    voltage_volts: float = 0.0
    current_amps: float = 0.0
    is_charging: bool = False


class Location(StateModel):
    latitude: float = Field(default=0.0, ge=-90.0, le=90.0)
    longitude: float = Field(default=0.0, ge=-180.0, le=180.0)
    accuracy_meters: float | None = None
    heading_degrees: float | None = None


class Capabilities(StateModel):
    """Static robot capabilities, fixed at registration."""

    max_speed: float = 1.5
    """Metres per second."""
    battery_capacity: float = 48.0
    """Nominal pack voltage."""
    payload_capacity: float = 20.0
    """Kilograms."""
    operating_radius: float = 5000.0
    """Metres."""


class GeoPoint(StateModel):
    lat: float
    lng: float


class CurrentOrder(StateModel):
    order_id: str
    status: int
    pickup_location: GeoPoint | None = None
    delivery_location: GeoPoint | None = None


# ------------------------------------------------------------------
# Robot record
# ------------------------------------------------------------------


class RobotState(StateModel):
    """Canonical, fully-merged state of one robot.

    Instances are immutable; the state store replaces a record wholesale
    on every accepted patch.
    """

    id: str
    name: str
    code: str
    connectivity: Connectivity = Connectivity.OFFLINE
    operation_mode: OperationMode = OperationMode.IDLE
    drive_mode: DriveMode = DriveMode.STOP
    delivery_state: DeliveryState = DeliveryState.WAITING
    lid_status: LidStatus = LidStatus.CLOSED
    cruise_state: CruiseState | None = None
    battery: BatteryState = Field(default_factory=BatteryState)
    location: Location = Field(default_factory=Location)
    speed_meters_per_second: float = 0.0
    capabilities: Capabilities = Field(default_factory=Capabilities)
    current_order: CurrentOrder | None = None
    last_updated: datetime | None = None
    raw_last_payload_by_channel: dict[str, dict[str, Any]] = Field(default_factory=dict)
    """Last decoded payload per channel. Diagnostics only."""

    @property
    def has_live_data(self) -> bool:
        return self.last_updated is not None
