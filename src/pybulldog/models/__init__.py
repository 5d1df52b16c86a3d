"""Data models for robot state, inbound telemetry and outbound commands."""

from pybulldog.models._base import EpochTimestamp, RobotEnum, StateModel, TelemetryModel, parse_epoch_timestamp
from pybulldog.models.command import (
    CommandAck,
    CommandType,
    EmergencyStopCommand,
    LidCommand,
    OrderCommand,
    Point,
    TeleVelocity,
    Vector2,
    Vector3,
)
from pybulldog.models.robot import (
    BatteryState,
    Capabilities,
    Connectivity,
    CruiseState,
    CurrentOrder,
    DeliveryState,
    DriveMode,
    GeoPoint,
    LidStatus,
    Location,
    OperationMode,
    RobotState,
)
from pybulldog.models.telemetry import BatteryTelemetry, LocationTelemetry, SpeedTelemetry, StatusTelemetry

__all__ = [
    "BatteryState",
    "BatteryTelemetry",
    "Capabilities",
    "CommandAck",
    "CommandType",
    "Connectivity",
    "CruiseState",
    "CurrentOrder",
    "DeliveryState",
    "DriveMode",
    "EmergencyStopCommand",
    "EpochTimestamp",
    "GeoPoint",
    "LidCommand",
    "LidStatus",
    "Location",
    "LocationTelemetry",
    "OperationMode",
    "OrderCommand",
    "Point",
    "RobotEnum",
    "RobotState",
    "SpeedTelemetry",
    "StateModel",
    "StatusTelemetry",
    "TeleVelocity",
    "TelemetryModel",
    "Vector2",
    "Vector3",
    "parse_epoch_timestamp",
]
