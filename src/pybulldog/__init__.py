"""pybulldog - Async telemetry and command pipeline for delivery-robot fleets."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pybulldog")
except PackageNotFoundError:
    __version__ = "0+local"
from pybulldog.client import FleetClient
from pybulldog.config import DEFAULT_ROBOTS, FleetConfig, RobotProfile
from pybulldog.connection import ConnectionStatus
from pybulldog.exceptions import (
    BulldogConfigError,
    BulldogError,
    CommandError,
    CommandPublishError,
    CommandRejectedError,
    DecodeError,
    NotConnectedError,
    StaleUpdateError,
    TransportError,
)
from pybulldog.models import (
    BatteryState,
    Capabilities,
    CommandAck,
    CommandType,
    Connectivity,
    CurrentOrder,
    DeliveryState,
    GeoPoint,
    Location,
    OperationMode,
    Point,
    RobotState,
)

__all__ = [
    "__version__",
    "BatteryState",
    "BulldogConfigError",
    "BulldogError",
    "Capabilities",
    "CommandAck",
    "CommandError",
    "CommandPublishError",
    "CommandRejectedError",
    "CommandType",
    "Connectivity",
    "ConnectionStatus",
    "CurrentOrder",
    "DEFAULT_ROBOTS",
    "DecodeError",
    "DeliveryState",
    "FleetClient",
    "FleetConfig",
    "GeoPoint",
    "Location",
    "NotConnectedError",
    "OperationMode",
    "Point",
    "RobotProfile",
    "RobotState",
    "StaleUpdateError",
    "TransportError",
]
