"""Field normalization: decoded field maps to canonical state patches.

This module centralizes the common pattern used across ingestion paths:

- validate the decoded field map into the channel's telemetry model
- map raw codes onto enums, dropping unknown codes
- dump a pruned patch restricted to the fields the channel owns
- pick the best-effort observation time
- create a :class:`pybulldog.state.events.IngestionEvent`

Patches use :class:`~pybulldog.models.robot.RobotState` field names, with
nested dicts for the ``battery`` and ``location`` records. The status
channel additionally carries a transient ``online`` flag that the store
consumes for connectivity derivation.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pybulldog.ingestion.normalize import clamp, prune_patch, to_enum
from pybulldog.models._base import TelemetryModel
from pybulldog.models.robot import CruiseState, CurrentOrder, DeliveryState, DriveMode, LidStatus, OperationMode
from pybulldog.models.telemetry import (
    BatteryTelemetry,
    LocationTelemetry,
    SpeedTelemetry,
    StatusTelemetry,
    observed_at_of,
)
from pybulldog.state.events import Channel, IngestionEvent, IngestionSource

_CHANNEL_MODELS: dict[Channel, type[TelemetryModel]] = {
    Channel.STATUS: StatusTelemetry,
    Channel.BATTERY: BatteryTelemetry,
    Channel.LOCATION: LocationTelemetry,
    Channel.SPEED: SpeedTelemetry,
}


def _status_patch(model: StatusTelemetry) -> dict[str, Any]:
    return {
        "online": model.online,
        "operation_mode": to_enum(OperationMode, model.operation_mode),
        "drive_mode": to_enum(DriveMode, model.drive_mode),
        "delivery_state": to_enum(DeliveryState, model.delivery_state),
        "lid_status": to_enum(LidStatus, model.lid_status),
        "cruise_state": to_enum(CruiseState, model.cruise_state),
    }


def _battery_patch(model: BatteryTelemetry) -> dict[str, Any]:
    percentage = model.percentage
    return {
        "battery": {
            "percentage": clamp(percentage, 0.0, 100.0) if percentage is not None else None,
            "voltage_volts": model.voltage_volts,
            "current_amps": model.current_amps,
            "is_charging": model.is_charging,
        }
    }


def _location_patch(model: LocationTelemetry) -> dict[str, Any]:
    location: dict[str, Any] = {}
    # Coordinates only move as a pair.
    if model.has_fix:
        location["latitude"] = model.latitude
        location["longitude"] = model.longitude
    if model.accuracy_meters is not None and model.accuracy_meters >= 0:
        location["accuracy_meters"] = model.accuracy_meters
    return {"location": location}


def _speed_patch(model: SpeedTelemetry) -> dict[str, Any]:
    heading = model.heading_degrees
    return {
        "speed_meters_per_second": model.speed_meters_per_second,
        "location": {"heading_degrees": heading % 360.0 if heading is not None else None},
    }


def parse_channel(channel: Channel, fields: dict[str, Any]) -> TelemetryModel:
    model_cls = _CHANNEL_MODELS.get(channel)
    if model_cls is None:
        raise ValueError(f"channel {channel!s} carries no robot telemetry")
    return model_cls.model_validate(fields)


def build_patch(channel: Channel, fields: dict[str, Any]) -> dict[str, Any]:
    """Map a decoded field map onto a pruned partial ``RobotState`` patch.

    Only fields owned by *channel* appear; everything the payload does not
    carry (or carries as an unknown code) is absent from the result.
    """
    return _patch_from_model(channel, parse_channel(channel, fields))


def _patch_from_model(channel: Channel, model: TelemetryModel) -> dict[str, Any]:
    if isinstance(model, StatusTelemetry):
        patch = _status_patch(model)
    elif isinstance(model, BatteryTelemetry):
        patch = _battery_patch(model)
    elif isinstance(model, LocationTelemetry):
        patch = _location_patch(model)
    elif isinstance(model, SpeedTelemetry):
        patch = _speed_patch(model)
    else:
        raise ValueError(f"no patch mapping for channel {channel!s}")
    pruned = prune_patch(patch)
    return pruned if isinstance(pruned, dict) else {}


def build_order_patch(order: CurrentOrder | None) -> dict[str, Any]:
    """Patch for the dispatcher-owned ``order`` channel. ``None`` clears the order."""
    return {"current_order": order.model_dump() if order is not None else None}


def build_event(
    *,
    robot_id: str,
    channel: Channel,
    fields: dict[str, Any],
    source: IngestionSource = IngestionSource.MQTT,
    received_at: datetime | None = None,
) -> IngestionEvent:
    """Build an ingestion event from a decoded field map.

    The payload's own timestamp wins over *received_at* so out-of-order
    delivery is detected by the store's stale-channel guard.
    """
    model = parse_channel(channel, fields)
    patch = _patch_from_model(channel, model)
    observed_at = observed_at_of(model) or received_at or datetime.now(UTC)
    return IngestionEvent(
        robot_id=robot_id,
        channel=channel,
        source=source,
        observed_at=observed_at,
        data=patch,
        raw=fields,
    )
