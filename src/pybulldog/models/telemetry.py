"""Per-channel inbound telemetry models.

Robot firmware generations disagree on key names (``battery_percent`` vs
``batteryPercent`` vs ``soc``...). Each model lists the known spellings
as ``AliasChoices`` so the normalizer only ever sees one canonical field.

Numeric fields are ``None`` when the value is absent or unparseable.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from pydantic import AliasChoices, Field, field_validator

from pybulldog.ingestion.normalize import safe_bool, safe_float, safe_int
from pybulldog.models._base import EpochTimestamp, TelemetryModel

_TIMESTAMP_ALIASES = AliasChoices("timestamp", "ts", "time", "stamp", "updateTime", "update_time")


class StatusTelemetry(TelemetryModel):
    """``robot_status`` payload.

    Parameters
    ----------
    online : bool or None
        ``status`` flag (``1`` online, ``0`` offline).
    operation_mode, drive_mode, delivery_state, lid_status, cruise_state : int or None
        Raw integer codes; enum mapping happens in the normalizer.
    """

    online: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("status", "online", "is_online", "isOnline"),
    )
    operation_mode: int | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "operation_state", "operation_mode", "operationState", "operationMode", "op_state"
        ),
    )
    drive_mode: int | None = Field(
        default=None,
        validation_alias=AliasChoices("drive_state", "drive_mode", "driveState", "driveMode"),
    )
    delivery_state: int | None = Field(
        default=None,
        validation_alias=AliasChoices("delivery_state", "deliveryState", "delivery_status"),
    )
    lid_status: int | None = Field(
        default=None,
        validation_alias=AliasChoices("lid_status", "lidStatus", "lid_state", "lidState"),
    )
    cruise_state: int | None = Field(
        default=None,
        validation_alias=AliasChoices("cruise_state", "cruiseState"),
    )
    timestamp: EpochTimestamp = Field(default=None, validation_alias=_TIMESTAMP_ALIASES)

    @field_validator("online", mode="before")
    @classmethod
    def _coerce_online(cls, value: Any) -> bool | None:
        return safe_bool(value)

    @field_validator(
        "operation_mode", "drive_mode", "delivery_state", "lid_status", "cruise_state", mode="before"
    )
    @classmethod
    def _coerce_codes(cls, value: Any) -> int | None:
        return safe_int(value)


class BatteryTelemetry(TelemetryModel):
    """``battery_status`` payload."""

    _ENVELOPE_KEYS: ClassVar[tuple[str, ...]] = ("data", "battery")

    percentage: float | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "battery_percent",
            "batteryPercent",
            "battery_percentage",
            "percentage",
            "percent",
            "soc",
            "battery_level",
            "batteryLevel",
            "battery",
        ),
    )
    voltage_volts: float | None = Field(
        default=None,
        validation_alias=AliasChoices("voltage", "voltage_v", "battery_voltage", "batteryVoltage"),
    )
    current_amps: float | None = Field(
        default=None,
        validation_alias=AliasChoices("current", "current_a", "battery_current", "batteryCurrent"),
    )
    is_charging: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("charging", "is_charging", "isCharging"),
    )
    timestamp: EpochTimestamp = Field(default=None, validation_alias=_TIMESTAMP_ALIASES)

    @field_validator("percentage", "voltage_volts", "current_amps", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("is_charging", mode="before")
    @classmethod
    def _coerce_charging(cls, value: Any) -> bool | None:
        return safe_bool(value)


class LocationTelemetry(TelemetryModel):
    """``gps`` payload."""

    _ENVELOPE_KEYS: ClassVar[tuple[str, ...]] = ("data", "gps", "position", "location")

    latitude: float | None = Field(
        default=None,
        validation_alias=AliasChoices("latitude", "lat", "gpsLatitude"),
    )
    longitude: float | None = Field(
        default=None,
        validation_alias=AliasChoices("longitude", "lng", "lon", "long", "gpsLongitude"),
    )
    accuracy_meters: float | None = Field(
        default=None,
        validation_alias=AliasChoices("accuracy", "accuracy_m", "horizontal_accuracy", "hAcc"),
    )
    timestamp: EpochTimestamp = Field(default=None, validation_alias=_TIMESTAMP_ALIASES)

    @field_validator("latitude", "longitude", "accuracy_meters", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @property
    def has_fix(self) -> bool:
        """Both coordinates present, in range, and not the ``(0, 0)`` placeholder."""
        if self.latitude is None or self.longitude is None:
            return False
        if not (-90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0):
            return False
        return not (self.latitude == 0.0 and self.longitude == 0.0)


class SpeedTelemetry(TelemetryModel):
    """``speed`` payload (speed plus heading)."""

    speed_meters_per_second: float | None = Field(
        default=None,
        validation_alias=AliasChoices("speed", "speed_mps", "speedMps", "linear_speed", "velocity"),
    )
    heading_degrees: float | None = Field(
        default=None,
        validation_alias=AliasChoices("heading", "direction", "course", "yaw", "heading_deg"),
    )
    timestamp: EpochTimestamp = Field(default=None, validation_alias=_TIMESTAMP_ALIASES)

    @field_validator("speed_meters_per_second", "heading_degrees", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)


def observed_at_of(model: TelemetryModel) -> datetime | None:
    value = getattr(model, "timestamp", None)
    return value if isinstance(value, datetime) else None
