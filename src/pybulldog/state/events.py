"""Normalized ingestion events.

MQTT telemetry, simulation ticks and dispatcher bookkeeping are all
expressed as :class:`IngestionEvent` values; the state store is the only
consumer allowed to merge them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Characters that would break the {robotId}/{direction}/{name} topic layout.
_TOPIC_RESERVED = frozenset("/+#")


class IngestionSource(StrEnum):
    MQTT = "mqtt"
    SIMULATION = "simulation"
    COMMAND = "command"


class Channel(StrEnum):
    """Telemetry stream a patch came from. Each channel owns a fixed field set."""

    STATUS = "status"
    BATTERY = "battery"
    LOCATION = "location"
    SPEED = "speed"
    ORDER = "order"


class IngestionEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    robot_id: str = Field(..., description="Topic prefix the robot publishes under")
    channel: Channel
    source: IngestionSource = IngestionSource.MQTT
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict, description="Channel-restricted state patch")
    raw: dict[str, Any] = Field(default_factory=dict, description="Decoded field map, for diagnostics")

    @field_validator("robot_id")
    @classmethod
    def _check_robot_id(cls, value: str) -> str:
        robot_id = value.strip()
        if not robot_id or _TOPIC_RESERVED & set(robot_id):
            raise ValueError(f"invalid robot id {value!r}")
        return robot_id

    @field_validator("observed_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
