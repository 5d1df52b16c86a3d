"""Fleet configuration for pybulldog."""

from __future__ import annotations

import dataclasses
import os
import secrets
from typing import Any

from pybulldog._constants import (
    DEFAULT_HOME_LATITUDE,
    DEFAULT_HOME_LONGITUDE,
    DEFAULT_SUBSCRIBE_PATTERNS,
    SIM_SEED_BATTERY_PERCENT,
    SIM_SEED_VOLTAGE,
)
from pybulldog.exceptions import BulldogConfigError
from pybulldog.models.robot import Capabilities


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _default_client_id() -> str:
    return f"fleet_{secrets.token_hex(4)}"


@dataclasses.dataclass(frozen=True)
class RobotProfile:
    """Static identity of one fleet robot.

    ``id`` is the MQTT topic prefix the robot publishes under. The home
    location and the ``seed_*`` fields are the state the simulation fallback
    starts the robot in when no live data has arrived.
    """

    id: str
    name: str
    code: str
    capabilities: Capabilities = dataclasses.field(default_factory=Capabilities)
    home_latitude: float = DEFAULT_HOME_LATITUDE
    home_longitude: float = DEFAULT_HOME_LONGITUDE
    home_accuracy_meters: float | None = None
    seed_battery_percent: float = SIM_SEED_BATTERY_PERCENT
    seed_voltage_volts: float = SIM_SEED_VOLTAGE
    seed_charging: bool = False

    @classmethod
    def from_id(cls, robot_id: str) -> RobotProfile:
        """Profile for a robot known only by its topic prefix."""
        return cls(id=robot_id, name=robot_id, code=robot_id)


DEFAULT_ROBOTS: tuple[RobotProfile, ...] = (
    RobotProfile(
        id="bulldog04_5f899b",
        name="Bulldog 04",
        code="BD-004",
        home_accuracy_meters=3.0,
    ),
    RobotProfile(
        id="bulldog05_7a8b2c",
        name="Bulldog 05",
        code="BD-005",
        home_latitude=16.068079,
        home_longitude=108.226230,
        home_accuracy_meters=2.0,
        seed_battery_percent=45.0,
        seed_voltage_volts=46.8,
        seed_charging=True,
    ),
)


@dataclasses.dataclass(frozen=True)
class FleetConfig:
    """Fleet client configuration.

    Parameters
    ----------
    broker_host : str
        MQTT broker hostname.
    broker_port : int
        MQTT broker port.
    username : str or None
        Broker username, passed through unchanged.
    password : str or None
        Broker password, passed through unchanged.
    client_id : str
        MQTT client id. Defaults to ``fleet_<random hex>``.
    use_tls : bool
        Wrap the broker connection in TLS with the system trust store.
    keepalive : int
        MQTT keepalive in seconds.
    connect_timeout : float
        Seconds to wait for a CONNACK before the attempt counts as failed.
    reconnect_base_delay : float
        First reconnect delay in seconds. Doubles on every failed attempt.
    reconnect_max_attempts : int
        Failed reconnect attempts before the simulation fallback starts.
    simulation_enabled : bool
        Whether to synthesize telemetry once the retry budget is exhausted.
    simulation_tick_seconds : float
        Interval between simulation ticks.
    simulation_probe_interval : float
        Seconds between silent reconnect probes while simulating.
        ``0`` disables probing.
    subscribe_patterns : tuple of str
        Topic filters subscribed on every connect.
    subscribe_qos : int
        QoS for inbound subscriptions.
    command_qos : int
        QoS for outbound commands.
    max_payload_bytes : int
        Inbound payloads larger than this are rejected without decoding.
    accept_unknown_robots : bool
        Create records for robot ids that are not in ``robots``.
    command_validation : bool
        Check robot state before publishing commands.
    min_delivery_battery_percent : float
        Minimum battery level for a delivery command to be accepted.
    robots : tuple of RobotProfile
        The statically configured fleet.
    """

    broker_host: str = "localhost"
    broker_port: int = 1883
    username: str | None = None
    password: str | None = None
    client_id: str = dataclasses.field(default_factory=_default_client_id)
    use_tls: bool = False
    keepalive: int = 60
    connect_timeout: float = 40.0
    reconnect_base_delay: float = 1.0
    reconnect_max_attempts: int = 5
    simulation_enabled: bool = True
    simulation_tick_seconds: float = 5.0
    simulation_probe_interval: float = 60.0
    subscribe_patterns: tuple[str, ...] = DEFAULT_SUBSCRIBE_PATTERNS
    subscribe_qos: int = 0
    command_qos: int = 1
    max_payload_bytes: int = 256 * 1024
    accept_unknown_robots: bool = True
    command_validation: bool = True
    min_delivery_battery_percent: float = 20.0
    robots: tuple[RobotProfile, ...] = DEFAULT_ROBOTS

    def __post_init__(self) -> None:
        if not self.broker_host:
            raise BulldogConfigError("broker_host must be non-empty")
        if not 0 < self.broker_port < 65536:
            raise BulldogConfigError(f"broker_port out of range: {self.broker_port}")
        if self.reconnect_base_delay <= 0:
            raise BulldogConfigError("reconnect_base_delay must be positive")
        if self.reconnect_max_attempts < 0:
            raise BulldogConfigError("reconnect_max_attempts must not be negative")
        if self.simulation_tick_seconds <= 0:
            raise BulldogConfigError("simulation_tick_seconds must be positive")
        if self.simulation_probe_interval < 0:
            raise BulldogConfigError("simulation_probe_interval must not be negative")
        for qos in (self.subscribe_qos, self.command_qos):
            if qos not in (0, 1, 2):
                raise BulldogConfigError(f"invalid MQTT QoS: {qos}")
        if self.max_payload_bytes <= 0:
            raise BulldogConfigError("max_payload_bytes must be positive")
        ids = [robot.id for robot in self.robots]
        if len(ids) != len(set(ids)):
            raise BulldogConfigError("robot ids must be unique")

    def robot_profile(self, robot_id: str) -> RobotProfile | None:
        for robot in self.robots:
            if robot.id == robot_id:
                return robot
        return None

    @classmethod
    def from_env(cls, **overrides: Any) -> FleetConfig:
        """Create configuration from environment variables.

        Reads optional ``BULLDOG_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        FleetConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "BULLDOG_BROKER_HOST": "broker_host",
            "BULLDOG_USERNAME": "username",
            "BULLDOG_PASSWORD": "password",
            "BULLDOG_CLIENT_ID": "client_id",
        }
        _ENV_INT_MAP = {
            "BULLDOG_BROKER_PORT": "broker_port",
            "BULLDOG_KEEPALIVE": "keepalive",
            "BULLDOG_RECONNECT_MAX_ATTEMPTS": "reconnect_max_attempts",
            "BULLDOG_MAX_PAYLOAD_BYTES": "max_payload_bytes",
        }
        _ENV_FLOAT_MAP = {
            "BULLDOG_CONNECT_TIMEOUT": "connect_timeout",
            "BULLDOG_RECONNECT_BASE_DELAY": "reconnect_base_delay",
            "BULLDOG_SIMULATION_TICK_SECONDS": "simulation_tick_seconds",
            "BULLDOG_SIMULATION_PROBE_INTERVAL": "simulation_probe_interval",
            "BULLDOG_MIN_DELIVERY_BATTERY_PERCENT": "min_delivery_battery_percent",
        }
        _ENV_BOOL_MAP = {
            "BULLDOG_USE_TLS": ("use_tls", False),
            "BULLDOG_SIMULATION_ENABLED": ("simulation_enabled", True),
            "BULLDOG_ACCEPT_UNKNOWN_ROBOTS": ("accept_unknown_robots", True),
            "BULLDOG_COMMAND_VALIDATION": ("command_validation", True),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        try:
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = int(val)
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = float(val)
        except ValueError as exc:
            raise BulldogConfigError(f"invalid numeric environment value: {exc}") from exc

        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        # Comma-separated topic prefixes; unknown ids get a bare profile
        robot_ids_env = env.get("BULLDOG_ROBOT_IDS")
        if robot_ids_env is not None and "robots" not in overrides:
            known = {robot.id: robot for robot in DEFAULT_ROBOTS}
            config_kwargs["robots"] = tuple(
                known.get(robot_id) or RobotProfile.from_id(robot_id)
                for robot_id in (part.strip() for part in robot_ids_env.split(","))
                if robot_id
            )

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
