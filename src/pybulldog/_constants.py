"""Internal constants shared across the library."""

# ------------------------------------------------------------------
# Topic layout: {robotId}/{direction}/{name}
# ------------------------------------------------------------------

ROBOT_TO_SERVER = "r2s"
SERVER_TO_ROBOT = "s2r"

TOPIC_ROBOT_STATUS = "robot_status"
TOPIC_BATTERY_STATUS = "battery_status"
TOPIC_GPS = "gps"
TOPIC_SPEED = "speed"

TOPIC_COMMAND = "command"
TOPIC_ORDER = "order"


def inbound_topic(robot_id: str, name: str) -> str:
    return f"{robot_id}/{ROBOT_TO_SERVER}/{name}"


def outbound_topic(robot_id: str, name: str) -> str:
    return f"{robot_id}/{SERVER_TO_ROBOT}/{name}"


# Single-level wildcard over the robot id
DEFAULT_SUBSCRIBE_PATTERNS: tuple[str, ...] = tuple(
    inbound_topic("+", name) for name in (TOPIC_ROBOT_STATUS, TOPIC_BATTERY_STATUS, TOPIC_GPS, TOPIC_SPEED)
)


# ------------------------------------------------------------------
# Fleet defaults (Da Nang depot)
# ------------------------------------------------------------------

DEFAULT_HOME_LATITUDE = 16.047079
DEFAULT_HOME_LONGITUDE = 108.206230

# ------------------------------------------------------------------
# Order command codes
# ------------------------------------------------------------------

OPERATION_MODE_MANUAL = 1
OPERATION_MODE_EMERGENCY = 3
SERVER_CMD_IDLE = 0
SERVER_CMD_START_DELIVERY = 2

# ------------------------------------------------------------------
# Simulation tuning
# ------------------------------------------------------------------

SIM_SEED_BATTERY_PERCENT = 85.0
SIM_SEED_VOLTAGE = 47.2
SIM_CHARGE_STEP_PERCENT = 1.0
SIM_DRAIN_STEP_PERCENT = 0.2
SIM_DRAIN_FLOOR_PERCENT = 10.0
SIM_JITTER_DEGREES = 0.0001
SIM_MIN_SPEED = 0.8
SIM_SPEED_SPREAD = 0.7
