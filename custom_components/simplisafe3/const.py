"""Constants for the SimpliSafe 3 integration."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Final

# Domain
DOMAIN: Final = "simplisafe3"

# HTTP base & paths
API_BASE: Final = "https://api.simplisafe.com/v1"
AUTH_CHECK_PATH: Final = "/api/authCheck"
LOGIN_INFO_PATH_FMT: Final = "/users/{user_id}/loginInfo"
SUBSCRIPTIONS_PATH_FMT: Final = "/users/{user_id}/subscriptions"
SUBSCRIPTION_PATH_FMT: Final = "/subscriptions/{sub_id}/"
EVENTS_PATH_FMT: Final = "/subscriptions/{sub_id}/events"
ALARM_STATE_PATH_FMT: Final = "/ss3/subscriptions/{sub_id}/state/{state}"
SENSORS_PATH_FMT: Final = "/ss3/subscriptions/{sub_id}/sensors"
LOCKS_PATH_FMT: Final = "/doorlock/{sub_id}"
LOCK_STATE_PATH_FMT: Final = "/doorlock/{sub_id}/{lock_id}/state"

# OAuth token endpoint (public mobile-app client)
AUTH_TOKEN_URL: Final = "https://auth.simplisafe.com/oauth/token"
AUTH_CLIENT_ID: Final = "42aBZ5lYrVW12jfOuu3CQROitwxg9sN5"
AUTH_REDIRECT_URI: Final = (
    "com.simplisafe.mobile://auth.simplisafe.com/ios/com.simplisafe.mobile/callback"
)

# Socket.IO push channel
SOCKET_BASE: Final = "https://api.simplisafe.com"
SOCKET_PATH: Final = "socket.io"
SOCKET_NAMESPACE_FMT: Final = "/v1/user/{user_id}"
SOCKET_RETRY_INTERVAL: Final = 1.0  # seconds
SOCKET_RECONNECT_ATTEMPTS: Final = 5
SOCKET_RECONNECT_WINDOW: Final = 30.0  # seconds

USER_AGENT: Final = "SimpliSafe3/HomeAssistant Integration"

# Cache windows (seconds, measured from request completion)
SUBSCRIPTION_CACHE_TTL: Final = 3.0
SENSOR_CACHE_TTL: Final = 3.0

# Rate limiting
RATE_LIMIT_INITIAL_INTERVAL: Final = 60.0  # seconds
RATE_LIMIT_MAX_INTERVAL: Final = 2 * 60 * 60.0  # seconds

# Sensor polling
DEFAULT_SENSOR_REFRESH: Final = 15  # seconds
MIN_SENSOR_REFRESH: Final = 10
MAX_SENSOR_REFRESH: Final = 3600
SENSOR_REFRESH_LOCKOUT: Final = 15.0  # seconds
ERROR_SUPPRESSION_WINDOW: Final = 5 * 60.0  # seconds

# Alarm writes
TARGET_STATE_MAX_RETRIES: Final = 5
TARGET_STATE_RETRY_DELAY: Final = 1.0  # seconds
TRANSIENT_WRITE_STATUSES: Final = frozenset({409, 504})

# Subscription plans that carry a monitored SS3 system
ACTIVE_PLAN_STATUSES: Final = frozenset({7, 10, 20})

VALID_ALARM_STATES: Final = ("off", "home", "away")
VALID_LOCK_STATES: Final = ("lock", "unlock")
ALARM_STATES: Final = (
    "OFF",
    "HOME",
    "AWAY",
    "HOME_COUNT",
    "AWAY_COUNT",
    "ALARM_COUNT",
    "ALARM",
)

SENSOR_TYPES: Final[Mapping[str, int]] = {
    "APP": 0,
    "KEYPAD": 1,
    "KEYCHAIN": 2,
    "PANIC_BUTTON": 3,
    "MOTION_SENSOR": 4,
    "ENTRY_SENSOR": 5,
    "GLASSBREAK_SENSOR": 6,
    "CO_SENSOR": 7,
    "SMOKE_SENSOR": 8,
    "WATER_SENSOR": 9,
    "FREEZE_SENSOR": 10,
    "SIREN": 11,
    "SIREN_2": 13,
    "DOORLOCK": 16,
    "DOORLOCK_2": 253,
}

# Config entry keys
CONF_REFRESH_TOKEN: Final = "refresh_token"
CONF_ACCESS_TOKEN: Final = "access_token"
CONF_ACCOUNT_NUMBER: Final = "account_number"
CONF_SENSOR_REFRESH: Final = "sensor_refresh"
CONF_DEBUG: Final = "debug"

# --- Dispatcher signal helpers (push channel → entities) ---


def signal_events(entry_id: str) -> str:
    """Signal name for normalised realtime events dispatched to platforms."""

    return f"{DOMAIN}_{entry_id}_events"
