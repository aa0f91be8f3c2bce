import os
from dataclasses import dataclass
from functools import lru_cache

_SCAN_TIMEOUT_ENV = "SENSOR_SCAN_TIMEOUT"
_POLL_INTERVAL_ENV = "SENSOR_POLL_INTERVAL"
_MAX_LABELS_ENV = "SENSOR_MAX_LABELS"
_NOTIFICATION_LIMIT_ENV = "SENSOR_NOTIFICATION_LIMIT"
_NAME_PREFIX_ENV = "SENSOR_NAME_PREFIX"
_API_HOST_ENV = "SENSOR_API_HOST"
_API_PORT_ENV = "SENSOR_API_PORT"


@dataclass(frozen=True)
class Settings:
    scan_timeout: float = 10.0          # Seconds before a scan gives up
    poll_interval: float = 1.0          # Seconds between polling ticks
    max_labels: int = 12                # Visible labels on the history chart
    notification_limit: int = 100       # Notifications kept for the operator
    name_prefix: str = ""               # Only list devices whose name starts with this
    api_host: str = "0.0.0.0"
    api_port: int = 5000


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip()


def _read_positive_env(name: str, default, cast):
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = cast(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


@lru_cache
def get_settings() -> Settings:
    return Settings(
        scan_timeout=_read_positive_env(_SCAN_TIMEOUT_ENV, 10.0, float),
        poll_interval=_read_positive_env(_POLL_INTERVAL_ENV, 1.0, float),
        max_labels=_read_positive_env(_MAX_LABELS_ENV, 12, int),
        notification_limit=_read_positive_env(_NOTIFICATION_LIMIT_ENV, 100, int),
        name_prefix=_read_str_env(_NAME_PREFIX_ENV, ""),
        api_host=_read_str_env(_API_HOST_ENV, "0.0.0.0") or "0.0.0.0",
        api_port=_read_positive_env(_API_PORT_ENV, 5000, int),
    )
