"""
Threshold alerting on the temperature stream, plus the temperature
intensity/color helpers used by the display.
"""

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional

from readings import Reading

ALERT_MESSAGE = "Your dog is over heated"

# Display range of the temperature ring
MIN_DISPLAY_TEMP = Decimal(0)
MAX_DISPLAY_TEMP = Decimal(40)

# (upper bound inclusive, color); the last band has no upper bound
TEMPERATURE_BANDS = [
    (Decimal(8), '#0000FF'),     # deep blue
    (Decimal(12), '#3399FF'),    # sky blue
    (Decimal(15), '#00CCCC'),    # teal
    (Decimal(20), '#66FF66'),    # light green
    (Decimal(27), '#00CC00'),    # green
    (Decimal(28), '#FFFF00'),    # yellow
    (Decimal(30), '#FF8000'),    # orange
    (None, '#FF0000'),           # red
]


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def parse_limit_text(text) -> Optional[Decimal]:
    """
    Parse the free-form limit typed by the operator.

    Every non-digit character is stripped first, so "30°C" gives 30 and
    "30.5" gives 305. Returns None when no digit is left.
    """
    digits = re.sub(r'[^0-9]', '', text or '')
    if not digits:
        return None
    return Decimal(digits)


def temperature_intensity(value) -> float:
    """Position of the temperature within the 0-40 °C display range, clamped to [0, 1]."""
    temp = _to_decimal(value if value is not None else 0)
    ratio = (temp - MIN_DISPLAY_TEMP) / (MAX_DISPLAY_TEMP - MIN_DISPLAY_TEMP)
    return float(min(max(ratio, Decimal(0)), Decimal(1)))


def temperature_band(value) -> int:
    """Index of the color band for a temperature (0 = coldest)."""
    temp = _to_decimal(value if value is not None else 0)
    for index, (upper, _color) in enumerate(TEMPERATURE_BANDS):
        if upper is None or temp <= upper:
            return index
    return len(TEMPERATURE_BANDS) - 1


def temperature_color(value) -> str:
    return TEMPERATURE_BANDS[temperature_band(value)][1]


@dataclass(frozen=True)
class AlertEvent:
    """Raised once when a reading crosses the armed limit"""
    reading: Reading
    limit: Decimal
    message: str = ALERT_MESSAGE

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "limit": float(self.limit),
            "reading": self.reading.to_dict(),
        }


class ThresholdAlerter:
    """
    One-shot temperature alert.

    set_limit() arms the alerter. The first observed reading strictly above
    the limit fires exactly one alert and consumes the limit; the operator
    has to set it again to re-arm.
    """

    def __init__(self, notifications=None):
        self.limit: Optional[Decimal] = None
        self.armed = False
        self.last_alert: Optional[AlertEvent] = None
        self._notifications = notifications
        self._listeners: List[Callable[[AlertEvent], None]] = []

    def on_alert(self, callback):
        """Register callback(AlertEvent). Returns a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    def set_limit(self, value):
        """
        Arm the alerter with a new limit.

        Args:
            value: Decimal, int, float or None (None clears the limit)
        """
        if value is None:
            self.clear()
            return
        self.limit = _to_decimal(value)
        self.armed = True
        print(f"[ALERT] Limit armed at {self.limit}°C")

    def clear(self):
        self.limit = None
        self.armed = False

    def observe(self, reading: Reading) -> Optional[AlertEvent]:
        """
        Check a temperature reading against the armed limit.

        Returns the AlertEvent when one fired, None otherwise.
        """
        if not self.armed or self.limit is None:
            return None
        if reading.value <= self.limit:
            return None

        event = AlertEvent(reading=reading, limit=self.limit)
        # Consume on fire
        self.clear()
        self.last_alert = event

        print(f"[ALERT] {reading.value}°C > {event.limit}°C")
        if self._notifications is not None:
            self._notifications.notify(
                f"{event.message}: {reading.value}°C (limit {event.limit}°C)", level="alert"
            )
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as e:
                print(f"[ALERT] Listener error: {e}")
        return event

    def status(self) -> dict:
        return {
            "armed": self.armed,
            "limit": float(self.limit) if self.limit is not None else None,
            "last_alert": self.last_alert.to_dict() if self.last_alert else None,
        }
