"""
Reading types produced by the acquisition loop.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class ReadingKind(Enum):
    """Physical quantities exposed by the sensor"""
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"

    @property
    def unit(self) -> str:
        return "°C" if self is ReadingKind.TEMPERATURE else "%"


@dataclass(frozen=True)
class Reading:
    """A single decoded sample"""
    kind: ReadingKind
    value: Decimal          # Two fractional digits
    captured_at: datetime

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "value": float(self.value),
            "unit": self.kind.unit,
            "captured_at": self.captured_at.isoformat(),
        }


@dataclass(frozen=True)
class HistoryEntry:
    """One point of the temperature history"""
    captured_at: datetime
    temperature: Decimal

    @property
    def label(self) -> str:
        """Time-of-day label used on chart axes."""
        return self.captured_at.strftime("%H:%M:%S")
