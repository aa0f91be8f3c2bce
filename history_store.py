"""
Temperature history with label-only downsampling for charts.
"""

import math
from dataclasses import dataclass
from typing import List, Optional

from readings import HistoryEntry, Reading, ReadingKind

DEFAULT_MAX_LABELS = 12


@dataclass(frozen=True)
class HistorySeries:
    """Chart-ready view of the history: equal-length labels and values"""
    labels: List[str]
    values: List[float]
    label_step: int

    def to_dict(self) -> dict:
        return {
            "labels": self.labels,
            "values": self.values,
            "label_step": self.label_step,
        }


class HistoryStore:
    """
    Append-only, time-ordered temperature history.

    Only temperature readings are kept; humidity is presented as a current
    value only. The store never evicts entries.
    """

    def __init__(self):
        self._entries: List[HistoryEntry] = []

    def __len__(self):
        return len(self._entries)

    @property
    def entries(self):
        return tuple(self._entries)

    @property
    def latest(self) -> Optional[HistoryEntry]:
        return self._entries[-1] if self._entries else None

    def record(self, reading: Reading) -> HistoryEntry:
        """
        Append a temperature reading.

        Args:
            reading: Reading of kind TEMPERATURE

        Raises:
            ValueError: if the reading is not a temperature, or is older than
                the last recorded entry
        """
        if reading.kind is not ReadingKind.TEMPERATURE:
            raise ValueError(f"Only temperature readings are historized, got {reading.kind.value}")

        latest = self.latest
        if latest is not None and reading.captured_at < latest.captured_at:
            raise ValueError(
                f"Reading captured at {reading.captured_at.isoformat()} is older than "
                f"last entry {latest.captured_at.isoformat()}"
            )

        entry = HistoryEntry(captured_at=reading.captured_at, temperature=reading.value)
        self._entries.append(entry)
        return entry

    def series(self, max_labels: int = DEFAULT_MAX_LABELS) -> HistorySeries:
        """
        Build the chart series.

        Every value is kept. Only every k-th entry carries its time label,
        k = ceil(total / max_labels), so at most max_labels labels are shown.
        """
        if max_labels < 1:
            raise ValueError("max_labels must be at least 1")

        entries = list(self._entries)
        values = [float(entry.temperature) for entry in entries]
        if not entries:
            return HistorySeries(labels=[], values=[], label_step=1)

        step = math.ceil(len(entries) / max_labels)
        labels = [
            entry.label if index % step == 0 else ''
            for index, entry in enumerate(entries)
        ]
        return HistorySeries(labels=labels, values=values, label_step=step)

