"""Time-series store: labels plus one value list per chart channel."""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from .channels import ALL_CHANNELS, Channel
from .models import PersistedChartState

logger = logging.getLogger(__name__)

NAN = float("nan")


@dataclass
class Sample:
    """One chart sample (hashrates in H/s, temperatures in °C)."""
    timestamp_ms: int
    values: List[float] = field(default_factory=lambda: [NAN] * len(ALL_CHANNELS))

    def value(self, channel: Channel) -> float:
        return self.values[channel]


class UpsertResult(str, Enum):
    APPENDED = "appended"
    UPDATED = "updated"


def find_last_finite(values: Sequence[float]) -> Optional[float]:
    """Return the most recent finite value in a series, or None."""
    for v in reversed(values):
        if isinstance(v, (int, float)) and math.isfinite(v):
            return float(v)
    return None


class TimeSeries:
    """Seven equal-length sequences: ``labels`` and one list per channel.

    Every mutation keeps ``len(labels) == len(data[c])`` for all channels.
    """

    def __init__(self):
        self.labels: List[int] = []
        self.data: List[List[float]] = [[] for _ in ALL_CHANNELS]

    def __len__(self) -> int:
        return len(self.labels)

    def series(self, channel: Channel) -> List[float]:
        return self.data[channel]

    def last_label(self) -> Optional[int]:
        return self.labels[-1] if self.labels else None

    def upsert_last(self, timestamp_ms: int, values: Sequence[float]) -> UpsertResult:
        """Append a sample, or update the last one in place if the timestamp repeats.

        Args:
            timestamp_ms: Sample timestamp (ms)
            values: One value per channel, in Channel order

        Returns:
            UpsertResult.UPDATED for an equal timestamp, APPENDED otherwise
        """
        if len(values) != len(ALL_CHANNELS):
            raise ValueError(f"Expected {len(ALL_CHANNELS)} channel values, got {len(values)}")

        ts = int(timestamp_ms)
        if self.labels and self.labels[-1] == ts:
            for ch in ALL_CHANNELS:
                self.data[ch][-1] = float(values[ch])
            return UpsertResult.UPDATED

        self.labels.append(ts)
        for ch in ALL_CHANNELS:
            self.data[ch].append(float(values[ch]))
        return UpsertResult.APPENDED

    def insert_break(self, break_at_ms: int) -> Optional[int]:
        """Insert one all-NaN sample that cuts every curve.

        The break lands after the last existing label so labels stay strictly
        increasing and a later duplicate-timestamp update can't overwrite it.

        Returns:
            Timestamp the break was placed at, or None for an invalid request
        """
        try:
            ts = int(break_at_ms)
        except (TypeError, ValueError, OverflowError):
            return None
        if ts <= 0:
            return None

        last = self.last_label()
        if last is not None and ts <= last:
            ts = last + 1

        self.labels.append(ts)
        for ch in ALL_CHANNELS:
            self.data[ch].append(NAN)
        logger.debug(f"Inserted break sample at {ts}")
        return ts

    def trim_to_window(self, now_ms: int, window_ms: int) -> int:
        """Drop samples older than ``now - window``.

        Returns:
            Number of samples removed
        """
        cutoff = now_ms - max(0, int(window_ms))
        start = 0
        while start < len(self.labels) and self.labels[start] < cutoff:
            start += 1
        if start:
            del self.labels[:start]
            for ch in ALL_CHANNELS:
                del self.data[ch][:start]
        return start

    def clear(self) -> None:
        self.labels.clear()
        for values in self.data:
            values.clear()

    def snapshot(self) -> "TimeSeries":
        """Independent copy for readers outside the pipeline."""
        copy = TimeSeries()
        copy.labels = list(self.labels)
        copy.data = [list(values) for values in self.data]
        return copy

    def to_persisted(self) -> PersistedChartState:
        state = PersistedChartState(labels=[float(t) for t in self.labels])
        for ch, name in zip(ALL_CHANNELS, PersistedChartState.SERIES_FIELDS):
            setattr(state, name, list(self.data[ch]))
        return state

    @classmethod
    def from_persisted(cls, state: PersistedChartState) -> "TimeSeries":
        """Build a series from an already length-normalized persisted state."""
        ts = cls()
        n = len(state.labels)
        ts.labels = [int(t) for t in state.labels]
        for ch, values in zip(ALL_CHANNELS, state.series()):
            values = list(values[:n])
            values.extend([NAN] * (n - len(values)))
            ts.data[ch] = values
        return ts
