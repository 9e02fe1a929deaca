"""HistoryBuffer — fixed-capacity, newest-first ring of telemetry snapshots."""

from __future__ import annotations

from collections import deque
from typing import Iterator

from .state import TelemetrySnapshot


class HistoryBuffer:
    """Newest entry at index 0; oldest entries fall off the end."""

    DEFAULT_CAPACITY = 20
    TRAIL_LENGTH = 10

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._entries: deque[TelemetrySnapshot] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TelemetrySnapshot]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> TelemetrySnapshot:
        return self._entries[index]

    def record(self, snapshot: TelemetrySnapshot) -> None:
        self._entries.appendleft(snapshot)

    def latest(self, n: int | None = None) -> list[TelemetrySnapshot]:
        """Return the n most recent snapshots, newest first."""
        if n is None:
            return list(self._entries)
        if n <= 0:
            return []
        return list(self._entries)[:n]

    def trail(self, n: int = TRAIL_LENGTH) -> list[tuple[float, float]]:
        """(x, y) positions of the n most recent snapshots, for path drawing."""
        return [(s.x, s.y) for s in self.latest(n)]

    def clear(self) -> None:
        self._entries.clear()
