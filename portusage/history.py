"""Bounded per-metric history for rolling stats and sparklines."""

from __future__ import annotations

from collections import deque

from portusage.sampler import ProcessSample

DEFAULT_CAPACITY = 60  # one minute at 1 Hz


class HistoryBuffer:
    """Fixed-capacity FIFO of floats; the oldest value is evicted first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._values: deque[float] = deque(maxlen=capacity)
        self._session_peak = 0.0

    @property
    def capacity(self) -> int:
        return self._values.maxlen or 0

    @property
    def session_peak(self) -> float:
        """Highest value ever pushed, including evicted ones."""
        return self._session_peak

    def __len__(self) -> int:
        return len(self._values)

    def push(self, value: float) -> None:
        self._values.append(value)
        self._session_peak = max(self._session_peak, value)

    def average(self) -> float:
        if not self._values:
            return 0.0
        return sum(self._values) / len(self._values)

    def peak(self) -> float:
        if not self._values:
            return 0.0
        return max(self._values)

    def snapshot(self) -> list[float]:
        """Buffered values, oldest first."""
        return list(self._values)


class MetricHistory:
    """CPU and memory buffers, always appended together."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self.cpu = HistoryBuffer(capacity)
        self.memory = HistoryBuffer(capacity)

    def __len__(self) -> int:
        return len(self.cpu)

    def add(self, sample: ProcessSample) -> None:
        self.cpu.push(sample.cpu_percent)
        self.memory.push(sample.memory_mb)
