"""
Frame buffer and call cadence.

FrameBuffer holds FrameSamples between aggregation passes. Capture appends and
aggregation drains (snapshot-then-clear) under one lock, so the two never
interleave even when they run on different request threads.

CallCadence rate-limits an outbound call (the impression classifier) to at most
once per interval, independent of how fast frames arrive.
"""

import threading
import time
from collections import deque
from typing import Callable, Iterable, List, Optional

from utils.frame_features import FrameSample


class FrameBuffer:
    """Bounded, thread-safe sample buffer; oldest samples drop first when full."""

    def __init__(self, max_samples: int):
        self.max_samples = max(1, int(max_samples))
        self._samples: deque = deque(maxlen=self.max_samples)
        self._lock = threading.Lock()

    def append(self, sample: FrameSample) -> int:
        """Append one sample; returns the buffer length afterwards."""
        with self._lock:
            self._samples.append(sample)
            return len(self._samples)

    def extend(self, samples: Iterable[FrameSample]) -> int:
        with self._lock:
            self._samples.extend(samples)
            return len(self._samples)

    def snapshot(self) -> List[FrameSample]:
        with self._lock:
            return list(self._samples)

    def drain(self) -> List[FrameSample]:
        """Return all buffered samples and clear the buffer atomically."""
        with self._lock:
            snap = list(self._samples)
            self._samples.clear()
            return snap

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)


class CallCadence:
    """
    Minimum-interval gate.

    try_acquire() returns True at most once per min_interval_sec; callers that
    get False skip the call rather than queueing it.
    """

    def __init__(self, min_interval_sec: float, clock: Optional[Callable[[], float]] = None):
        self.min_interval_sec = max(0.0, float(min_interval_sec))
        self._clock = clock or time.monotonic
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._last is not None and now - self._last < self.min_interval_sec:
                return False
            self._last = now
            return True

    def seconds_until_ready(self) -> float:
        with self._lock:
            if self._last is None:
                return 0.0
            return max(0.0, self.min_interval_sec - (self._clock() - self._last))

    def reset(self) -> None:
        with self._lock:
            self._last = None
