"""
Interval-based persistence of streaming partial output.

A streaming provider can emit hundreds of updates per minute; writing each
one to the cache would dominate runtime. ``IncrementalSaver`` buffers
batches and hands them to a sink at most once per interval. Interval
flushes never block or fail the caller; the terminal ``flush()`` goes
through the RetryExecutor and raises if the data could not be persisted.
"""

import threading
import time
from typing import Callable, Generic, List, Optional, TypeVar

from reelscribe.modules.retry import RetryExecutor
from reelscribe.modules.types import RetryPolicy
from reelscribe.utils.logger import logger

B = TypeVar("B")


class IncrementalSaver(Generic[B]):
    """
    Buffer batches and persist them through ``sink`` on an interval.

    Args:
        sink: Receives the buffered batches (oldest first). Must raise on failure.
        interval_ms: Minimum time between interval flushes
        retry_policy: Policy for the terminal ``flush()``
        executor: RetryExecutor used by ``flush()``
        clock: Monotonic clock in seconds; injectable for tests
    """

    def __init__(
        self,
        sink: Callable[[List[B]], None],
        interval_ms: float = 5000,
        retry_policy: Optional[RetryPolicy] = None,
        executor: Optional[RetryExecutor] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sink = sink
        self._interval = interval_ms / 1000.0
        self._policy = retry_policy or RetryPolicy(max_retries=2, base_delay=0.5)
        self._executor = executor or RetryExecutor()
        self._clock = clock
        self._buffer: List[B] = []
        self._last_flush = clock()
        self._lock = threading.Lock()
        self._stopped = False
        self.flush_count = 0
        self.failed_flushes = 0

    @property
    def pending(self) -> int:
        return len(self._buffer)

    @property
    def stopped(self) -> bool:
        return self._stopped

    def add(self, batch: B) -> None:
        """Buffer a batch; persist if the interval has elapsed. Never raises sink errors."""
        with self._lock:
            if self._stopped:
                return
            self._buffer.append(batch)
            if self._clock() - self._last_flush < self._interval:
                return
            pending = list(self._buffer)
            try:
                self._sink(pending)
            except Exception as e:
                self.failed_flushes += 1
                logger.warning(f"Incremental save failed, will retry on next update: {e}")
                return
            self._mark_flushed(len(pending))

    def flush(self) -> None:
        """
        Force a persist of everything buffered.

        Raises:
            Whatever the sink raised on its final attempt
        """
        with self._lock:
            if not self._buffer:
                return
            pending = list(self._buffer)
            self._executor.run(lambda: self._sink(pending), self._policy)
            self._mark_flushed(len(pending))

    def stop(self) -> None:
        """Stop persisting. Buffered batches are discarded; persisted data is untouched."""
        with self._lock:
            self._stopped = True
            dropped = len(self._buffer)
            self._buffer.clear()
        if dropped:
            logger.debug(f"Incremental saver stopped with {dropped} unsaved batch(es)")

    def _mark_flushed(self, count: int) -> None:
        del self._buffer[:count]
        self._last_flush = self._clock()
        self.flush_count += 1
