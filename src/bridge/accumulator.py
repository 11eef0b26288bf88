from __future__ import annotations

import logging

import numpy as np

LOGGER = logging.getLogger(__name__)


class InboundAccumulator:
    """FIFO of caller samples awaiting submission to the speech service.

    Drained blocks are contiguous and non-overlapping. When `max_samples` is set
    and exceeded, the oldest samples are dropped.
    """

    def __init__(self, max_samples: int | None = None) -> None:
        self._chunks: list[np.ndarray] = []
        self._size = 0
        self._max_samples = max_samples
        self._overflowing = False
        self.dropped_samples = 0

    def __len__(self) -> int:
        return self._size

    def append(self, samples: np.ndarray) -> None:
        if samples.size == 0:
            return
        self._chunks.append(samples.astype(np.int16, copy=False))
        self._size += int(samples.size)

        if self._max_samples is not None and self._size > self._max_samples:
            self._drop_oldest(self._size - self._max_samples)

    def try_drain(self, threshold: int) -> np.ndarray | None:
        """Return the first `threshold` samples if that many are buffered."""

        if threshold <= 0:
            raise ValueError("threshold must be positive")
        if self._size < threshold:
            return None

        buf = self._flatten()
        block = buf[:threshold].copy()
        rest = buf[threshold:]
        self._chunks = [rest] if rest.size else []
        self._size = int(rest.size)
        self._overflowing = False
        return block

    def clear(self) -> None:
        self._chunks.clear()
        self._size = 0
        self._overflowing = False

    def _drop_oldest(self, count: int) -> None:
        remaining = count
        while remaining:
            head = self._chunks[0]
            if head.size <= remaining:
                self._chunks.pop(0)
                remaining -= int(head.size)
            else:
                self._chunks[0] = head[remaining:]
                remaining = 0
        self._size -= count
        self.dropped_samples += count

        # One warning per overflow episode; it ends at the next drain.
        if not self._overflowing:
            self._overflowing = True
            LOGGER.warning("Inbound buffer full; dropping oldest samples")
        else:
            LOGGER.debug("Inbound buffer full; dropped %d oldest samples", count)

    def _flatten(self) -> np.ndarray:
        if not self._chunks:
            return np.zeros(0, dtype=np.int16)
        if len(self._chunks) > 1:
            self._chunks = [np.concatenate(self._chunks)]
        return self._chunks[0]
