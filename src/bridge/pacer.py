from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

import numpy as np

from bridge.errors import TransportError
from telephony.g711 import ulaw_encode

LOGGER = logging.getLogger(__name__)

FrameSender = Callable[[bytes], Awaitable[None]]
ErrorHandler = Callable[[TransportError], None]


class OutboundPacer:
    """Plays PCM16 @ 8kHz to the telephony leg as mu-law frames at real-time cadence.

    Blocks handed to `submit`/`emit` go through a single queue and worker task,
    so concurrent deliveries are played back in submission order and never
    interleave. Each frame is sent and then followed by a pause of one frame
    duration. A partial trailing frame is carried into the next block, or padded
    with silence when nothing else is queued.

    A send failure aborts the rest of that block (no retry) and is reported to
    `on_error`.
    """

    def __init__(
        self,
        send_frame: FrameSender,
        *,
        frame_samples: int = 160,
        frame_ms: int = 20,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self._send_frame = send_frame
        self._frame_samples = frame_samples
        self._frame_s = frame_ms / 1000
        self._on_error = on_error
        self._queue: asyncio.Queue[tuple[np.ndarray, asyncio.Future[int]]] = asyncio.Queue()
        self._tail = np.zeros(0, dtype=np.int16)
        self._next_due: float | None = None
        self._worker: asyncio.Task | None = None
        self._closed = False
        self.frames_sent = 0

    @property
    def frame_duration_s(self) -> float:
        return self._frame_s

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name="outbound-pacer")

    def submit(self, pcm8k: np.ndarray) -> asyncio.Future[int]:
        """Queue a block; the future resolves to the number of frames sent."""

        if self._closed:
            raise TransportError("Pacer is closed")
        self.start()
        fut: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        fut.add_done_callback(_consume_result)
        self._queue.put_nowait((pcm8k.astype(np.int16, copy=False), fut))
        return fut

    async def emit(self, pcm8k: np.ndarray) -> int:
        return await self.submit(pcm8k)

    async def close(self) -> None:
        """Stop sending; queued and in-progress blocks are cancelled."""

        self._closed = True
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        while not self._queue.empty():
            _block, fut = self._queue.get_nowait()
            fut.cancel()

    async def _run(self) -> None:
        while True:
            block, fut = await self._queue.get()
            if fut.cancelled():
                continue
            try:
                sent = await self._play(block)
            except TransportError as exc:
                LOGGER.warning("Outbound frame send failed; dropping rest of block: %s", exc)
                if not fut.done():
                    fut.set_exception(exc)
                if self._on_error is not None:
                    self._on_error(exc)
                continue
            except asyncio.CancelledError:
                fut.cancel()
                raise
            if not fut.done():
                fut.set_result(sent)

    def _slice(self, block: np.ndarray) -> list[np.ndarray]:
        pcm = np.concatenate([self._tail, block]) if self._tail.size else block
        size = self._frame_samples
        full = pcm.size // size
        frames = [pcm[i * size : (i + 1) * size] for i in range(full)]

        tail = pcm[full * size :]
        if tail.size and self._queue.empty():
            pad = np.zeros(size - tail.size, dtype=np.int16)
            frames.append(np.concatenate([tail, pad]))
            tail = tail[:0]
        self._tail = tail.copy()
        return frames

    async def _play(self, block: np.ndarray) -> int:
        frames = self._slice(block)
        if not frames:
            return 0

        now = time.monotonic()
        # Idle or starved for more than two ticks: restart the clock instead of bursting.
        if self._next_due is None or now - self._next_due > self._frame_s * 2:
            self._next_due = now

        sent = 0
        for frame in frames:
            try:
                await self._send_frame(ulaw_encode(frame))
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._tail = np.zeros(0, dtype=np.int16)
                raise TransportError(f"Telephony send failed: {exc}") from exc
            sent += 1
            self.frames_sent += 1

            self._next_due += self._frame_s
            delay = self._next_due - time.monotonic()
            if delay > 0:
                await asyncio.sleep(delay)
        return sent


def _consume_result(fut: asyncio.Future) -> None:
    if not fut.cancelled():
        fut.exception()
