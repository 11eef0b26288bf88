from __future__ import annotations

import asyncio
import time

import numpy as np
import pytest

from bridge.errors import TransportError
from bridge.pacer import OutboundPacer
from telephony.g711 import ulaw_decode


class RecordingSender:
    def __init__(self, fail_after: int | None = None) -> None:
        self.frames: list[bytes] = []
        self.times: list[float] = []
        self._fail_after = fail_after

    async def __call__(self, ulaw: bytes) -> None:
        if self._fail_after is not None and len(self.frames) >= self._fail_after:
            raise RuntimeError("socket gone")
        self.frames.append(ulaw)
        self.times.append(time.monotonic())


def test_two_frames_paced_one_frame_apart() -> None:
    async def scenario():
        sender = RecordingSender()
        pacer = OutboundPacer(sender, frame_samples=160, frame_ms=20)
        started = time.monotonic()
        sent = await pacer.emit(np.full(320, 1000, dtype=np.int16))
        elapsed = time.monotonic() - started
        await pacer.close()
        return sender, sent, elapsed

    sender, sent, elapsed = asyncio.run(scenario())

    assert sent == 2
    assert [len(f) for f in sender.frames] == [160, 160]
    assert 0.015 <= sender.times[1] - sender.times[0] <= 0.1
    assert elapsed >= 0.035


def test_partial_frame_is_padded_with_silence_when_idle() -> None:
    async def scenario():
        sender = RecordingSender()
        pacer = OutboundPacer(sender, frame_samples=160, frame_ms=1)
        sent = await pacer.emit(np.full(100, 5000, dtype=np.int16))
        await pacer.close()
        return sender, sent

    sender, sent = asyncio.run(scenario())

    assert sent == 1
    pcm = ulaw_decode(sender.frames[0])
    assert np.all(pcm[:100] > 4000)
    assert not pcm[100:].any()


def test_partial_frame_carries_into_queued_block() -> None:
    async def scenario():
        sender = RecordingSender()
        pacer = OutboundPacer(sender, frame_samples=160, frame_ms=1)
        first = pacer.submit(np.full(200, 3000, dtype=np.int16))
        second = pacer.submit(np.full(120, -3000, dtype=np.int16))
        counts = await asyncio.gather(first, second)
        await pacer.close()
        return sender, counts

    sender, counts = asyncio.run(scenario())

    assert counts == [1, 1]
    joined = ulaw_decode(b"".join(sender.frames))
    assert joined.size == 320
    assert np.all(joined[:200] > 0)
    assert np.all(joined[200:] < 0)


def test_concurrent_blocks_are_not_interleaved() -> None:
    async def scenario():
        sender = RecordingSender()
        pacer = OutboundPacer(sender, frame_samples=160, frame_ms=1)
        await asyncio.gather(
            pacer.emit(np.full(480, 8000, dtype=np.int16)),
            pacer.emit(np.full(480, -8000, dtype=np.int16)),
        )
        await pacer.close()
        return sender

    sender = asyncio.run(scenario())

    signs = [int(np.sign(ulaw_decode(f)[0])) for f in sender.frames]
    assert signs == [1, 1, 1, -1, -1, -1]


def test_send_failure_aborts_rest_of_block_and_reports() -> None:
    errors: list[TransportError] = []

    async def scenario():
        sender = RecordingSender(fail_after=1)
        pacer = OutboundPacer(sender, frame_samples=160, frame_ms=1, on_error=errors.append)
        with pytest.raises(TransportError):
            await pacer.emit(np.zeros(160 * 5, dtype=np.int16))
        await pacer.close()
        return sender

    sender = asyncio.run(scenario())

    assert len(sender.frames) == 1
    assert len(errors) == 1


def test_close_cancels_in_progress_playback() -> None:
    async def scenario():
        sender = RecordingSender()
        pacer = OutboundPacer(sender, frame_samples=160, frame_ms=20)
        playing = pacer.submit(np.zeros(160 * 50, dtype=np.int16))
        await asyncio.sleep(0.07)
        await pacer.close()
        sent_at_close = len(sender.frames)
        await asyncio.sleep(0.06)
        return sender, sent_at_close, playing

    sender, sent_at_close, playing = asyncio.run(scenario())

    assert 1 <= sent_at_close < 50
    assert len(sender.frames) == sent_at_close
    assert playing.cancelled()


def test_submit_after_close_raises() -> None:
    async def scenario():
        pacer = OutboundPacer(RecordingSender())
        await pacer.close()
        pacer.submit(np.zeros(160, dtype=np.int16))

    with pytest.raises(TransportError):
        asyncio.run(scenario())
