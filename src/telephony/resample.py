"""Factor-of-two rate conversion between the 8 kHz and 16 kHz legs.

Interpolation and averaging are done in int32 and floor-divided, so results
always stay inside the int16 range.
"""

from __future__ import annotations

import numpy as np


def upsample_2x(pcm: np.ndarray) -> np.ndarray:
    """Double the rate: each sample followed by the midpoint to its successor.

    The last sample of the block is treated as repeating, so the block edge is
    never read past.
    """

    if pcm.size == 0:
        return np.zeros(0, dtype=np.int16)

    x = pcm.astype(np.int32)
    nxt = np.empty_like(x)
    nxt[:-1] = x[1:]
    nxt[-1] = x[-1]

    out = np.empty(x.size * 2, dtype=np.int32)
    out[0::2] = x
    out[1::2] = (x + nxt) >> 1
    return out.astype(np.int16)


def downsample_2x(pcm: np.ndarray) -> np.ndarray:
    """Halve the rate by averaging consecutive pairs; an odd tail sample is dropped."""

    usable = pcm.size - (pcm.size % 2)
    if usable == 0:
        return np.zeros(0, dtype=np.int16)

    pairs = pcm[:usable].astype(np.int32).reshape(-1, 2)
    return ((pairs[:, 0] + pairs[:, 1]) >> 1).astype(np.int16)


class Downsampler2x:
    """Streaming wrapper around `downsample_2x` that carries an odd sample forward.

    Deltas from the speech service arrive in arbitrary sizes; the leftover
    sample of an odd-length block is paired with the head of the next one, so
    no audio is lost across calls.
    """

    def __init__(self) -> None:
        self._carry: np.ndarray = np.zeros(0, dtype=np.int16)

    @property
    def pending(self) -> int:
        return int(self._carry.size)

    def process(self, pcm: np.ndarray) -> np.ndarray:
        if self._carry.size:
            pcm = np.concatenate([self._carry, pcm.astype(np.int16)])
        if pcm.size % 2:
            self._carry = pcm[-1:].copy()
            pcm = pcm[:-1]
        else:
            self._carry = np.zeros(0, dtype=np.int16)
        return downsample_2x(pcm)

    def reset(self) -> None:
        self._carry = np.zeros(0, dtype=np.int16)
