"""G.711 mu-law companding.

Decoding goes through a 256-entry table built from the reference expansion
(bias 0x84, sign/segment/mantissa fields inverted on the wire). Encoding is
vectorized over numpy arrays; both directions accept any int16 input.
"""

from __future__ import annotations

from typing import Final

import numpy as np

ULAW_BIAS: Final[int] = 0x84
ULAW_CLIP: Final[int] = 32635


def _expand(codes: np.ndarray) -> np.ndarray:
    mu = np.bitwise_not(codes.astype(np.uint8)).astype(np.int32)
    sign = mu & 0x80
    exponent = (mu & 0x70) >> 4
    mantissa = mu & 0x0F

    magnitude = ((mantissa << 3) + ULAW_BIAS) << exponent
    pcm = np.where(sign != 0, ULAW_BIAS - magnitude, magnitude - ULAW_BIAS)
    return pcm.astype(np.int16)


_DECODE_TABLE: Final[np.ndarray] = _expand(np.arange(256, dtype=np.uint8))


def ulaw_decode(ulaw_bytes: bytes) -> np.ndarray:
    """Decode G.711 mu-law bytes to PCM16 int16 array."""

    if not ulaw_bytes:
        return np.zeros(0, dtype=np.int16)
    return _DECODE_TABLE[np.frombuffer(ulaw_bytes, dtype=np.uint8)]


def ulaw_encode(pcm16: np.ndarray) -> bytes:
    """Encode PCM16 int16 array to G.711 mu-law bytes.

    This is a vectorized mu-law encoder suitable for realtime packetization.
    Magnitudes above the law's ceiling are clipped, never rejected.
    """

    if pcm16.size == 0:
        return b""

    x = np.asarray(pcm16).astype(np.int32)
    sign = (x < 0).astype(np.int32)
    x = np.abs(x)

    x = np.minimum(x, ULAW_CLIP)
    x = x + ULAW_BIAS

    # Smallest segment whose range holds the biased magnitude.
    exponent = np.zeros_like(x)
    for exp in range(8):
        exponent = np.where(x >= (1 << (exp + 7)), exp, exponent)

    mantissa = (x >> (exponent + 3)) & 0x0F

    ulaw = np.bitwise_not((sign << 7) | (exponent << 4) | mantissa).astype(np.uint8)
    return ulaw.tobytes()


def ulaw_to_linear(code: int) -> int:
    """Decode a single mu-law byte."""

    return int(_DECODE_TABLE[code & 0xFF])


def linear_to_ulaw(sample: int) -> int:
    """Encode a single linear sample; out-of-range values are saturated first."""

    clamped = max(-32768, min(32767, int(sample)))
    return ulaw_encode(np.array([clamped], dtype=np.int32))[0]
