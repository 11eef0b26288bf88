from __future__ import annotations

import numpy as np


def sine_tone(*, freq: float = 440.0, ms: int = 2000, sample_rate: int = 8000, amplitude: int = 6000) -> np.ndarray:
    """PCM16 sine used to check the outbound path before any remote audio exists."""

    total = int(ms / 1000 * sample_rate)
    t = np.arange(total, dtype=np.float64) / sample_rate
    return np.floor(amplitude * np.sin(2 * np.pi * freq * t)).astype(np.int16)
