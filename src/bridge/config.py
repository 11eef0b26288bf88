from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Literal

from config.settings import Settings

TELEPHONY_SAMPLE_RATE: Final[int] = 8000
SUPPORTED_SPEECH_RATES: Final[tuple[int, ...]] = (8000, 16000)

FirstResponsePolicy = Literal["greet_first", "listen_first"]


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Per-session tuning.

    Attributes:
        speech_input_rate: Hz of linear audio submitted to the speech service.
        speech_output_rate: Hz of linear audio received from the speech service.
        frame_ms: Duration of one telephony frame (ms).
        commit_ms: Caller audio accumulated before each submission (ms).
        max_buffer_ms: Cap on accumulated caller audio; oldest samples are dropped (ms).
        commit_delay_ms: Wait between appending audio and committing it (ms).
        keepalive_interval_s: Interval between keepalive pings on the speech socket (s).
        first_response_policy: Whether the agent speaks first or waits for the caller.
        response_timeout_s: Watchdog for a response that never completes (s); 0 disables.
        test_tone_ms: Length of the outbound test tone at stream start (ms); 0 disables.
    """

    speech_input_rate: int = 16000
    speech_output_rate: int = 16000
    frame_ms: int = 20
    commit_ms: int = 200
    max_buffer_ms: int = 10_000
    commit_delay_ms: int = 50
    keepalive_interval_s: float = 15.0
    first_response_policy: FirstResponsePolicy = "greet_first"
    response_timeout_s: float = 0.0
    test_tone_ms: int = 0
    test_tone_hz: float = 440.0
    test_tone_amplitude: int = 6000

    def __post_init__(self) -> None:
        if self.speech_input_rate not in SUPPORTED_SPEECH_RATES:
            raise ValueError(f"speech_input_rate must be one of {SUPPORTED_SPEECH_RATES}")
        if self.speech_output_rate not in SUPPORTED_SPEECH_RATES:
            raise ValueError(f"speech_output_rate must be one of {SUPPORTED_SPEECH_RATES}")
        if self.frame_ms <= 0 or (TELEPHONY_SAMPLE_RATE * self.frame_ms) % 1000:
            raise ValueError("frame_ms must be positive and span a whole number of 8 kHz samples")
        if self.commit_ms <= 0:
            raise ValueError("commit_ms must be positive")
        if self.max_buffer_ms < self.commit_ms:
            raise ValueError("max_buffer_ms must hold at least one submission")
        if self.commit_delay_ms < 0:
            raise ValueError("commit_delay_ms must not be negative")
        if self.keepalive_interval_s <= 0:
            raise ValueError("keepalive_interval_s must be positive")
        if self.first_response_policy not in ("greet_first", "listen_first"):
            raise ValueError("first_response_policy must be 'greet_first' or 'listen_first'")
        if self.response_timeout_s < 0 or self.test_tone_ms < 0:
            raise ValueError("durations must not be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> BridgeConfig:
        return cls(
            speech_input_rate=settings.speech_input_sample_rate,
            speech_output_rate=settings.speech_output_sample_rate,
            frame_ms=settings.telephony_frame_ms,
            commit_ms=settings.inbound_commit_ms,
            max_buffer_ms=settings.inbound_max_buffer_ms,
            commit_delay_ms=settings.commit_ingest_delay_ms,
            keepalive_interval_s=settings.keepalive_interval_s,
            first_response_policy=settings.first_response_policy,
            response_timeout_s=settings.response_timeout_s,
            test_tone_ms=settings.test_tone_ms if settings.test_tone_on_start else 0,
            test_tone_hz=settings.test_tone_hz,
            test_tone_amplitude=settings.test_tone_amplitude,
        )

    @property
    def telephony_frame_samples(self) -> int:
        return TELEPHONY_SAMPLE_RATE * self.frame_ms // 1000

    @property
    def submit_threshold_samples(self) -> int:
        return self.speech_input_rate * self.commit_ms // 1000

    @property
    def max_buffer_samples(self) -> int:
        return self.speech_input_rate * self.max_buffer_ms // 1000
