"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import partial
from typing import Any

from bridge.config import BridgeConfig
from bridge.session import SpeechConnector
from config.settings import get_settings
from speech import realtime


def get_bridge_config() -> BridgeConfig:
    return BridgeConfig.from_settings(get_settings())


def get_speech_connector() -> SpeechConnector:
    return partial(realtime.connect_realtime, get_settings())


def get_speech_session() -> dict[str, Any]:
    settings = get_settings()
    return realtime.session_update(
        instructions=settings.system_instructions,
        voice=settings.realtime_voice,
        input_sample_rate=settings.speech_input_sample_rate,
        output_sample_rate=settings.speech_output_sample_rate,
    )
