"""OpenAI Realtime WebSocket client and message builders."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any

import numpy as np
import websockets

from bridge.errors import ProtocolError, SpeechServiceUnavailableError
from config.settings import Settings

LOGGER = logging.getLogger(__name__)

RESPONSE_CREATED = frozenset({"response.created"})
RESPONSE_COMPLETED = frozenset({"response.completed", "response.done"})
RESPONSE_ERRORED = frozenset({"response.error"})
AUDIO_DELTA = frozenset({"response.audio.delta", "response.output_audio.delta"})


async def connect_realtime(settings: Settings):
    """Open the speech-service socket. Keepalive pings are driven by the session."""

    if not settings.openai_api_key:
        raise SpeechServiceUnavailableError("OPENAI_API_KEY is not configured")

    url = f"{settings.realtime_url}?model={settings.realtime_model}"
    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "OpenAI-Beta": "realtime=v1",
    }
    try:
        ws = await websockets.connect(url, additional_headers=headers, max_size=None, ping_interval=None)
    except (OSError, websockets.WebSocketException) as exc:
        raise SpeechServiceUnavailableError(f"Realtime connect failed: {exc}") from exc

    LOGGER.info("Connected to realtime model %s", settings.realtime_model)
    return ws


def session_update(
    *,
    instructions: str,
    voice: str,
    input_sample_rate: int,
    output_sample_rate: int,
) -> dict[str, Any]:
    # Turn detection stays off: the bridge commits caller audio itself.
    return {
        "type": "session.update",
        "session": {
            "instructions": instructions,
            "voice": voice,
            "input_audio_format": {"type": "pcm16", "sample_rate_hz": input_sample_rate},
            "output_audio_format": {"type": "pcm16", "sample_rate_hz": output_sample_rate},
            "turn_detection": None,
        },
    }


def input_audio_append(pcm: np.ndarray) -> dict[str, Any]:
    audio = base64.b64encode(pcm.astype("<i2").tobytes()).decode("ascii")
    return {"type": "input_audio_buffer.append", "audio": audio}


def input_audio_commit() -> dict[str, Any]:
    return {"type": "input_audio_buffer.commit"}


def response_create() -> dict[str, Any]:
    return {"type": "response.create"}


def parse_server_event(raw: str | bytes) -> dict[str, Any]:
    try:
        event = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"Not JSON: {exc}") from exc
    if not isinstance(event, dict) or not isinstance(event.get("type"), str):
        raise ProtocolError("Server event has no type")
    return event


def audio_delta_of(event: dict[str, Any]) -> np.ndarray:
    """Decode little-endian PCM16 from an audio delta event."""

    payload = event.get("audio") or event.get("delta")
    if not isinstance(payload, str) or not payload:
        raise ProtocolError("Audio delta without payload")
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolError("Audio delta is not base64") from exc
    if len(raw) % 2:
        raw = raw[:-1]
    return np.frombuffer(raw, dtype="<i2").astype(np.int16)
