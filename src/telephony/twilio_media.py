"""Twilio Media Streams wire format (JSON text frames over WebSocket)."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from bridge.errors import ProtocolError


def parse_twilio_message(text: str | bytes) -> dict[str, Any]:
    try:
        message = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"Not JSON: {exc}") from exc
    if not isinstance(message, dict) or not message.get("event"):
        raise ProtocolError("Message has no event field")
    return message


def stream_sid_of(message: dict[str, Any]) -> tuple[str | None, str | None]:
    """Return (stream_sid, call_sid) from a start event.

    Twilio nests both under ``start``; a flat ``streamSid``/``streamId`` form is
    accepted as well.
    """

    start = message.get("start")
    if not isinstance(start, dict):
        start = {}
    stream_sid = start.get("streamSid") or message.get("streamSid") or message.get("streamId")
    call_sid = start.get("callSid") or message.get("callSid") or message.get("callId")
    return (str(stream_sid) if stream_sid else None, str(call_sid) if call_sid else None)


def media_payload_of(message: dict[str, Any]) -> bytes | None:
    """Decode the mu-law payload of an inbound media event.

    Returns None for echoes of the outbound track. Raises ProtocolError when the
    payload is missing or not base64.
    """

    media = message.get("media")
    if isinstance(media, dict):
        if media.get("track") and media.get("track") != "inbound":
            return None
        payload = media.get("payload")
    else:
        payload = message.get("payload")

    if not isinstance(payload, str) or not payload:
        raise ProtocolError("Media event without payload")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolError("Media payload is not base64") from exc


def build_media_message(stream_sid: str, ulaw: bytes) -> dict[str, Any]:
    return {
        "event": "media",
        "streamSid": stream_sid,
        "media": {"payload": base64.b64encode(ulaw).decode("ascii")},
    }


def build_mark_message(stream_sid: str, name: str) -> dict[str, Any]:
    return {"event": "mark", "streamSid": stream_sid, "mark": {"name": name}}
