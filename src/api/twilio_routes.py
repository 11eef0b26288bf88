"""Twilio Voice integration.

This module provides:
- TwiML webhook that connects an answered call to the media-stream socket.
- Media-stream WebSocket endpoint, one bridge session per connection.
- Call-trigger endpoint to place outbound calls.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, WebSocket
from twilio.base.exceptions import TwilioException

from api.dependencies import get_bridge_config, get_speech_connector, get_speech_session
from api.schemas import StartCallRequest, StartCallResponse
from bridge.config import BridgeConfig
from bridge.errors import CallPlacementError, TelephonyNotConfiguredError
from bridge.session import BridgeSession, SpeechConnector
from config.settings import get_settings
from integrations.twilio_client import TwilioConfig, build_twilio_client, get_twilio_config

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])
calls_router = APIRouter(tags=["calls"])


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _twiml_connect_stream(*, stream_url: str) -> str:
    stream = escape(stream_url, {'"': "&quot;"})
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url=\"{stream}\" />"
        "</Connect>"
        "</Response>"
    )


@router.post("/twiml")
async def twilio_twiml(request: Request) -> Response:
    settings = get_settings()

    # WebSocket endpoint must be publicly reachable (wss:// recommended).
    if settings.public_base_url:
        base = settings.public_base_url
    else:
        # Fallback to request host. This may not work behind proxies; prefer PUBLIC_BASE_URL.
        base = str(request.base_url).rstrip("/")

    stream_url = _to_ws_url(f"{base}/api/twilio/media-stream")
    return _twiml_response(_twiml_connect_stream(stream_url=stream_url))


@router.websocket("/media-stream")
async def twilio_media_stream(
    websocket: WebSocket,
    connect_speech: Annotated[SpeechConnector, Depends(get_speech_connector)],
    config: Annotated[BridgeConfig, Depends(get_bridge_config)],
    speech_session: Annotated[dict[str, Any], Depends(get_speech_session)],
) -> None:
    await websocket.accept()
    session = BridgeSession(websocket, connect_speech, config, speech_session=speech_session)
    LOGGER.info("[%s] media stream connected", session.session_id)
    await session.run()


def _twiml_url(public_base_url: str) -> str:
    return f"{public_base_url}/api/twilio/twiml"


def get_twilio_cfg() -> TwilioConfig:
    try:
        return get_twilio_config()
    except TelephonyNotConfiguredError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


def get_twilio_client(cfg: Annotated[TwilioConfig, Depends(get_twilio_cfg)]):
    return build_twilio_client(cfg)


# Sync handler: FastAPI runs it in the threadpool, off the event loop.
@calls_router.post("/calls", response_model=StartCallResponse)
def start_call(
    payload: StartCallRequest,
    x_api_key: Annotated[str | None, Header()] = None,
    twilio_client=Depends(get_twilio_client),
    cfg: TwilioConfig = Depends(get_twilio_cfg),
) -> StartCallResponse:
    settings = get_settings()

    if settings.call_api_key and x_api_key != settings.call_api_key:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        call = twilio_client.calls.create(
            to=payload.phone,
            from_=cfg.from_number,
            url=_twiml_url(cfg.public_base_url),
            method="POST",
        )
    except TwilioException as exc:
        LOGGER.exception("Placing call to %s failed", payload.name)
        error = CallPlacementError(str(exc))
        raise HTTPException(status_code=error.status_code, detail=error.detail) from exc

    LOGGER.info("Placed call %s to %s", call.sid, payload.name)
    return StartCallResponse(call_sid=str(call.sid))
