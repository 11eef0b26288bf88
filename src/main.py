"""Entry point for the phone-to-realtime-speech bridge service."""

from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI

from api.routes import router as api_router
from config.settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Realtime Phone Bridge",
    description="Bridges Twilio media streams to a realtime conversational speech endpoint.",
)
app.include_router(api_router, prefix="/api")


def run() -> None:
    # uvicorn owns the telephony WebSocket and sends its keepalive pings.
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        ws_ping_interval=settings.keepalive_interval_s,
    )


if __name__ == "__main__":
    run()
