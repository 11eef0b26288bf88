from __future__ import annotations

import asyncio
import json
import os
import sys
import time
from pathlib import Path
from typing import Any

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


class FakeTelephony:
    """In-memory stand-in for the Twilio media-stream WebSocket."""

    def __init__(self) -> None:
        self._inbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.sent_at: list[float] = []
        self.closed = False
        self.fail_sends = False
        self._disconnected = False

    def feed(self, message: dict[str, Any] | str) -> None:
        text = message if isinstance(message, str) else json.dumps(message)
        self._inbox.put_nowait({"type": "websocket.receive", "text": text})

    def feed_bytes(self, data: bytes) -> None:
        self._inbox.put_nowait({"type": "websocket.receive", "bytes": data})

    def drained(self) -> bool:
        return self._inbox.empty()

    def hang_up(self) -> None:
        self._inbox.put_nowait({"type": "websocket.disconnect", "code": 1000})

    async def receive(self) -> dict[str, Any]:
        # Mirrors Starlette: receiving again after a disconnect is an error.
        if self._disconnected:
            raise RuntimeError('Cannot call "receive" once a disconnect message has been received.')
        frame = await self._inbox.get()
        if frame["type"] == "websocket.disconnect":
            self._disconnected = True
        return frame

    async def send_json(self, data: Any) -> None:
        if self.fail_sends or self.closed:
            raise RuntimeError("Cannot call send once a close message has been sent.")
        self.sent.append(data)
        self.sent_at.append(time.monotonic())

    async def close(self) -> None:
        self.closed = True

    def media(self) -> list[dict[str, Any]]:
        return [m for m in self.sent if m["event"] == "media"]


class FakeSpeech:
    """In-memory stand-in for the realtime speech-service socket."""

    def __init__(self) -> None:
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()
        self.sent: list[str] = []
        self.pings = 0
        self.closed = False

    def push(self, event: dict[str, Any] | str) -> None:
        self._inbox.put_nowait(event if isinstance(event, str) else json.dumps(event))

    def remote_close(self) -> None:
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def ping(self) -> None:
        self.pings += 1

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)

    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(m) for m in self.sent]

    def types(self) -> list[str]:
        return [m["type"] for m in self.messages()]


@pytest.fixture()
def fake_telephony() -> FakeTelephony:
    return FakeTelephony()


@pytest.fixture()
def fake_speech() -> FakeSpeech:
    return FakeSpeech()


@pytest.fixture(scope="session")
def app():
    os.environ["PUBLIC_BASE_URL"] = "https://bridge.example.com"
    os.environ["OPENAI_API_KEY"] = "sk-test"

    import importlib

    for module_name in [
        "config.settings",
        "api.dependencies",
        "api.twilio_routes",
        "api.routes",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app
