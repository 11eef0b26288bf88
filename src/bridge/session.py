from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import Any, Protocol

import websockets
from fastapi import WebSocketDisconnect

from bridge.accumulator import InboundAccumulator
from bridge.config import BridgeConfig
from bridge.errors import ProtocolError, SpeechServiceUnavailableError, TransportError
from bridge.pacer import OutboundPacer
from bridge.turns import TurnCoordinator
from speech import realtime
from telephony.g711 import ulaw_decode
from telephony.resample import Downsampler2x, upsample_2x
from telephony.tones import sine_tone
from telephony.twilio_media import (
    build_mark_message,
    build_media_message,
    media_payload_of,
    parse_twilio_message,
    stream_sid_of,
)

LOGGER = logging.getLogger(__name__)


class TelephonySocket(Protocol):
    async def receive(self) -> Mapping[str, Any]: ...

    async def send_json(self, data: Any) -> None: ...

    async def close(self) -> None: ...


class SpeechSocket(Protocol):
    def __aiter__(self) -> AsyncIterator[str | bytes]: ...

    async def send(self, message: str) -> None: ...

    async def ping(self) -> Any: ...

    async def close(self) -> None: ...


SpeechConnector = Callable[[], Awaitable[SpeechSocket]]


class BridgeSession:
    """One live call: a telephony media socket bridged to a speech-service socket.

    Inbound telephony events are consumed by a single task in arrival order.
    Speech-service events run in a second task; audio they carry is handed to
    the outbound pacer, which serializes playback. When either socket closes,
    the other is closed too and every task of the session is cancelled.
    """

    def __init__(
        self,
        telephony: TelephonySocket,
        connect_speech: SpeechConnector,
        config: BridgeConfig,
        *,
        speech_session: dict[str, Any],
    ) -> None:
        self.session_id = secrets.token_hex(4)
        self.config = config
        self.stream_sid: str | None = None
        self.call_sid: str | None = None
        self.submissions = 0

        self.accumulator = InboundAccumulator(max_samples=config.max_buffer_samples)
        self.turns = TurnCoordinator(
            first_response_policy=config.first_response_policy,
            response_timeout_s=config.response_timeout_s,
            session_id=self.session_id,
        )
        self.pacer: OutboundPacer | None = None

        self._telephony = telephony
        self._connect_speech = connect_speech
        self._speech: SpeechSocket | None = None
        self._speech_session = speech_session
        self._downsampler = Downsampler2x()
        self._tasks: set[asyncio.Task] = set()
        self._stop = asyncio.Event()
        self._stop_reason = ""
        self._closed = False

    async def run(self) -> None:
        try:
            try:
                self._speech = await self._connect_speech()
            except SpeechServiceUnavailableError as exc:
                LOGGER.error("[%s] %s", self.session_id, exc.detail)
                self._stop_reason = "speech service unavailable"
                return

            self.pacer = OutboundPacer(
                self._send_frame,
                frame_samples=self.config.telephony_frame_samples,
                frame_ms=self.config.frame_ms,
                on_error=self._on_outbound_error,
            )
            self.pacer.start()

            await self._send_speech(self._speech_session)
            if self.turns.claim_first_response("connect"):
                self.turns.begin_response()
                await self._send_speech(realtime.response_create())

            telephony_task = self._spawn(self._telephony_loop(), "telephony-reader")
            speech_task = self._spawn(self._speech_loop(), "speech-reader")
            stop_task = self._spawn(self._stop.wait(), "stop-wait")
            keepalive_task = self._spawn(self._keepalive_loop(), "keepalive")

            done, _pending = await asyncio.wait(
                {telephony_task, speech_task, stop_task, keepalive_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in done:
                exc = task.exception() if not task.cancelled() else None
                if exc is not None:
                    LOGGER.error("[%s] task %s failed: %r", self.session_id, task.get_name(), exc)
                    self._stop_reason = self._stop_reason or f"{task.get_name()} failed"
        except TransportError as exc:
            self._stop_reason = self._stop_reason or f"send failed: {exc.detail}"
        finally:
            await self.close()

    def stop(self, reason: str) -> None:
        if not self._stop_reason:
            self._stop_reason = reason
        self._stop.set()

    async def close(self) -> None:
        """Tear down both sockets, the pacer and all pending tasks. Idempotent."""

        if self._closed:
            return
        self._closed = True
        LOGGER.info(
            "[%s] closing session stream=%s call=%s reason=%s",
            self.session_id,
            self.stream_sid,
            self.call_sid,
            self._stop_reason or "session ended",
        )

        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

        if self.pacer is not None:
            await self.pacer.close()

        if self._speech is not None:
            try:
                await self._speech.close()
            except Exception:
                LOGGER.debug("[%s] speech socket close failed", self.session_id, exc_info=True)
        try:
            await self._telephony.close()
        except Exception:
            LOGGER.debug("[%s] telephony socket close failed", self.session_id, exc_info=True)

        self.accumulator.clear()
        self._downsampler.reset()

    # Telephony leg

    async def _telephony_loop(self) -> None:
        while True:
            try:
                frame = await self._telephony.receive()
            except (WebSocketDisconnect, RuntimeError):
                self.stop("telephony socket closed")
                return
            if frame["type"] == "websocket.disconnect":
                self.stop("telephony socket closed")
                return

            text = frame.get("text")
            if text is None:
                LOGGER.debug("[%s] discarding non-text telephony frame", self.session_id)
                continue

            try:
                message = parse_twilio_message(text)
            except ProtocolError as exc:
                LOGGER.debug("[%s] discarding telephony frame: %s", self.session_id, exc.detail)
                continue

            if not await self.handle_telephony_event(message):
                self.stop("telephony stream stopped")
                return

    async def handle_telephony_event(self, message: dict[str, Any]) -> bool:
        """Process one inbound telephony event. Returns False once the stream stops."""

        event = message["event"]
        if event == "media":
            await self._on_media(message)
        elif event == "start":
            self._on_start(message)
        elif event == "stop":
            LOGGER.info("[%s] stream stop", self.session_id)
            return False
        elif event == "mark":
            LOGGER.debug("[%s] mark %s", self.session_id, (message.get("mark") or {}).get("name"))
        else:
            LOGGER.info("[%s] ignoring telephony event=%s", self.session_id, event)
        return True

    def _on_start(self, message: dict[str, Any]) -> None:
        self.stream_sid, self.call_sid = stream_sid_of(message)
        LOGGER.info("[%s] stream start call=%s stream=%s", self.session_id, self.call_sid, self.stream_sid)
        if self.stream_sid and self.config.test_tone_ms and self.pacer is not None:
            tone = sine_tone(
                freq=self.config.test_tone_hz,
                ms=self.config.test_tone_ms,
                amplitude=self.config.test_tone_amplitude,
            )
            played = self.pacer.submit(tone)
            self._spawn(self._mark_when_played(played, "tone_done"), "tone-mark")

    async def _mark_when_played(self, played: asyncio.Future[int], name: str) -> None:
        try:
            frames = await played
        except TransportError:
            return
        LOGGER.info("[%s] test tone played (%d frames)", self.session_id, frames)
        if not self.stream_sid:
            return
        try:
            await self._telephony.send_json(build_mark_message(self.stream_sid, name))
        except Exception as exc:
            self.stop(f"telephony send failed: {exc}")

    async def _on_media(self, message: dict[str, Any]) -> None:
        if self.stream_sid is None:
            LOGGER.debug("[%s] media before start; dropped", self.session_id)
            return
        try:
            ulaw = media_payload_of(message)
        except ProtocolError as exc:
            LOGGER.debug("[%s] discarding media event: %s", self.session_id, exc.detail)
            return
        if not ulaw:
            return

        pcm = ulaw_decode(ulaw)
        if self.config.speech_input_rate == 16000:
            pcm = upsample_2x(pcm)
        self.accumulator.append(pcm)
        await self._maybe_submit()

    async def _maybe_submit(self) -> None:
        if not self.turns.can_submit():
            return
        block = self.accumulator.try_drain(self.config.submit_threshold_samples)
        if block is None:
            return

        self.turns.begin_response()
        try:
            await self._send_speech(realtime.input_audio_append(block))
            # Let the service ingest the appended audio before closing the turn.
            await asyncio.sleep(self.config.commit_delay_ms / 1000)
            await self._send_speech(realtime.input_audio_commit())
            await self._send_speech(realtime.response_create())
        except TransportError as exc:
            LOGGER.warning("[%s] submission aborted: %s", self.session_id, exc.detail)
            self.turns.on_response_error()
            return

        self.submissions += 1
        self.turns.claim_first_response("submit")
        LOGGER.debug("[%s] submitted %d samples", self.session_id, block.size)

    async def _send_frame(self, ulaw: bytes) -> None:
        await self._telephony.send_json(build_media_message(self.stream_sid, ulaw))

    def _on_outbound_error(self, exc: TransportError) -> None:
        self.stop(f"telephony send failed: {exc.detail}")

    # Speech-service leg

    async def _speech_loop(self) -> None:
        try:
            async for raw in self._speech:
                try:
                    event = realtime.parse_server_event(raw)
                except ProtocolError as exc:
                    LOGGER.debug("[%s] discarding speech frame: %s", self.session_id, exc.detail)
                    continue
                self.handle_speech_event(event)
        except websockets.ConnectionClosed as exc:
            LOGGER.info("[%s] speech socket closed: %s", self.session_id, exc)
        self.stop("speech socket closed")

    def handle_speech_event(self, event: dict[str, Any]) -> None:
        kind = event["type"]
        if kind in realtime.AUDIO_DELTA:
            self._on_audio_delta(event)
        elif kind in realtime.RESPONSE_CREATED:
            self.turns.on_response_created()
        elif kind in realtime.RESPONSE_COMPLETED:
            self.turns.on_response_completed()
        elif kind in realtime.RESPONSE_ERRORED:
            LOGGER.error("[%s] response error: %s", self.session_id, event.get("error") or event)
            self.turns.on_response_error()
        elif kind == "error":
            LOGGER.error("[%s] speech service error: %s", self.session_id, event.get("error") or event)
        else:
            LOGGER.debug("[%s] speech event %s", self.session_id, kind)

    def _on_audio_delta(self, event: dict[str, Any]) -> None:
        if self.stream_sid is None or self.pacer is None:
            LOGGER.debug("[%s] audio before stream start; dropped", self.session_id)
            return
        try:
            pcm = realtime.audio_delta_of(event)
        except ProtocolError as exc:
            LOGGER.debug("[%s] discarding audio delta: %s", self.session_id, exc.detail)
            return
        if self.config.speech_output_rate == 16000:
            pcm = self._downsampler.process(pcm)
        if pcm.size:
            self.pacer.submit(pcm)

    async def _send_speech(self, message: dict[str, Any]) -> None:
        if self._speech is None:
            raise TransportError("Speech socket is not open")
        try:
            await self._speech.send(json.dumps(message))
        except websockets.ConnectionClosed as exc:
            raise TransportError(f"Speech send failed: {exc}") from exc

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.keepalive_interval_s)
            if self._speech is None:
                continue
            try:
                await self._speech.ping()
            except websockets.ConnectionClosed:
                self.stop("speech socket closed")
                return

    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(f"{name}-{self.session_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

