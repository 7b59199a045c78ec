"""Realtime speech-to-text session over the ElevenLabs Scribe WebSocket.

Microphone PCM is read from a capture process and forwarded as base64 chunks;
partial and committed transcripts come back on the same socket.

Four things can end a session: an explicit ``stop()``, the capture process
ending on its own, the socket closing, or a provider error message. All of
them go through ``_finalize()``, which runs once: ``on_done`` fires exactly
once and the completion future is resolved exactly once.

    NOT_STARTED -> ACTIVE -> FINALIZING -> DONE
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from assistants_voice.voice.errors import RecorderError, TranscriptionSetupError
from assistants_voice.voice.recorder import interrupt_process, spawn_pcm_capture
from assistants_voice.voice.types import StreamingCallbacks

logger = logging.getLogger(__name__)

REALTIME_URL = "wss://api.elevenlabs.io/v1/speech-to-text/realtime"
CHUNK_BYTES = 4096
DEFAULT_GRACE_PERIOD_S = 0.5
PROCESS_EXIT_TIMEOUT_S = 2.0

COMMITTED_TYPES = frozenset({"committed_transcript", "committed_transcript_with_timestamps"})

ConnectFn = Callable[[str, dict[str, str]], Awaitable[Any]]
SpawnCaptureFn = Callable[[int], Awaitable[asyncio.subprocess.Process]]


class CommitStrategy(str, Enum):
    VAD = "vad"
    MANUAL = "manual"


class SessionPhase(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    FINALIZING = "finalizing"
    DONE = "done"


async def _connect_websocket(url: str, headers: dict[str, str]) -> Any:
    return await websockets.connect(url, additional_headers=headers, max_size=None)


class StreamingTranscriptionSession:
    """One realtime transcription session; create a new one per turn."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "scribe_v2",
        sample_rate: int = 16000,
        commit_strategy: CommitStrategy = CommitStrategy.VAD,
        silence_threshold_s: float = 1.5,
        language: str | None = None,
        grace_period_s: float = DEFAULT_GRACE_PERIOD_S,
        connect: ConnectFn | None = None,
        spawn_capture: SpawnCaptureFn | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._sample_rate = sample_rate
        self._commit_strategy = commit_strategy
        self._silence_threshold_s = silence_threshold_s
        self._language = language
        self._grace_period_s = grace_period_s
        self._connect = connect or _connect_websocket
        self._spawn_capture = spawn_capture or spawn_pcm_capture

        self._phase = SessionPhase.NOT_STARTED
        self._stop_requested = False
        self._full_text = ""
        self._callbacks = StreamingCallbacks()
        self._ws: Any = None
        self._process: asyncio.subprocess.Process | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: list[asyncio.Task] = []
        self._teardown_task: asyncio.Task | None = None
        self._done: asyncio.Future[str] | None = None

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def full_text(self) -> str:
        return self._full_text

    @property
    def commit_strategy(self) -> CommitStrategy:
        return self._commit_strategy

    def build_url(self) -> str:
        params = {
            "model_id": self._model,
            "audio_format": f"pcm_{self._sample_rate}",
            "commit_strategy": self._commit_strategy.value,
            "vad_silence_threshold_secs": str(self._silence_threshold_s),
            "vad_threshold": "0.4",
            "min_speech_duration_ms": "100",
            "min_silence_duration_ms": "100",
        }
        if self._language:
            params["language_code"] = self._language
        return f"{REALTIME_URL}?{urlencode(params)}"

    async def start(self, callbacks: StreamingCallbacks | None = None) -> StreamingTranscriptionSession:
        """Connect, start the microphone and begin streaming.

        Raises:
            TranscriptionSetupError: The socket could not be opened or the
                microphone could not be started. Nothing is left running.
        """
        if self._loop is not None:
            raise RuntimeError("Streaming session already started.")

        self._callbacks = callbacks or StreamingCallbacks()
        self._loop = asyncio.get_running_loop()
        self._done = self._loop.create_future()

        try:
            self._ws = await self._connect(self.build_url(), {"xi-api-key": self._api_key})
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._abandon()
            raise TranscriptionSetupError(f"ElevenLabs realtime STT WebSocket error: {e}") from e

        if self._stop_requested:
            # stop() arrived while connecting.
            self._phase = SessionPhase.ACTIVE
            self._finalize()
            return self

        try:
            process = await self._spawn_capture(self._sample_rate)
        except (RecorderError, OSError) as e:
            self._abandon()
            raise TranscriptionSetupError("Failed to start microphone recording. Install sox or ffmpeg.") from e

        self._process = process
        stdout = process.stdout
        if stdout is None:
            self._abandon()
            raise TranscriptionSetupError("Failed to start microphone recording. Install sox or ffmpeg.")

        self._phase = SessionPhase.ACTIVE
        logger.info(
            "[VOICE][STT] realtime session started commit=%s pid=%s",
            self._commit_strategy.value,
            process.pid,
        )
        self._tasks = [
            self._loop.create_task(self._pump_audio(process, stdout), name="stt-pump-audio"),
            self._loop.create_task(self._receive(), name="stt-receive"),
        ]
        if self._stop_requested:
            self._finalize()
        return self

    def stop(self) -> None:
        """Stop streaming and deliver the accumulated text. Idempotent."""
        if self._phase is SessionPhase.DONE:
            return
        if self._phase is SessionPhase.NOT_STARTED:
            self._stop_requested = True
            return
        self._finalize()

    async def wait(self) -> str:
        """Wait for completion and return the full committed text."""
        if self._done is None:
            raise RuntimeError("Streaming session was never started.")
        return await asyncio.shield(self._done)

    async def wait_closed(self) -> None:
        """Wait until the socket is closed and the capture process has exited."""
        if self._teardown_task is not None:
            await self._teardown_task

    async def _pump_audio(self, process: asyncio.subprocess.Process, stdout: asyncio.StreamReader) -> None:
        try:
            while True:
                chunk = await stdout.read(CHUNK_BYTES)
                if not chunk or self._phase is not SessionPhase.ACTIVE:
                    break
                await self._send(
                    {
                        "message_type": "input_audio_chunk",
                        "audio_base_64": base64.b64encode(chunk).decode("ascii"),
                    }
                )
            await process.wait()
        except ConnectionClosed:
            logger.debug("[VOICE][STT] socket closed while sending audio")
            self._finalize()
            return

        if self._phase is SessionPhase.ACTIVE:
            await self._finish_naturally()

    async def _finish_naturally(self) -> None:
        """Capture ended without stop(): flush, give the provider a moment, finalize."""
        self._phase = SessionPhase.FINALIZING
        logger.debug("[VOICE][STT] capture ended; finalizing in %.2fs", self._grace_period_s)
        if self._commit_strategy is CommitStrategy.MANUAL:
            try:
                await self._send({"message_type": "input_audio_chunk", "audio_base_64": "", "commit": True})
            except ConnectionClosed:
                self._finalize()
                return
        await asyncio.sleep(self._grace_period_s)
        self._finalize()

    async def _receive(self) -> None:
        try:
            async for raw in self._ws:
                self._handle_message(raw)
                if self._phase is SessionPhase.DONE:
                    return
        except ConnectionClosed as e:
            logger.debug("[VOICE][STT] socket closed: %s", e)
        self._finalize()

    def _handle_message(self, raw: str | bytes) -> None:
        if self._phase not in (SessionPhase.ACTIVE, SessionPhase.FINALIZING):
            return

        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("[VOICE][STT] ignoring malformed message")
            return
        if not isinstance(msg, dict):
            return

        message_type = msg.get("message_type")
        text = msg.get("text")
        if not isinstance(text, str):
            text = ""

        if message_type == "partial_transcript":
            if text:
                self._emit(self._callbacks.on_partial, text)
        elif message_type in COMMITTED_TYPES:
            if text:
                self._full_text = f"{self._full_text} {text}" if self._full_text else text
                self._emit(self._callbacks.on_final, text)
        elif message_type == "session_started":
            logger.debug("[VOICE][STT] provider session started")
        elif msg.get("error"):
            logger.warning("[VOICE][STT] provider error type=%s error=%s", message_type, msg.get("error"))
            self._finalize()

    def _finalize(self) -> None:
        if self._phase is SessionPhase.DONE:
            return
        self._phase = SessionPhase.DONE

        if self._process is not None:
            interrupt_process(self._process)

        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()

        if self._loop is not None and self._teardown_task is None:
            self._teardown_task = self._loop.create_task(self._teardown(), name="stt-teardown")

        text = self._full_text
        if self._done is not None and not self._done.done():
            self._done.set_result(text)
        logger.info("[VOICE][STT] realtime session done chars=%d", len(text))
        self._emit(self._callbacks.on_done, text)

    def _abandon(self) -> None:
        """Setup failed: release what was acquired without reporting completion."""
        self._phase = SessionPhase.DONE
        if self._done is not None and not self._done.done():
            self._done.set_result("")
        if self._process is not None:
            interrupt_process(self._process)
        if self._loop is not None and (self._ws is not None or self._process is not None):
            self._teardown_task = self._loop.create_task(self._teardown(), name="stt-teardown")

    async def _teardown(self) -> None:
        if self._ws is not None:
            try:
                await self._ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug("[VOICE][STT] socket close failed: %s", e)

        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=PROCESS_EXIT_TIMEOUT_S)
        except asyncio.TimeoutError:
            logger.warning("[VOICE][STT] capture process ignored SIGINT; killing")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    async def _send(self, payload: dict[str, Any]) -> None:
        await self._ws.send(json.dumps(payload))

    @staticmethod
    def _emit(callback: Callable[[str], None] | None, text: str) -> None:
        if callback is None:
            return
        try:
            callback(text)
        except Exception:
            logger.exception("[VOICE][STT] transcript callback failed")
