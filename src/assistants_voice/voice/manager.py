"""Voice conversation loop (glue layer).

This module orchestrates:
mic -> STT -> dispatch(agent) -> TTS -> playback

It does NOT know anything about the agent; ``dispatch`` is an opaque async
callable supplied by the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from assistants_voice.config import VoiceConfig
from assistants_voice.voice.errors import VoiceConfigurationError, VoiceDisabledError
from assistants_voice.voice.player import AudioPlayer
from assistants_voice.voice.recorder import AudioRecorder
from assistants_voice.voice.speakable import to_speakable
from assistants_voice.voice.stt import ElevenLabsSTT, LocalWhisperSTT, SystemSTT, WhisperSTT
from assistants_voice.voice.tts import ElevenLabsTTS, OpenAITTS, SystemTTS
from assistants_voice.voice.types import (
    AudioFormat,
    AudioPlayerProtocol,
    AudioRecorderProtocol,
    RecordOptions,
    StreamHandle,
    StreamingCallbacks,
    StreamingOptions,
    STTProvider,
    SupportsSilenceDetection,
    SupportsStreamPlayback,
    SupportsStreaming,
    SupportsTTSStreaming,
    TTSProvider,
    VoiceState,
)

logger = logging.getLogger(__name__)

BATCH_RECORD_DURATION_S = 5.0
TURN_ERROR_BACKOFF_S = 0.5

DispatchFn = Callable[[str], Awaitable[str]]
ConfirmFn = Callable[[str], Awaitable[bool]]


class VoiceManager:
    def __init__(
        self,
        config: VoiceConfig,
        *,
        stt: STTProvider | None = None,
        tts: TTSProvider | None = None,
        player: AudioPlayerProtocol | None = None,
        recorder: AudioRecorderProtocol | None = None,
        turn_error_backoff_s: float = TURN_ERROR_BACKOFF_S,
    ) -> None:
        self._config = config
        self._enabled = config.enabled
        self._player = player or AudioPlayer()
        self._recorder = recorder or AudioRecorder()
        self._stt = stt or self._create_stt_provider()
        self._tts = tts or self._create_tts_provider()
        self._turn_error_backoff_s = turn_error_backoff_s

        self._is_speaking = False
        self._is_listening = False
        self._is_talking = False
        self._stream_handle: StreamHandle | None = None
        self._streaming_stop: Callable[[], None] | None = None

    @property
    def config(self) -> VoiceConfig:
        return self._config

    def enable(self) -> None:
        self._enabled = True
        self._config.enabled = True

    def disable(self) -> None:
        self._enabled = False
        self._config.enabled = False
        self.stop_speaking()
        self.stop_listening()

    def is_enabled(self) -> bool:
        return self._enabled

    def get_auto_send(self) -> bool:
        return self._config.auto_send is not False

    def set_auto_send(self, enabled: bool) -> None:
        self._config.auto_send = enabled

    def get_state(self) -> VoiceState:
        return VoiceState(
            enabled=self._enabled,
            is_speaking=self._is_speaking,
            is_listening=self._is_listening,
            is_talking=self._is_talking,
            stt_provider=self._config.stt.provider,
            tts_provider=self._config.tts.provider,
        )

    async def speak(self, text: str) -> None:
        """Say ``text`` once, outside the conversation loop."""
        if not self._enabled:
            raise VoiceDisabledError()
        trimmed = (text or "").strip()
        if not trimmed:
            return
        await self._play(trimmed)

    async def listen(self, options: RecordOptions | None = None) -> str:
        """Record once and return the transcript, outside the conversation loop."""
        if not self._enabled:
            raise VoiceDisabledError()
        self._is_listening = True
        try:
            audio = await self._recorder.record(options)
            result = await self._stt.transcribe(audio)
            return result.text
        finally:
            self._is_listening = False

    async def talk(
        self,
        *,
        on_transcript: Callable[[str], None],
        on_response: Callable[[str], None],
        dispatch: DispatchFn,
        on_partial_transcript: Callable[[str], None] | None = None,
        wait_for_confirm: ConfirmFn | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        """Run a continuous spoken conversation until ``stop_talking()``.

        Each turn: listen -> transcript -> (confirm) -> dispatch -> speak.
        Streaming STT providers deliver live partials; other providers use
        record-then-transcribe. Errors inside a turn are logged, passed to
        ``on_error`` and the loop listens again. Configuration errors end the
        loop and propagate.
        """
        # A previous talk() may have been abandoned mid-turn.
        self.stop_speaking()
        self.stop_listening()
        self._reset_state()
        self.enable()
        self._is_talking = True

        streaming_stt = self._stt if isinstance(self._stt, SupportsStreaming) else None
        auto_send = self.get_auto_send()
        logger.info(
            "[VOICE][TALK] started mode=%s auto_send=%s",
            "streaming" if streaming_stt is not None else "batch",
            auto_send,
        )

        turns = 0
        try:
            while self._is_talking:
                try:
                    if streaming_stt is not None:
                        transcript = await self._stream_one_turn(streaming_stt, auto_send, on_partial_transcript)
                    else:
                        transcript = await self._batch_one_turn()

                    if not transcript or not self._is_talking:
                        continue

                    if not auto_send and wait_for_confirm is not None:
                        confirmed = await wait_for_confirm(transcript)
                        if not confirmed or not self._is_talking:
                            logger.debug("[VOICE][TALK] turn discarded")
                            continue

                    on_transcript(transcript)
                    if not self._is_talking:
                        break

                    response = await dispatch(transcript)
                    if not self._is_talking:
                        break

                    on_response(response)
                    await self._speak_response(response)
                    turns += 1
                except VoiceConfigurationError:
                    raise
                except Exception as e:
                    if not self._is_talking:
                        break
                    logger.warning("[VOICE][TALK] turn failed: %s: %s", type(e).__name__, e)
                    if on_error is not None:
                        on_error(e)
                    await asyncio.sleep(self._turn_error_backoff_s)
        finally:
            self.stop_speaking()
            self.stop_listening()
            self._is_talking = False
            self._streaming_stop = None
            logger.info("[VOICE][TALK] ended turns=%d", turns)

    def stop_talking(self) -> None:
        """End the conversation loop. Safe to call at any time, any number of times."""
        self._is_talking = False
        self._cancel_stream()
        self.stop_speaking()
        self.stop_listening()

    def end_turn(self) -> None:
        """Stop capturing and keep what was heard so far.

        With auto-send off this is how the user says "I'm done speaking":
        the streaming session completes with its full text, or the recorder
        stops and the captured audio is transcribed.
        """
        if self._stream_handle is not None:
            self._stream_handle.stop()
        elif self._is_listening:
            self._recorder.stop()

    async def close(self) -> None:
        """Release provider HTTP clients."""
        for provider in (self._stt, self._tts):
            close = getattr(provider, "close", None)
            if close is not None:
                await close()

    def stop_speaking(self) -> None:
        self._player.stop()
        self._is_speaking = False

    def stop_listening(self) -> None:
        self._cancel_stream()
        self._recorder.stop()
        self._is_listening = False

    def _cancel_stream(self) -> None:
        stop = self._streaming_stop
        self._streaming_stop = None
        if stop is not None:
            stop()

    def _reset_state(self) -> None:
        self._is_speaking = False
        self._is_listening = False
        self._is_talking = False
        self._stream_handle = None
        self._streaming_stop = None

    async def _stream_one_turn(
        self,
        stt: SupportsStreaming,
        auto_send: bool,
        on_partial_transcript: Callable[[str], None] | None,
    ) -> str:
        """Listen through the streaming provider until one turn of text is ready.

        Returns "" when the turn was cancelled.
        """
        turn: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        handle: StreamHandle | None = None

        def finish(text: str) -> None:
            if not turn.done():
                turn.set_result(text)

        def on_partial(text: str) -> None:
            if not self._is_talking:
                finish("")
                if handle is not None:
                    handle.stop()
                return
            if on_partial_transcript is not None:
                on_partial_transcript(text)

        def on_final(text: str) -> None:
            # Auto-send: the first committed segment ends the turn right away.
            if auto_send and text.strip():
                finish(text.strip())
                if handle is not None:
                    handle.stop()

        def on_done(full_text: str) -> None:
            finish(full_text.strip())

        def cancel() -> None:
            # Resolve first: stopping the session reports its text via on_done.
            finish("")
            if handle is not None:
                handle.stop()

        self._is_listening = True
        try:
            handle = await stt.stream_from_mic(
                StreamingCallbacks(on_partial=on_partial, on_final=on_final, on_done=on_done),
                StreamingOptions(auto_send=auto_send, silence_threshold_s=self._config.silence_threshold_s),
            )
            self._stream_handle = handle
            self._streaming_stop = cancel
            if not self._is_talking:
                cancel()
            return await turn
        finally:
            self._is_listening = False
            self._stream_handle = None
            self._streaming_stop = None

    async def _batch_one_turn(self) -> str:
        self._is_listening = True
        try:
            if isinstance(self._recorder, SupportsSilenceDetection):
                audio = await self._recorder.record_until_silence()
            else:
                audio = await self._recorder.record(RecordOptions(duration_seconds=BATCH_RECORD_DURATION_S))
        finally:
            self._is_listening = False

        if not audio or not self._is_talking:
            return ""

        result = await self._stt.transcribe(audio)
        return (result.text or "").strip()

    async def _speak_response(self, text: str) -> None:
        if not self._is_talking:
            return
        speakable, dbg = to_speakable(text)
        if speakable is None:
            logger.info("[VOICE][TTS] skipped reason=%s", dbg.get("skip_reason"))
            return
        await self._play(speakable)

    async def _play(self, text: str) -> None:
        self._is_speaking = True
        try:
            if isinstance(self._tts, SupportsTTSStreaming) and isinstance(self._player, SupportsStreamPlayback):
                await self._player.play_stream(self._tts.stream(text), format=self._stream_format())
            else:
                result = await self._tts.synthesize(text)
                await self._player.play(result.audio, format=result.format)
        finally:
            self._is_speaking = False

    def _stream_format(self) -> AudioFormat:
        return "mp3" if self._config.tts.provider in ("elevenlabs", "openai") else "wav"

    def _create_stt_provider(self) -> STTProvider:
        stt = self._config.stt
        if stt.provider == "system":
            return SystemSTT()
        if stt.provider == "elevenlabs":
            return ElevenLabsSTT(model=stt.model, language=stt.language)
        if stt.provider == "local":
            return LocalWhisperSTT(model_size=stt.model, language=stt.language)
        if stt.provider == "whisper":
            return WhisperSTT(model=stt.model, language=stt.language)
        raise VoiceConfigurationError(f"Unsupported STT provider: {stt.provider}")

    def _create_tts_provider(self) -> TTSProvider:
        tts = self._config.tts
        if tts.provider == "system":
            return SystemTTS(voice_id=tts.voice_id, speed=tts.speed)
        if tts.provider == "openai":
            return OpenAITTS(
                voice_id=tts.voice_id,
                model=tts.model,
                speed=tts.speed,
                instructions=tts.instructions,
            )
        if tts.provider == "elevenlabs":
            return ElevenLabsTTS(
                voice_id=tts.voice_id,
                model=tts.model,
                stability=tts.stability,
                similarity_boost=tts.similarity_boost,
                speed=tts.speed,
            )
        raise VoiceConfigurationError(f"Unsupported TTS provider: {tts.provider}")
