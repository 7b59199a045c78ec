"""Shared voice types and provider interfaces.

Optional capabilities (streaming STT, streaming TTS, streamed playback,
silence-terminated recording) are separate runtime-checkable protocols, so the
manager branches on ``isinstance`` instead of probing for ``None`` attributes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Literal, Protocol, runtime_checkable

AudioFormat = Literal["mp3", "wav", "aiff"]


@dataclass(frozen=True)
class VoiceState:
    enabled: bool = False
    is_speaking: bool = False
    is_listening: bool = False
    is_talking: bool = False
    stt_provider: str | None = None
    tts_provider: str | None = None


@dataclass(frozen=True)
class RecordOptions:
    duration_seconds: float | None = None
    sample_rate: int = 16000
    channels: int = 1


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    confidence: float = 1.0
    duration: float | None = None
    language: str | None = None


@dataclass(frozen=True)
class SynthesisResult:
    audio: bytes
    format: AudioFormat = "mp3"
    duration: float | None = None


@dataclass(frozen=True)
class StreamingOptions:
    # VAD-based auto-commit when true, caller-driven commit when false.
    auto_send: bool = True
    silence_threshold_s: float = 1.5


@dataclass
class StreamingCallbacks:
    on_partial: Callable[[str], None] | None = None
    on_final: Callable[[str], None] | None = None
    on_done: Callable[[str], None] | None = None


class StreamHandle(Protocol):
    def stop(self) -> None: ...


class STTProvider:
    async def transcribe(self, audio: bytes) -> TranscriptionResult:
        raise NotImplementedError


@runtime_checkable
class SupportsStreaming(Protocol):
    async def stream_from_mic(
        self,
        callbacks: StreamingCallbacks,
        options: StreamingOptions | None = None,
    ) -> StreamHandle: ...


class TTSProvider:
    async def synthesize(self, text: str) -> SynthesisResult:
        raise NotImplementedError


@runtime_checkable
class SupportsTTSStreaming(Protocol):
    def stream(self, text: str) -> AsyncIterator[bytes]: ...


class AudioPlayerProtocol(Protocol):
    async def play(self, audio: bytes, *, format: AudioFormat = "wav") -> None: ...

    def stop(self) -> None: ...

    def is_playing(self) -> bool: ...


@runtime_checkable
class SupportsStreamPlayback(Protocol):
    async def play_stream(self, chunks: AsyncIterator[bytes], *, format: AudioFormat = "mp3") -> None: ...


class AudioRecorderProtocol(Protocol):
    async def record(self, options: RecordOptions | None = None) -> bytes: ...

    def stop(self) -> None: ...


@runtime_checkable
class SupportsSilenceDetection(Protocol):
    async def record_until_silence(self, options: RecordOptions | None = None) -> bytes: ...
