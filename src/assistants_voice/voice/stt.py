"""Speech-to-text providers.

- WhisperSTT: OpenAI transcription API (batch)
- ElevenLabsSTT: Scribe API (batch) and Scribe realtime WebSocket (streaming)
- LocalWhisperSTT: offline `faster-whisper` (batch)
- SystemSTT: placeholder for an OS recognizer
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Any

import httpx

from assistants_voice.config import get_settings
from assistants_voice.voice.errors import (
    MissingCredentialError,
    TranscriptionError,
    VoiceConfigurationError,
)
from assistants_voice.voice.streaming import CommitStrategy, StreamingTranscriptionSession
from assistants_voice.voice.types import (
    STTProvider,
    StreamingCallbacks,
    StreamingOptions,
    TranscriptionResult,
)

logger = logging.getLogger(__name__)

OPENAI_TRANSCRIPTIONS_URL = "https://api.openai.com/v1/audio/transcriptions"
ELEVENLABS_STT_URL = "https://api.elevenlabs.io/v1/speech-to-text"


class _HttpSTT(STTProvider):
    """Shared multipart upload for hosted batch transcription."""

    provider_name = "STT"
    env_var = ""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    def _settings_key(self) -> str | None:
        raise NotImplementedError

    @property
    def api_key(self) -> str:
        key = self._api_key or self._settings_key() or ""
        if not key:
            raise MissingCredentialError(self.env_var, self.provider_name)
        return key

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post_audio(
        self,
        url: str,
        audio: bytes,
        *,
        headers: dict[str, str],
        data: dict[str, str],
    ) -> dict[str, Any]:
        client = await self._get_client()
        logger.debug(f"[VOICE][STT] {self.provider_name} bytes={len(audio)}")
        try:
            response = await client.post(
                url,
                headers=headers,
                data=data,
                files={"file": ("audio.wav", audio, "audio/wav")},
            )
        except httpx.HTTPError as e:
            raise TranscriptionError(f"{self.provider_name} failed: {e}") from e

        if response.is_error:
            body = response.text
            raise TranscriptionError(
                f"{self.provider_name} failed ({response.status_code}): {body or response.reason_phrase}",
                status_code=response.status_code,
                body=body,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TranscriptionError(
                f"{self.provider_name} returned invalid JSON",
                status_code=response.status_code,
                body=response.text,
            ) from e
        return payload if isinstance(payload, dict) else {}


class WhisperSTT(_HttpSTT):
    """OpenAI Whisper transcription API."""

    provider_name = "Whisper STT"
    env_var = "OPENAI_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        language: str | None = None,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(api_key, timeout=timeout, client=client)
        self.model = model or "whisper-1"
        self.language = language

    def _settings_key(self) -> str | None:
        return get_settings().openai_api_key

    async def transcribe(self, audio: bytes) -> TranscriptionResult:
        api_key = self.api_key
        data = {"model": self.model}
        if self.language:
            data["language"] = self.language

        payload = await self._post_audio(
            OPENAI_TRANSCRIPTIONS_URL,
            audio,
            headers={"Authorization": f"Bearer {api_key}"},
            data=data,
        )
        return TranscriptionResult(
            text=payload.get("text") or "",
            confidence=1.0,
            language=payload.get("language"),
        )


class ElevenLabsSTT(_HttpSTT):
    """ElevenLabs Scribe: batch upload plus realtime streaming from the mic."""

    provider_name = "ElevenLabs STT"
    env_var = "ELEVENLABS_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        language: str | None = None,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(api_key, timeout=timeout, client=client)
        self.model = model or "scribe_v2"
        self.language = language

    def _settings_key(self) -> str | None:
        return get_settings().elevenlabs_api_key

    async def transcribe(self, audio: bytes) -> TranscriptionResult:
        api_key = self.api_key
        data = {"model_id": self.model}
        if self.language:
            data["language_code"] = self.language

        payload = await self._post_audio(
            ELEVENLABS_STT_URL,
            audio,
            headers={"xi-api-key": api_key},
            data=data,
        )
        return TranscriptionResult(
            text=payload.get("text") or "",
            confidence=1.0,
            language=payload.get("language_code"),
        )

    def create_session(self, options: StreamingOptions | None = None) -> StreamingTranscriptionSession:
        options = options or StreamingOptions()
        return StreamingTranscriptionSession(
            api_key=self.api_key,
            model=self.model,
            commit_strategy=CommitStrategy.VAD if options.auto_send else CommitStrategy.MANUAL,
            silence_threshold_s=options.silence_threshold_s,
            language=self.language,
        )

    async def stream_from_mic(
        self,
        callbacks: StreamingCallbacks,
        options: StreamingOptions | None = None,
    ) -> StreamingTranscriptionSession:
        """Open a realtime session and start piping microphone audio into it."""
        session = self.create_session(options)
        await session.start(callbacks)
        return session


class LocalWhisperSTT(STTProvider):
    """Offline transcription with faster-whisper."""

    def __init__(
        self,
        *,
        model_size: str | None = None,
        device: str = "cpu",
        compute_type: str | None = None,
        language: str | None = None,
        vad_filter: bool = True,
    ) -> None:
        self.model_size = model_size or "small"
        self.device = device
        self.compute_type = compute_type
        self.language = language
        self.vad_filter = vad_filter
        self._model = None

    def _load_model(self):
        if self._model is not None:
            return self._model

        try:
            from faster_whisper import WhisperModel  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise VoiceConfigurationError(
                "faster-whisper is required for local STT. Install with: pip install -e '.[local]'"
            ) from e

        # Be conservative: prefer CPU unless CUDA is explicitly requested.
        device = "cpu" if self.device == "auto" else self.device

        kwargs = {}
        if self.compute_type:
            kwargs["compute_type"] = self.compute_type

        self._model = WhisperModel(self.model_size, device=device, **kwargs)
        return self._model

    async def transcribe(self, audio: bytes) -> TranscriptionResult:
        def _run() -> TranscriptionResult:
            model = self._load_model()
            with tempfile.TemporaryDirectory(prefix="assistants-stt-") as tmp:
                wav_path = Path(tmp) / "audio.wav"
                wav_path.write_bytes(audio)
                segments, info = model.transcribe(
                    str(wav_path),
                    language=self.language,
                    vad_filter=self.vad_filter,
                )
                parts = [s.text.strip() for s in segments if s.text and s.text.strip()]
            return TranscriptionResult(
                text=" ".join(parts).strip(),
                confidence=1.0,
                duration=getattr(info, "duration", None),
                language=getattr(info, "language", None),
            )

        return await asyncio.to_thread(_run)


class SystemSTT(STTProvider):
    async def transcribe(self, audio: bytes) -> TranscriptionResult:
        raise VoiceConfigurationError("System STT is not available yet. Use Whisper STT instead.")
