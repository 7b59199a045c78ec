"""Text-to-speech providers.

Hosted providers (ElevenLabs, OpenAI) return MP3 and can stream it chunk by
chunk. SystemTTS shells out to the platform speech tool.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import sys
import tempfile
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import httpx

from assistants_voice.config import get_settings
from assistants_voice.voice.errors import MissingCredentialError, SynthesisError, VoiceConfigurationError
from assistants_voice.voice.types import SynthesisResult, TTSProvider

logger = logging.getLogger(__name__)

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech"
OPENAI_SPEECH_URL = "https://api.openai.com/v1/audio/speech"


class _HttpTTS(TTSProvider):
    provider_name = "TTS"
    env_var = ""

    def __init__(self, api_key: str | None, *, timeout: float, client: httpx.AsyncClient | None) -> None:
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
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _request(self, text: str) -> tuple[str, dict[str, str], dict[str, Any]]:
        raise NotImplementedError

    def _stream_url(self, url: str) -> str:
        return url

    async def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_error:
            body = (await response.aread()).decode("utf-8", errors="replace")
            raise SynthesisError(
                f"{self.provider_name} failed ({response.status_code}): {body or response.reason_phrase}",
                status_code=response.status_code,
                body=body,
            )

    async def synthesize(self, text: str) -> SynthesisResult:
        url, headers, payload = self._request(text)
        client = await self._get_client()
        try:
            response = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise SynthesisError(f"{self.provider_name} failed: {e}") from e
        await self._raise_for_status(response)
        logger.debug(f"[VOICE][TTS] {self.provider_name} chars={len(text)} bytes={len(response.content)}")
        return SynthesisResult(audio=response.content, format="mp3")

    async def stream(self, text: str) -> AsyncIterator[bytes]:
        url, headers, payload = self._request(text)
        client = await self._get_client()
        logger.debug(f"[VOICE][TTS] {self.provider_name} streaming chars={len(text)}")
        try:
            async with client.stream("POST", self._stream_url(url), headers=headers, json=payload) as response:
                await self._raise_for_status(response)
                async for chunk in response.aiter_bytes():
                    if chunk:
                        yield chunk
        except httpx.HTTPError as e:
            raise SynthesisError(f"{self.provider_name} stream failed: {e}") from e


class ElevenLabsTTS(_HttpTTS):
    provider_name = "ElevenLabs TTS"
    env_var = "ELEVENLABS_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        *,
        voice_id: str | None = None,
        model: str | None = None,
        stability: float | None = None,
        similarity_boost: float | None = None,
        speed: float | None = None,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(api_key, timeout=timeout, client=client)
        self.voice_id = voice_id
        self.model = model or "eleven_turbo_v2_5"
        self.stability = 0.5 if stability is None else stability
        self.similarity_boost = 0.75 if similarity_boost is None else similarity_boost
        self.speed = speed

    def _settings_key(self) -> str | None:
        return get_settings().elevenlabs_api_key

    def _request(self, text: str) -> tuple[str, dict[str, str], dict[str, Any]]:
        api_key = self.api_key
        voice_id = self.voice_id or get_settings().elevenlabs_voice_id
        if not voice_id:
            raise VoiceConfigurationError("Missing ELEVENLABS_VOICE_ID for ElevenLabs TTS. Set it in env or .env.")

        voice_settings: dict[str, Any] = {
            "stability": self.stability,
            "similarity_boost": self.similarity_boost,
        }
        if self.speed is not None:
            voice_settings["speed"] = self.speed

        return (
            f"{ELEVENLABS_TTS_URL}/{voice_id}",
            {"xi-api-key": api_key, "Accept": "audio/mpeg"},
            {"text": text, "model_id": self.model, "voice_settings": voice_settings},
        )

    def _stream_url(self, url: str) -> str:
        return f"{url}/stream"


class OpenAITTS(_HttpTTS):
    provider_name = "OpenAI TTS"
    env_var = "OPENAI_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        *,
        voice_id: str | None = None,
        model: str | None = None,
        speed: float | None = None,
        instructions: str | None = None,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(api_key, timeout=timeout, client=client)
        self.voice = voice_id or "alloy"
        self.model = model or "gpt-4o-mini-tts"
        self.speed = speed
        self.instructions = instructions

    def _settings_key(self) -> str | None:
        return get_settings().openai_api_key

    def _request(self, text: str) -> tuple[str, dict[str, str], dict[str, Any]]:
        payload: dict[str, Any] = {
            "model": self.model,
            "input": text,
            "voice": self.voice,
            "response_format": "mp3",
        }
        if self.speed is not None:
            payload["speed"] = self.speed
        if self.instructions:
            payload["instructions"] = self.instructions
        return OPENAI_SPEECH_URL, {"Authorization": f"Bearer {self.api_key}"}, payload


class SystemTTS(TTSProvider):
    """macOS `say`, elsewhere `espeak-ng`/`espeak`."""

    def __init__(self, *, voice_id: str | None = None, speed: float | None = None, timeout_s: float = 60.0) -> None:
        self.voice_id = voice_id
        self.speed = speed
        self.timeout_s = timeout_s

    def _resolve(self, out_path: Path) -> list[str]:
        if sys.platform == "darwin" and shutil.which("say"):
            cmd = ["say", "-f", "-", "-o", str(out_path)]
            if self.voice_id:
                cmd += ["-v", self.voice_id]
            if self.speed:
                cmd += ["-r", str(int(175 * self.speed))]
            return cmd

        for name in ("espeak-ng", "espeak"):
            binary = shutil.which(name)
            if binary:
                cmd = [binary, "--stdin", "-w", str(out_path)]
                if self.voice_id:
                    cmd += ["-v", self.voice_id]
                if self.speed:
                    cmd += ["-s", str(int(175 * self.speed))]
                return cmd

        raise VoiceConfigurationError("No system speech tool found. Install espeak-ng (Linux) or use macOS `say`.")

    async def synthesize(self, text: str) -> SynthesisResult:
        fmt = "aiff" if sys.platform == "darwin" else "wav"

        def _call() -> bytes:
            with tempfile.TemporaryDirectory(prefix="assistants-tts-") as tmp:
                out_path = Path(tmp) / f"speech.{fmt}"
                cmd = self._resolve(out_path)
                try:
                    subprocess.run(
                        cmd,
                        input=text,
                        text=True,
                        check=True,
                        stdout=subprocess.DEVNULL,
                        stderr=subprocess.PIPE,
                        timeout=self.timeout_s,
                    )
                except subprocess.TimeoutExpired as e:  # pragma: no cover
                    raise SynthesisError(f"{cmd[0]} timed out after {self.timeout_s:.1f}s") from e
                except subprocess.CalledProcessError as e:  # pragma: no cover
                    stderr = (e.stderr or "").strip()
                    raise SynthesisError(f"{cmd[0]} failed (exit={e.returncode}). stderr={stderr or '<empty>'}") from e
                return out_path.read_bytes()

        audio = await asyncio.to_thread(_call)
        return SynthesisResult(audio=audio, format=fmt)
