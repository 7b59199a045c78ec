"""Speaker playback (LLM-agnostic).

WAV buffers play through sounddevice. Compressed audio (MP3/AIFF) and streamed
chunks go through an external player process (afplay, ffplay, mpg123, aplay).
"""

from __future__ import annotations

import asyncio
import io
import logging
import shutil
import sys
import tempfile
import wave
from collections.abc import AsyncIterator
from pathlib import Path

import numpy as np

from assistants_voice.voice.errors import PlaybackError
from assistants_voice.voice.types import AudioFormat

logger = logging.getLogger(__name__)


def decode_wav(data: bytes) -> tuple[np.ndarray, int]:
    """Decode 16-bit PCM WAV bytes into float32 samples [frames, channels]."""
    with wave.open(io.BytesIO(data), "rb") as wf:
        sr = wf.getframerate()
        n_channels = wf.getnchannels()
        sampwidth = wf.getsampwidth()
        if sampwidth != 2:
            raise ValueError(f"Only 16-bit WAV supported, got sampwidth={sampwidth}")
        frames = wf.readframes(wf.getnframes())

    audio = np.frombuffer(frames, dtype=np.int16).reshape(-1, n_channels)
    return audio.astype(np.float32) / 32768.0, sr


def _file_player_command(path: Path, fmt: AudioFormat) -> list[str] | None:
    if sys.platform == "darwin" and shutil.which("afplay"):
        return ["afplay", str(path)]
    ffplay = shutil.which("ffplay")
    if ffplay:
        return [ffplay, "-nodisp", "-autoexit", "-loglevel", "quiet", str(path)]
    if fmt == "mp3" and shutil.which("mpg123"):
        return ["mpg123", "-q", str(path)]
    if fmt == "wav" and shutil.which("aplay"):
        return ["aplay", "-q", str(path)]
    return None


def _stream_player_command(fmt: AudioFormat) -> list[str] | None:
    ffplay = shutil.which("ffplay")
    if ffplay:
        return [ffplay, "-nodisp", "-autoexit", "-loglevel", "quiet", "-i", "pipe:0"]
    if fmt == "mp3" and shutil.which("mpg123"):
        return ["mpg123", "-q", "-"]
    return None


def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        pass


class AudioPlayer:
    def __init__(self) -> None:
        self._process: asyncio.subprocess.Process | None = None
        self._sd_playing = False
        self._stopped = False

    def _require_sounddevice(self):
        try:
            import sounddevice as sd  # type: ignore

            return sd
        except (ImportError, OSError) as e:  # pragma: no cover
            raise PlaybackError(
                "sounddevice is required for WAV playback. Install with: pip install -e . "
                "If you see 'PortAudio library not found', install PortAudio (Debian/Ubuntu: sudo apt-get install portaudio19-dev)."
            ) from e

    def is_playing(self) -> bool:
        return self._sd_playing or (self._process is not None and self._process.returncode is None)

    async def play(self, audio: bytes, *, format: AudioFormat = "wav") -> None:
        """Play a complete buffer and return when playback ends (or is stopped)."""
        self._stopped = False
        await self._play_buffer(audio, format)

    async def _play_buffer(self, audio: bytes, format: AudioFormat) -> None:
        if not audio or self._stopped:
            return

        if format == "wav":
            sd = self._require_sounddevice()
            samples, sr = decode_wav(audio)
            self._sd_playing = True
            try:
                sd.play(samples, samplerate=sr, blocking=False)
                await asyncio.to_thread(sd.wait)
            finally:
                self._sd_playing = False
            return

        with tempfile.TemporaryDirectory(prefix="assistants-play-") as tmp:
            path = Path(tmp) / f"speech.{format}"
            path.write_bytes(audio)
            cmd = _file_player_command(path, format)
            if cmd is None:
                raise PlaybackError("No audio player found. Install ffmpeg (ffplay) or mpg123.")
            await self._run(cmd)

    async def play_stream(self, chunks: AsyncIterator[bytes], *, format: AudioFormat = "mp3") -> None:
        """Play audio while it is still arriving."""
        self._stopped = False
        cmd = _stream_player_command(format)
        if cmd is None:
            buffered = bytearray()
            async for chunk in chunks:
                if self._stopped:
                    return
                buffered.extend(chunk)
            await self._play_buffer(bytes(buffered), format)
            return

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise PlaybackError(f"Failed to start {cmd[0]}: {e}") from e
        self._process = process
        if self._stopped:
            # stop() arrived while the player was starting.
            _terminate(process)

        stdin = process.stdin
        try:
            if stdin is not None:
                async for chunk in chunks:
                    if self._stopped:
                        break
                    stdin.write(chunk)
                    await stdin.drain()
                # The player exits once its input is closed.
                stdin.close()
            await process.wait()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("[VOICE][PLAY] player closed its input early")
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
            self._process = None

    def stop(self) -> None:
        self._stopped = True
        if self._sd_playing:
            self._require_sounddevice().stop()
        process = self._process
        if process is not None:
            _terminate(process)

    async def _run(self, cmd: list[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise PlaybackError(f"Failed to start {cmd[0]}: {e}") from e
        self._process = process
        if self._stopped:
            _terminate(process)
        try:
            return_code = await process.wait()
        finally:
            self._process = None
        if return_code != 0 and not self._stopped:
            raise PlaybackError(f"{Path(cmd[0]).name} exited with code {return_code}")
