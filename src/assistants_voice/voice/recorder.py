"""Microphone capture through an external recorder process.

Supported tools, in priority order: sox, ffmpeg, arecord. Audio is always
16-bit signed little-endian PCM. File captures are WAV; streaming captures are
raw PCM on stdout.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import signal
import sys
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from uuid import uuid4

from assistants_voice.voice.errors import RecorderBusyError, RecorderNotFoundError, RecordingFailedError
from assistants_voice.voice.types import RecordOptions

logger = logging.getLogger(__name__)

DEFAULT_DURATION_S = 5.0
DEFAULT_MAX_DURATION_S = 30.0

# sox `silence` effect: start once input is above 1% for 0.1s, stop after 2.0s below 1%.
SOX_SILENCE_ARGS = ("silence", "1", "0.1", "1%", "1", "2.0", "1%")


class ExitReason(str, Enum):
    NORMAL = "normal"
    GRACEFULLY_STOPPED = "gracefully_stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class RecorderCommand:
    command: str
    args: tuple[str, ...]


@dataclass
class _RecordingHandle:
    output_path: Path
    process: asyncio.subprocess.Process | None = None
    stopped_intentionally: bool = False


def find_executable(name: str) -> str | None:
    return shutil.which(name)


def current_platform() -> str:
    return sys.platform


def _fmt(value: float | int) -> str:
    # Keep integral values free of a trailing ".0" (sox/ffmpeg accept both).
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _ffmpeg_input_args() -> tuple[str, ...] | None:
    platform = current_platform()
    if platform == "darwin":
        return ("-f", "avfoundation", "-i", ":0")
    if platform.startswith("linux"):
        return ("-f", "alsa", "-i", "default")
    if platform == "win32":
        return ("-f", "dshow", "-i", "audio=default")
    return None


def resolve_recorder(sample_rate: int, channels: int, duration: float, output: Path) -> RecorderCommand | None:
    """Pick the first installed capture tool for a fixed-duration WAV recording."""
    sox = find_executable("sox")
    if sox:
        return RecorderCommand(
            sox,
            (
                "-d",
                "-c", str(channels),
                "-r", str(sample_rate),
                "-b", "16",
                str(output),
                "trim", "0", _fmt(duration),
            ),
        )

    ffmpeg = find_executable("ffmpeg")
    input_args = _ffmpeg_input_args()
    if ffmpeg and input_args:
        return RecorderCommand(
            ffmpeg,
            (
                *input_args,
                "-y",
                "-t", _fmt(duration),
                "-ac", str(channels),
                "-ar", str(sample_rate),
                "-acodec", "pcm_s16le",
                str(output),
            ),
        )

    arecord = find_executable("arecord")
    if arecord:
        return RecorderCommand(
            arecord,
            (
                "-d", str(max(1, round(duration))),
                "-f", "S16_LE",
                "-r", str(sample_rate),
                "-c", str(channels),
                str(output),
            ),
        )

    return None


def resolve_vad_recorder(sample_rate: int, channels: int, max_duration: float, output: Path) -> RecorderCommand | None:
    """Only sox can stop on trailing silence."""
    sox = find_executable("sox")
    if not sox:
        return None
    return RecorderCommand(
        sox,
        (
            "-d",
            "-c", str(channels),
            "-r", str(sample_rate),
            "-b", "16",
            str(output),
            "trim", "0", _fmt(max_duration),
            *SOX_SILENCE_ARGS,
        ),
    )


def resolve_pcm_capture(sample_rate: int) -> RecorderCommand | None:
    """Raw mono PCM on stdout, for streaming transcription."""
    sox = find_executable("sox")
    if sox:
        return RecorderCommand(
            sox,
            (
                "-d",
                "-t", "raw",
                "-r", str(sample_rate),
                "-e", "signed-integer",
                "-b", "16",
                "-c", "1",
                "-",
            ),
        )

    ffmpeg = find_executable("ffmpeg")
    input_args = _ffmpeg_input_args()
    if ffmpeg and input_args:
        return RecorderCommand(
            ffmpeg,
            (
                *input_args,
                "-ac", "1",
                "-ar", str(sample_rate),
                "-f", "s16le",
                "-acodec", "pcm_s16le",
                "pipe:1",
            ),
        )

    return None


async def spawn_pcm_capture(sample_rate: int) -> asyncio.subprocess.Process:
    command = resolve_pcm_capture(sample_rate)
    if command is None:
        raise RecorderNotFoundError()
    return await asyncio.create_subprocess_exec(
        command.command,
        *command.args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
    )


def interrupt_process(process: asyncio.subprocess.Process) -> None:
    """Ask a capture tool to exit so it flushes buffered audio first."""
    if process.returncode is not None:
        return
    try:
        if current_platform() == "win32":
            process.terminate()
        else:
            process.send_signal(signal.SIGINT)
    except ProcessLookupError:
        pass


def classify_exit(return_code: int | None, stopped_intentionally: bool) -> ExitReason:
    # sox/ffmpeg often exit non-zero after SIGINT even though the file is valid.
    if stopped_intentionally:
        return ExitReason.GRACEFULLY_STOPPED
    if return_code == 0:
        return ExitReason.NORMAL
    return ExitReason.FAILED


class AudioRecorder:
    """Owns at most one capture process at a time."""

    def __init__(self) -> None:
        self._handle: _RecordingHandle | None = None

    @property
    def is_recording(self) -> bool:
        return self._handle is not None

    async def record(self, options: RecordOptions | None = None) -> bytes:
        """Record a fixed duration and return the WAV bytes."""
        options = options or RecordOptions()
        self._ensure_idle()

        duration = options.duration_seconds if options.duration_seconds is not None else DEFAULT_DURATION_S
        output = self._make_output_path()
        command = resolve_recorder(options.sample_rate, options.channels, duration, output)
        if command is None:
            raise RecorderNotFoundError()

        return await self._capture(command, _RecordingHandle(output_path=output))

    async def record_until_silence(self, options: RecordOptions | None = None) -> bytes:
        """Record until trailing silence, capped at ``duration_seconds`` (default 30s).

        Falls back to a short fixed-duration ``record`` when no installed tool
        supports silence detection.
        """
        options = options or RecordOptions()
        self._ensure_idle()

        max_duration = options.duration_seconds if options.duration_seconds is not None else DEFAULT_MAX_DURATION_S
        output = self._make_output_path()
        command = resolve_vad_recorder(options.sample_rate, options.channels, max_duration, output)
        if command is None:
            logger.debug("[VOICE][REC] no VAD-capable recorder; using fixed-duration capture")
            return await self.record(
                RecordOptions(
                    duration_seconds=options.duration_seconds or DEFAULT_DURATION_S,
                    sample_rate=options.sample_rate,
                    channels=options.channels,
                )
            )

        return await self._capture(command, _RecordingHandle(output_path=output))

    def stop(self) -> None:
        handle = self._handle
        if handle is None:
            return
        handle.stopped_intentionally = True
        if handle.process is not None:
            interrupt_process(handle.process)

    def _ensure_idle(self) -> None:
        if self._handle is not None:
            raise RecorderBusyError()

    @staticmethod
    def _make_output_path() -> Path:
        return Path(tempfile.gettempdir()) / f"assistants-record-{uuid4().hex}.wav"

    async def _capture(self, command: RecorderCommand, handle: _RecordingHandle) -> bytes:
        # Claim the slot before the first await so a concurrent call sees it.
        self._handle = handle
        try:
            try:
                process = await asyncio.create_subprocess_exec(
                    command.command,
                    *command.args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
            except OSError as e:
                raise RecordingFailedError(f"Audio recording failed to start: {e}") from e

            handle.process = process
            if handle.stopped_intentionally:
                interrupt_process(process)

            logger.debug("[VOICE][REC] started %s pid=%s", Path(command.command).name, process.pid)
            return_code = await process.wait()
            reason = classify_exit(return_code, handle.stopped_intentionally)
            logger.debug("[VOICE][REC] exited code=%s reason=%s", return_code, reason.value)

            if reason is ExitReason.FAILED:
                raise RecordingFailedError(return_code=return_code)

            if not handle.output_path.exists():
                return b""
            return handle.output_path.read_bytes()
        finally:
            self._handle = None
            handle.output_path.unlink(missing_ok=True)
