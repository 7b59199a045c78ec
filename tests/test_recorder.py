import asyncio
import signal
from pathlib import Path

import pytest

from assistants_voice.voice import recorder as recorder_mod
from assistants_voice.voice.errors import RecorderBusyError, RecorderNotFoundError, RecordingFailedError
from assistants_voice.voice.recorder import (
    SOX_SILENCE_ARGS,
    AudioRecorder,
    ExitReason,
    classify_exit,
    resolve_pcm_capture,
    resolve_recorder,
)
from assistants_voice.voice.types import RecordOptions


class FakeProcess:
    """Stands in for a recorder process; writes its output file on exit."""

    def __init__(self, output: Path | None, *, data: bytes = b"", partial: bytes = b"", exit_code: int = 0) -> None:
        self.pid = 4242
        self.returncode: int | None = None
        self.signals: list[int] = []
        self._output = output
        self._data = data
        self._partial = partial
        self._exit_code = exit_code
        self._exited = asyncio.Event()

    def finish(self, code: int | None = None, data: bytes | None = None) -> None:
        payload = self._data if data is None else data
        if self._output is not None and payload:
            self._output.write_bytes(payload)
        self.returncode = self._exit_code if code is None else code
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def send_signal(self, sig: int) -> None:
        self.signals.append(sig)
        # sox exits non-zero after SIGINT but keeps what it captured.
        self.finish(code=2, data=self._partial)

    def terminate(self) -> None:
        self.send_signal(signal.SIGTERM)


class FakeSpawner:
    def __init__(self, **process_kwargs) -> None:
        self.calls: list[tuple[str, tuple[str, ...]]] = []
        self.processes: list[FakeProcess] = []
        self._kwargs = process_kwargs
        self.auto_finish = True
        self.delay_spawn = False

    async def __call__(self, program, *args, stdin=None, stdout=None, stderr=None):
        if self.delay_spawn:
            await asyncio.sleep(0)
        self.calls.append((program, args))
        output = next((Path(a) for a in args if a.endswith(".wav")), None)
        process = FakeProcess(output, **self._kwargs)
        self.processes.append(process)
        if self.auto_finish:
            asyncio.get_running_loop().call_soon(process.finish)
        return process


def _tools(monkeypatch, *available: str, platform: str = "linux") -> None:
    monkeypatch.setattr(
        recorder_mod,
        "find_executable",
        lambda name: f"/usr/bin/{name}" if name in available else None,
    )
    monkeypatch.setattr(recorder_mod, "current_platform", lambda: platform)


def _spawner(monkeypatch, **process_kwargs) -> FakeSpawner:
    spawner = FakeSpawner(**process_kwargs)
    monkeypatch.setattr(recorder_mod.asyncio, "create_subprocess_exec", spawner)
    return spawner


def test_resolve_prefers_sox(monkeypatch, tmp_path):
    _tools(monkeypatch, "sox", "ffmpeg", "arecord")
    cmd = resolve_recorder(16000, 1, 5.0, tmp_path / "out.wav")
    assert cmd is not None
    assert cmd.command == "/usr/bin/sox"
    assert cmd.args == ("-d", "-c", "1", "-r", "16000", "-b", "16", str(tmp_path / "out.wav"), "trim", "0", "5")


@pytest.mark.parametrize(
    "platform,expected",
    [
        ("darwin", ("-f", "avfoundation", "-i", ":0")),
        ("linux", ("-f", "alsa", "-i", "default")),
        ("win32", ("-f", "dshow", "-i", "audio=default")),
    ],
)
def test_resolve_ffmpeg_input_per_platform(monkeypatch, tmp_path, platform, expected):
    _tools(monkeypatch, "ffmpeg", platform=platform)
    cmd = resolve_recorder(16000, 1, 2.5, tmp_path / "out.wav")
    assert cmd is not None
    assert cmd.args[:4] == expected
    assert "-t" in cmd.args and cmd.args[cmd.args.index("-t") + 1] == "2.5"
    assert "pcm_s16le" in cmd.args


def test_resolve_arecord_last(monkeypatch, tmp_path):
    _tools(monkeypatch, "arecord")
    cmd = resolve_recorder(16000, 1, 5.0, tmp_path / "out.wav")
    assert cmd is not None
    assert cmd.command == "/usr/bin/arecord"
    assert "S16_LE" in cmd.args


def test_resolve_pcm_capture_writes_raw_to_stdout(monkeypatch):
    _tools(monkeypatch, "sox")
    cmd = resolve_pcm_capture(16000)
    assert cmd is not None
    assert cmd.args[-1] == "-"
    assert ("-t", "raw") == cmd.args[1:3]


def test_classify_exit_trusts_the_intentional_stop_flag():
    assert classify_exit(0, False) is ExitReason.NORMAL
    assert classify_exit(1, False) is ExitReason.FAILED
    assert classify_exit(255, True) is ExitReason.GRACEFULLY_STOPPED


@pytest.mark.asyncio
async def test_record_returns_file_bytes_and_cleans_up(monkeypatch):
    _tools(monkeypatch, "sox")
    spawner = _spawner(monkeypatch, data=b"RIFF....WAVE")

    audio = await AudioRecorder().record(RecordOptions(duration_seconds=5))

    assert audio == b"RIFF....WAVE"
    program, args = spawner.calls[0]
    assert program == "/usr/bin/sox"
    assert args[-3:] == ("trim", "0", "5")
    output = next(Path(a) for a in args if a.endswith(".wav"))
    assert output.name.startswith("assistants-record-")
    assert not output.exists()


@pytest.mark.asyncio
async def test_record_without_any_tool_fails_fast(monkeypatch):
    _tools(monkeypatch)
    with pytest.raises(RecorderNotFoundError, match="Install sox or ffmpeg"):
        await AudioRecorder().record()


@pytest.mark.asyncio
async def test_nonzero_exit_without_stop_is_a_failure(monkeypatch):
    _tools(monkeypatch, "sox")
    spawner = _spawner(monkeypatch, data=b"junk", exit_code=1)
    recorder = AudioRecorder()

    with pytest.raises(RecordingFailedError, match="Audio recording failed."):
        await recorder.record()

    assert recorder.is_recording is False
    output = next(Path(a) for a in spawner.calls[0][1] if a.endswith(".wav"))
    assert not output.exists()


@pytest.mark.asyncio
async def test_second_record_while_active_is_rejected(monkeypatch):
    _tools(monkeypatch, "sox")
    spawner = _spawner(monkeypatch, data=b"first")
    spawner.auto_finish = False
    recorder = AudioRecorder()

    first = asyncio.create_task(recorder.record())
    await asyncio.sleep(0)

    with pytest.raises(RecorderBusyError, match="Audio recorder is already running."):
        await recorder.record()
    with pytest.raises(RecorderBusyError):
        await recorder.record_until_silence()

    while not spawner.processes:
        await asyncio.sleep(0)
    spawner.processes[0].finish()

    assert await first == b"first"
    assert len(spawner.calls) == 1
    assert recorder.is_recording is False


@pytest.mark.asyncio
async def test_stop_mid_capture_returns_partial_audio(monkeypatch):
    _tools(monkeypatch, "sox")
    spawner = _spawner(monkeypatch, partial=b"partial")
    spawner.auto_finish = False
    recorder = AudioRecorder()

    task = asyncio.create_task(recorder.record(RecordOptions(duration_seconds=30)))
    while not spawner.processes:
        await asyncio.sleep(0)
    recorder.stop()

    assert await task == b"partial"
    assert spawner.processes[0].signals == [signal.SIGINT]


@pytest.mark.asyncio
async def test_stop_with_nothing_flushed_returns_empty(monkeypatch):
    _tools(monkeypatch, "sox")
    spawner = _spawner(monkeypatch)
    spawner.auto_finish = False
    recorder = AudioRecorder()

    task = asyncio.create_task(recorder.record())
    while not spawner.processes:
        await asyncio.sleep(0)
    recorder.stop()
    recorder.stop()

    assert await task == b""


@pytest.mark.asyncio
async def test_stop_before_spawn_completes_interrupts_the_new_process(monkeypatch):
    _tools(monkeypatch, "sox")
    spawner = _spawner(monkeypatch, partial=b"x")
    spawner.auto_finish = False
    spawner.delay_spawn = True
    recorder = AudioRecorder()

    task = asyncio.create_task(recorder.record())
    await asyncio.sleep(0)
    assert recorder.is_recording
    assert not spawner.processes
    recorder.stop()

    assert await task == b"x"
    assert spawner.processes[0].signals == [signal.SIGINT]


def test_stop_when_idle_is_a_noop():
    recorder = AudioRecorder()
    recorder.stop()
    assert recorder.is_recording is False


@pytest.mark.asyncio
async def test_record_until_silence_uses_sox_silence_effect(monkeypatch):
    _tools(monkeypatch, "sox", "ffmpeg")
    spawner = _spawner(monkeypatch, data=b"speech")

    audio = await AudioRecorder().record_until_silence()

    assert audio == b"speech"
    args = spawner.calls[0][1]
    assert args[-len(SOX_SILENCE_ARGS):] == SOX_SILENCE_ARGS
    assert ("trim", "0", "30") == args[-len(SOX_SILENCE_ARGS) - 3 : -len(SOX_SILENCE_ARGS)]


@pytest.mark.asyncio
async def test_record_until_silence_falls_back_to_fixed_duration(monkeypatch):
    _tools(monkeypatch, "ffmpeg")
    spawner = _spawner(monkeypatch, data=b"clip")

    audio = await AudioRecorder().record_until_silence()

    assert audio == b"clip"
    program, args = spawner.calls[0]
    assert program == "/usr/bin/ffmpeg"
    assert args[args.index("-t") + 1] == "5"
