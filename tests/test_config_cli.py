import asyncio
import json
import subprocess

import pytest

from assistants_voice import agent as agent_mod
from assistants_voice.agent import OllamaDispatcher, OllamaError
from assistants_voice.config import get_settings
from assistants_voice.main import build_parser, build_voice_config, run
from assistants_voice.voice import player as player_mod


def test_settings_are_read_from_environment(monkeypatch):
    monkeypatch.setenv("STT_PROVIDER", "elevenlabs")
    monkeypatch.setenv("TTS_PROVIDER", "openai")
    monkeypatch.setenv("AUTO_SEND", "false")
    monkeypatch.setenv("SILENCE_THRESHOLD_S", "2.5")
    monkeypatch.setenv("ELEVENLABS_VOICE_ID", "voice-from-env")

    config = get_settings().to_voice_config()

    assert config.stt.provider == "elevenlabs"
    assert config.tts.provider == "openai"
    assert config.auto_send is False
    assert config.silence_threshold_s == 2.5
    assert config.tts.voice_id == "voice-from-env"
    assert config.enabled is False


def test_settings_are_read_from_dotenv(tmp_path):
    (tmp_path / ".env").write_text("STT_PROVIDER=local\nSTT_MODEL=base\n", encoding="utf-8")

    settings = get_settings()

    assert settings.stt_provider == "local"
    assert settings.stt_model == "base"


def test_cli_defaults_follow_settings(monkeypatch):
    monkeypatch.setenv("STT_PROVIDER", "elevenlabs")
    monkeypatch.setenv("AUTO_SEND", "false")
    monkeypatch.setenv("OLLAMA_MODEL", "llama3.2")
    settings = get_settings()

    args = build_parser(settings).parse_args(["talk"])

    assert args.command == "talk"
    assert args.stt_provider == "elevenlabs"
    assert args.auto_send is False
    assert args.model == "llama3.2"


def test_cli_flags_override_settings():
    settings = get_settings()
    args = build_parser(settings).parse_args(
        ["--stt-provider", "local", "--language", "de", "talk", "--auto-send", "--silence-threshold", "0.7"]
    )

    config = build_voice_config(args, settings)

    assert config.stt.provider == "local"
    assert config.stt.language == "de"
    assert config.auto_send is True
    assert config.silence_threshold_s == 0.7


def test_cli_rejects_unknown_provider():
    with pytest.raises(SystemExit):
        build_parser(get_settings()).parse_args(["--stt-provider", "nope", "status"])


def test_status_prints_resolved_config(capsys):
    code = asyncio.run(run(["--tts-provider", "system", "status"]))

    assert code == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["tts"]["provider"] == "system"
    assert printed["stt"]["provider"] == "whisper"


def test_say_reports_missing_credentials(monkeypatch, capsys):
    monkeypatch.setattr(player_mod, "_stream_player_command", lambda fmt: None)

    code = asyncio.run(run(["--tts-provider", "openai", "say", "hello"]))

    assert code == 1
    assert "Missing OPENAI_API_KEY for OpenAI TTS" in capsys.readouterr().err


class FakeOllama:
    def __init__(self, outputs: list, returncode: int = 0) -> None:
        self.outputs = list(outputs)
        self.returncode = returncode
        self.prompts: list[str] = []
        self.commands: list[list[str]] = []

    def __call__(self, cmd, input, capture_output, text, timeout):
        self.commands.append(cmd)
        self.prompts.append(input)
        output = self.outputs.pop(0)
        if isinstance(output, BaseException):
            raise output
        return subprocess.CompletedProcess(cmd, self.returncode, stdout=output, stderr="model not found")


def test_dispatcher_replays_history(monkeypatch):
    fake = FakeOllama(["Hi there!\n", "It is noon."])
    monkeypatch.setattr(agent_mod.subprocess, "run", fake)
    dispatch = OllamaDispatcher(model="tiny", timeout=5)

    assert asyncio.run(dispatch("hello")) == "Hi there!"
    assert asyncio.run(dispatch("what time is it")) == "It is noon."

    assert fake.commands[0] == ["ollama", "run", "tiny"]
    second = fake.prompts[1]
    assert "[USER]\nhello" in second
    assert "[ASSISTANT]\nHi there!" in second
    assert second.rstrip().endswith("[ASSISTANT]")
    assert [m.role for m in dispatch.history] == ["user", "assistant", "user", "assistant"]


def test_dispatcher_errors(monkeypatch):
    monkeypatch.setattr(agent_mod.subprocess, "run", FakeOllama([""], returncode=1))
    with pytest.raises(OllamaError) as exc_info:
        asyncio.run(OllamaDispatcher(model="tiny")("hi"))
    assert exc_info.value.return_code == 1

    monkeypatch.setattr(agent_mod.subprocess, "run", FakeOllama([FileNotFoundError()]))
    with pytest.raises(OllamaError, match="Ollama CLI not found"):
        asyncio.run(OllamaDispatcher(model="tiny")("hi"))

    monkeypatch.setattr(agent_mod.subprocess, "run", FakeOllama([subprocess.TimeoutExpired("ollama", 5)]))
    with pytest.raises(OllamaError, match="timed out"):
        asyncio.run(OllamaDispatcher(model="tiny", timeout=5)("hi"))
