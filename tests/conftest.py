import pytest

from assistants_voice.config import get_settings

_ENV_VARS = (
    "OPENAI_API_KEY",
    "ELEVENLABS_API_KEY",
    "ELEVENLABS_VOICE_ID",
    "STT_PROVIDER",
    "STT_MODEL",
    "STT_LANGUAGE",
    "TTS_PROVIDER",
    "TTS_VOICE_ID",
    "AUTO_SEND",
    "VOICE_ENABLED",
    "SILENCE_THRESHOLD_S",
    "OLLAMA_MODEL",
)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    # No developer .env or exported keys may leak into tests.
    monkeypatch.chdir(tmp_path)
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
