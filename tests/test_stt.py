import httpx
import pytest

from assistants_voice.voice.errors import MissingCredentialError, TranscriptionError, VoiceConfigurationError
from assistants_voice.voice.streaming import CommitStrategy
from assistants_voice.voice.stt import ElevenLabsSTT, SystemSTT, WhisperSTT
from assistants_voice.voice.types import StreamingOptions, SupportsStreaming


class CapturingHandler:
    def __init__(self, status: int = 200, json_body: dict | None = None, text: str | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self._status = status
        self._json = json_body
        self._text = text

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self._text is not None:
            return httpx.Response(self._status, text=self._text)
        return httpx.Response(self._status, json=self._json or {})


def _client(handler: CapturingHandler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_whisper_posts_multipart_audio_with_bearer_auth():
    handler = CapturingHandler(json_body={"text": "hello there", "language": "en"})
    stt = WhisperSTT(api_key="sk-test", language="en", client=_client(handler))

    result = await stt.transcribe(b"RIFFfakewav")
    await stt.close()

    assert result.text == "hello there"
    assert result.language == "en"
    request = handler.requests[0]
    assert str(request.url) == "https://api.openai.com/v1/audio/transcriptions"
    assert request.headers["authorization"] == "Bearer sk-test"
    body = request.content
    assert b'filename="audio.wav"' in body
    assert b"RIFFfakewav" in body
    assert b'name="model"' in body and b"whisper-1" in body
    assert b'name="language"' in body


@pytest.mark.asyncio
async def test_elevenlabs_batch_uses_scribe_fields():
    handler = CapturingHandler(json_body={"text": "bonjour", "language_code": "fr"})
    stt = ElevenLabsSTT(api_key="xi-test", language="fr", client=_client(handler))

    result = await stt.transcribe(b"wav")

    assert result.text == "bonjour"
    assert result.language == "fr"
    request = handler.requests[0]
    assert str(request.url) == "https://api.elevenlabs.io/v1/speech-to-text"
    assert request.headers["xi-api-key"] == "xi-test"
    assert b'name="model_id"' in request.content and b"scribe_v2" in request.content
    assert b'name="language_code"' in request.content


@pytest.mark.asyncio
async def test_non_2xx_surfaces_status_and_body():
    handler = CapturingHandler(status=401, text='{"detail":"invalid key"}')
    stt = ElevenLabsSTT(api_key="xi-bad", client=_client(handler))

    with pytest.raises(TranscriptionError) as exc_info:
        await stt.transcribe(b"wav")

    err = exc_info.value
    assert err.status_code == 401
    assert "invalid key" in err.body
    assert str(err).startswith("ElevenLabs STT failed (401)")


@pytest.mark.asyncio
async def test_missing_text_field_yields_empty_transcript():
    handler = CapturingHandler(json_body={})
    stt = WhisperSTT(api_key="sk-test", client=_client(handler))

    result = await stt.transcribe(b"wav")
    assert result.text == ""


@pytest.mark.asyncio
async def test_missing_key_fails_before_any_request():
    handler = CapturingHandler(json_body={"text": "unused"})

    with pytest.raises(MissingCredentialError, match="OPENAI_API_KEY"):
        await WhisperSTT(client=_client(handler)).transcribe(b"wav")
    with pytest.raises(MissingCredentialError, match="ELEVENLABS_API_KEY"):
        await ElevenLabsSTT(client=_client(handler)).transcribe(b"wav")

    assert handler.requests == []


@pytest.mark.asyncio
async def test_key_is_read_from_settings(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
    handler = CapturingHandler(json_body={"text": "ok"})

    await WhisperSTT(client=_client(handler)).transcribe(b"wav")

    assert handler.requests[0].headers["authorization"] == "Bearer sk-from-env"


@pytest.mark.asyncio
async def test_system_stt_is_not_available():
    with pytest.raises(VoiceConfigurationError, match="System STT is not available yet"):
        await SystemSTT().transcribe(b"wav")


def test_only_elevenlabs_supports_streaming():
    assert isinstance(ElevenLabsSTT(api_key="k"), SupportsStreaming)
    assert not isinstance(WhisperSTT(api_key="k"), SupportsStreaming)
    assert not isinstance(SystemSTT(), SupportsStreaming)


def test_streaming_session_follows_auto_send():
    stt = ElevenLabsSTT(api_key="k", model="scribe_v2", language="de")

    auto = stt.create_session(StreamingOptions(auto_send=True, silence_threshold_s=1.0))
    manual = stt.create_session(StreamingOptions(auto_send=False))

    assert auto.commit_strategy is CommitStrategy.VAD
    assert manual.commit_strategy is CommitStrategy.MANUAL
    assert "vad_silence_threshold_secs=1.0" in auto.build_url()
    assert "language_code=de" in auto.build_url()


def test_streaming_session_requires_a_key():
    with pytest.raises(MissingCredentialError):
        ElevenLabsSTT().create_session()
