"""Voice subsystem.

mic -> STT -> dispatch(agent) -> TTS -> speaker

``VoiceManager`` owns the conversation loop; everything else is a provider or
an audio primitive it drives.
"""

from assistants_voice.voice.errors import (
    MissingCredentialError,
    PlaybackError,
    RecorderBusyError,
    RecorderError,
    RecorderNotFoundError,
    RecordingFailedError,
    SynthesisError,
    TranscriptionError,
    TranscriptionSetupError,
    VoiceConfigurationError,
    VoiceDisabledError,
    VoiceError,
)
from assistants_voice.voice.manager import VoiceManager
from assistants_voice.voice.player import AudioPlayer
from assistants_voice.voice.recorder import AudioRecorder
from assistants_voice.voice.streaming import CommitStrategy, SessionPhase, StreamingTranscriptionSession
from assistants_voice.voice.stt import ElevenLabsSTT, LocalWhisperSTT, SystemSTT, WhisperSTT
from assistants_voice.voice.tts import ElevenLabsTTS, OpenAITTS, SystemTTS
from assistants_voice.voice.types import (
    RecordOptions,
    StreamingCallbacks,
    StreamingOptions,
    SynthesisResult,
    TranscriptionResult,
    VoiceState,
)

__all__ = [
    "AudioPlayer",
    "AudioRecorder",
    "CommitStrategy",
    "ElevenLabsSTT",
    "ElevenLabsTTS",
    "LocalWhisperSTT",
    "MissingCredentialError",
    "OpenAITTS",
    "PlaybackError",
    "RecordOptions",
    "RecorderBusyError",
    "RecorderError",
    "RecorderNotFoundError",
    "RecordingFailedError",
    "SessionPhase",
    "StreamingCallbacks",
    "StreamingOptions",
    "StreamingTranscriptionSession",
    "SynthesisError",
    "SynthesisResult",
    "SystemSTT",
    "SystemTTS",
    "TranscriptionError",
    "TranscriptionResult",
    "TranscriptionSetupError",
    "VoiceConfigurationError",
    "VoiceDisabledError",
    "VoiceError",
    "VoiceManager",
    "VoiceState",
    "WhisperSTT",
]
