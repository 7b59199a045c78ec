"""Voice subsystem exceptions."""

from __future__ import annotations


class VoiceError(Exception):
    """Base class for voice subsystem errors."""


class VoiceConfigurationError(VoiceError):
    """Voice is misconfigured; retrying will not help."""


class MissingCredentialError(VoiceConfigurationError):
    def __init__(self, env_var: str, provider: str) -> None:
        super().__init__(f"Missing {env_var} for {provider}. Set it in env or .env.")
        self.env_var = env_var
        self.provider = provider


class VoiceDisabledError(VoiceConfigurationError):
    def __init__(self) -> None:
        super().__init__("Voice mode is disabled. Use /voice on to enable.")


class RecorderError(VoiceError):
    """Audio capture failed."""


class RecorderNotFoundError(RecorderError):
    def __init__(self) -> None:
        super().__init__("No supported audio recorder found. Install sox or ffmpeg.")


class RecorderBusyError(RecorderError):
    def __init__(self) -> None:
        super().__init__("Audio recorder is already running.")


class RecordingFailedError(RecorderError):
    def __init__(self, message: str = "Audio recording failed.", return_code: int | None = None) -> None:
        super().__init__(message)
        self.return_code = return_code


class TranscriptionError(VoiceError):
    """Exception raised when a speech-to-text provider rejects a request."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TranscriptionSetupError(TranscriptionError):
    """A realtime transcription session could not be opened."""


class SynthesisError(VoiceError):
    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PlaybackError(VoiceError):
    """Audio playback failed."""
