"""
Application configuration using pydantic-settings.

Loads configuration from environment variables and .env files.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass
class STTConfig:
    provider: str = "whisper"  # whisper|elevenlabs|local|system
    model: str | None = None
    language: str | None = None


@dataclass
class TTSConfig:
    provider: str = "elevenlabs"  # elevenlabs|openai|system
    voice_id: str | None = None
    model: str | None = None
    stability: float | None = None
    similarity_boost: float | None = None
    speed: float | None = None
    instructions: str | None = None


@dataclass
class VoiceConfig:
    """Runtime voice configuration owned by a VoiceManager.

    Mutable on purpose: enable/disable and auto-send are toggled at runtime.
    """

    enabled: bool = False
    auto_send: bool = True
    silence_threshold_s: float = 1.5
    stt: STTConfig = field(default_factory=STTConfig)
    tts: TTSConfig = field(default_factory=TTSConfig)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Voice mode
    voice_enabled: bool = Field(
        default=False,
        description="Start with voice mode enabled",
    )
    auto_send: bool = Field(
        default=True,
        description="Send transcripts automatically after silence (VAD commit)",
    )
    silence_threshold_s: float = Field(
        default=1.5,
        description="Trailing silence in seconds before a streaming transcript is committed",
    )

    # Speech-to-text
    stt_provider: Literal["whisper", "elevenlabs", "local", "system"] = Field(
        default="whisper",
        description="Speech-to-text provider",
    )
    stt_model: str | None = Field(
        default=None,
        description="Provider model id (whisper-1, scribe_v2, or a faster-whisper size)",
    )
    stt_language: str | None = Field(
        default=None,
        description="Language hint passed to the STT provider",
    )

    # Text-to-speech
    tts_provider: Literal["elevenlabs", "openai", "system"] = Field(
        default="elevenlabs",
        description="Text-to-speech provider",
    )
    tts_voice_id: str | None = Field(default=None, description="Voice id / name")
    tts_model: str | None = Field(default=None, description="TTS model id")
    tts_speed: float | None = Field(default=None, description="Speech rate multiplier")

    # Credentials
    openai_api_key: str | None = Field(default=None, description="OpenAI API key")
    elevenlabs_api_key: str | None = Field(default=None, description="ElevenLabs API key")
    elevenlabs_voice_id: str | None = Field(
        default=None,
        description="Default ElevenLabs voice when tts_voice_id is unset",
    )

    # Agent (used by the CLI dispatch)
    ollama_model: str = Field(
        default="gpt-oss:20b",
        description="Ollama model used to answer spoken turns",
    )
    ollama_timeout: int = Field(
        default=120,
        description="Timeout in seconds for one Ollama answer",
    )

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    def to_voice_config(self) -> VoiceConfig:
        """Build the runtime VoiceConfig from settings."""
        return VoiceConfig(
            enabled=self.voice_enabled,
            auto_send=self.auto_send,
            silence_threshold_s=self.silence_threshold_s,
            stt=STTConfig(
                provider=self.stt_provider,
                model=self.stt_model,
                language=self.stt_language,
            ),
            tts=TTSConfig(
                provider=self.tts_provider,
                voice_id=self.tts_voice_id or self.elevenlabs_voice_id,
                model=self.tts_model,
                speed=self.tts_speed,
            ),
        )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
