"""
Voice tools.

Tool definitions and executors that let an assistant control voice mode:
enable/disable it, speak, listen, stop activity and start a live talk session.
Every executor returns a JSON string; failures are reported in the payload
rather than raised, so the calling agent can read and relay them.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any, Protocol

from pydantic import BaseModel, Field

from assistants_voice.voice.errors import VoiceError
from assistants_voice.voice.manager import VoiceManager
from assistants_voice.voice.types import RecordOptions

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "Voice support is not available in this environment"

ToolExecutor = Callable[[dict[str, Any]], Awaitable[str]]


class ToolDefinition(BaseModel):
    """A tool as advertised to the model."""

    name: str = Field(..., description="Tool name")
    description: str = Field(..., description="What the tool does")
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON schema of the tool input",
    )


class ToolRegistry(Protocol):
    def register(self, tool: ToolDefinition, executor: ToolExecutor) -> None: ...


@dataclass
class VoiceToolContext:
    get_voice_manager: Callable[[], VoiceManager | None]
    # Both are needed for voice_talk: answer one spoken turn, and render events.
    process_for_talk: Callable[[str], Awaitable[str]] | None = None
    emit: Callable[[dict[str, Any]], None] | None = None


voice_enable_tool = ToolDefinition(
    name="voice_enable",
    description="Enable voice mode for text-to-speech output and speech-to-text input.",
)

voice_disable_tool = ToolDefinition(
    name="voice_disable",
    description="Disable voice mode. Stops any active speaking or listening.",
)

voice_status_tool = ToolDefinition(
    name="voice_status",
    description=(
        "Get the current voice mode status including enabled state, "
        "speaking/listening activity, and configured providers."
    ),
)

voice_say_tool = ToolDefinition(
    name="voice_say",
    description="Speak text aloud using text-to-speech. Voice mode must be enabled.",
    parameters={
        "type": "object",
        "properties": {"text": {"type": "string", "description": "The text to speak aloud"}},
        "required": ["text"],
    },
)

voice_listen_tool = ToolDefinition(
    name="voice_listen",
    description=(
        "Listen for speech and transcribe it to text. Voice mode must be enabled. "
        "Returns the transcribed text."
    ),
    parameters={
        "type": "object",
        "properties": {
            "duration_seconds": {
                "type": "number",
                "description": "Maximum recording duration in seconds (optional)",
            }
        },
    },
)

voice_stop_tool = ToolDefinition(
    name="voice_stop",
    description="Stop any active speaking, listening, or talk mode.",
    parameters={
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": ["speaking", "listening", "talking", "all"],
                "description": "What to stop (default: all)",
            }
        },
    },
)

voice_talk_tool = ToolDefinition(
    name="voice_talk",
    description=(
        "Start live voice conversation mode. The user speaks naturally and the assistant "
        "answers by voice, using streaming transcription with silence detection when the "
        "provider supports it. Call this when the user wants a voice conversation."
    ),
    parameters={
        "type": "object",
        "properties": {
            "auto_send": {
                "type": "boolean",
                "description": (
                    "Send automatically after silence (default: true). "
                    "Set to false to require user confirmation."
                ),
            }
        },
    },
)

voice_tools: list[ToolDefinition] = [
    voice_enable_tool,
    voice_disable_tool,
    voice_status_tool,
    voice_say_tool,
    voice_listen_tool,
    voice_stop_tool,
    voice_talk_tool,
]


def _state_payload(manager: VoiceManager) -> dict[str, Any]:
    return asdict(manager.get_state())


def create_voice_tool_executors(context: VoiceToolContext) -> dict[str, ToolExecutor]:
    """Build the executor for every tool in ``voice_tools``, keyed by tool name."""

    async def voice_enable(_: dict[str, Any]) -> str:
        manager = context.get_voice_manager()
        if manager is None:
            return json.dumps(
                {
                    "error": NOT_AVAILABLE,
                    "suggestion": "Voice features require a runtime with audio capabilities",
                }
            )
        manager.enable()
        return json.dumps({"success": True, "message": "Voice mode enabled", "state": _state_payload(manager)})

    async def voice_disable(_: dict[str, Any]) -> str:
        manager = context.get_voice_manager()
        if manager is None:
            return json.dumps({"error": NOT_AVAILABLE})
        manager.disable()
        return json.dumps({"success": True, "message": "Voice mode disabled", "state": _state_payload(manager)})

    async def voice_status(_: dict[str, Any]) -> str:
        manager = context.get_voice_manager()
        if manager is None:
            return json.dumps({"available": False, "error": NOT_AVAILABLE})
        state = manager.get_state()
        return json.dumps(
            {
                "available": True,
                "enabled": state.enabled,
                "is_speaking": state.is_speaking,
                "is_listening": state.is_listening,
                "is_talking": state.is_talking,
                "providers": {
                    "stt": state.stt_provider or "unknown",
                    "tts": state.tts_provider or "unknown",
                },
            },
            indent=2,
        )

    async def voice_say(args: dict[str, Any]) -> str:
        manager = context.get_voice_manager()
        if manager is None:
            return json.dumps({"error": NOT_AVAILABLE})

        text = args.get("text")
        if not text or not isinstance(text, str):
            return json.dumps(
                {
                    "error": "Missing required parameter: text",
                    "suggestion": 'Provide text to speak: voice_say({"text": "Hello!"})',
                }
            )

        try:
            await manager.speak(text)
        except VoiceError as e:
            logger.info(f"[VOICE][TOOL] voice_say failed: {e}")
            return json.dumps(
                {
                    "error": str(e),
                    "suggestion": (
                        "Check audio output device"
                        if manager.is_enabled()
                        else "Enable voice mode first with voice_enable"
                    ),
                }
            )
        return json.dumps({"success": True, "message": "Text spoken successfully", "text_length": len(text)})

    async def voice_listen(args: dict[str, Any]) -> str:
        manager = context.get_voice_manager()
        if manager is None:
            return json.dumps({"error": NOT_AVAILABLE})

        duration = args.get("duration_seconds")
        if isinstance(duration, bool) or not isinstance(duration, (int, float)):
            duration = None

        try:
            text = await manager.listen(RecordOptions(duration_seconds=duration))
        except VoiceError as e:
            logger.info(f"[VOICE][TOOL] voice_listen failed: {e}")
            return json.dumps(
                {
                    "error": str(e),
                    "suggestion": (
                        "Check microphone permissions and audio input device"
                        if manager.is_enabled()
                        else "Enable voice mode first with voice_enable"
                    ),
                }
            )
        text = text.strip()
        return json.dumps({"success": True, "text": text, "empty": not text})

    async def voice_stop(args: dict[str, Any]) -> str:
        manager = context.get_voice_manager()
        if manager is None:
            return json.dumps({"error": NOT_AVAILABLE})

        action = args.get("action") or "all"
        stopped: list[str] = []
        if action in ("talking", "all"):
            manager.stop_talking()
            stopped.append("talking")
        if action in ("speaking", "all"):
            manager.stop_speaking()
            stopped.append("speaking")
        if action in ("listening", "all"):
            manager.stop_listening()
            stopped.append("listening")

        return json.dumps({"success": True, "stopped": stopped, "state": _state_payload(manager)})

    async def voice_talk(args: dict[str, Any]) -> str:
        manager = context.get_voice_manager()
        if manager is None:
            return json.dumps(
                {
                    "error": NOT_AVAILABLE,
                    "suggestion": "Voice features require a runtime with audio capabilities",
                }
            )

        process_for_talk = context.process_for_talk
        emit = context.emit
        if process_for_talk is None or emit is None:
            return json.dumps(
                {
                    "error": "Talk mode is not available in this context",
                    "suggestion": "Use the talk command from the terminal",
                }
            )

        auto_send = args.get("auto_send") is not False
        manager.set_auto_send(auto_send)

        send_mode = "Speak naturally, silence auto-sends." if auto_send else "Speak, then press Enter to send."
        emit(
            {
                "type": "text",
                "content": f"\n## Talk Mode\n\nLive conversation started. {send_mode}\nPress Ctrl+C to exit.\n\n",
            }
        )

        def on_partial(text: str) -> None:
            emit({"type": "partial_transcript", "content": text})

        def on_transcript(text: str) -> None:
            emit({"type": "partial_transcript", "content": ""})
            emit({"type": "text", "content": f"**You:** {text}\n\n"})

        def on_response(_: str) -> None:
            # process_for_talk already renders the response.
            pass

        try:
            await manager.talk(
                on_transcript=on_transcript,
                on_response=on_response,
                dispatch=process_for_talk,
                on_partial_transcript=on_partial,
            )
        except VoiceError as e:
            logger.warning(f"[VOICE][TOOL] voice_talk ended with error: {e}")
            return json.dumps({"error": str(e)})

        return json.dumps({"success": True, "message": "Talk mode ended", "state": _state_payload(manager)})

    return {
        "voice_enable": voice_enable,
        "voice_disable": voice_disable,
        "voice_status": voice_status,
        "voice_say": voice_say,
        "voice_listen": voice_listen,
        "voice_stop": voice_stop,
        "voice_talk": voice_talk,
    }


def register_voice_tools(registry: ToolRegistry, context: VoiceToolContext) -> None:
    executors = create_voice_tool_executors(context)
    for tool in voice_tools:
        registry.register(tool, executors[tool.name])
