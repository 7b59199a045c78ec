"""
Main entry point for the assistants voice CLI.

    assistants-voice talk            # live conversation with the local agent
    assistants-voice listen          # record once, print the transcript
    assistants-voice say "Hello"     # speak text
    assistants-voice status          # show the resolved voice configuration
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
import threading
from dataclasses import asdict

from assistants_voice.agent import OllamaDispatcher
from assistants_voice.config import Settings, VoiceConfig, get_settings
from assistants_voice.voice.errors import VoiceError
from assistants_voice.voice.manager import VoiceManager
from assistants_voice.voice.types import RecordOptions

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser(settings: Settings | None = None) -> argparse.ArgumentParser:
    settings = settings or get_settings()

    p = argparse.ArgumentParser(prog="assistants-voice", description="Voice conversation engine")
    p.add_argument(
        "--stt-provider",
        default=settings.stt_provider,
        choices=["whisper", "elevenlabs", "local", "system"],
        help=f"Speech-to-text provider (default: STT_PROVIDER or '{settings.stt_provider}')",
    )
    p.add_argument(
        "--tts-provider",
        default=settings.tts_provider,
        choices=["elevenlabs", "openai", "system"],
        help=f"Text-to-speech provider (default: TTS_PROVIDER or '{settings.tts_provider}')",
    )
    p.add_argument("--stt-model", default=settings.stt_model, help="STT model id (default: STT_MODEL)")
    p.add_argument("--language", default=settings.stt_language, help="Language hint (default: STT_LANGUAGE)")
    p.add_argument("--voice-id", default=settings.tts_voice_id, help="TTS voice (default: TTS_VOICE_ID)")

    sub = p.add_subparsers(dest="command", required=True)

    talk = sub.add_parser("talk", help="Start a live voice conversation")
    talk.add_argument(
        "--auto-send",
        action=argparse.BooleanOptionalAction,
        default=settings.auto_send,
        help="Send after silence instead of waiting for Enter (default: AUTO_SEND or true)",
    )
    talk.add_argument(
        "--silence-threshold",
        type=float,
        default=settings.silence_threshold_s,
        help="Seconds of silence that end a turn (default: SILENCE_THRESHOLD_S or 1.5)",
    )
    talk.add_argument(
        "--model",
        default=settings.ollama_model,
        help=f"Ollama model answering each turn (default: OLLAMA_MODEL or '{settings.ollama_model}')",
    )

    listen = sub.add_parser("listen", help="Record once and print the transcript")
    listen.add_argument("--duration", type=float, default=None, help="Recording length in seconds (default: 5)")

    say = sub.add_parser("say", help="Speak the given text")
    say.add_argument("text", nargs="+")

    sub.add_parser("status", help="Print the resolved voice configuration")
    return p


def build_voice_config(args: argparse.Namespace, settings: Settings) -> VoiceConfig:
    config = settings.to_voice_config()
    config.stt.provider = args.stt_provider
    config.stt.model = args.stt_model
    config.stt.language = args.language
    config.tts.provider = args.tts_provider
    config.tts.voice_id = args.voice_id or config.tts.voice_id
    if getattr(args, "auto_send", None) is not None:
        config.auto_send = args.auto_send
    if getattr(args, "silence_threshold", None) is not None:
        config.silence_threshold_s = args.silence_threshold
    return config


class _EnterKey:
    """Turns Enter presses into either a send confirmation or an end-of-turn.

    Reads stdin on a daemon thread so a pending read never blocks shutdown.
    """

    def __init__(self, manager: VoiceManager) -> None:
        self._manager = manager
        self._loop = asyncio.get_running_loop()
        self._pending: asyncio.Future[bool] | None = None
        threading.Thread(target=self._read, name="stdin-reader", daemon=True).start()

    def _read(self) -> None:
        for line in sys.stdin:
            self._loop.call_soon_threadsafe(self._on_line, line.strip().lower())

    def _on_line(self, line: str) -> None:
        pending = self._pending
        if pending is not None and not pending.done():
            pending.set_result(line not in ("n", "no"))
            return
        self._manager.end_turn()

    async def confirm(self, transcript: str) -> bool:
        print(f"\n[Voice] Send \"{transcript}\"? [Enter=yes, n=discard] ", end="", flush=True)
        self._pending = self._loop.create_future()
        try:
            return await self._pending
        finally:
            self._pending = None


async def run_talk(manager: VoiceManager, dispatch: OllamaDispatcher) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, manager.stop_talking)
    except NotImplementedError:  # pragma: no cover
        pass

    auto_send = manager.get_auto_send()
    enter = None if auto_send else _EnterKey(manager)
    if auto_send:
        print("\n[Voice] Talk mode. Speak naturally, silence auto-sends. Ctrl+C to exit.\n", flush=True)
    else:
        print("\n[Voice] Talk mode. Speak, then press Enter to send. Ctrl+C to exit.\n", flush=True)

    def on_partial(text: str) -> None:
        print(f"\r[Voice] ... {text}", end="", flush=True)

    def on_transcript(text: str) -> None:
        print(f"\r\n[You] {text}\n", flush=True)

    def on_response(text: str) -> None:
        print(f"[Assistant] {text}\n", flush=True)

    def on_error(error: Exception) -> None:
        print(f"\n[Voice] {error} (listening again)", flush=True)

    try:
        await manager.talk(
            on_transcript=on_transcript,
            on_response=on_response,
            dispatch=dispatch,
            on_partial_transcript=on_partial,
            wait_for_confirm=enter.confirm if enter else None,
            on_error=on_error,
        )
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:  # pragma: no cover
            pass
    print("\n[Voice] Talk mode ended.")


async def run(argv: list[str] | None = None) -> int:
    settings = get_settings()
    args = build_parser(settings).parse_args(argv)
    config = build_voice_config(args, settings)

    if args.command == "status":
        print(json.dumps(asdict(config), indent=2))
        return 0

    config.enabled = True
    manager = VoiceManager(config)
    try:
        if args.command == "talk":
            await run_talk(manager, OllamaDispatcher(model=args.model, timeout=settings.ollama_timeout))
        elif args.command == "listen":
            text = await manager.listen(RecordOptions(duration_seconds=args.duration))
            print(text.strip())
        elif args.command == "say":
            await manager.speak(" ".join(args.text))
    except VoiceError as e:
        logger.debug("voice command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await manager.close()
    return 0


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        code = asyncio.run(run(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nVoice session terminated by user.")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
