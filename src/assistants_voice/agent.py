"""
Agent dispatch for spoken turns.

Answers each transcript with a local Ollama model through the `ollama run`
CLI. The conversation so far is replayed in the prompt so follow-up questions
keep their context.
"""

import asyncio
import logging
import subprocess

from pydantic import BaseModel, Field

from assistants_voice.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_MODEL = "gpt-oss:20b"

VOICE_SYSTEM_PROMPT = (
    "You are a helpful assistant in a spoken conversation. Your replies are read aloud, "
    "so answer in a few short plain sentences. Do not use markdown, lists, tables or code "
    "unless the user explicitly asks for them."
)


class Message(BaseModel):
    """A message in a conversation."""

    role: str = Field(..., description="Role of the speaker (system, user, assistant)")
    content: str = Field(..., description="Message content")


class OllamaError(Exception):
    """Exception raised when Ollama CLI fails."""

    def __init__(self, message: str, return_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.return_code = return_code
        self.stderr = stderr


class OllamaDispatcher:
    """
    Callable ``dispatch(text) -> response`` backed by a local Ollama model.

    Keeps the running conversation; ``max_history`` bounds how many past
    messages are replayed into each prompt.
    """

    def __init__(
        self,
        model: str | None = None,
        timeout: int | None = None,
        system_prompt: str = VOICE_SYSTEM_PROMPT,
        max_history: int = 20,
    ) -> None:
        settings = get_settings()
        self._model = model or settings.ollama_model or DEFAULT_OLLAMA_MODEL
        self._timeout = timeout or settings.ollama_timeout
        self._system_prompt = system_prompt
        self._max_history = max_history
        self._history: list[Message] = []

        logger.info(f"Initialized Ollama dispatcher with model: {self._model}")

    @property
    def model(self) -> str:
        return self._model

    @property
    def history(self) -> list[Message]:
        return list(self._history)

    def reset(self) -> None:
        self._history.clear()

    def build_prompt(self, text: str) -> str:
        """Render system prompt, recent history and the new user turn as one prompt."""
        messages = [Message(role="system", content=self._system_prompt)]
        messages.extend(self._history[-self._max_history :])
        messages.append(Message(role="user", content=text))

        parts: list[str] = []
        for msg in messages:
            parts.append(f"[{msg.role.upper()}]\n{msg.content.strip()}\n")
        # Final marker: the model answers as the assistant.
        parts.append("[ASSISTANT]\n")
        return "\n".join(parts)

    def _run_ollama_sync(self, prompt: str) -> str:
        cmd = ["ollama", "run", self._model]
        logger.debug(f"Running Ollama: {' '.join(cmd)}")
        try:
            process = subprocess.run(
                cmd,
                input=prompt,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise OllamaError(f"Ollama timed out after {self._timeout} seconds") from e
        except FileNotFoundError as e:
            raise OllamaError("Ollama CLI not found. Please install Ollama: https://ollama.ai") from e

        if process.returncode != 0:
            raise OllamaError(
                f"Ollama exited with code {process.returncode}",
                return_code=process.returncode,
                stderr=process.stderr,
            )
        return process.stdout.strip()

    async def __call__(self, text: str) -> str:
        prompt = self.build_prompt(text)
        response = await asyncio.to_thread(self._run_ollama_sync, prompt)
        logger.debug(f"Ollama response length: {len(response)} chars")

        self._history.append(Message(role="user", content=text))
        self._history.append(Message(role="assistant", content=response))
        return response
