"""Chat turn orchestration against a local Ollama model."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from conversation import ContextHolder, ConversationHistory, Message
from errors import BackendCommunicationError, ChatBusyError
from ollama_client import ChatRequest, GenerationOptions, OllamaClient
from pdf_text import extract_text


DEFAULT_MODEL = os.getenv("OLLAMA_MODEL", "phi3.5:latest")
SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Answer the user's questions directly and concisely."
)

LOGGER = logging.getLogger(__name__)


def compose_prompt(user_text: str, context: Optional[str]) -> str:
    if context:
        return f"Context:\n{context}\n\nUser Question:\n{user_text}"
    return user_text


@dataclass(frozen=True)
class ChatResponse:
    response: str
    elapsed: float = 0.0
    model: str = ""


class ChatService:
    """Owns the conversation and turns user input into model replies.

    One turn at a time: ``send`` refuses to start while another call is
    still waiting on the model. ``clear_history`` also forgets any loaded
    document context.
    """

    def __init__(
        self,
        client: Optional[OllamaClient] = None,
        model: str = DEFAULT_MODEL,
        options: Optional[GenerationOptions] = None,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self.client = client if client is not None else OllamaClient()
        self.model = model
        self.options = options or GenerationOptions()
        self.system_prompt = system_prompt
        self._history = ConversationHistory()
        self._context = ContextHolder()
        self._turn_lock = threading.Lock()

    # ------------------------------------------------------------ state --
    @property
    def context(self) -> Optional[str]:
        return self._context.get()

    def set_context(self, text: str) -> None:
        self._context.set(text)

    def messages(self) -> List[Message]:
        return self._history.messages()

    def history_size(self) -> int:
        return self._history.size()

    def clear_history(self) -> None:
        self._history.clear()
        self._context.clear()

    @property
    def busy(self) -> bool:
        return self._turn_lock.locked()

    # ---------------------------------------------------------- backend --
    def is_server_running(self) -> bool:
        try:
            self.client.list_models()
        except Exception as exc:
            LOGGER.debug("Ollama health probe failed: %s", exc)
            return False
        return True

    def send(self, user_text: str, on_token: Optional[Callable[[str], None]] = None) -> ChatResponse:
        """Run one turn: store the prompt, ask the model, store the reply.

        If the model host fails the prompt stays in the history and
        ``BackendCommunicationError`` is raised; nothing is rolled back.
        """
        if not self._turn_lock.acquire(blocking=False):
            raise ChatBusyError("A reply is still pending")
        try:
            started = time.monotonic()
            prompt = compose_prompt(user_text, self._context.get())
            self._history.add_user_message(prompt)

            request = ChatRequest(
                model=self.model,
                system_prompt=self.system_prompt,
                messages=self._history.messages(),
                options=self.options,
            )
            try:
                reply = self.client.chat(request, on_token=on_token)
            except Exception as exc:
                LOGGER.warning("Chat with %s failed: %s", self.model, exc)
                raise BackendCommunicationError(
                    f"Failed to communicate with Ollama model: {self.model}", model=self.model
                ) from exc

            text = reply if reply is not None else ""
            self._history.add_assistant_message(text)
            elapsed = time.monotonic() - started
            LOGGER.info("Reply from %s in %.1fs (%d chars)", self.model, elapsed, len(text))
            return ChatResponse(response=text, elapsed=elapsed, model=self.model)
        finally:
            self._turn_lock.release()

    # -------------------------------------------------------- documents --
    def load_pdf(self, path: str, extractor: Callable[[str], str] = extract_text) -> str:
        """Replace the context with the text of ``path``.

        ``DocumentExtractionError`` propagates and leaves the old context.
        """
        text = extractor(path)
        self._context.set(text)
        LOGGER.info("Loaded %d characters of context from %s", len(text), os.path.basename(path))
        return text

    def describe(self) -> str:
        timeout = getattr(self.client, "timeout", None)
        lines = [
            "ChatService status:",
            f"  model: {self.model}",
            f"  timeout: {timeout if timeout is not None else 'n/a'} seconds",
            f"  context loaded: {self._context.is_loaded}",
            f"  history size: {self._history.size()}",
        ]
        return "\n".join(lines)
