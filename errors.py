"""Errors raised by the chat core.

The UI shells catch these and nothing else: every failure coming out of the
model host, the ``ollama`` process or the PDF reader is converted into one of
the classes below before it leaves ``chat_service`` / ``server_manager`` /
``pdf_text``.
"""

from __future__ import annotations

from typing import Optional


class ChatError(Exception):
    """Base class for user-facing failures."""


class ServerStartupError(ChatError):
    """The Ollama server could not be spawned or never became healthy."""


class BackendCommunicationError(ChatError):
    """A chat round-trip with the model host failed."""

    def __init__(self, message: str, model: Optional[str] = None) -> None:
        super().__init__(message)
        self.model = model


class DocumentExtractionError(ChatError):
    """A PDF could not be opened or its text layer could not be read."""


class ChatBusyError(ChatError):
    """A reply is still pending; only one turn may be in flight."""
