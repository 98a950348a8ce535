"""Conversation state: role-tagged messages and the stuffed document context."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def backend_role(role: Union[Role, str]) -> str:
    """Map a stored role onto the two chat roles the model host replays.

    Only the user role survives as ``"user"``; anything else (including roles
    the store never produces) is sent as ``"assistant"``.
    """
    value = role.value if isinstance(role, Role) else str(role or "")
    return Role.USER.value if value.strip().lower() == Role.USER.value else Role.ASSISTANT.value


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))
        if self.content is None:
            raise TypeError("message content must be a string, not None")

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content}


class ConversationHistory:
    """Append-only log of the turns exchanged with the model.

    Not thread-safe; the owner serialises writers.
    """

    def __init__(self) -> None:
        self._messages: List[Message] = []

    def add_user_message(self, content: str) -> None:
        self._messages.append(Message(Role.USER, content))

    def add_assistant_message(self, content: str) -> None:
        self._messages.append(Message(Role.ASSISTANT, content))

    def messages(self) -> List[Message]:
        return list(self._messages)

    def clear(self) -> None:
        self._messages.clear()

    def size(self) -> int:
        return len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __repr__(self) -> str:
        return f"ConversationHistory(size={len(self._messages)})"


class ContextHolder:
    """Holds the document text that gets prepended to outgoing prompts.

    ``None`` means nothing was loaded (or it was cleared); an empty string
    means a blank document was explicitly set. Neither is injected.
    """

    def __init__(self) -> None:
        self._text: Optional[str] = None

    def set(self, text: str) -> None:
        self._text = text

    def get(self) -> Optional[str]:
        return self._text

    def clear(self) -> None:
        self._text = None

    @property
    def is_loaded(self) -> bool:
        return bool(self._text)
