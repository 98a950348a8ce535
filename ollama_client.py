"""HTTP client for the local Ollama host.

Only the two endpoints the desktop client needs are wrapped: ``/api/tags``
(used as the health probe) and ``/api/chat``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import orjson

from conversation import Message, Role, backend_role


OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")
OLLAMA_TIMEOUT = float(os.getenv("OLLAMA_TIMEOUT", "120"))
HEALTH_TIMEOUT = 3.0

LOGGER = logging.getLogger(__name__)


class MalformedReplyError(ValueError):
    """The model host answered with something that is not a chat reply."""


@dataclass(frozen=True)
class GenerationOptions:
    num_ctx: int = 16384
    num_batch: int = 2048
    temperature: float = 0.3
    top_k: int = 40
    top_p: float = 0.9
    repeat_penalty: float = 1.1
    num_predict: int = 512
    num_keep: int = 16384
    stop: Tuple[str, ...] = ("User:", "System:", "Assistant:", "-----")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "num_ctx": self.num_ctx,
            "num_batch": self.num_batch,
            "temperature": self.temperature,
            "top_k": self.top_k,
            "top_p": self.top_p,
            "repeat_penalty": self.repeat_penalty,
            "num_predict": self.num_predict,
            "num_keep": self.num_keep,
            "stop": list(self.stop),
        }


@dataclass
class ChatRequest:
    model: str
    system_prompt: str
    messages: Sequence[Message] = field(default_factory=list)
    options: GenerationOptions = field(default_factory=GenerationOptions)
    think: bool = False

    def wire_messages(self) -> List[Dict[str, str]]:
        out = [{"role": Role.SYSTEM.value, "content": self.system_prompt}]
        for msg in self.messages:
            out.append({"role": backend_role(msg.role), "content": msg.content})
        return out

    def to_payload(self, stream: bool = False) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": self.wire_messages(),
            "options": self.options.to_dict(),
            "think": self.think,
            "stream": stream,
        }


def _error_detail(status_code: int, raw: bytes) -> str:
    text = raw.decode("utf-8", "ignore").strip()
    if not text:
        return f"HTTP {status_code} from model host"
    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError:
        return f"HTTP {status_code}: {text}"
    if isinstance(data, dict):
        detail = data.get("error") or data.get("message") or data.get("detail")
        if detail:
            return f"HTTP {status_code}: {detail}"
    return f"HTTP {status_code}: {text}"


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.status_code >= 400:
        LOGGER.warning("Ollama request failed: %s", _error_detail(resp.status_code, resp.content))
    resp.raise_for_status()


def _message_content(data: Any) -> str:
    if not isinstance(data, dict):
        raise MalformedReplyError(f"expected a JSON object, got {type(data).__name__}")
    if data.get("error"):
        raise MalformedReplyError(str(data["error"]))
    message = data.get("message")
    if message is None:
        return ""
    if not isinstance(message, dict):
        raise MalformedReplyError("reply 'message' is not an object")
    return str(message.get("content") or "")


class OllamaClient:
    def __init__(
        self,
        host: str = OLLAMA_HOST,
        timeout: float = OLLAMA_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(base_url=self.host, timeout=timeout, transport=self.transport)

    def list_models(self) -> List[str]:
        with self._client(HEALTH_TIMEOUT) as client:
            resp = client.get("/api/tags")
            _raise_for_status(resp)
        try:
            data = orjson.loads(resp.content)
        except orjson.JSONDecodeError as exc:
            raise MalformedReplyError("model list is not valid JSON") from exc
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            raise MalformedReplyError("model list is missing 'models'")
        return [str(m.get("name") or m.get("model") or "") for m in models if isinstance(m, dict)]

    def chat(self, request: ChatRequest, on_token: Optional[Callable[[str], None]] = None) -> str:
        """Send one chat request and return the assistant's text.

        With ``on_token`` the reply is streamed and every content delta is
        handed to the callback as it arrives; the full text is still returned.
        """
        if on_token is None:
            return self._chat_once(request)
        return self._chat_stream(request, on_token)

    def _chat_once(self, request: ChatRequest) -> str:
        payload = request.to_payload(stream=False)
        with self._client(self.timeout) as client:
            resp = client.post("/api/chat", json=payload)
            _raise_for_status(resp)
        try:
            data = orjson.loads(resp.content)
        except orjson.JSONDecodeError as exc:
            raise MalformedReplyError("chat reply is not valid JSON") from exc
        return _message_content(data)

    def _chat_stream(self, request: ChatRequest, on_token: Callable[[str], None]) -> str:
        payload = request.to_payload(stream=True)
        parts: List[str] = []
        with self._client(self.timeout) as client:
            with client.stream("POST", "/api/chat", json=payload) as resp:
                if resp.status_code >= 400:
                    resp.read()
                    _raise_for_status(resp)
                for line in resp.iter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        event = orjson.loads(line)
                    except orjson.JSONDecodeError as exc:
                        raise MalformedReplyError(f"bad stream line: {line[:80]!r}") from exc
                    delta = _message_content(event)
                    if delta:
                        parts.append(delta)
                        on_token(delta)
                    if isinstance(event, dict) and event.get("done"):
                        break
        return "".join(parts)
