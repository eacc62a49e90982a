"""Client for the AI chat gateway: SSE delta parsing and the chat transcript session."""
from __future__ import annotations

import json
import logging
import uuid
from typing import Any, AsyncIterator, Callable, Sequence

import httpx

from ..config import Settings, get_settings
from ..errors import AIChatError, AIQuotaExceededError, AIRateLimitError, ValidationError
from ..schemas.ai_chat import AssistantMode, ChatMessage

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
DEFAULT_ERROR_MESSAGE = "Failed to connect to AI"


def _delta_content(frame: Any) -> str | None:
    try:
        content = frame["choices"][0]["delta"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None


class SSEDeltaParser:
    """Incremental parser for ``data: {choices:[{delta:{content}}]}`` frames.

    Text is buffered until a newline. A frame whose JSON does not parse is put
    back at the head of the buffer and parsing waits for more input. ``[DONE]``
    ends the stream.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.done = False

    @staticmethod
    def _payload(line: str) -> str | None:
        if line.endswith("\r"):
            line = line[:-1]
        if line.startswith(":") or not line.strip():
            return None
        if not line.startswith(DATA_PREFIX):
            return None
        return line[len(DATA_PREFIX):].strip()

    def feed(self, text: str) -> list[str]:
        if self.done:
            return []
        self._buffer += text
        deltas: list[str] = []
        while (index := self._buffer.find("\n")) != -1:
            line = self._buffer[:index]
            self._buffer = self._buffer[index + 1:]
            payload = self._payload(line)
            if payload is None:
                continue
            if payload == DONE_SENTINEL:
                self.done = True
                break
            try:
                frame = json.loads(payload)
            except ValueError:
                self._buffer = line + "\n" + self._buffer
                break
            content = _delta_content(frame)
            if content:
                deltas.append(content)
        return deltas

    def flush(self) -> list[str]:
        """Parse whatever is left once the stream has ended."""

        remaining, self._buffer = self._buffer, ""
        if self.done or not remaining.strip():
            return []
        deltas: list[str] = []
        for raw in remaining.split("\n"):
            payload = self._payload(raw)
            if payload is None or payload == DONE_SENTINEL:
                continue
            try:
                frame = json.loads(payload)
            except ValueError:
                continue
            content = _delta_content(frame)
            if content:
                deltas.append(content)
        return deltas


def _error_for_status(status_code: int, body: bytes) -> AIChatError:
    message: str | None = None
    try:
        payload = json.loads(body or b"{}")
        if isinstance(payload, dict) and isinstance(payload.get("error"), str):
            message = payload["error"]
    except ValueError:
        message = DEFAULT_ERROR_MESSAGE
    message = message or f"Error {status_code}"
    if status_code == 429:
        return AIRateLimitError(message)
    if status_code == 402:
        return AIQuotaExceededError(message)
    return AIChatError(message)


class AIChatClient:
    """Streams assistant deltas from the gateway endpoint."""

    def __init__(
        self,
        *,
        endpoint: str,
        api_key: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> "AIChatClient":
        return cls(
            endpoint=settings.ai_chat_url,
            api_key=settings.ai_chat_public_key,
            timeout=settings.ai_timeout,
            transport=transport,
        )

    async def stream(self, messages: Sequence[dict[str, str]], role: AssistantMode) -> AsyncIterator[str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload = {"messages": list(messages), "role": role}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream("POST", self._endpoint, json=payload, headers=headers) as response:
                    if not response.is_success:
                        body = await response.aread()
                        raise _error_for_status(response.status_code, body)
                    parser = SSEDeltaParser()
                    async for chunk in response.aiter_text():
                        for delta in parser.feed(chunk):
                            yield delta
                        if parser.done:
                            break
                    for delta in parser.flush():
                        yield delta
        except httpx.TimeoutException as exc:
            logger.error("AI chat stream timed out | endpoint=%s timeout=%s", self._endpoint, self._timeout)
            raise AIChatError("AI request timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("AI chat transport error | endpoint=%s error=%s", self._endpoint, type(exc).__name__)
            raise AIChatError(DEFAULT_ERROR_MESSAGE) from exc


class AIChatSession:
    """Chat transcript for one assistant mode, growing the assistant reply as deltas arrive."""

    def __init__(
        self,
        role: AssistantMode = "student",
        *,
        client: AIChatClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.role = role
        self._client = client or AIChatClient.from_settings(settings or get_settings())
        self.messages: list[ChatMessage] = []
        self.is_loading = False
        self._listeners: list[Callable[[], None]] = []

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener()

    async def send_message(self, text: str) -> ChatMessage | None:
        """Send ``text`` and stream the reply; returns the assistant bubble that was produced."""

        content = (text or "").strip()
        if not content:
            raise ValidationError("Message cannot be empty")

        user_message = ChatMessage(id=uuid.uuid4().hex, role="user", content=content)
        history = [{"role": m.role, "content": m.content} for m in self.messages if m.error is None]
        history.append({"role": "user", "content": content})
        self.messages.append(user_message)
        self.is_loading = True
        self._changed()

        assistant_id = uuid.uuid4().hex
        assistant: ChatMessage | None = None
        try:
            async for delta in self._client.stream(history, self.role):
                if assistant is None:
                    assistant = ChatMessage(id=assistant_id, role="assistant", content="")
                    self.messages.append(assistant)
                assistant.content += delta
                self._changed()
        except AIChatError as exc:
            logger.warning("AI chat failed (%s): %s", exc.kind, exc)
            assistant = ChatMessage(
                id=uuid.uuid4().hex if assistant is not None else assistant_id,
                role="assistant",
                content=f"⚠️ {exc}",
                error=exc.kind,
            )
            self.messages.append(assistant)
        finally:
            self.is_loading = False
            self._changed()
        return assistant

    def clear_messages(self) -> None:
        self.messages = []
        self._changed()


__all__ = [
    "AIChatClient",
    "AIChatSession",
    "SSEDeltaParser",
    "DEFAULT_ERROR_MESSAGE",
]
