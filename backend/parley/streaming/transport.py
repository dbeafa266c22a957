"""Model transport: opens a provider call and exposes its framed byte stream."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from parley.config import Settings, get_settings
from parley.services.errors import TransportError
from parley.streaming.framing import (
    ERROR_TAG,
    FINISH_MESSAGE_TAG,
    TEXT_TAG,
    ByteStream,
    encode_record,
)

logger = logging.getLogger(__name__)


class ModelTransport(Protocol):
    """Protocol for streaming chat providers."""

    def open_stream(self, model: str, messages: list[dict[str, Any]]) -> ByteStream:
        """Send the trimmed history and return the framed reply stream."""


@dataclass(slots=True)
class OpenAIStreamTransport:
    """OpenAI chat completions client with ``stream: true``."""

    api_key: str | None
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: int = 60

    def open_stream(self, model: str, messages: list[dict[str, Any]]) -> ByteStream:
        if not self.api_key:
            raise TransportError(
                "OPENAI_API_KEY is not configured. Set it in backend/.env before chatting."
            )
        payload = {
            "model": model,
            "messages": messages,
            "stream": True,
        }
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        req = urllib_request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
            },
        )
        try:
            response = urllib_request.urlopen(req, timeout=self.timeout_seconds)
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise TransportError(f"OpenAI HTTP {exc.code}: {detail}") from exc
        except urllib_error.URLError as exc:
            raise TransportError(f"OpenAI request failed: {exc.reason}") from exc
        except OSError as exc:
            raise TransportError(f"OpenAI request failed: {exc}") from exc
        return ChatCompletionEventStream(response)


class ChatCompletionEventStream:
    """Re-frames an OpenAI server-sent-event body as ``<tag>:<json>`` records."""

    def __init__(self, response: Any) -> None:
        self._response = response
        self._pending = bytearray()
        self._done = False
        self._closed = False

    def read(self, size: int = -1) -> bytes:
        while not self._pending and not self._done:
            self._pull()
        if size is None or size < 0:
            size = len(self._pending)
        chunk = bytes(self._pending[:size])
        del self._pending[:size]
        return chunk

    def close(self) -> None:
        self._done = True
        if not self._closed:
            self._closed = True
            self._response.close()

    def _pull(self) -> None:
        try:
            raw = self._response.readline()
        except (OSError, ValueError) as exc:
            if self._closed:
                self._done = True
                return
            raise TransportError(f"OpenAI stream read failed: {exc}") from exc
        if not raw:
            self._done = True
            return

        line = raw.decode("utf-8", errors="replace").strip()
        if not line.startswith("data:"):
            return
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            self._done = True
            return
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("chat.provider_event_malformed chars=%d", len(data))
            return
        self._pending += _frame_event(event)
        if isinstance(event, dict) and event.get("error") is not None:
            self._done = True


def _frame_event(event: Any) -> bytes:
    if not isinstance(event, dict):
        return b""
    error = event.get("error")
    if error is not None:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return encode_record(ERROR_TAG, message or "provider error")

    framed = bytearray()
    for choice in event.get("choices") or []:
        delta = choice.get("delta") or {}
        content = delta.get("content")
        if isinstance(content, str) and content:
            framed += encode_record(TEXT_TAG, content)
        finish_reason = choice.get("finish_reason")
        if finish_reason:
            framed += encode_record(FINISH_MESSAGE_TAG, {"finishReason": finish_reason})
    return bytes(framed)


def get_default_transport(settings: Settings | None = None) -> ModelTransport:
    """Return the configured model transport."""

    settings = settings or get_settings()
    return OpenAIStreamTransport(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout_seconds=settings.openai_timeout_seconds,
    )
