"""Newline-delimited ``<tag>:<json>`` stream framing.

Each record is one line: a short tag, a colon, and a JSON-encoded payload. Tag ``0``
carries a text delta whose payload is a JSON string appended verbatim to the reply.
Every other tag is surfaced to callers as a side-channel event.
"""

from __future__ import annotations

import codecs
import json
import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Protocol

from parley.services.errors import DecodeError

logger = logging.getLogger(__name__)

TEXT_TAG = "0"
DATA_TAG = "2"
ERROR_TAG = "3"
FINISH_MESSAGE_TAG = "d"

RECORD_KINDS: dict[str, str] = {
    TEXT_TAG: "text",
    DATA_TAG: "data",
    ERROR_TAG: "error",
    "8": "message_annotations",
    "9": "tool_call",
    "a": "tool_result",
    "b": "tool_call_start",
    "c": "tool_call_delta",
    FINISH_MESSAGE_TAG: "finish_message",
    "e": "finish_step",
    "f": "start_step",
    "g": "reasoning",
}

DEFAULT_CHUNK_SIZE = 4096


class ByteStream(Protocol):
    """Readable byte stream handle. ``read`` returns ``b""`` at end-of-data."""

    def read(self, size: int = -1) -> bytes:
        """Return up to ``size`` bytes that are currently available."""

    def close(self) -> None:
        """Release the underlying resource."""


@dataclass(frozen=True, slots=True)
class TextDelta:
    """Incremental fragment of model output text."""

    text: str


@dataclass(frozen=True, slots=True)
class SideChannelEvent:
    """Non-text record (metadata, tool traffic, errors, finish markers)."""

    tag: str
    kind: str
    payload: Any

    @property
    def is_error(self) -> bool:
        return self.tag == ERROR_TAG


StreamEvent = TextDelta | SideChannelEvent


def encode_record(tag: str, payload: Any) -> bytes:
    """Serialize one record including its trailing line break."""

    if not tag or ":" in tag or "\n" in tag:
        raise ValueError(f"invalid record tag: {tag!r}")
    return f"{tag}:{json.dumps(payload, ensure_ascii=False, separators=(',', ':'))}\n".encode("utf-8")


def parse_record(line: str) -> StreamEvent:
    """Parse one complete record line. Raises ``DecodeError`` when malformed."""

    tag, separator, raw_payload = line.partition(":")
    if not separator or not tag:
        raise DecodeError(f"record has no tag separator: {line[:80]!r}")
    try:
        payload = json.loads(raw_payload)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"record {tag!r} has malformed JSON payload") from exc
    if tag == TEXT_TAG:
        if not isinstance(payload, str):
            raise DecodeError("text record payload must be a JSON string")
        return TextDelta(payload)
    return SideChannelEvent(tag=tag, kind=RECORD_KINDS.get(tag, "unknown"), payload=payload)


class StreamDecoder:
    """Lazy, cancellable decoder over one framed byte stream.

    Iterating reads the stream chunk by chunk, buffers the incomplete trailing line,
    and yields one event per complete record. The decoder can be iterated only once.
    """

    def __init__(
        self,
        stream: ByteStream,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        deadline: float | None = None,
        clock=time.monotonic,
    ) -> None:
        self._stream = stream
        self._chunk_size = max(1, chunk_size)
        self._deadline = deadline
        self._clock = clock
        self._started = False
        self._closed = False
        self.cancelled = False
        self.timed_out = False
        self.decode_errors = 0

    def cancel(self) -> None:
        """Stop reading and release the stream handle."""

        self.cancelled = True
        self._close_stream()

    def __iter__(self) -> Iterator[StreamEvent]:
        if self._started:
            raise RuntimeError("stream decoder cannot be restarted")
        self._started = True
        return self._events()

    def _events(self) -> Iterator[StreamEvent]:
        text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        try:
            while not self._should_stop():
                try:
                    chunk = self._stream.read(self._chunk_size)
                except (OSError, ValueError):
                    # cancel() from another thread closes the handle under a blocked read
                    if self.cancelled:
                        break
                    raise
                if self.cancelled:
                    break
                if not chunk:
                    buffer += text_decoder.decode(b"", final=True)
                    if buffer.strip():
                        logger.warning(
                            "chat.stream_unterminated_record discarded_chars=%d",
                            len(buffer),
                        )
                    return
                buffer += text_decoder.decode(chunk)
                *lines, buffer = buffer.split("\n")
                for line in lines:
                    event = self._decode_line(line)
                    if event is not None:
                        yield event
                    if self.cancelled:
                        break
        finally:
            self._close_stream()

    def _should_stop(self) -> bool:
        if self.cancelled:
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.timed_out = True
            self.cancelled = True
            return True
        return False

    def _decode_line(self, line: str) -> StreamEvent | None:
        line = line.rstrip("\r")
        if not line.strip():
            return None
        try:
            return parse_record(line)
        except DecodeError as exc:
            self.decode_errors += 1
            logger.warning("chat.stream_decode_error error=%s", exc)
            return None

    def _close_stream(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stream.close()
