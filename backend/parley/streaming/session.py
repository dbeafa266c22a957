"""Ephemeral stream session for one model call."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from parley.services.errors import TransportError
from parley.streaming.framing import SideChannelEvent, StreamDecoder, TextDelta

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StreamCompleted:
    """Emitted once when the stream reached end-of-data without cancellation."""

    conversation_id: str
    text: str


class StreamSession:
    """Accumulates decoded deltas for one conversation until completion.

    Never persisted: only the text carried by ``StreamCompleted`` becomes a message.
    """

    def __init__(self, conversation_id: str, decoder: StreamDecoder) -> None:
        self.conversation_id = conversation_id
        self.accumulated_text = ""
        self._decoder = decoder

    @property
    def cancelled(self) -> bool:
        return self._decoder.cancelled

    @property
    def timed_out(self) -> bool:
        return self._decoder.timed_out

    def cancel(self) -> None:
        self._decoder.cancel()
        self.accumulated_text = ""

    def events(self) -> Iterator[TextDelta | SideChannelEvent | StreamCompleted]:
        """Yield deltas and side-channel events, then one completion event.

        An error record aborts the session with ``TransportError``.
        """

        for event in self._decoder:
            if isinstance(event, TextDelta):
                self.accumulated_text += event.text
                yield event
                continue
            if event.is_error:
                self._decoder.cancel()
                self.accumulated_text = ""
                raise TransportError(f"model stream reported an error: {_error_detail(event.payload)}")
            yield event

        if self._decoder.cancelled:
            logger.info(
                "chat.stream_cancelled conversation_id=%s timed_out=%s",
                self.conversation_id,
                self._decoder.timed_out,
            )
            self.accumulated_text = ""
            return
        yield StreamCompleted(conversation_id=self.conversation_id, text=self.accumulated_text)


def _error_detail(payload: object) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        if isinstance(message, str):
            return message
    return repr(payload)
