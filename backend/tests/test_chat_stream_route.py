"""Tests for the wire encoding of streamed chat turns."""

from __future__ import annotations

import json
import unittest
from datetime import datetime, timezone

from parley.routers.chat import _encode_turn, _http_error
from parley.schemas.message import MessageRead
from parley.services.chat_turns import TurnCancelled, TurnCommitted, TurnFailed
from parley.services.errors import (
    AttachmentRejectedError,
    NotFoundError,
    TransportError,
    TurnInProgressError,
)
from parley.streaming.framing import SideChannelEvent, TextDelta


class _FakeTurn:
    def __init__(self, events: list) -> None:
        self._events = events

    def events(self):
        return iter(self._events)


def _committed() -> TurnCommitted:
    message = MessageRead(
        id=7,
        conversation_id="c1",
        role="assistant",
        content="Hi!",
        timestamp=datetime(2026, 10, 18, tzinfo=timezone.utc),
    )
    return TurnCommitted("c1", message)


class ChatStreamRouteTests(unittest.TestCase):
    def test_committed_turn_is_framed_as_records(self) -> None:
        turn = _FakeTurn(
            [
                TextDelta("Hi"),
                SideChannelEvent(tag="8", kind="message_annotations", payload=[{"k": 1}]),
                TextDelta("!"),
                SideChannelEvent(tag="d", kind="finish_message", payload={"finishReason": "stop"}),
                _committed(),
            ]
        )

        body = b"".join(_encode_turn(turn)).decode("utf-8")

        lines = body.splitlines()
        self.assertEqual(lines[:3], ['0:"Hi"', '8:[{"k":1}]', '0:"!"'])
        self.assertEqual(len(lines), 4)
        tag, payload = lines[3].split(":", 1)
        self.assertEqual(tag, "d")
        self.assertEqual(
            json.loads(payload),
            {"finishReason": "stop", "conversationId": "c1", "messageId": 7},
        )

    def test_failed_turn_ends_with_error_record(self) -> None:
        turn = _FakeTurn([TextDelta("par"), TurnFailed("c1", "provider down")])

        body = b"".join(_encode_turn(turn))

        self.assertEqual(body, b'0:"par"\n3:"provider down"\n')

    def test_cancelled_turn_just_stops(self) -> None:
        turn = _FakeTurn([TextDelta("par"), TurnCancelled("c1")])

        self.assertEqual(b"".join(_encode_turn(turn)), b'0:"par"\n')

    def test_error_status_mapping(self) -> None:
        self.assertEqual(_http_error(NotFoundError("x")).status_code, 404)
        self.assertEqual(_http_error(TurnInProgressError("x")).status_code, 409)
        self.assertEqual(_http_error(AttachmentRejectedError("x")).status_code, 400)
        self.assertEqual(_http_error(TransportError("x")).status_code, 502)


if __name__ == "__main__":
    unittest.main()
