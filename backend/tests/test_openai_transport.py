"""Tests for the OpenAI streaming transport re-framing."""

from __future__ import annotations

import io
import json
import unittest
from unittest import mock
from urllib import error as urllib_error

from parley.services.errors import TransportError
from parley.streaming.framing import SideChannelEvent, StreamDecoder, TextDelta
from parley.streaming.transport import ChatCompletionEventStream, OpenAIStreamTransport


def _sse(*events: object) -> bytes:
    lines = [f"data: {json.dumps(event)}\n\n" for event in events]
    return ("".join(lines) + "data: [DONE]\n\n").encode("utf-8")


def _chunk(content: str | None = None, finish_reason: str | None = None) -> dict:
    delta = {} if content is None else {"content": content}
    return {"choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]}


class ChatCompletionEventStreamTests(unittest.TestCase):
    def test_reframes_deltas_and_finish_reason(self) -> None:
        body = _sse(
            {"choices": [{"index": 0, "delta": {"role": "assistant"}, "finish_reason": None}]},
            _chunk("Hel"),
            _chunk("lo\nworld"),
            _chunk(finish_reason="stop"),
        )
        response = io.BytesIO(b": keep-alive\n\n" + body)

        events = list(StreamDecoder(ChatCompletionEventStream(response), chunk_size=7))

        text = "".join(event.text for event in events if isinstance(event, TextDelta))
        self.assertEqual(text, "Hello\nworld")
        self.assertEqual(
            [event for event in events if isinstance(event, SideChannelEvent)],
            [SideChannelEvent(tag="d", kind="finish_message", payload={"finishReason": "stop"})],
        )
        self.assertTrue(response.closed)

    def test_provider_error_becomes_error_record(self) -> None:
        response = io.BytesIO(_sse(_chunk("partial"), {"error": {"message": "context_length_exceeded"}}))

        events = list(StreamDecoder(ChatCompletionEventStream(response)))

        self.assertEqual(events[0], TextDelta("partial"))
        self.assertTrue(events[-1].is_error)
        self.assertEqual(events[-1].payload, "context_length_exceeded")

    def test_malformed_provider_event_is_skipped(self) -> None:
        response = io.BytesIO(b"data: {oops\n\n" + _sse(_chunk("ok")))

        events = list(StreamDecoder(ChatCompletionEventStream(response)))

        self.assertEqual(events, [TextDelta("ok")])

    def test_read_failure_raises_transport_error(self) -> None:
        response = mock.Mock()
        response.readline.side_effect = TimeoutError("timed out")
        stream = ChatCompletionEventStream(response)

        with self.assertRaises(TransportError):
            stream.read(10)


class OpenAIStreamTransportTests(unittest.TestCase):
    def test_missing_api_key_is_transport_error(self) -> None:
        with self.assertRaises(TransportError):
            OpenAIStreamTransport(api_key=None).open_stream("gpt-4o", [{"role": "user", "content": "hi"}])

    def test_posts_streaming_request(self) -> None:
        transport = OpenAIStreamTransport(api_key="sk-test", base_url="https://llm.example/v1/")
        with mock.patch(
            "parley.streaming.transport.urllib_request.urlopen",
            return_value=io.BytesIO(_sse(_chunk("hi"))),
        ) as urlopen:
            stream = transport.open_stream("gpt-4o", [{"role": "user", "content": "hello"}])
            events = list(StreamDecoder(stream))

        request = urlopen.call_args.args[0]
        self.assertEqual(request.full_url, "https://llm.example/v1/chat/completions")
        self.assertEqual(json.loads(request.data)["stream"], True)
        self.assertEqual(request.get_header("Authorization"), "Bearer sk-test")
        self.assertEqual(events, [TextDelta("hi")])

    def test_network_failure_is_transport_error(self) -> None:
        transport = OpenAIStreamTransport(api_key="sk-test")
        with mock.patch(
            "parley.streaming.transport.urllib_request.urlopen",
            side_effect=urllib_error.URLError("connection refused"),
        ):
            with self.assertRaises(TransportError) as ctx:
                transport.open_stream("gpt-4o", [])

        self.assertIn("connection refused", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
