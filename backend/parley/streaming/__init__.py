"""Framed model output streaming."""

from parley.streaming.framing import (
    ERROR_TAG,
    FINISH_MESSAGE_TAG,
    TEXT_TAG,
    ByteStream,
    SideChannelEvent,
    StreamDecoder,
    TextDelta,
    encode_record,
    parse_record,
)
from parley.streaming.session import StreamCompleted, StreamSession
from parley.streaming.transport import ModelTransport, OpenAIStreamTransport, get_default_transport

__all__ = [
    "ERROR_TAG",
    "FINISH_MESSAGE_TAG",
    "TEXT_TAG",
    "ByteStream",
    "ModelTransport",
    "OpenAIStreamTransport",
    "SideChannelEvent",
    "StreamCompleted",
    "StreamDecoder",
    "StreamSession",
    "TextDelta",
    "encode_record",
    "get_default_transport",
    "parse_record",
]
