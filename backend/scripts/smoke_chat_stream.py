"""Stream a real model reply for a small in-memory conversation.

Usage (from repo root):
    python backend/scripts/smoke_chat_stream.py

Usage (from backend/):
    python scripts/smoke_chat_stream.py --prompt "Summarize our plan in one line."
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from parley.config import get_settings
from parley.context.budget import BudgetTrimmer
from parley.context.tokenizer import TokenizerAdapter
from parley.streaming.framing import SideChannelEvent, StreamDecoder, TextDelta
from parley.streaming.transport import get_default_transport


def _demo_messages(prompt: str) -> list[dict[str, str]]:
    return [
        {"role": "user", "content": "We are planning a three-day trip to Lisbon in May."},
        {"role": "assistant", "content": "Great choice. Day one could cover Alfama and the castle."},
        {"role": "user", "content": prompt},
    ]


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--prompt", default="Suggest what to do on day two.")
    parser.add_argument("--reserved", type=int, default=None, help="Reply tokens to reserve.")
    args = parser.parse_args()

    settings = get_settings()
    trimmer = BudgetTrimmer(TokenizerAdapter(), default_context_size=settings.default_context_size)
    reserved = settings.reserved_reply_tokens if args.reserved is None else args.reserved
    messages = trimmer.trim(_demo_messages(args.prompt), settings.chat_model, reserved)
    window = trimmer.window(messages, settings.chat_model, reserved)

    decoder = StreamDecoder(get_default_transport(settings).open_stream(settings.chat_model, messages))
    reply = []
    side_channel = []
    for event in decoder:
        if isinstance(event, TextDelta):
            reply.append(event.text)
            sys.stdout.write(event.text)
            sys.stdout.flush()
        elif isinstance(event, SideChannelEvent):
            side_channel.append({"tag": event.tag, "kind": event.kind, "payload": event.payload})
    sys.stdout.write("\n")
    print(
        json.dumps(
            {
                "model": settings.chat_model,
                "sent_messages": len(messages),
                "used_tokens": window.used_tokens,
                "token_limit": window.token_limit,
                "reply_chars": len("".join(reply)),
                "decode_errors": decoder.decode_errors,
                "side_channel": side_channel,
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    main()
