"""Seed a demo conversation with a short committed history.

Usage (from repository root):
    python backend/scripts/seed_demo.py

Usage (from backend directory):
    python scripts/seed_demo.py
    # or
    python -m scripts.seed_demo
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

# Make `parley` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from parley.db.session import SessionLocal
from parley.schemas.message import MessageCreate
from parley.services.conversations import create_conversation, derive_title
from parley.services.messages import append_message


def build_demo_messages() -> list[MessageCreate]:
    """Return a deterministic five-message travel conversation."""

    base = datetime(2026, 10, 18, 14, 0, 0, tzinfo=timezone.utc)
    payloads = [
        ("user", "We are planning a three-day trip to Lisbon in May. Where should we stay?"),
        ("assistant", "Baixa and Chiado are central and walkable; Alfama is quieter and more scenic."),
        ("user", "Chiado sounds good. What should day one look like?"),
        ("assistant", "Start at the castle, walk down through Alfama, and end with dinner in Bairro Alto."),
        ("user", "Can we fit a day trip to Sintra on day two?"),
    ]
    return [
        MessageCreate(role=role, content=content, timestamp=base.replace(minute=base.minute + idx))
        for idx, (role, content) in enumerate(payloads)
    ]


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Seed a demo conversation.")
    parser.add_argument(
        "--title",
        default=None,
        help="Conversation title (default: derived from the first user message)",
    )
    return parser.parse_args()


def main() -> None:
    """Seed demo data and print a short summary."""

    args = parse_args()
    messages = build_demo_messages()

    with SessionLocal() as db:
        conversation = create_conversation(db, title=args.title or derive_title(messages[0].content))
        for message in messages:
            append_message(db, conversation.id, message)
        db.commit()
        conversation_id = conversation.id

    print("Seed complete")
    print(f"conversation_id={conversation_id}")
    print(f"messages_created={len(messages)}")
    print()
    print("Inspect:")
    print(f"  GET /conversations/{conversation_id}/messages")
    print(f"  PUT /conversations/{conversation_id}/messages/<id>  (edit and regenerate)")
    print(f"  POST /conversations/{conversation_id}/regenerate")


if __name__ == "__main__":
    main()
