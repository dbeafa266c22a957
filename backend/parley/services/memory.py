"""Per-conversation memory keyed by user and conversation.

Memory holds recent user context, lightweight entities and an optional summary.
It is rendered as a system message ahead of the model input. Summarisation is an
interface boundary only; ``HeadlineSummarizer`` is the built-in placeholder.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Protocol

CONTEXT_WINDOW = 5
SUMMARY_MIN_MESSAGES = 10

_NAME_PATTERN = re.compile(r"\b[A-Z][a-z]+\b")
_DATE_PATTERN = re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b")


@dataclass(frozen=True, slots=True)
class MemoryMessage:
    """Message shape for memory previews of history that is not stored yet."""

    role: str
    content: str
    attachment_url: str | None = None


@dataclass(slots=True)
class ConversationMemory:
    """Memory snapshot for one ``(user_id, conversation_id)`` pair."""

    user_id: str
    conversation_id: str
    context: list[str] = field(default_factory=list)
    entities: dict[str, list[str]] = field(default_factory=dict)
    summary: str = ""
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MemoryStore(Protocol):
    """Keyed memory persistence, independent of the message store."""

    def get(self, user_id: str, conversation_id: str) -> ConversationMemory | None:
        ...

    def put(self, memory: ConversationMemory) -> None:
        ...

    def delete(self, user_id: str, conversation_id: str) -> None:
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        ...

    def search(self, user_id: str, query: str) -> list[ConversationMemory]:
        ...


class Summarizer(Protocol):
    """Produces a conversation summary from its messages."""

    def summarize(self, messages: Sequence[Any]) -> str:
        ...


class InMemoryMemoryStore:
    """Process-local ``MemoryStore``."""

    def __init__(self) -> None:
        self._items: dict[tuple[str, str], ConversationMemory] = {}
        self._lock = Lock()

    def get(self, user_id: str, conversation_id: str) -> ConversationMemory | None:
        with self._lock:
            return self._items.get((user_id, conversation_id))

    def put(self, memory: ConversationMemory) -> None:
        with self._lock:
            self._items[(memory.user_id, memory.conversation_id)] = memory

    def delete(self, user_id: str, conversation_id: str) -> None:
        with self._lock:
            self._items.pop((user_id, conversation_id), None)

    def delete_conversation(self, conversation_id: str) -> None:
        with self._lock:
            for key in [key for key in self._items if key[1] == conversation_id]:
                del self._items[key]

    def search(self, user_id: str, query: str) -> list[ConversationMemory]:
        needle = query.strip().lower()
        with self._lock:
            candidates = [memory for (owner, _), memory in self._items.items() if owner == user_id]
        if not needle:
            return candidates
        return [
            memory
            for memory in candidates
            if any(needle in item.lower() for item in memory.context) or needle in memory.summary.lower()
        ]


class HeadlineSummarizer:
    """Names the opening user topics once a conversation gets long."""

    def summarize(self, messages: Sequence[Any]) -> str:
        if len(messages) < SUMMARY_MIN_MESSAGES:
            return ""
        opening = _user_texts(messages)[:3]
        return f"Conversation about: {', '.join(opening)}"


def update_memory(
    store: MemoryStore,
    user_id: str,
    conversation_id: str,
    messages: Sequence[Any],
    *,
    summarizer: Summarizer | None = None,
) -> ConversationMemory:
    """Rebuild memory from the committed conversation messages.

    ``messages`` is the whole surviving history, so text removed by an edit,
    regenerate or delete drops out of both context and entities.
    """

    memory = build_memory(user_id, conversation_id, messages, summarizer=summarizer)
    store.put(memory)
    return memory


def build_memory(
    user_id: str,
    conversation_id: str,
    messages: Sequence[Any],
    *,
    summarizer: Summarizer | None = None,
) -> ConversationMemory:
    """Derive memory from ``messages`` without touching any store."""

    user_texts = _user_texts(messages)
    return ConversationMemory(
        user_id=user_id,
        conversation_id=conversation_id,
        context=user_texts[-CONTEXT_WINDOW:],
        entities=extract_entities(user_texts),
        summary=(summarizer or HeadlineSummarizer()).summarize(messages),
    )


def extract_entities(texts: Iterable[str]) -> dict[str, list[str]]:
    """Capitalised words as names and ``d/m/yyyy`` dates."""

    joined = " ".join(texts)
    entities: dict[str, list[str]] = {}
    names = _unique(_NAME_PATTERN.findall(joined))
    if names:
        entities["names"] = names
    dates = _unique(_DATE_PATTERN.findall(joined))
    if dates:
        entities["dates"] = dates
    return entities


def memory_system_message(memory: ConversationMemory | None) -> dict[str, str] | None:
    """Render memory as a system message, or ``None`` when there is nothing to add."""

    if memory is None or not memory.context:
        return None
    lines = [
        "Previous conversation context:",
        *memory.context,
        "",
        f"Summary: {memory.summary}",
        "",
        f"Entities mentioned: {json.dumps(memory.entities, sort_keys=True)}",
        "",
        "Please use this context to provide more personalized and coherent responses.",
    ]
    return {"role": "system", "content": "\n".join(lines)}


def _user_texts(messages: Sequence[Any]) -> list[str]:
    texts: list[str] = []
    for message in messages:
        if str(getattr(message, "role", "")).lower() != "user":
            continue
        if getattr(message, "attachment_url", None):
            continue
        content = str(getattr(message, "content", "")).strip()
        if content:
            texts.append(content)
    return texts


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))
