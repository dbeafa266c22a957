"""Tests for per-conversation memory."""

from __future__ import annotations

import unittest
from types import SimpleNamespace

from parley.services.memory import (
    ConversationMemory,
    HeadlineSummarizer,
    InMemoryMemoryStore,
    MemoryMessage,
    build_memory,
    extract_entities,
    memory_system_message,
    update_memory,
)


def _msg(role: str, content: str, attachment_url: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(role=role, content=content, attachment_url=attachment_url)


class MemoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryMemoryStore()

    def test_store_is_keyed_by_user_and_conversation(self) -> None:
        self.store.put(ConversationMemory(user_id="ana", conversation_id="c1", context=["a"]))
        self.store.put(ConversationMemory(user_id="ben", conversation_id="c1", context=["b"]))
        self.store.put(ConversationMemory(user_id="ana", conversation_id="c2", context=["c"]))

        self.assertEqual(self.store.get("ana", "c1").context, ["a"])
        self.assertEqual(self.store.get("ben", "c1").context, ["b"])
        self.assertIsNone(self.store.get("ben", "c2"))

        self.store.delete("ana", "c2")
        self.assertIsNone(self.store.get("ana", "c2"))

        self.store.delete_conversation("c1")
        self.assertIsNone(self.store.get("ana", "c1"))
        self.assertIsNone(self.store.get("ben", "c1"))

    def test_search_matches_context_and_summary_for_one_user(self) -> None:
        self.store.put(ConversationMemory(user_id="ana", conversation_id="c1", context=["Sourdough starter tips"]))
        self.store.put(ConversationMemory(user_id="ana", conversation_id="c2", summary="Conversation about: taxes"))
        self.store.put(ConversationMemory(user_id="ben", conversation_id="c3", context=["sourdough again"]))

        self.assertEqual([m.conversation_id for m in self.store.search("ana", "SOURDOUGH")], ["c1"])
        self.assertEqual([m.conversation_id for m in self.store.search("ana", "taxes")], ["c2"])
        self.assertEqual(len(self.store.search("ana", "")), 2)

    def test_update_keeps_recent_user_texts_and_skips_attachments(self) -> None:
        messages = []
        for index in range(7):
            messages.append(_msg("user", f"question {index}"))
            messages.append(_msg("assistant", f"answer {index}"))
        messages.append(_msg("user", "[Image uploaded](/uploads/x.png)", attachment_url="/uploads/x.png"))

        memory = update_memory(self.store, "ana", "c1", messages)

        self.assertEqual(memory.context, [f"question {index}" for index in range(2, 7)])
        self.assertIs(self.store.get("ana", "c1"), memory)

    def test_entities_cover_the_whole_history(self) -> None:
        history = [_msg("user", "Lunch with Maria on 12/5/2026"), _msg("assistant", "Noted, Sam.")]
        update_memory(self.store, "ana", "c1", history)
        memory = update_memory(self.store, "ana", "c1", [*history, _msg("user", "Then dinner with Tomas")])

        self.assertEqual(memory.entities["names"], ["Lunch", "Maria", "Then", "Tomas"])
        self.assertEqual(memory.entities["dates"], ["12/5/2026"])
        self.assertEqual(memory.context, ["Lunch with Maria on 12/5/2026", "Then dinner with Tomas"])

    def test_entities_of_removed_messages_are_dropped(self) -> None:
        update_memory(self.store, "ana", "c1", [_msg("user", "hello there"), _msg("user", "I live in Zanzibar")])

        memory = update_memory(self.store, "ana", "c1", [_msg("user", "hi again")])

        self.assertEqual(memory.context, ["hi again"])
        self.assertEqual(memory.entities, {})
        self.assertNotIn("Zanzibar", memory_system_message(self.store.get("ana", "c1"))["content"])

    def test_build_memory_does_not_touch_the_store(self) -> None:
        memory = build_memory("ana", "c1", [MemoryMessage(role="user", content="Meet Olga")])

        self.assertEqual(memory.context, ["Meet Olga"])
        self.assertEqual(memory.entities, {"names": ["Meet", "Olga"]})
        self.assertIsNone(self.store.get("ana", "c1"))

    def test_extract_entities_ignores_lowercase_and_single_letters(self) -> None:
        self.assertEqual(extract_entities(["i think so", "I agree"]), {})
        self.assertEqual(extract_entities(["Paris and Paris"]), {"names": ["Paris"]})

    def test_headline_summary_only_for_long_conversations(self) -> None:
        short = [_msg("user", "hello")] * 9
        long = [_msg("user", f"topic {index}") for index in range(10)]

        self.assertEqual(HeadlineSummarizer().summarize(short), "")
        self.assertEqual(HeadlineSummarizer().summarize(long), "Conversation about: topic 0, topic 1, topic 2")

    def test_custom_summarizer_is_used(self) -> None:
        class _FixedSummarizer:
            def summarize(self, messages):
                return f"{len(messages)} messages"

        memory = update_memory(self.store, "ana", "c1", [_msg("user", "hi")], summarizer=_FixedSummarizer())

        self.assertEqual(memory.summary, "1 messages")

    def test_system_message_rendering(self) -> None:
        self.assertIsNone(memory_system_message(None))
        self.assertIsNone(memory_system_message(ConversationMemory(user_id="ana", conversation_id="c1")))

        message = memory_system_message(
            ConversationMemory(
                user_id="ana",
                conversation_id="c1",
                context=["I live in Porto"],
                entities={"names": ["Porto"]},
            )
        )

        self.assertEqual(message["role"], "system")
        self.assertTrue(message["content"].startswith("Previous conversation context:\nI live in Porto\n"))
        self.assertIn('Entities mentioned: {"names": ["Porto"]}', message["content"])


if __name__ == "__main__":
    unittest.main()
