"""Process-wide collaborators, built once at startup and injected per request."""

from fastapi import Request

from parley.config import Settings, get_settings
from parley.context.budget import BudgetTrimmer
from parley.context.tokenizer import TokenizerAdapter
from parley.db.session import SessionLocal
from parley.services.attachments import AttachmentStore, get_default_attachment_store
from parley.services.chat_turns import ChatRuntime, TurnRegistry
from parley.services.memory import HeadlineSummarizer, InMemoryMemoryStore
from parley.streaming.transport import get_default_transport


def build_chat_runtime(settings: Settings | None = None) -> ChatRuntime:
    """Construct the shared tokenizer, trimmer, transport and turn registry."""

    settings = settings or get_settings()
    trimmer = BudgetTrimmer(TokenizerAdapter(), default_context_size=settings.default_context_size)
    return ChatRuntime(
        session_factory=SessionLocal,
        transport=get_default_transport(settings),
        trimmer=trimmer,
        registry=TurnRegistry(),
        model=settings.chat_model,
        reserved_reply_tokens=settings.reserved_reply_tokens,
        turn_timeout_seconds=settings.turn_timeout_seconds,
        system_prompt=settings.system_prompt,
        title_max_chars=settings.title_max_chars,
        memory_store=InMemoryMemoryStore() if settings.memory_enabled else None,
        summarizer=HeadlineSummarizer(),
    )


def get_chat_runtime(request: Request) -> ChatRuntime:
    return request.app.state.chat_runtime


def get_attachment_store(request: Request) -> AttachmentStore:
    return request.app.state.attachment_store


def build_attachment_store(settings: Settings | None = None) -> AttachmentStore:
    return get_default_attachment_store(settings)
