"""Chat turn lifecycle: submit, edit and regenerate with streamed replies.

A turn moves ``sending -> streaming -> committing -> idle``. It reaches ``errored``
on transport failure and returns to ``idle`` without writing anything when it is
cancelled or times out. Every store write of a turn happens in one transaction after
the reply stream completed, so persisted history only ever changes as a whole.
At most one turn per conversation is in flight; ``TurnRegistry`` enforces it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from parley.context.budget import BudgetTrimmer, BudgetWindow
from parley.models.conversation import DEFAULT_CONVERSATION_TITLE, Conversation
from parley.models.message import Message
from parley.schemas.chat import AttachmentReference
from parley.schemas.message import MessageCreate, MessageRead
from parley.services.conversations import delete_conversation, derive_title, get_conversation
from parley.services.errors import ChatError, ChatValidationError, NotFoundError, TransportError, TurnInProgressError
from parley.services.memory import (
    MemoryMessage,
    MemoryStore,
    Summarizer,
    build_memory,
    memory_system_message,
    update_memory,
)
from parley.services.messages import (
    append_message,
    count_messages,
    delete_message,
    delete_messages_after,
    delete_messages_from,
    find_message,
    get_message,
    list_messages,
    update_message_content,
)
from parley.streaming.framing import SideChannelEvent, StreamDecoder, TextDelta
from parley.streaming.session import StreamCompleted, StreamSession
from parley.streaming.transport import ModelTransport

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = "anonymous"


class TurnState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMMITTING = "committing"
    ERRORED = "errored"


class TurnKind(str, Enum):
    SUBMIT = "submit"
    EDIT = "edit"
    REGENERATE = "regenerate"


@dataclass(frozen=True, slots=True)
class TurnCommitted:
    """The assistant reply is durably stored."""

    conversation_id: str
    message: MessageRead


@dataclass(frozen=True, slots=True)
class TurnFailed:
    """The turn errored; persisted history is unchanged."""

    conversation_id: str
    error: str


@dataclass(frozen=True, slots=True)
class TurnCancelled:
    """The turn was cancelled or timed out; persisted history is unchanged."""

    conversation_id: str
    timed_out: bool = False


TurnEvent = TextDelta | SideChannelEvent | TurnCommitted | TurnFailed | TurnCancelled


class TurnRegistry:
    """Tracks conversations with a turn in flight."""

    def __init__(self) -> None:
        self._active: set[str] = set()
        self._lock = Lock()

    def acquire(self, conversation_id: str) -> None:
        with self._lock:
            if conversation_id in self._active:
                raise TurnInProgressError(
                    f"Conversation {conversation_id} already has a reply in progress."
                )
            self._active.add(conversation_id)

    def release(self, conversation_id: str) -> None:
        with self._lock:
            self._active.discard(conversation_id)

    def is_active(self, conversation_id: str) -> bool:
        with self._lock:
            return conversation_id in self._active


@dataclass(slots=True)
class ChatRuntime:
    """Collaborators shared by every turn in the process."""

    session_factory: Callable[[], Session]
    transport: ModelTransport
    trimmer: BudgetTrimmer
    registry: TurnRegistry
    model: str = "gpt-4o"
    reserved_reply_tokens: int = 1024
    turn_timeout_seconds: float | None = 120.0
    system_prompt: str | None = None
    title_max_chars: int = 50
    memory_store: MemoryStore | None = None
    summarizer: Summarizer | None = None
    user_id: str = DEFAULT_USER_ID
    clock: Callable[[], float] = time.monotonic


@dataclass(slots=True)
class TurnPlan:
    """Store writes a turn applies once its reply is complete."""

    kind: TurnKind
    conversation_id: str
    requested_at: datetime
    user_content: str = ""
    attachments: list[AttachmentReference] = field(default_factory=list)
    edited_message_id: int | None = None
    edited_content: str | None = None
    replaced_message_id: int | None = None


class ChatTurn:
    """One model call for a conversation, from sending through commit."""

    def __init__(
        self,
        runtime: ChatRuntime,
        plan: TurnPlan,
        model_messages: list[dict[str, Any]],
        window: BudgetWindow,
    ) -> None:
        self.runtime = runtime
        self.plan = plan
        self.model_messages = model_messages
        self.window = window
        self.state = TurnState.SENDING
        self.deadline: float | None = None
        if runtime.turn_timeout_seconds:
            self.deadline = runtime.clock() + runtime.turn_timeout_seconds
        self._session: StreamSession | None = None
        self._started = False
        self._released = False
        self._cancel_requested = False

    @property
    def conversation_id(self) -> str:
        return self.plan.conversation_id

    def events(self) -> Iterator[TurnEvent]:
        """Stream the reply and commit it. Can be consumed only once."""

        if self._started:
            raise RuntimeError("chat turn events cannot be restarted")
        self._started = True
        return self._run()

    def cancel(self) -> None:
        """Stop streaming; nothing from this turn will be persisted."""

        self._cancel_requested = True
        if self._session is not None:
            self._session.cancel()

    def close(self) -> None:
        """Cancel and free the conversation slot if streaming never started."""

        self.cancel()
        if not self._started:
            self.state = TurnState.IDLE
            self._release()

    def _run(self) -> Iterator[TurnEvent]:
        try:
            if self._cancel_requested:
                self.state = TurnState.IDLE
                self._release()
                yield TurnCancelled(self.conversation_id)
                return

            try:
                stream = self.runtime.transport.open_stream(self.runtime.model, self.model_messages)
            except TransportError as exc:
                yield self._fail(exc)
                return

            decoder = StreamDecoder(stream, deadline=self.deadline, clock=self.runtime.clock)
            self._session = StreamSession(self.conversation_id, decoder)
            if self._cancel_requested:
                self._session.cancel()
            self.state = TurnState.STREAMING

            completed: StreamCompleted | None = None
            try:
                for event in self._session.events():
                    if isinstance(event, StreamCompleted):
                        completed = event
                        continue
                    yield event
            except (TransportError, OSError) as exc:
                yield self._fail(exc)
                return

            if completed is None:
                self.state = TurnState.IDLE
                self._release()
                yield TurnCancelled(self.conversation_id, timed_out=self._session.timed_out)
                return

            self.state = TurnState.COMMITTING
            try:
                message = self._commit(completed)
            except (ChatError, SQLAlchemyError) as exc:
                logger.exception(
                    "chat.turn_commit_failed conversation_id=%s kind=%s",
                    self.conversation_id,
                    self.plan.kind.value,
                )
                yield self._fail(exc)
                return
            self.state = TurnState.IDLE
            self._release()
            yield TurnCommitted(self.conversation_id, message)
        finally:
            if self.state in (TurnState.SENDING, TurnState.STREAMING):
                if self._session is not None:
                    self._session.cancel()
                self.state = TurnState.IDLE
                logger.info("chat.turn_abandoned conversation_id=%s", self.conversation_id)
            self._release()

    def _fail(self, exc: Exception) -> TurnFailed:
        if self._session is not None:
            self._session.cancel()
        self.state = TurnState.ERRORED
        self._release()
        logger.warning(
            "chat.turn_failed conversation_id=%s kind=%s error=%s",
            self.conversation_id,
            self.plan.kind.value,
            exc,
        )
        return TurnFailed(self.conversation_id, str(exc))

    def _release(self) -> None:
        if not self._released:
            self._released = True
            self.runtime.registry.release(self.conversation_id)

    def _commit(self, completed: StreamCompleted) -> MessageRead:
        plan = self.plan
        conversation_id = plan.conversation_id
        db = self.runtime.session_factory()
        try:
            conversation = db.get(Conversation, conversation_id)
            if conversation is None:
                raise NotFoundError(f"Conversation {conversation_id} not found.")
            now = datetime.now(timezone.utc)

            if plan.kind is TurnKind.SUBMIT:
                is_first_turn = count_messages(db, conversation_id) == 0
                if plan.user_content:
                    append_message(
                        db,
                        conversation_id,
                        MessageCreate(role="user", content=plan.user_content, timestamp=plan.requested_at),
                    )
                for attachment in plan.attachments:
                    append_message(db, conversation_id, _attachment_entry(attachment, plan.requested_at))
                if is_first_turn and conversation.title == DEFAULT_CONVERSATION_TITLE:
                    conversation.title = derive_title(
                        plan.user_content or plan.attachments[0].url,
                        self.runtime.title_max_chars,
                    )
            elif plan.kind is TurnKind.EDIT:
                edited = get_message(db, conversation_id, plan.edited_message_id)
                update_message_content(db, edited.id, plan.edited_content or "")
                removed = delete_messages_after(db, conversation_id, edited.order_key)
                logger.info(
                    "chat.downstream_invalidated conversation_id=%s message_id=%s removed=%d",
                    conversation_id,
                    edited.id,
                    removed,
                )
            else:
                replaced = get_message(db, conversation_id, plan.replaced_message_id)
                removed = delete_messages_from(db, conversation_id, replaced.order_key)
                logger.info(
                    "chat.downstream_invalidated conversation_id=%s message_id=%s removed=%d",
                    conversation_id,
                    replaced.id,
                    removed,
                )

            assistant = append_message(
                db,
                conversation_id,
                MessageCreate(role="assistant", content=completed.text, timestamp=now),
            )
            conversation.updated_at = now
            db.commit()
            db.refresh(assistant)
            committed = MessageRead.model_validate(assistant)
            logger.info(
                "chat.turn_committed conversation_id=%s kind=%s message_id=%d reply_chars=%d",
                conversation_id,
                plan.kind.value,
                committed.id,
                len(completed.text),
            )
            self._refresh_memory(db)
            return committed
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _refresh_memory(self, db: Session) -> None:
        try:
            refresh_memory(db, self.runtime, self.conversation_id)
        except Exception:
            logger.exception("chat.memory_update_failed conversation_id=%s", self.conversation_id)


def refresh_memory(db: Session, runtime: ChatRuntime, conversation_id: str) -> None:
    """Rebuild conversation memory from the stored history, or drop it when empty."""

    store = runtime.memory_store
    if store is None:
        return
    records = list_messages(db, conversation_id)
    if not records:
        store.delete(runtime.user_id, conversation_id)
        return
    update_memory(store, runtime.user_id, conversation_id, records, summarizer=runtime.summarizer)


def remove_message(db: Session, runtime: ChatRuntime, message_id: int) -> None:
    """Delete one message while holding its conversation's turn slot."""

    message = find_message(db, message_id)
    if message is None:
        raise NotFoundError(f"Message {message_id} not found.")
    conversation_id = message.conversation_id
    runtime.registry.acquire(conversation_id)
    try:
        delete_message(db, message_id)
        refresh_memory(db, runtime, conversation_id)
    finally:
        runtime.registry.release(conversation_id)


def remove_conversation(db: Session, runtime: ChatRuntime, conversation_id: str) -> None:
    """Delete a conversation and its memory unless a turn is in flight."""

    runtime.registry.acquire(conversation_id)
    try:
        if not delete_conversation(db, conversation_id):
            raise NotFoundError(f"Conversation {conversation_id} not found.")
        if runtime.memory_store is not None:
            runtime.memory_store.delete_conversation(conversation_id)
    finally:
        runtime.registry.release(conversation_id)


def start_chat_turn(
    db: Session,
    runtime: ChatRuntime,
    conversation_id: str,
    *,
    content: str,
    attachments: Sequence[AttachmentReference] = (),
) -> ChatTurn:
    """Begin a turn for a newly submitted user message."""

    text = content.strip()
    attachment_list = list(attachments)
    if not text and not attachment_list:
        raise ChatValidationError("Message content cannot be empty.")

    runtime.registry.acquire(conversation_id)
    try:
        get_conversation(db, conversation_id)
        history = to_model_messages(list_messages(db, conversation_id))
        history.append({"role": "user", "content": _user_turn_content(text, attachment_list)})
        plan = TurnPlan(
            kind=TurnKind.SUBMIT,
            conversation_id=conversation_id,
            requested_at=datetime.now(timezone.utc),
            user_content=text,
            attachments=attachment_list,
        )
        return _prepare_turn(runtime, plan, history)
    except BaseException:
        runtime.registry.release(conversation_id)
        raise


def start_edit_turn(
    db: Session,
    runtime: ChatRuntime,
    conversation_id: str,
    message_id: int,
    *,
    content: str,
) -> ChatTurn:
    """Begin a turn that replaces a user message and everything after it."""

    text = content.strip()
    if not text:
        raise ChatValidationError("Message content cannot be empty.")

    runtime.registry.acquire(conversation_id)
    try:
        get_conversation(db, conversation_id)
        records = list_messages(db, conversation_id)
        index = next((i for i, record in enumerate(records) if record.id == message_id), None)
        if index is None:
            raise NotFoundError(f"Message {message_id} not found in conversation {conversation_id}.")
        target = records[index]
        if target.role != "user" or target.attachment_url:
            raise ChatValidationError("Only user text messages can be edited.")

        history = to_model_messages(records[:index])
        history.append({"role": "user", "content": text})
        plan = TurnPlan(
            kind=TurnKind.EDIT,
            conversation_id=conversation_id,
            requested_at=datetime.now(timezone.utc),
            edited_message_id=message_id,
            edited_content=text,
        )
        surviving = [*records[:index], MemoryMessage(role="user", content=text)]
        return _prepare_turn(runtime, plan, history, surviving)
    except BaseException:
        runtime.registry.release(conversation_id)
        raise


def start_regenerate_turn(db: Session, runtime: ChatRuntime, conversation_id: str) -> ChatTurn:
    """Begin a turn that replaces the most recent assistant reply."""

    runtime.registry.acquire(conversation_id)
    try:
        get_conversation(db, conversation_id)
        records = list_messages(db, conversation_id)
        index = next(
            (i for i in range(len(records) - 1, -1, -1) if records[i].role == "assistant"),
            None,
        )
        if index is None:
            raise ChatValidationError("There is no assistant reply to regenerate.")
        if index == 0:
            raise ChatValidationError("There is no user message before the reply to regenerate.")

        plan = TurnPlan(
            kind=TurnKind.REGENERATE,
            conversation_id=conversation_id,
            requested_at=datetime.now(timezone.utc),
            replaced_message_id=records[index].id,
        )
        return _prepare_turn(runtime, plan, to_model_messages(records[:index]), records[:index])
    except BaseException:
        runtime.registry.release(conversation_id)
        raise


def _prepare_turn(
    runtime: ChatRuntime,
    plan: TurnPlan,
    history: list[dict[str, Any]],
    surviving: Sequence[Any] | None = None,
) -> ChatTurn:
    system_messages = _system_messages(runtime, plan.conversation_id, surviving)
    trimmer = runtime.trimmer
    reserved = runtime.reserved_reply_tokens + sum(trimmer.message_cost(m) for m in system_messages)
    trimmed = trimmer.trim(history, runtime.model, reserved)
    window = trimmer.window(trimmed, runtime.model, reserved)
    if window.overflow:
        logger.warning(
            "chat.budget_overflow conversation_id=%s used_tokens=%d token_limit=%d",
            plan.conversation_id,
            window.used_tokens,
            window.token_limit,
        )
    logger.info(
        "chat.turn_started conversation_id=%s kind=%s history=%d sent=%d used_tokens=%d",
        plan.conversation_id,
        plan.kind.value,
        len(history),
        len(trimmed),
        window.used_tokens,
    )
    return ChatTurn(runtime, plan, [*system_messages, *trimmed], window)


def _system_messages(
    runtime: ChatRuntime,
    conversation_id: str,
    surviving: Sequence[Any] | None,
) -> list[dict[str, Any]]:
    """System prompt plus memory.

    ``surviving`` is the history an edit or regenerate keeps; memory for those turns
    is derived from it so removed messages never reach the model.
    """

    messages: list[dict[str, Any]] = []
    if runtime.system_prompt and runtime.system_prompt.strip():
        messages.append({"role": "system", "content": runtime.system_prompt.strip()})
    if runtime.memory_store is not None:
        if surviving is None:
            memory = runtime.memory_store.get(runtime.user_id, conversation_id)
        else:
            memory = build_memory(runtime.user_id, conversation_id, surviving, summarizer=runtime.summarizer)
        memory_message = memory_system_message(memory)
        if memory_message is not None:
            messages.append(memory_message)
    return messages


def to_model_messages(records: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert stored messages to model input, folding attachments into their user turn."""

    messages: list[dict[str, Any]] = []
    for record in records:
        role = str(record.role).strip().lower()
        if role not in {"user", "assistant", "system"}:
            continue
        if record.attachment_url:
            part = _attachment_part(record.attachment_url, record.attachment_kind or "image")
            previous = messages[-1] if messages else None
            if previous is not None and previous["role"] == "user":
                previous["content"] = [*_as_parts(previous["content"]), part]
            else:
                messages.append({"role": "user", "content": [part]})
            continue
        messages.append({"role": role, "content": record.content})
    return messages


def _user_turn_content(text: str, attachments: Sequence[AttachmentReference]) -> str | list[dict[str, Any]]:
    if not attachments:
        return text
    parts: list[dict[str, Any]] = [{"type": "text", "text": text}] if text else []
    parts.extend(_attachment_part(attachment.url, attachment.kind) for attachment in attachments)
    return parts


def _attachment_part(url: str, kind: str) -> dict[str, Any]:
    if kind == "image":
        return {"type": "image_url", "image_url": {"url": url}}
    return {"type": "text", "text": f"[Attached document]({url})"}


def _as_parts(content: Any) -> list[dict[str, Any]]:
    if isinstance(content, list):
        return list(content)
    return [{"type": "text", "text": str(content)}]


def _attachment_entry(attachment: AttachmentReference, timestamp: datetime) -> MessageCreate:
    label = "Image uploaded" if attachment.kind == "image" else "File uploaded"
    return MessageCreate(
        role="user",
        content=f"[{label}]({attachment.url})",
        attachment_url=attachment.url,
        attachment_kind=attachment.kind,
        timestamp=timestamp,
    )
