"""Context-window budgeting for model input history."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from parley.context.tokenizer import TokenizerAdapter

PER_MESSAGE_OVERHEAD = 4
PRIMING_OVERHEAD = 2
DEFAULT_CONTEXT_SIZE = 4096

MODEL_CONTEXT_SIZES: dict[str, int] = {
    "gpt-4o": 4096,
}

M = TypeVar("M")


@dataclass(frozen=True, slots=True)
class BudgetWindow:
    """Derived budget for one model call. Never persisted."""

    model_context_size: int
    reserved_reply_tokens: int
    used_tokens: int

    @property
    def token_limit(self) -> int:
        return self.model_context_size - self.reserved_reply_tokens

    @property
    def overflow(self) -> bool:
        return self.used_tokens > self.token_limit


class BudgetTrimmer:
    """Drops the oldest messages until the history fits the model context."""

    def __init__(
        self,
        tokenizer: TokenizerAdapter,
        *,
        context_sizes: Mapping[str, int] | None = None,
        default_context_size: int = DEFAULT_CONTEXT_SIZE,
        per_message_overhead: int = PER_MESSAGE_OVERHEAD,
        priming_overhead: int = PRIMING_OVERHEAD,
    ) -> None:
        self.tokenizer = tokenizer
        self.context_sizes = dict(MODEL_CONTEXT_SIZES if context_sizes is None else context_sizes)
        self.default_context_size = default_context_size
        self.per_message_overhead = per_message_overhead
        self.priming_overhead = priming_overhead

    def context_size(self, model: str) -> int:
        return self.context_sizes.get(model, self.default_context_size)

    def message_cost(self, message: Any) -> int:
        """Overhead plus content tokens for one message."""

        return self.per_message_overhead + self.tokenizer.count(_content_of(message))

    def estimate(self, messages: Sequence[Any]) -> int:
        """Total estimated cost of ``messages`` including priming overhead."""

        return sum(self.message_cost(message) for message in messages) + self.priming_overhead

    def trim(self, messages: Sequence[M], model: str, reserved_reply_tokens: int) -> list[M]:
        """Return the longest suffix of ``messages`` that fits the budget.

        A single remaining message is returned even when it alone exceeds the
        limit; callers treat that as a soft overflow.
        """

        token_limit = self.context_size(model) - reserved_reply_tokens
        costs = [self.message_cost(message) for message in messages]
        total = sum(costs) + self.priming_overhead
        start = 0
        while total > token_limit and len(costs) - start > 1:
            total -= costs[start]
            start += 1
        return list(messages[start:])

    def window(self, messages: Sequence[Any], model: str, reserved_reply_tokens: int) -> BudgetWindow:
        return BudgetWindow(
            model_context_size=self.context_size(model),
            reserved_reply_tokens=reserved_reply_tokens,
            used_tokens=self.estimate(messages),
        )


def _content_of(message: Any) -> Any:
    if isinstance(message, Mapping):
        return message.get("content")
    if isinstance(message, str):
        return message
    return getattr(message, "content", None)
