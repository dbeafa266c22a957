"""Token accounting and context-window trimming."""

from parley.context.budget import (
    DEFAULT_CONTEXT_SIZE,
    MODEL_CONTEXT_SIZES,
    PER_MESSAGE_OVERHEAD,
    PRIMING_OVERHEAD,
    BudgetTrimmer,
    BudgetWindow,
)
from parley.context.tokenizer import ATTACHMENT_PLACEHOLDER_TOKENS, TokenizerAdapter

__all__ = [
    "ATTACHMENT_PLACEHOLDER_TOKENS",
    "DEFAULT_CONTEXT_SIZE",
    "MODEL_CONTEXT_SIZES",
    "PER_MESSAGE_OVERHEAD",
    "PRIMING_OVERHEAD",
    "BudgetTrimmer",
    "BudgetWindow",
    "TokenizerAdapter",
]
