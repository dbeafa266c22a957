"""Token counting for plain and multi-part message content."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from functools import lru_cache
from typing import Any, Protocol

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_ENCODING_NAME = "cl100k_base"
ATTACHMENT_PLACEHOLDER_TOKENS = 1
"""Fixed cost of any non-text content part (image, document, unknown kinds)."""

_APPROX_BYTES_PER_TOKEN = 4
_TEXT_CACHE_SIZE = 4096


class Encoding(Protocol):
    """Subset of ``tiktoken.Encoding`` used for counting."""

    def encode(self, text: str, *, disallowed_special: Any = ...) -> list[int]:
        """Return token ids for ``text``."""


class TokenizerAdapter:
    """Counts tokens with a fixed sub-word vocabulary.

    The encoding is loaded lazily on first use. If it cannot be loaded the adapter
    falls back to a byte-length approximation so callers always get an estimate.
    """

    def __init__(
        self,
        *,
        encoding_name: str = DEFAULT_ENCODING_NAME,
        encoding: Encoding | None = None,
        placeholder_tokens: int = ATTACHMENT_PLACEHOLDER_TOKENS,
    ) -> None:
        self.encoding_name = encoding_name
        self.placeholder_tokens = max(0, int(placeholder_tokens))
        self._encoding = encoding
        self._encoding_failed = False
        self._count_text = lru_cache(maxsize=_TEXT_CACHE_SIZE)(self._encode_length)

    def count(self, content: Any) -> int:
        """Return the token count of a string or a list of content parts."""

        if content is None:
            return 0
        if isinstance(content, str):
            return self._count_text(content) if content else 0
        if isinstance(content, Mapping):
            return self._count_part(content)
        if isinstance(content, Sequence):
            return sum(self._count_part(part) for part in content)
        return self.placeholder_tokens

    def _count_part(self, part: Any) -> int:
        if isinstance(part, str):
            return self.count(part)
        if isinstance(part, Mapping) and part.get("type") == "text":
            text = part.get("text")
            return self.count(text) if isinstance(text, str) else 0
        return self.placeholder_tokens

    def _encode_length(self, text: str) -> int:
        encoding = self._get_encoding()
        if encoding is None:
            return _approximate_tokens(text)
        return len(encoding.encode(text, disallowed_special=()))

    def _get_encoding(self) -> Encoding | None:
        if self._encoding is not None or self._encoding_failed:
            return self._encoding
        try:
            self._encoding = tiktoken.get_encoding(self.encoding_name)
        except Exception:
            self._encoding_failed = True
            logger.warning(
                "tokenizer.encoding_unavailable encoding=%s; using byte-length approximation",
                self.encoding_name,
                exc_info=True,
            )
        return self._encoding


def _approximate_tokens(text: str) -> int:
    data = text.encode("utf-8", errors="ignore")
    return max(1, math.ceil(len(data) / _APPROX_BYTES_PER_TOKEN))
