"""Token estimation for context budgeting.

The default estimator is a character-count heuristic: fast, dependency
free, and within roughly 15-20% of real BPE tokenizers, which is enough
for budget planning. Anything with ``estimate(text)`` and ``model_name``
can stand in for it; :class:`TiktokenEstimator` is the precise option.
"""

import math
from enum import Enum
from functools import lru_cache
from typing import Protocol

import tiktoken


class TokenEstimator(Protocol):
    """Estimates token counts for text."""

    @property
    def model_name(self) -> str:
        ...

    def estimate(self, text: str) -> int:
        ...


class ModelFamily(Enum):
    GPT4 = "gpt-4"
    GPT35 = "gpt-3.5-turbo"
    CLAUDE = "claude"
    UNKNOWN = "unknown"

    @property
    def chars_per_token(self) -> float:
        return 3.5 if self is ModelFamily.CLAUDE else 4.0


def parse_model(name: str) -> ModelFamily:
    """Map a model name such as "claude-3-opus" or "gpt4o" to its family."""
    lower = name.lower()
    if "claude" in lower:
        return ModelFamily.CLAUDE
    if "gpt-4" in lower or "gpt4" in lower:
        return ModelFamily.GPT4
    if "gpt-3" in lower or "gpt3" in lower:
        return ModelFamily.GPT35
    return ModelFamily.UNKNOWN


class CharEstimator:
    """``ceil(utf8_bytes / chars_per_token)``; empty text is 0 tokens."""

    def __init__(self, family: ModelFamily = ModelFamily.GPT4):
        self.family = family
        self.chars_per_token = family.chars_per_token

    @property
    def model_name(self) -> str:
        return self.family.value

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text.encode("utf-8")) / self.chars_per_token)

    def __repr__(self) -> str:
        return f"CharEstimator({self.family.value}, {self.chars_per_token} chars/token)"


@lru_cache(maxsize=4)
def _get_tokenizer(encoding: str = "cl100k_base") -> tiktoken.Encoding:
    """Get cached tokenizer instance."""
    return tiktoken.get_encoding(encoding)


class TiktokenEstimator:
    """Exact BPE counts via tiktoken (OpenAI encodings)."""

    def __init__(self, encoding: str = "cl100k_base"):
        self.encoding = encoding

    @property
    def model_name(self) -> str:
        return f"tiktoken:{self.encoding}"

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return len(_get_tokenizer(self.encoding).encode(text, disallowed_special=()))


def default_estimator() -> CharEstimator:
    """GPT-4 heuristic, the most conservative ratio."""
    return CharEstimator(ModelFamily.GPT4)


def estimator_for_model(name: str, exact: bool = False) -> TokenEstimator:
    """Build the estimator for *name*; ``exact`` selects tiktoken."""
    if exact:
        return TiktokenEstimator()
    return CharEstimator(parse_model(name))


def estimate_tokens(text: str, family: ModelFamily = ModelFamily.GPT4) -> int:
    return CharEstimator(family).estimate(text)


def format_budget(used: int, total: int) -> str:
    """Format budget utilization string.

    Args:
        used: Tokens used.
        total: Total budget.

    Returns:
        Formatted string like "6,234 / 8,000 (77%)"
    """
    pct = int(used / total * 100) if total > 0 else 0
    return f"{used:,} / {total:,} ({pct}%)"
