"""Token estimation and budget trimming for prompt assembly.

Token counts are an approximation: the provider's tokenizer is not available
locally, so the default estimator assumes one token per 0.75 words. The
estimator is injected wherever it is used so a real tokenizer can replace it.
"""

from __future__ import annotations

import math
from typing import Protocol

WORDS_PER_TOKEN = 0.75

# Fraction of the proportional cut we aim for, and how far back we accept
# a clean break instead of a hard cut.
_TRIM_SAFETY_RATIO = 0.95
_BREAK_MIN_RATIO = 0.8

TRUNCATION_NOTICE = "\n\n[Contexto parcial - contenido completo disponible para consulta...]"


class TokenEstimator(Protocol):
    """Anything that can estimate the token count of a text."""

    def estimate(self, text: str) -> int: ...


class WordCountEstimator:
    """Estimate tokens from whitespace-separated word count."""

    def __init__(self, words_per_token: float = WORDS_PER_TOKEN) -> None:
        self.words_per_token = words_per_token

    def estimate(self, text: str) -> int:
        words = [w for w in text.strip().split() if w]
        if not words:
            return 0
        return math.ceil(len(words) / self.words_per_token)


def trim_to_token_limit(
    text: str,
    max_tokens: int,
    estimator: TokenEstimator | None = None,
) -> str:
    """Trim *text* so that its estimated size fits *max_tokens*.

    Cuts proportionally, preferring the last ``---`` separator, then the last
    paragraph break, when one sits past 80 % of the target length. A notice
    is appended whenever content was dropped.
    """
    estimator = estimator or WordCountEstimator()
    estimated = estimator.estimate(text)
    if estimated <= max_tokens:
        return text
    notice_tokens = estimator.estimate(TRUNCATION_NOTICE)
    if max_tokens <= notice_tokens:
        return ""

    target_length = int(len(text) * (max_tokens / estimated) * _TRIM_SAFETY_RATIO)
    while target_length > 0:
        trimmed = _cut_at_break(text[:target_length], target_length) + TRUNCATION_NOTICE
        if estimator.estimate(trimmed) <= max_tokens:
            return trimmed
        # Word density is uneven; shrink until the estimate fits.
        target_length = int(target_length * 0.9)
    return ""


def _cut_at_break(trimmed: str, target_length: int) -> str:
    last_separator = trimmed.rfind("---")
    if last_separator >= target_length * _BREAK_MIN_RATIO:
        return trimmed[:last_separator]
    last_paragraph = trimmed.rfind("\n\n")
    if last_paragraph >= target_length * _BREAK_MIN_RATIO:
        return trimmed[:last_paragraph]
    return trimmed
