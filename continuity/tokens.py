"""Token estimation.

Estimates are a heuristic and are not tied to any particular model's
tokenizer. Swap in a different estimator through the TokenEstimator
protocol.
"""

from __future__ import annotations

import json
import math
from typing import Any, Protocol


class TokenEstimator(Protocol):
    """Anything that turns text into an approximate token count."""

    def estimate(self, text: str) -> int:
        ...


class CharRatioEstimator:
    """ceil(len(text) / chars_per_token), ~4 characters per token by default."""

    def __init__(self, chars_per_token: float = 4.0):
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)


default_estimator = CharRatioEstimator()


def estimate_tokens(content: Any, estimator: TokenEstimator | None = None) -> int:
    """
    Estimate tokens for text, a list of texts, or any JSON-serializable value.

    Lists of strings are joined with a single space before estimation.
    """
    estimator = estimator or default_estimator
    if content is None:
        return 0
    if isinstance(content, list) and all(isinstance(c, str) for c in content):
        text = " ".join(content)
    elif isinstance(content, str):
        text = content
    else:
        text = json.dumps(content, default=str, sort_keys=True)
    return estimator.estimate(text)


__all__ = [
    "TokenEstimator",
    "CharRatioEstimator",
    "default_estimator",
    "estimate_tokens",
]
