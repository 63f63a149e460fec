"""
Message categorization and topic extraction.

Keyword/regex heuristics are approximate; callers depend only on the
Classifier protocol so an embedding-based implementation can replace
KeywordClassifier without touching the summarizer or tracker.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Protocol


class MessageCategory(str, Enum):
    """Coarse content categories used when summarizing."""

    CONVERSATION = "conversation"
    CODE = "code"
    ERRORS = "errors"
    DECISIONS = "decisions"
    FILES = "files"
    TASKS = "tasks"


class Classifier(Protocol):
    """Assigns a category and an optional topic to message text."""

    def categorize(self, content: str) -> MessageCategory:
        ...

    def topic(self, content: str) -> str | None:
        ...


class KeywordClassifier:
    """
    Heuristic classifier based on keywords and regex patterns.

    Category checks run in a fixed order and the first match wins:
    code, errors, decisions, files, tasks, then conversation.
    """

    CATEGORY_PATTERNS: list[tuple[MessageCategory, list[str]]] = [
        (MessageCategory.CODE, [r"```", r"\bfunction\b", r"\bclass\b", r"\bdef\s+\w+\("]),
        (MessageCategory.ERRORS, [r"error", r"\bfix", r"exception", r"traceback"]),
        (MessageCategory.DECISIONS, [r"\bdecided\b", r"\bshould\b", r"\bwill\b"]),
        (
            MessageCategory.FILES,
            [r"\.(?:py|js|ts|jsx|tsx|css|html|json|toml|ya?ml|md)\b"],
        ),
        (MessageCategory.TASKS, [r"\btasks?\b", r"TODO"]),
    ]

    # Checked in order; the first matching topic wins
    TOPIC_PATTERNS: dict[str, str] = {
        "authentication": r"auth|login|user|session",
        "database": r"database|\bdb\b|sql|query|schema",
        "api": r"\bapi\b|endpoint|route|request|response",
        "frontend": r"component|react|vue|\bui\b|style",
        "backend": r"server|express|node|middleware",
        "testing": r"test|spec|jest|pytest|mocha|expect",
        "deployment": r"deploy|build|docker|\bci\b|\bcd\b",
        "configuration": r"config|\benv\b|setup|install",
    }

    def __init__(self):
        self._category_regexes = [
            (category, [re.compile(p, re.IGNORECASE) for p in patterns])
            for category, patterns in self.CATEGORY_PATTERNS
        ]
        self._topic_regexes = {
            topic: re.compile(pattern, re.IGNORECASE)
            for topic, pattern in self.TOPIC_PATTERNS.items()
        }

    def categorize(self, content: str) -> MessageCategory:
        for category, regexes in self._category_regexes:
            if any(r.search(content) for r in regexes):
                return category
        return MessageCategory.CONVERSATION

    def topic(self, content: str) -> str | None:
        for topic, regex in self._topic_regexes.items():
            if regex.search(content):
                return topic
        return None


__all__ = [
    "MessageCategory",
    "Classifier",
    "KeywordClassifier",
]
