"""
Unit tests for token estimation and message classification.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from continuity.classifier import KeywordClassifier, MessageCategory
from continuity.tokens import CharRatioEstimator, estimate_tokens


class TestCharRatioEstimator:
    """Tests for the default ~4 chars/token estimator."""

    def test_rounds_up(self):
        estimator = CharRatioEstimator()
        assert estimator.estimate("abcd") == 1
        assert estimator.estimate("abcde") == 2

    def test_empty_text_is_zero(self):
        assert CharRatioEstimator().estimate("") == 0

    def test_custom_ratio(self):
        assert CharRatioEstimator(chars_per_token=2).estimate("abcdef") == 3

    def test_rejects_non_positive_ratio(self):
        with pytest.raises(ValueError):
            CharRatioEstimator(chars_per_token=0)


class TestEstimateTokens:
    """Tests for estimate_tokens input handling."""

    def test_none_is_zero(self):
        assert estimate_tokens(None) == 0

    def test_string_list_joined_with_space(self):
        # "ab cd" -> 5 chars -> 2 tokens
        assert estimate_tokens(["ab", "cd"]) == 2

    def test_structured_values_are_json_encoded(self):
        value = {"tool": "grep", "parameters": {"pattern": "x"}}
        assert estimate_tokens(value) > 0

    def test_uses_injected_estimator(self):
        class Fixed:
            def estimate(self, text):
                return 42

        assert estimate_tokens("anything", Fixed()) == 42


class TestKeywordClassifier:
    """Tests for heuristic categorization and topic extraction."""

    @pytest.fixture
    def classifier(self):
        return KeywordClassifier()

    @pytest.mark.parametrize(
        "content,expected",
        [
            ("```python\nprint('x')\n```", MessageCategory.CODE),
            ("I got a traceback when running it", MessageCategory.ERRORS),
            ("We decided to use postgres", MessageCategory.DECISIONS),
            ("Open main.py please", MessageCategory.FILES),
            ("Add a task for tomorrow", MessageCategory.TASKS),
            ("Hello there", MessageCategory.CONVERSATION),
        ],
    )
    def test_categorize(self, classifier, content, expected):
        assert classifier.categorize(content) == expected

    def test_code_wins_over_errors(self, classifier):
        """Categories are checked in a fixed order; code comes first."""
        content = "```\nraise Exception('error')\n```"
        assert classifier.categorize(content) == MessageCategory.CODE

    def test_topic(self, classifier):
        assert classifier.topic("The login page is broken") == "authentication"
        assert classifier.topic("Write the SQL query") == "database"
        assert classifier.topic("Deploy with docker") == "deployment"

    def test_no_topic(self, classifier):
        assert classifier.topic("nothing here") is None
