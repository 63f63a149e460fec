"""
Unit tests for the summarizer and its archive.
"""

import sys
import tempfile
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from continuity.config import SummarizerConfig
from continuity.models import Artifact, Decision, ErrorRecord, Impact, Message
from continuity.summarizer import (
    Summarizer,
    SummaryArchive,
    compress_prose,
    format_topic_name,
)


def prose(topic: str, n: int) -> str:
    return f"Message {n} about {topic}. " + "We walked through the staging environment in detail. " * 6


class TestSummaryArchive:
    """Tests for the bounded summary archive."""

    @pytest.fixture
    def temp_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    def test_evicts_oldest_past_limit(self, temp_dir):
        archive = SummaryArchive(temp_dir, limit=3)
        for i in range(5):
            archive.save(f"summary-{i}", f"text {i}")

        assert [e.id for e in archive.entries] == ["summary-2", "summary-3", "summary-4"]
        assert sorted(p.stem for p in temp_dir.glob("*.md")) == ["summary-2", "summary-3", "summary-4"]
        assert archive.get("summary-0") is None
        assert archive.get("summary-4") == "text 4"

    def test_existing_files_count_toward_limit(self, temp_dir):
        for i in range(4):
            (temp_dir / f"old-{i}.md").write_text("old")

        archive = SummaryArchive(temp_dir, limit=2)

        assert len(archive) == 2
        assert len(list(temp_dir.glob("*.md"))) == 2

    def test_memory_only_archive(self):
        archive = SummaryArchive(None, limit=2)
        archive.save("a", "x")

        assert len(archive) == 1
        assert archive.get("a") is None


class TestSummarizeConversation:
    """Tests for conversation summaries."""

    @pytest.fixture
    def temp_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    def summarizer(self, temp_dir):
        return Summarizer(archive=SummaryArchive(temp_dir, limit=100))

    @pytest.mark.asyncio
    async def test_summary_is_smaller_and_archived(self, summarizer, temp_dir):
        messages = [Message(content=prose("deployment", i)) for i in range(5)]

        result = await summarizer.summarize_conversation(messages)

        assert result.summary_tokens < result.original_tokens
        assert 0 < result.compression_ratio < 1
        assert (temp_dir / f"{result.summary_id}.md").read_text() == result.summary

    @pytest.mark.asyncio
    async def test_topics_are_category_and_topic(self, summarizer):
        messages = [
            Message(content="Write the SQL query for the report"),
            Message(content="```python\ndef connect(): pass\n```"),
            Message(content="Hello there"),
        ]

        result = await summarizer.summarize_conversation(messages)

        assert "conversation_database" in result.topics
        assert "code_code" in result.topics
        assert "conversation_conversation" in result.topics

    @pytest.mark.asyncio
    async def test_without_topic_grouping_uses_categories(self, summarizer):
        messages = [Message(content="Write the SQL query"), Message(content="Hello there")]

        result = await summarizer.summarize_conversation(messages, group_by_topic=False)

        assert result.topics == ["conversation"]

    @pytest.mark.asyncio
    async def test_preserves_code_and_errors(self, summarizer):
        messages = [
            Message(content="Here is the fix:\n```python\nretry(connect)\n```"),
            Message(content="The build failed with a timeout error on CI"),
        ]

        result = await summarizer.summarize_conversation(messages, compression_level="light")

        assert "retry(connect)" in result.summary
        assert "Errors Encountered" in result.summary

    @pytest.mark.asyncio
    async def test_empty_input(self, summarizer, temp_dir):
        result = await summarizer.summarize_conversation([])

        assert result.summary == ""
        assert result.original_tokens == 0
        assert result.compression_ratio == 0.0
        assert list(temp_dir.glob("*.md")) == []

    @pytest.mark.asyncio
    async def test_unknown_compression_level(self, summarizer):
        with pytest.raises(ValueError):
            await summarizer.summarize_conversation([Message(content="x")], compression_level="max")


class TestCompression:
    """Tests for text compression helpers."""

    def test_compress_prose_keeps_code_fences(self):
        text = "The result is    that the cache was cold.\n```python\nx = 1\n```"
        compressed = compress_prose(text, 0)

        assert "```python\nx = 1\n```" in compressed
        assert "The " not in compressed
        assert "    " not in compressed

    def test_compress_to_target_stops_after_max_iterations(self):
        summarizer = Summarizer(config=SummarizerConfig(max_iterations=2))
        code_only = ["```\n" + "x = 1\n" * 100 + "```"]

        # Code blocks are never compressed, so the target is unreachable
        assert summarizer.compress_to_target(code_only, 0.1) == code_only

    def test_compress_to_target_shrinks(self):
        summarizer = Summarizer()
        text = ["The quick brown fox was jumping over the lazy dog. " * 20]

        compressed = summarizer.compress_to_target(text, 0.4)

        assert summarizer.estimate(compressed) < summarizer.estimate(text)

    def test_compress_message(self):
        summarizer = Summarizer()
        content = "Use   a cache.  For example it could be redis.\n```" + "y" * 1200 + "```"

        compressed = summarizer.compress_message(content)

        assert compressed == "Use a cache. ```[Code block truncated]```"


class TestHierarchicalSummary:
    """Tests for progressive-disclosure summaries."""

    CONTENT = (
        "The API needs rate limiting. It is getting hammered.\n\n"
        "- add a token bucket\n"
        "- return 429 with retry-after\n\n"
        "Tests cover the limiter. More tests later."
    )

    def test_levels(self):
        summary = Summarizer().create_hierarchical_summary(self.CONTENT, depth=3)

        assert summary.depth == 3
        assert len(summary.levels) == 3
        assert summary.expand(1) == "The API needs rate limiting. Tests cover the limiter."
        assert "• add a token bucket" in summary.expand(2)

    def test_expand_clamps_level(self):
        summary = Summarizer().create_hierarchical_summary(self.CONTENT, depth=1)

        assert summary.expand(0) == summary.levels[0]
        assert summary.expand(5) == summary.levels[0]


class TestSpecializedSummaries:
    """Tests for code, decision and error summaries."""

    def test_code_patterns(self):
        artifacts = {
            "api": Artifact(
                id="api",
                language="python",
                content="from fastapi import FastAPI\n\n@app.get('/')\nasync def root():\n    await x()\n",
            ),
            "ui": Artifact(id="ui", language="javascript", content="import React from 'react';\nconst f = () => 1;"),
        }

        summary = Summarizer().summarize_code_patterns(artifacts)

        assert "**python**: 1 artifacts" in summary
        assert "fastapi" in summary
        assert "react" in summary
        assert "async/await" in summary
        assert "decorators" in summary

    def test_decisions_grouped_by_impact(self):
        decisions = [
            Decision(summary="Use postgres", reasoning="JSONB support", impact=Impact.HIGH),
            Decision(summary="Tabs to spaces", impact=Impact.LOW),
        ]

        summary = Summarizer().summarize_decisions(decisions)

        assert summary.index("### High Impact") < summary.index("### Low Impact")
        assert "- Reasoning: JSONB support" in summary
        assert "Medium Impact" not in summary

    def test_decisions_without_reasoning(self):
        decisions = [Decision(summary="Use postgres", reasoning="JSONB", impact=Impact.HIGH)]

        summary = Summarizer().summarize_decisions(decisions, include_reasoning=False, group_by_impact=False)

        assert "Reasoning" not in summary
        assert "Impact" not in summary

    def test_errors_and_solutions(self):
        errors = [
            ErrorRecord(error="ImportError: foo", solution="pip install foo", resolved=True),
            ErrorRecord(error="Segfault in worker"),
        ]

        summary = Summarizer().summarize_errors_and_solutions(errors)

        assert "### Resolved (1)" in summary
        assert "**Solution**: pip install foo" in summary
        assert "- Segfault in worker" in summary


def test_format_topic_name():
    assert format_topic_name("code_database") == "Code - Database"
