"""
Summarizer / Compactor.

Turns a run of messages into a compact Markdown summary:

1. categorize each message (code, errors, decisions, files, tasks, conversation)
2. optionally bucket each category by topic
3. write one summary per bucket
4. compress the summaries until they reach the target ratio
5. archive the result (bounded ring buffer of Markdown files)

Stateless per call apart from the archive.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
import time
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .classifier import Classifier, KeywordClassifier, MessageCategory
from .config import SummarizerConfig
from .models import Artifact, Decision, ErrorRecord, Impact, Message, utcnow
from .tokens import TokenEstimator, default_estimator, estimate_tokens

logger = logging.getLogger(__name__)

DEPTH_LEVELS = {"shallow": 1, "normal": 2, "deep": 3}

# Per depth level: (key points, code snippets, error lines)
_DEPTH_LIMITS = {1: (3, 1, 2), 2: (5, 2, 3), 3: (10, 3, 5)}

_STOP_WORDS = re.compile(
    r"\b(?:the|a|an|is|are|was|were|been|be|have|has|had|do|does|did)\b ?",
    re.IGNORECASE,
)
_FENCE = re.compile(r"(```[\s\S]*?```)")
_CODE_BLOCK = re.compile(r"```(\w*)\n([\s\S]*?)```")
_BULLET = re.compile(r"^\s*[-*]\s+(.+)$", re.MULTILINE)
_NUMBERED = re.compile(r"^\s*\d+\.\s+(.+)$", re.MULTILINE)
_FILE_REF = re.compile(r"[\w\-/]+\.[A-Za-z]\w*")
_SENTENCE = re.compile(r"^[^.!?]+[.!?]")
_LONG_CODE = re.compile(r"```[\s\S]{1000,}?```")
_VERBOSE = [
    re.compile(r"For example[^.]*\.\s*"),
    re.compile(r"In other words[^.]*\.\s*"),
]

_JS_IMPORT = re.compile(r"import\s+.+?\s+from\s+['\"]([^'\"]+)['\"]")
_JS_REQUIRE = re.compile(r"require\s*\(\s*['\"]([^'\"]+)['\"]\s*\)")
_PY_IMPORT = re.compile(r"^\s*(?:from\s+([\w.]+)\s+import|import\s+([\w.]+))", re.MULTILINE)

_FRAMEWORKS = {
    "react": re.compile(r"\bReact\b|useState|useEffect"),
    "vue": re.compile(r"\bVue\b|defineComponent"),
    "express": re.compile(r"express\(\)|require\(['\"]express['\"]\)"),
    "fastapi": re.compile(r"\bFastAPI\b|from fastapi"),
    "flask": re.compile(r"\bFlask\(|from flask"),
    "django": re.compile(r"from django|import django"),
}


@dataclass
class SummaryResult:
    """Outcome of summarize_conversation."""

    summary: str
    summary_id: str
    original_tokens: int
    summary_tokens: int
    compression_ratio: float  # 1 - summary/original; 0.0 when nothing to summarize
    topics: list[str] = field(default_factory=list)


@dataclass
class HierarchicalSummary:
    """
    Progressive-disclosure summary.

    levels[0] is a single paragraph, levels[1] bullet key points,
    levels[2] a lightly trimmed detail view.
    """

    levels: list[str]
    depth: int

    def expand(self, level: int) -> str:
        """Text for a 1-based level, clamped to the available levels."""
        if not self.levels:
            return ""
        index = max(0, min(level - 1, len(self.levels) - 1))
        return self.levels[index]


@dataclass
class ArchiveEntry:
    id: str
    timestamp: datetime
    size: int


class SummaryArchive:
    """
    Bounded archive of summaries, one Markdown file per entry.

    Keeps the newest `limit` entries; saving past the limit deletes the
    oldest file. Existing files are picked up (oldest first by mtime) so
    the bound holds across restarts.
    """

    def __init__(self, directory: Path | None = None, limit: int = 100):
        self.directory = directory
        self.limit = limit
        self._entries: deque[ArchiveEntry] = deque()
        if directory is not None:
            directory.mkdir(parents=True, exist_ok=True)
            self._load_existing()

    def _load_existing(self) -> None:
        files = sorted(self.directory.glob("*.md"), key=lambda p: p.stat().st_mtime)
        for path in files:
            stat = path.stat()
            self._entries.append(
                ArchiveEntry(
                    id=path.stem,
                    timestamp=datetime.fromtimestamp(stat.st_mtime).astimezone(),
                    size=stat.st_size,
                )
            )
        while len(self._entries) > self.limit:
            self._evict()

    def _path(self, summary_id: str) -> Path:
        return self.directory / f"{summary_id}.md"

    def _evict(self) -> None:
        oldest = self._entries.popleft()
        if self.directory is not None:
            self._path(oldest.id).unlink(missing_ok=True)

    def save(self, summary_id: str, summary: str) -> None:
        """Persist a summary, evicting the oldest entry past the limit."""
        if self.directory is not None:
            self._path(summary_id).write_text(summary, encoding="utf-8")
        self._entries.append(ArchiveEntry(id=summary_id, timestamp=utcnow(), size=len(summary)))
        while len(self._entries) > self.limit:
            self._evict()

    def get(self, summary_id: str) -> str | None:
        if self.directory is None:
            return None
        path = self._path(summary_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    @property
    def entries(self) -> list[ArchiveEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def new_summary_id() -> str:
    return f"summary-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def format_topic_name(topic: str) -> str:
    """'code_database' -> 'Code - Database'."""
    return " - ".join(word[:1].upper() + word[1:] for word in topic.split("_"))


def extract_key_points(content: str) -> list[str]:
    points = [m.strip() for m in _BULLET.findall(content)]
    points.extend(m.strip() for m in _NUMBERED.findall(content))
    return points


def extract_code_snippets(content: str) -> list[tuple[str, str]]:
    """(language, code) pairs for fenced blocks, code capped at 500 chars."""
    return [
        (language or "text", code.strip()[:500])
        for language, code in _CODE_BLOCK.findall(content)
    ]


def extract_error_lines(content: str) -> list[str]:
    errors = []
    for line in content.split("\n"):
        lowered = line.lower()
        if "error" in lowered or "exception" in lowered or "failed" in lowered:
            errors.append(line.strip()[:200])
    return errors


def extract_file_references(content: str) -> list[str]:
    return [
        match
        for match in _FILE_REF.findall(content)
        if "http" not in match and "www" not in match
    ]


def compress_prose(text: str, iteration: int) -> str:
    """
    One compression pass over text; fenced code blocks are left intact.

    Strips stop words, collapses whitespace and trims each prose line to a
    length that shrinks with every iteration.
    """
    limit = max(40, 200 - 40 * iteration)
    parts = _FENCE.split(text)
    out = []
    for part in parts:
        if part.startswith("```"):
            out.append(part)
            continue
        part = _STOP_WORDS.sub("", part)
        lines = []
        for line in part.split("\n"):
            line = re.sub(r"[ \t]+", " ", line).strip()
            if not line:
                continue
            if len(line) > limit:
                cut = line[:limit]
                end = max(cut.rfind(". "), cut.rfind("! "), cut.rfind("? "))
                line = cut[: end + 1] if end > limit // 2 else cut.rstrip() + "…"
            lines.append(line)
        out.append("\n".join(lines))
    return "\n".join(p for p in out if p)


class Summarizer:
    """
    Heuristic summarizer used by the tracker (compaction) and the restorer
    (history tail).
    """

    def __init__(
        self,
        config: SummarizerConfig | None = None,
        classifier: Classifier | None = None,
        estimator: TokenEstimator | None = None,
        archive: SummaryArchive | None = None,
    ):
        self.config = config or SummarizerConfig()
        self.classifier = classifier or KeywordClassifier()
        self.estimator = estimator or default_estimator
        if archive is None:
            archive = SummaryArchive(None, self.config.archive_limit)
        self.archive = archive

    def estimate(self, content) -> int:
        return estimate_tokens(content, self.estimator)

    def target_ratio(self, compression_level: str) -> float:
        try:
            return self.config.compression_targets[compression_level]
        except KeyError:
            raise ValueError(f"Unknown compression level: {compression_level}") from None

    # ------------------------------------------------------------------
    # Conversation summaries
    # ------------------------------------------------------------------

    def categorize_messages(self, messages: Iterable[Message]) -> dict[str, list[Message]]:
        categorized: dict[str, list[Message]] = {c.value: [] for c in MessageCategory}
        for msg in messages:
            categorized[self.classifier.categorize(msg.content).value].append(msg)
        return categorized

    def group_by_topic(self, categorized: Mapping[str, list[Message]]) -> dict[str, list[Message]]:
        """Bucket each category by topic; keys are '<category>_<topic>'."""
        grouped: dict[str, list[Message]] = {}
        for category, messages in categorized.items():
            for msg in messages:
                topic = self.classifier.topic(msg.content) or category
                grouped.setdefault(f"{category}_{topic}", []).append(msg)
        return grouped

    def create_topic_summary(
        self,
        topic: str,
        messages: list[Message],
        depth: int = 2,
        preserve_code: bool = True,
        preserve_errors: bool = True,
    ) -> str:
        max_points, max_snippets, max_errors = _DEPTH_LIMITS[depth]

        overview_parts = [
            " ".join(_FENCE.sub("[code]", m.content).split())[:100] for m in messages[:3]
        ]
        overview = "... ".join(overview_parts)[:200] + "..." if overview_parts else ""

        key_points: list[str] = []
        snippets: list[tuple[str, str]] = []
        errors: list[str] = []
        files: list[str] = []
        for msg in messages:
            for point in extract_key_points(msg.content):
                if point not in key_points:
                    key_points.append(point)
            snippets.extend(extract_code_snippets(msg.content))
            errors.extend(extract_error_lines(msg.content))
            for ref in extract_file_references(msg.content):
                if ref not in files:
                    files.append(ref)

        lines = [f"### {format_topic_name(topic)}", ""]
        if overview:
            lines += [overview, ""]
        if key_points:
            lines.append("**Key Points:**")
            lines += [f"- {p}" for p in key_points[:max_points]]
            lines.append("")
        if files and depth >= 2:
            lines += [f"**Files:** {', '.join(files[:10])}", ""]
        if preserve_code and snippets:
            lines.append("**Code References:**")
            for language, code in snippets[:max_snippets]:
                lines += [f"```{language}", code, "```"]
            lines.append("")
        if preserve_errors and errors:
            lines.append("**Errors Encountered:**")
            lines += [f"- {e}" for e in errors[:max_errors]]
            lines.append("")
        return "\n".join(lines).strip()

    def compress_to_target(self, summaries: list[str], target_ratio: float) -> list[str]:
        """Compress until tokens <= target_ratio * original or max_iterations pass."""
        target = self.estimate(summaries) * target_ratio
        compressed = list(summaries)
        iteration = 0
        while self.estimate(compressed) > target and iteration < self.config.max_iterations:
            compressed = [compress_prose(s, iteration) for s in compressed]
            iteration += 1
        logger.debug("Compressed summaries in %d iteration(s)", iteration)
        return compressed

    def format_final_summary(self, summaries: list[str], message_count: int) -> str:
        body = "\n\n".join(s for s in summaries if s)
        return (
            f"# Conversation Summary\n"
            f"*{message_count} messages, generated {utcnow().isoformat()}*\n\n"
            f"{body}\n"
        )

    def build_summary(
        self,
        messages: list[Message],
        compression_level: str = "normal",
        depth: str = "normal",
        preserve_code: bool = True,
        preserve_errors: bool = True,
        group_by_topic: bool = True,
    ) -> tuple[str, list[str]]:
        """
        Produce summary text and topic keys without archiving anything.

        Returns:
            (summary text, bucket keys)
        """
        ratio = self.target_ratio(compression_level)
        depth_level = DEPTH_LEVELS.get(depth, 2)

        categorized = self.categorize_messages(messages)
        if group_by_topic:
            grouped = self.group_by_topic(categorized)
        else:
            grouped = {k: v for k, v in categorized.items() if v}

        summaries = [
            self.create_topic_summary(
                topic,
                msgs,
                depth=depth_level,
                preserve_code=preserve_code,
                preserve_errors=preserve_errors,
            )
            for topic, msgs in grouped.items()
        ]
        compressed = self.compress_to_target(summaries, ratio)
        return self.format_final_summary(compressed, len(messages)), list(grouped.keys())

    async def summarize_conversation(
        self,
        messages: list[Message],
        compression_level: str = "normal",
        depth: str = "normal",
        preserve_code: bool = True,
        preserve_errors: bool = True,
        group_by_topic: bool = True,
        archive: bool = True,
    ) -> SummaryResult:
        """
        Summarize messages and archive the result.

        Args:
            messages: Messages to summarize, oldest first
            compression_level: "aggressive" (0.2), "normal" (0.4) or "light" (0.7)
            depth: "shallow", "normal" or "deep"
            preserve_code: Keep fenced code snippets
            preserve_errors: Keep error lines
            group_by_topic: Bucket each category by topic
            archive: Archive the summary now; callers that may discard it
                pass False and call archive_summary() once it is used

        Returns:
            SummaryResult with token accounting and the topic keys used
        """
        original_tokens = self.estimate([m.content for m in messages])
        summary_id = new_summary_id()
        if not messages:
            return SummaryResult("", summary_id, 0, 0, 0.0, [])

        logger.info("Summarizing %d messages", len(messages))
        summary, topics = self.build_summary(
            messages,
            compression_level=compression_level,
            depth=depth,
            preserve_code=preserve_code,
            preserve_errors=preserve_errors,
            group_by_topic=group_by_topic,
        )
        summary_tokens = self.estimate(summary)
        ratio = 1 - (summary_tokens / original_tokens) if original_tokens else 0.0

        if archive:
            await self.archive_summary(summary_id, summary)

        logger.info("Summarization complete: %.1f%% reduction", ratio * 100)
        return SummaryResult(
            summary=summary,
            summary_id=summary_id,
            original_tokens=original_tokens,
            summary_tokens=summary_tokens,
            compression_ratio=ratio,
            topics=topics,
        )

    async def archive_summary(self, summary_id: str, summary: str) -> None:
        try:
            await asyncio.to_thread(self.archive.save, summary_id, summary)
        except OSError as e:
            logger.warning("Failed to archive summary %s: %s", summary_id, e)

    def compress_message(self, content: str) -> str:
        """Light single-message compression used for medium-priority content."""
        compressed = _LONG_CODE.sub("```[Code block truncated]```", content)
        for pattern in _VERBOSE:
            compressed = pattern.sub("", compressed)
        return re.sub(r"\s+", " ", compressed).strip()

    # ------------------------------------------------------------------
    # Hierarchical summaries
    # ------------------------------------------------------------------

    def create_hierarchical_summary(self, content: str, depth: int = 2) -> HierarchicalSummary:
        """Up to three levels: paragraph, key points, trimmed detail."""
        depth = max(1, min(depth, 3))
        levels = [self._one_paragraph(content)]
        if depth >= 2:
            levels.append(self._key_points(content))
        if depth >= 3:
            levels.append(self._detailed(content))
        return HierarchicalSummary(levels=levels, depth=depth)

    def _one_paragraph(self, content: str) -> str:
        sentences = []
        for section in content.split("\n\n")[:3]:
            match = _SENTENCE.match(section.strip())
            if match:
                sentences.append(match.group(0).strip())
        if not sentences:
            return content.strip()[:200]
        return " ".join(sentences)

    def _key_points(self, content: str) -> str:
        points = extract_key_points(content)
        if not points:
            lines = [line for line in content.split("\n") if line.strip()]
            return "\n".join(f"• {line.strip()[:100]}" for line in lines[:5])
        return "\n".join(f"• {p}" for p in points[:10])

    def _detailed(self, content: str) -> str:
        return "\n".join(line[:200] for line in content.split("\n") if line.strip())

    # ------------------------------------------------------------------
    # Specialized summaries
    # ------------------------------------------------------------------

    def _maybe_compress(self, text: str, compression_level: str | None) -> str:
        if compression_level is None:
            return text
        return "\n\n".join(self.compress_to_target([text], self.target_ratio(compression_level)))

    def summarize_code_patterns(
        self,
        artifacts: Mapping[str, Artifact] | Iterable[Artifact],
        compression_level: str | None = None,
    ) -> str:
        """Markdown overview of languages, frameworks, patterns and dependencies."""
        items = list(artifacts.values()) if isinstance(artifacts, Mapping) else list(artifacts)

        by_language: dict[str, list[Artifact]] = {}
        frameworks: list[str] = []
        patterns: dict[str, int] = {}
        dependencies: list[str] = []
        style: dict[str, str] = {}

        for artifact in items:
            by_language.setdefault(artifact.language or "unknown", []).append(artifact)
            content = artifact.content

            found: list[str] = []
            if "async" in content and "await" in content:
                found.append("async/await")
            if "=>" in content:
                found.append("arrow-functions")
                style["functions"] = "arrow"
            if re.search(r"^\s*@\w+", content, re.MULTILINE):
                found.append("decorators")
            if re.search(r"\bclass\s+\w+", content):
                found.append("classes")
            if re.search(r"def \w+\(.*?:\s*\w+.*?\)\s*->", content):
                found.append("type-hints")
            for pattern in found:
                patterns[pattern] = patterns.get(pattern, 0) + 1

            for name, regex in _FRAMEWORKS.items():
                if regex.search(content) and name not in frameworks:
                    frameworks.append(name)

            deps = _JS_IMPORT.findall(content) + _JS_REQUIRE.findall(content)
            deps += [a or b for a, b in _PY_IMPORT.findall(content)]
            deps += artifact.dependencies
            for dep in deps:
                if dep and dep not in dependencies:
                    dependencies.append(dep)

            style["indentation"] = "tabs" if "\t" in content else "spaces"

        lines = ["## Code Patterns Summary", "", "### Languages Used"]
        for language, group in by_language.items():
            ids = ", ".join(a.id for a in group[:3])
            lines.append(f"- **{language}**: {len(group)} artifacts ({ids})")
        lines += ["", "### Frameworks Detected", ", ".join(frameworks) or "None detected"]
        lines += ["", "### Common Patterns"]
        top = sorted(patterns.items(), key=lambda kv: kv[1], reverse=True)[:5]
        lines += [f"- {name} ({count} occurrences)" for name, count in top] or ["None detected"]
        lines += ["", "### Dependencies"]
        deps_text = ", ".join(dependencies[:10])
        lines.append(deps_text + ("..." if len(dependencies) > 10 else "") if deps_text else "None")
        lines += ["", "### Code Style"]
        lines += [f"- {k}: {v}" for k, v in style.items()] or ["No specific style detected"]
        return self._maybe_compress("\n".join(lines), compression_level)

    def summarize_decisions(
        self,
        decisions: Iterable[Decision],
        include_reasoning: bool = True,
        group_by_impact: bool = True,
        compression_level: str | None = None,
    ) -> str:
        decisions = list(decisions)
        if group_by_impact:
            order = [Impact.CRITICAL, Impact.HIGH, Impact.MEDIUM, Impact.LOW]
            grouped = {impact.value: [d for d in decisions if d.impact == impact] for impact in order}
        else:
            grouped = {"all": decisions}

        lines = ["## Decisions Made", ""]
        for impact, group in grouped.items():
            if not group:
                continue
            if group_by_impact:
                lines += [f"### {impact.capitalize()} Impact", ""]
            for decision in group[:5]:
                lines.append(f"**{decision.summary}**")
                if include_reasoning and decision.reasoning:
                    lines.append(f"- Reasoning: {decision.reasoning[:200]}")
                lines += [f"- Timestamp: {decision.timestamp.isoformat()}", ""]
        return self._maybe_compress("\n".join(lines).strip(), compression_level)

    def summarize_errors_and_solutions(
        self,
        errors: Iterable[ErrorRecord],
        compression_level: str | None = None,
    ) -> str:
        errors = list(errors)
        resolved = [e for e in errors if e.resolved]
        unresolved = [e for e in errors if not e.resolved]

        lines = ["## Errors and Solutions", ""]
        if resolved:
            lines += [f"### Resolved ({len(resolved)})", ""]
            for error in resolved[:5]:
                lines += [f"**Error**: {error.error}", f"**Solution**: {error.solution}", ""]
        if unresolved:
            lines += [f"### Unresolved ({len(unresolved)})", ""]
            lines += [f"- {error.error}" for error in unresolved[:5]]
        return self._maybe_compress("\n".join(lines).strip(), compression_level)


__all__ = [
    "DEPTH_LEVELS",
    "SummaryResult",
    "HierarchicalSummary",
    "ArchiveEntry",
    "SummaryArchive",
    "Summarizer",
    "new_summary_id",
    "format_topic_name",
    "extract_key_points",
    "extract_code_snippets",
    "extract_error_lines",
    "extract_file_references",
    "compress_prose",
]
