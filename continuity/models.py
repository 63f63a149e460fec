"""
Data model for sessions, checkpoints and the tracked conversation context.

Pydantic models; the persisted form is produced by continuity.serialization.
"""

from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_item_id() -> str:
    return secrets.token_hex(8)


def new_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class SessionStatus(str, Enum):
    """Session lifecycle state."""

    ACTIVE = "active"
    RESUMED = "resumed"
    ENDED = "ended"


class Impact(str, Enum):
    """Impact of an architectural decision."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


HIGH_IMPACT = frozenset({Impact.HIGH, Impact.CRITICAL})


class FileOpType(str, Enum):
    """Kinds of file operation recorded per path."""

    READ = "read"
    WRITE = "write"
    EDIT = "edit"


class Priority(IntEnum):
    """Retention priority for messages."""

    LOW = 1
    MEDIUM = 10
    HIGH = 100
    CRITICAL = 1000


class Message(BaseModel):
    """One conversation message."""

    id: str = Field(default_factory=new_item_id)
    role: str = "user"
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    priority: int | None = None
    tokens: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)
    compressed: bool = False

    @property
    def is_summary(self) -> bool:
        return self.metadata.get("type") == "summary"


class Artifact(BaseModel):
    """A code artifact produced during the conversation."""

    id: str
    language: str | None = None
    content: str
    purpose: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    tokens: int = 0


class FileOperation(BaseModel):
    """A single read/write/edit on a tracked path."""

    type: FileOpType
    timestamp: datetime = Field(default_factory=utcnow)
    tokens: int = 0


class Decision(BaseModel):
    """An architectural decision and its reasoning."""

    summary: str
    reasoning: str = ""
    impact: Impact = Impact.MEDIUM
    timestamp: datetime = Field(default_factory=utcnow)
    tokens: int = 0


class ErrorRecord(BaseModel):
    """An error seen in the conversation, optionally with its solution."""

    error: str
    solution: str | None = None
    resolved: bool = False
    timestamp: datetime = Field(default_factory=utcnow)
    tokens: int = 0


class Task(BaseModel):
    """A unit of work the conversation is pursuing."""

    id: str = Field(default_factory=new_item_id)
    description: str
    completed: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    tokens: int = 0


class ToolUsage(BaseModel):
    """A tool invocation (parameters plus a short result preview)."""

    tool: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    result_preview: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    tokens: int = 0


class ContextData(BaseModel):
    """
    Everything tracked for a conversation.

    Embedded in Session and Checkpoint. Use clone() whenever a copy must
    not share any mutable state with the original.
    """

    messages: list[Message] = Field(default_factory=list)
    artifacts: dict[str, Artifact] = Field(default_factory=dict)
    files: dict[str, list[FileOperation]] = Field(default_factory=dict)
    decisions: list[Decision] = Field(default_factory=list)
    errors: list[ErrorRecord] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    tool_usage: list[ToolUsage] = Field(default_factory=list)

    def clone(self) -> ContextData:
        """Structurally independent deep copy."""
        return self.model_copy(deep=True)


class SessionMetrics(BaseModel):
    """Counters accumulated over a session's life."""

    message_count: int = 0
    token_usage: int = 0
    compaction_count: int = 0
    file_operations: int = 0
    artifact_creations: int = 0
    duration: float | None = None  # seconds, set when the session ends


class CheckpointRef(BaseModel):
    """Lightweight reference kept on the session."""

    id: str
    timestamp: datetime
    label: str | None = None


class Session(BaseModel):
    """A persisted conversation session."""

    id: str = Field(default_factory=new_session_id, frozen=True)
    project_name: str = "default"
    start_time: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    status: SessionStatus = SessionStatus.ACTIVE

    parent_session_id: str | None = None
    branch_point: datetime | None = None
    children: list[str] = Field(default_factory=list)

    context: ContextData = Field(default_factory=ContextData)
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)
    checkpoints: list[CheckpointRef] = Field(default_factory=list)

    @property
    def is_live(self) -> bool:
        return self.status != SessionStatus.ENDED

    def elapsed_seconds(self, now: datetime | None = None) -> float:
        end = self.end_time or now or utcnow()
        return (end - self.start_time).total_seconds()


class Checkpoint(BaseModel):
    """Named snapshot of a session's context and metrics."""

    id: str = Field(default_factory=new_item_id)
    session_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    name: str
    label: str | None = None
    description: str | None = None
    context: ContextData
    metrics: SessionMetrics
    files: list[str] | None = None
    artifacts: list[str] | None = None

    model_config = {"frozen": True}


class ActivePointer(BaseModel):
    """The single record naming the session currently in use."""

    session_id: str
    timestamp: datetime = Field(default_factory=utcnow)


class SessionLifecycle:
    """
    Valid session status transitions.

    - ACTIVE → RESUMED | ENDED
    - RESUMED → ACTIVE | ENDED
    - ENDED → (terminal)
    """

    VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
        SessionStatus.ACTIVE: {SessionStatus.RESUMED, SessionStatus.ENDED},
        SessionStatus.RESUMED: {SessionStatus.ACTIVE, SessionStatus.ENDED},
        SessionStatus.ENDED: set(),
    }

    def can_transition(self, from_status: SessionStatus, to_status: SessionStatus) -> bool:
        if from_status == to_status:
            return from_status != SessionStatus.ENDED
        return to_status in self.VALID_TRANSITIONS.get(from_status, set())

    def transition(self, session: Session, to_status: SessionStatus) -> bool:
        """
        Move a session to a new status.

        Returns True if successful, False if the transition is invalid.
        """
        if not self.can_transition(session.status, to_status):
            return False
        session.status = to_status
        return True


__all__ = [
    "utcnow",
    "new_item_id",
    "new_session_id",
    "SessionStatus",
    "Impact",
    "HIGH_IMPACT",
    "FileOpType",
    "Priority",
    "Message",
    "Artifact",
    "FileOperation",
    "Decision",
    "ErrorRecord",
    "Task",
    "ToolUsage",
    "ContextData",
    "SessionMetrics",
    "CheckpointRef",
    "Session",
    "Checkpoint",
    "ActivePointer",
    "SessionLifecycle",
]
