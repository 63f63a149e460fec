"""
Continuity engine: context-window tracking, compaction, session
persistence and restoration for long-running conversations.
"""

from .app import AppContext, build_app
from .classifier import Classifier, KeywordClassifier, MessageCategory
from .collaborators import FileTracker, InMemoryFileTracker, ModelInterface
from .config import ContinuityConfig, RestorerConfig, SessionConfig, SummarizerConfig, TrackerConfig
from .errors import ContinuityError, PartialHookFailure, StorageError, TimeoutExpired, ValidationError
from .hooks import HookEngine, HookEvent
from .models import (
    Checkpoint,
    ContextData,
    Impact,
    Message,
    Priority,
    Session,
    SessionMetrics,
    SessionStatus,
)
from .restorer import ContextRestorer, RestorationResult
from .session_store import BranchResult, SessionStore
from .summarizer import HierarchicalSummary, Summarizer, SummaryResult
from .tokens import CharRatioEstimator, TokenEstimator
from .tracker import CompactionResult, ContextWindowTracker

__version__ = "0.1.0"

__all__ = [
    # App
    "AppContext",
    "build_app",
    # Components
    "HookEngine",
    "HookEvent",
    "ContextWindowTracker",
    "CompactionResult",
    "Summarizer",
    "SummaryResult",
    "HierarchicalSummary",
    "SessionStore",
    "BranchResult",
    "ContextRestorer",
    "RestorationResult",
    # Pluggable pieces
    "Classifier",
    "KeywordClassifier",
    "MessageCategory",
    "TokenEstimator",
    "CharRatioEstimator",
    "FileTracker",
    "InMemoryFileTracker",
    "ModelInterface",
    # Models
    "Session",
    "SessionStatus",
    "SessionMetrics",
    "ContextData",
    "Message",
    "Checkpoint",
    "Impact",
    "Priority",
    # Config
    "ContinuityConfig",
    "TrackerConfig",
    "SummarizerConfig",
    "SessionConfig",
    "RestorerConfig",
    # Errors
    "ContinuityError",
    "ValidationError",
    "StorageError",
    "TimeoutExpired",
    "PartialHookFailure",
]
