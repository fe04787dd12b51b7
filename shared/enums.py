"""
Enums and constants used across the orchestration engine.
"""

from enum import Enum


class JobKind(str, Enum):
    """Kinds of externally executed work tracked by the orchestrator."""

    SLIDE_ANALYSIS = "slide_analysis"
    NARRATIVE_GENERATION = "narrative_generation"
    AVATAR_VIDEO = "avatar_video"
    RENDER_JOB = "render_job"
    ASSET_INGEST = "asset_ingest"


class JobStatus(str, Enum):
    """Lifecycle of a single provider job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class AnalysisState(str, Enum):
    """Aggregate state of a batch or monitored job as seen by API clients."""

    NOT_STARTED = "not_started"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_running(self) -> bool:
        return self in (AnalysisState.PENDING, AnalysisState.IN_PROGRESS)


class ItemOutcomeStatus(str, Enum):
    """Per-item result reported by the bounded executor."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransitionOutcome(str, Enum):
    """Result of folding a status snapshot into a tracked job."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


class ErrorCode(str, Enum):
    """Machine-readable error codes attached to failed jobs and items."""

    TIMEOUT = "timeout"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    PROVIDER_FAILED = "provider_failed"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    CANCELLED = "cancelled"
    MALFORMED_EVENT = "malformed_event"
    INVALID_REQUEST = "invalid_request"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_HANDLE = "invalid_handle"
    UNEXPECTED_ERROR = "unexpected_error"
