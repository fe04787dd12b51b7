"""
Domain models shared by the orchestration services.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shared.config import config
from shared.enums import AnalysisState, ErrorCode, JobKind, JobStatus
from shared.exceptions import JobHandleError, OrchestrationError
from shared.utils import new_id, truncate, utc_now


class ResultReference(BaseModel):
    """Where a completed provider job left its output."""

    model_config = ConfigDict(frozen=True)

    url: str | None = Field(None, description="Location of the produced artifact")
    duration_seconds: float | None = Field(None, ge=0)
    size_bytes: int | None = Field(None, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class JobError(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: ErrorCode
    message: str
    retryable: bool = False

    @classmethod
    def from_exception(cls, exc: BaseException) -> "JobError":
        if isinstance(exc, OrchestrationError):
            return cls(code=exc.code, message=truncate(exc.message or exc.code.value), retryable=exc.retryable)
        return cls(code=ErrorCode.UNEXPECTED_ERROR, message=truncate(str(exc) or type(exc).__name__))


class JobStatusSnapshot(BaseModel):
    """Status of a provider job as reported by one poll or callback."""

    model_config = ConfigDict(frozen=True)

    status: JobStatus
    progress: int | None = Field(None, ge=0, le=100)
    stage: str | None = None
    result: ResultReference | None = None
    error: JobError | None = None
    observed_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def pending(cls) -> "JobStatusSnapshot":
        return cls(status=JobStatus.PENDING)

    @classmethod
    def processing(cls, progress: int | None = None, stage: str | None = None) -> "JobStatusSnapshot":
        return cls(status=JobStatus.PROCESSING, progress=progress, stage=stage)

    @classmethod
    def completed(cls, result: ResultReference | None = None) -> "JobStatusSnapshot":
        return cls(status=JobStatus.COMPLETED, progress=100, result=result)

    @classmethod
    def failed(cls, code: ErrorCode, message: str, retryable: bool = False) -> "JobStatusSnapshot":
        return cls(status=JobStatus.FAILED, error=JobError(code=code, message=message, retryable=retryable))

    @classmethod
    def cancelled(cls, message: str | None = None) -> "JobStatusSnapshot":
        error = JobError(code=ErrorCode.CANCELLED, message=message) if message else None
        return cls(status=JobStatus.CANCELLED, error=error)


class JobHandle(BaseModel):
    """
    Identity of one provider job.

    Everything except ``external_job_id`` is fixed at creation. The external id
    is filled in once the provider accepts the request and can never be changed
    to a different value afterwards.
    """

    handle_id: str = Field(default_factory=new_id, frozen=True)
    subject_id: str = Field(..., min_length=1, frozen=True)
    kind: JobKind = Field(..., frozen=True)
    provider: str = Field(default="stub", min_length=1, frozen=True)
    parent_id: str | None = Field(None, frozen=True)
    external_job_id: str | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "external_job_id":
            current = self.__dict__.get("external_job_id")
            if current is not None and value != current:
                raise JobHandleError(
                    f"Handle {self.handle_id} already bound to external job {current}"
                )
        super().__setattr__(name, value)

    def assign_external_job_id(self, external_job_id: str) -> None:
        if not external_job_id:
            raise JobHandleError("External job id must not be empty")
        self.external_job_id = external_job_id


class JobSpec(BaseModel):
    """What gets submitted to a provider."""

    kind: JobKind
    subject_id: str
    payload: dict[str, Any] = Field(default_factory=dict)


class TrackedJob(BaseModel):
    """Persisted view of one provider job and its follow-up."""

    handle: JobHandle
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    stage: str | None = None
    result: ResultReference | None = None
    error: JobError | None = None
    follow_up_completed: bool = False
    follow_up_error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def needs_follow_up(self) -> bool:
        return self.status == JobStatus.COMPLETED and not self.follow_up_completed


class ProgressSnapshot(BaseModel):
    """Immutable counters for one batch run."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(default=0, ge=0)
    completed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    in_progress: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_counts(self) -> "ProgressSnapshot":
        if self.processed > self.total:
            raise ValueError("completed + failed + skipped exceeds total")
        if self.in_progress > self.total - self.processed:
            raise ValueError("in_progress exceeds remaining items")
        return self

    @property
    def processed(self) -> int:
        return self.completed + self.failed + self.skipped

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 0
        return self.processed * 100 // self.total

    @property
    def is_finished(self) -> bool:
        return self.processed == self.total


class AnalysisStatusRecord(BaseModel):
    """Aggregate state of the latest run for one (subject, kind) pair."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    kind: JobKind
    state: AnalysisState = AnalysisState.NOT_STARTED
    progress: ProgressSnapshot = Field(default_factory=ProgressSnapshot)
    errors: tuple[str, ...] = ()
    message: str | None = None
    run_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    @property
    def progress_percentage(self) -> int:
        if self.state == AnalysisState.COMPLETED:
            return 100
        return self.progress.percentage


class WebhookEvent(BaseModel):
    """A provider callback as stored between intake and reconciliation."""

    event_id: str = Field(default_factory=new_id)
    provider: str
    external_job_id: str
    event_type: str
    snapshot: JobStatusSnapshot
    payload: dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=utc_now)
    processed: bool = False
    processed_at: datetime | None = None
    retry_count: int = 0
    next_attempt_at: datetime | None = None
    stuck: bool = False
    error_message: str | None = None


class BatchItem(BaseModel):
    """One unit of a batch, e.g. a single slide of a presentation."""

    item_id: str = Field(..., min_length=1)
    label: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    already_completed: bool = False

    @property
    def display_label(self) -> str:
        return self.label or self.item_id


class OrchestrationOptions(BaseModel):
    """Concurrency and timing knobs for one batch or monitor run."""

    model_config = ConfigDict(frozen=True)

    max_concurrent: int = Field(default=5, gt=0)
    per_item_timeout: float = Field(default=60.0, gt=0)
    poll_interval: float = Field(default=5.0, gt=0)
    max_wait: float = Field(default=45.0, gt=0)
    parallel_enabled: bool = True

    @classmethod
    def for_kind(cls, kind: JobKind, **overrides: Any) -> "OrchestrationOptions":
        """Resolve defaults from the pipeline file, then per-kind settings, then explicit overrides."""
        values: dict[str, Any] = {}
        for section in ("orchestration.defaults", f"orchestration.{kind.value}"):
            for key, value in config.get_pipeline_section(section).items():
                values[_OPTION_ALIASES.get(key, key)] = value
        for key in cls.model_fields:
            env_value = config.get_pipeline_value(f"orchestration.{kind.value}.{_reverse_alias(key)}")
            if env_value is not None:
                values[key] = env_value
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**{key: value for key, value in values.items() if key in cls.model_fields})


_OPTION_ALIASES = {
    "per_item_timeout_seconds": "per_item_timeout",
    "poll_interval_seconds": "poll_interval",
    "max_wait_seconds": "max_wait",
}


def _reverse_alias(field_name: str) -> str:
    for alias, name in _OPTION_ALIASES.items():
        if name == field_name:
            return alias
    return field_name
