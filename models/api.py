from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from shared.enums import AnalysisState, JobKind, JobStatus
from shared.models import (
    AnalysisStatusRecord,
    BatchItem,
    JobError,
    JobHandle,
    OrchestrationOptions,
    ResultReference,
    TrackedJob,
    WebhookEvent,
)


class OptionsOverride(BaseModel):
    """Per-request overrides of the configured orchestration options"""

    max_concurrent: int | None = Field(None, gt=0)
    per_item_timeout: float | None = Field(None, gt=0)
    poll_interval: float | None = Field(None, gt=0)
    max_wait: float | None = Field(None, gt=0)
    parallel_enabled: bool | None = None

    def resolve(self, kind: JobKind) -> OrchestrationOptions:
        return OrchestrationOptions.for_kind(kind, **self.model_dump())


class BatchRequest(BaseModel):
    subject_id: str = Field(..., min_length=1, description="Presentation or other owner of the items")
    kind: JobKind
    items: list[BatchItem] = Field(default_factory=list)
    provider: str | None = Field(None, description="Provider to submit item jobs to")
    options: OptionsOverride = Field(default_factory=OptionsOverride)


class MonitorRequest(BaseModel):
    subject_id: str = Field(..., min_length=1)
    kind: JobKind
    provider: str = Field(..., min_length=1)
    external_job_id: str = Field(..., min_length=1)
    parent_id: str | None = None
    options: OptionsOverride = Field(default_factory=OptionsOverride)

    def to_handle(self) -> JobHandle:
        return JobHandle(
            subject_id=self.subject_id,
            kind=self.kind,
            provider=self.provider.lower(),
            parent_id=self.parent_id,
            external_job_id=self.external_job_id,
        )


class StatusResponse(BaseModel):
    """Aggregate status of a batch or monitored job"""

    subject_id: str
    kind: JobKind
    state: AnalysisState
    total: int
    completed: int
    failed: int
    skipped: int
    in_progress: int
    progress_percentage: int
    errors: list[str]
    message: str | None = None
    run_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_record(cls, record: AnalysisStatusRecord) -> "StatusResponse":
        progress = record.progress
        return cls(
            subject_id=record.subject_id,
            kind=record.kind,
            state=record.state,
            total=progress.total,
            completed=progress.completed,
            failed=progress.failed,
            skipped=progress.skipped,
            in_progress=progress.in_progress,
            progress_percentage=record.progress_percentage,
            errors=list(record.errors),
            message=record.message,
            run_id=record.run_id,
            started_at=record.started_at,
            completed_at=record.completed_at,
        )


class JobResponse(BaseModel):
    handle_id: str
    subject_id: str
    parent_id: str | None = None
    kind: JobKind
    provider: str
    external_job_id: str | None = None
    status: JobStatus
    progress: int
    stage: str | None = None
    result: ResultReference | None = None
    error: JobError | None = None
    follow_up_completed: bool
    follow_up_error: str | None = None

    @classmethod
    def from_job(cls, job: TrackedJob) -> "JobResponse":
        handle = job.handle
        return cls(
            handle_id=handle.handle_id,
            subject_id=handle.subject_id,
            parent_id=handle.parent_id,
            kind=handle.kind,
            provider=handle.provider,
            external_job_id=handle.external_job_id,
            status=job.status,
            progress=job.progress,
            stage=job.stage,
            result=job.result,
            error=job.error,
            follow_up_completed=job.follow_up_completed,
            follow_up_error=job.follow_up_error,
        )


class StuckEventResponse(BaseModel):
    event_id: str
    provider: str
    external_job_id: str
    event_type: str
    retry_count: int
    error_message: str | None = None
    received_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_event(cls, event: WebhookEvent) -> "StuckEventResponse":
        return cls(
            event_id=event.event_id,
            provider=event.provider,
            external_job_id=event.external_job_id,
            event_type=event.event_type,
            retry_count=event.retry_count,
            error_message=event.error_message,
            received_at=event.received_at,
            payload=event.payload,
        )
