"""Tests for shared domain models."""

import pytest
from pydantic import ValidationError

from shared.enums import AnalysisState, ErrorCode, JobKind, JobStatus
from shared.exceptions import JobHandleError, TransientProviderError
from shared.models import (
    AnalysisStatusRecord,
    JobError,
    JobHandle,
    JobStatusSnapshot,
    OrchestrationOptions,
    ProgressSnapshot,
    TrackedJob,
)


class TestJobHandle:
    def test_external_id_assigned_once(self) -> None:
        handle = JobHandle(subject_id="slide-1", kind=JobKind.AVATAR_VIDEO, provider="heygen")
        handle.assign_external_job_id("vid-1")
        handle.assign_external_job_id("vid-1")

        with pytest.raises(JobHandleError):
            handle.assign_external_job_id("vid-2")
        with pytest.raises(JobHandleError):
            handle.external_job_id = "vid-3"
        assert handle.external_job_id == "vid-1"

    def test_empty_external_id_rejected(self) -> None:
        handle = JobHandle(subject_id="slide-1", kind=JobKind.AVATAR_VIDEO)
        with pytest.raises(JobHandleError):
            handle.assign_external_job_id("")

    def test_identity_fields_are_frozen(self) -> None:
        handle = JobHandle(subject_id="slide-1", kind=JobKind.AVATAR_VIDEO)
        with pytest.raises(ValidationError):
            handle.subject_id = "slide-2"
        assert handle.provider == "stub"


class TestStatusModels:
    def test_terminal_and_follow_up_flags(self) -> None:
        job = TrackedJob(handle=JobHandle(subject_id="slide-1", kind=JobKind.RENDER_JOB), status=JobStatus.COMPLETED)
        assert job.is_terminal
        assert job.needs_follow_up
        assert not job.model_copy(update={"follow_up_completed": True}).needs_follow_up
        assert not TrackedJob(handle=job.handle, status=JobStatus.FAILED).needs_follow_up

    def test_snapshot_constructors(self) -> None:
        assert JobStatusSnapshot.completed().progress == 100
        failed = JobStatusSnapshot.failed(ErrorCode.TIMEOUT, "slow", retryable=True)
        assert failed.error.retryable
        assert JobStatusSnapshot.cancelled().error is None

    def test_job_error_from_exception(self) -> None:
        error = JobError.from_exception(TransientProviderError("503 from provider", status_code=503))
        assert error.code == ErrorCode.PROVIDER_UNAVAILABLE
        assert error.retryable

        unexpected = JobError.from_exception(KeyError())
        assert unexpected.code == ErrorCode.UNEXPECTED_ERROR
        assert unexpected.message == "KeyError"

    def test_progress_snapshot_bounds(self) -> None:
        progress = ProgressSnapshot(total=4, completed=2, failed=1, in_progress=1)
        assert progress.processed == 3
        assert progress.percentage == 75
        assert not progress.is_finished

        with pytest.raises(ValidationError):
            ProgressSnapshot(total=2, completed=2, failed=1)
        with pytest.raises(ValidationError):
            ProgressSnapshot(total=2, completed=1, in_progress=2)

    def test_status_record_percentage(self) -> None:
        record = AnalysisStatusRecord(
            subject_id="deck-1",
            kind=JobKind.SLIDE_ANALYSIS,
            state=AnalysisState.COMPLETED,
            progress=ProgressSnapshot(total=0),
        )
        assert record.progress_percentage == 100
        assert not record.is_running
        with pytest.raises(ValidationError):
            record.state = AnalysisState.FAILED


class TestOrchestrationOptions:
    def test_kind_settings_override_defaults(self) -> None:
        options = OrchestrationOptions.for_kind(JobKind.RENDER_JOB)
        assert options.max_concurrent == 2
        assert options.per_item_timeout == 1260
        assert options.poll_interval == 15
        assert options.parallel_enabled is True

    def test_explicit_overrides_win(self) -> None:
        options = OrchestrationOptions.for_kind(JobKind.NARRATIVE_GENERATION, max_concurrent=1, max_wait=None)
        assert options.max_concurrent == 1
        assert options.max_wait == 75
        assert options.per_item_timeout == 90

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PIPELINE_FLAG_ORCHESTRATION_AVATAR_VIDEO_MAX_CONCURRENT", "3")
        monkeypatch.setenv("PIPELINE_FLAG_ORCHESTRATION_AVATAR_VIDEO_PARALLEL_ENABLED", "false")
        options = OrchestrationOptions.for_kind(JobKind.AVATAR_VIDEO)
        assert options.max_concurrent == 3
        assert options.parallel_enabled is False

    def test_invalid_values_rejected(self) -> None:
        with pytest.raises(ValidationError):
            OrchestrationOptions(max_concurrent=0)
        with pytest.raises(ValidationError):
            OrchestrationOptions(poll_interval=-1)

    @pytest.mark.parametrize("kind", list(JobKind))
    def test_items_outlast_their_monitoring_window(self, kind: JobKind) -> None:
        options = OrchestrationOptions.for_kind(kind)
        assert options.per_item_timeout > options.max_wait

    def test_default_items_outlast_their_monitoring_window(self) -> None:
        options = OrchestrationOptions()
        assert options.per_item_timeout > options.max_wait
