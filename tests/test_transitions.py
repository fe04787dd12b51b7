"""Tests for the job status transition rules."""

import pytest

from services.orchestration.transitions import apply_transition, apply_transition_strict, classify_transition
from shared.enums import ErrorCode, JobKind, JobStatus, TransitionOutcome
from shared.exceptions import InvalidTransitionError
from shared.models import JobHandle, JobStatusSnapshot, ResultReference, TrackedJob


def make_job(status: JobStatus = JobStatus.PENDING, progress: int = 0) -> TrackedJob:
    handle = JobHandle(subject_id="slide-1", kind=JobKind.AVATAR_VIDEO, provider="heygen", external_job_id="vid-1")
    return TrackedJob(handle=handle, status=status, progress=progress)


class TestTransitions:
    """Monotonic status transitions."""

    def test_pending_to_processing_applies(self) -> None:
        outcome, job = apply_transition(make_job(), JobStatusSnapshot.processing(progress=10, stage="rendering"))
        assert outcome == TransitionOutcome.APPLIED
        assert job.status == JobStatus.PROCESSING
        assert job.progress == 10
        assert job.stage == "rendering"

    def test_pending_may_jump_to_terminal(self) -> None:
        result = ResultReference(url="https://cdn.example.com/video.mp4", duration_seconds=12.5)
        outcome, job = apply_transition(make_job(), JobStatusSnapshot.completed(result))
        assert outcome == TransitionOutcome.APPLIED
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.result == result
        assert job.completed_at is not None

    def test_progress_refresh_applies_and_never_decreases(self) -> None:
        job = make_job(JobStatus.PROCESSING, progress=40)
        outcome, refreshed = apply_transition(job, JobStatusSnapshot.processing(progress=60))
        assert outcome == TransitionOutcome.APPLIED
        assert refreshed.progress == 60

        outcome, unchanged = apply_transition(refreshed, JobStatusSnapshot.processing(progress=30))
        assert outcome == TransitionOutcome.REJECTED
        assert unchanged.progress == 60

    def test_identical_refresh_is_duplicate(self) -> None:
        job = make_job(JobStatus.PROCESSING, progress=40)
        assert classify_transition(job, JobStatusSnapshot.processing(progress=40)) == TransitionOutcome.DUPLICATE
        assert classify_transition(job, JobStatusSnapshot.processing()) == TransitionOutcome.DUPLICATE

    def test_backwards_move_is_rejected(self) -> None:
        job = make_job(JobStatus.PROCESSING, progress=50)
        outcome, same = apply_transition(job, JobStatusSnapshot.pending())
        assert outcome == TransitionOutcome.REJECTED
        assert same is job

    @pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED])
    def test_nothing_leaves_a_terminal_state(self, terminal: JobStatus) -> None:
        job = make_job(terminal, progress=100 if terminal == JobStatus.COMPLETED else 0)
        for snapshot in (
            JobStatusSnapshot.pending(),
            JobStatusSnapshot.processing(progress=99),
            JobStatusSnapshot.completed(),
            JobStatusSnapshot.failed(ErrorCode.PROVIDER_FAILED, "boom"),
            JobStatusSnapshot.cancelled(),
        ):
            outcome, after = apply_transition(job, snapshot)
            expected = TransitionOutcome.DUPLICATE if snapshot.status == terminal else TransitionOutcome.REJECTED
            assert outcome == expected
            assert after.status == terminal

    def test_failed_snapshot_records_error(self) -> None:
        outcome, job = apply_transition(
            make_job(JobStatus.PROCESSING), JobStatusSnapshot.failed(ErrorCode.PROVIDER_FAILED, "render crashed")
        )
        assert outcome == TransitionOutcome.APPLIED
        assert job.error is not None
        assert job.error.code == ErrorCode.PROVIDER_FAILED
        assert job.error.message == "render crashed"

    def test_input_job_is_not_mutated(self) -> None:
        job = make_job()
        apply_transition(job, JobStatusSnapshot.completed())
        assert job.status == JobStatus.PENDING

    def test_strict_variant_raises_on_rejection(self) -> None:
        job = make_job(JobStatus.COMPLETED, progress=100)
        with pytest.raises(InvalidTransitionError):
            apply_transition_strict(job, JobStatusSnapshot.processing())
        assert apply_transition_strict(job, JobStatusSnapshot.completed()) is job
