"""Status transition rules for tracked provider jobs."""

from shared.enums import JobStatus, TransitionOutcome
from shared.exceptions import InvalidTransitionError
from shared.models import JobStatusSnapshot, TrackedJob
from shared.utils import utc_now

_ORDER = {
    JobStatus.PENDING: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
    JobStatus.CANCELLED: 2,
}


def classify_transition(job: TrackedJob, snapshot: JobStatusSnapshot) -> TransitionOutcome:
    """Decide whether ``snapshot`` may be folded into ``job``.

    Jobs only move forward: PENDING -> PROCESSING -> terminal, with PENDING
    allowed to jump straight to a terminal state. A repeated non-terminal status
    is a progress refresh. Re-delivery of the job's own terminal status is a
    duplicate; any other update of a terminal job is rejected.
    """
    current = job.status
    incoming = snapshot.status

    if current.is_terminal:
        return TransitionOutcome.DUPLICATE if incoming == current else TransitionOutcome.REJECTED

    if incoming == current:
        if snapshot.progress is not None and snapshot.progress < job.progress:
            return TransitionOutcome.REJECTED
        if snapshot.progress in (None, job.progress) and snapshot.stage in (None, job.stage):
            return TransitionOutcome.DUPLICATE
        return TransitionOutcome.APPLIED

    if _ORDER[incoming] < _ORDER[current]:
        return TransitionOutcome.REJECTED
    return TransitionOutcome.APPLIED


def apply_transition(job: TrackedJob, snapshot: JobStatusSnapshot) -> tuple[TransitionOutcome, TrackedJob]:
    """Fold a snapshot into a job, returning the outcome and the resulting job.

    The input job is never mutated; for duplicates and rejections the same
    instance is returned.
    """
    outcome = classify_transition(job, snapshot)
    if outcome != TransitionOutcome.APPLIED:
        return outcome, job

    now = utc_now()
    progress = job.progress
    if snapshot.progress is not None:
        progress = max(progress, snapshot.progress)
    if snapshot.status == JobStatus.COMPLETED:
        progress = 100

    update = {
        "status": snapshot.status,
        "progress": progress,
        "stage": snapshot.stage if snapshot.stage is not None else job.stage,
        "updated_at": now,
    }
    if snapshot.status.is_terminal:
        update["completed_at"] = now
        update["result"] = snapshot.result
        update["error"] = snapshot.error
    return outcome, job.model_copy(update=update)


def apply_transition_strict(job: TrackedJob, snapshot: JobStatusSnapshot) -> TrackedJob:
    """Like :func:`apply_transition` but raise on rejected updates."""
    outcome, updated = apply_transition(job, snapshot)
    if outcome == TransitionOutcome.REJECTED:
        raise InvalidTransitionError(
            f"Cannot move job {job.handle.handle_id} from {job.status.value} to {snapshot.status.value}"
        )
    return updated
