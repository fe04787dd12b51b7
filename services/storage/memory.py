"""In-memory stores used when no database is configured."""

from __future__ import annotations

import threading
from datetime import datetime

from shared.enums import TransitionOutcome
from shared.exceptions import InvalidRequestError, JobHandleError
from shared.models import JobStatusSnapshot, TrackedJob, WebhookEvent
from shared.utils import utc_now

from services.orchestration.transitions import apply_transition

from .base import JobStore, WebhookEventStore


class InMemoryJobStore(JobStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, TrackedJob] = {}
        self._external_index: dict[tuple[str, str], str] = {}

    def save(self, job: TrackedJob) -> TrackedJob:
        handle = job.handle
        with self._lock:
            if handle.external_job_id:
                key = (handle.provider, handle.external_job_id)
                owner = self._external_index.get(key)
                if owner is not None and owner != handle.handle_id:
                    raise JobHandleError(
                        f"External job {handle.external_job_id} on {handle.provider} already tracked by {owner}"
                    )
                self._external_index[key] = handle.handle_id
            self._jobs[handle.handle_id] = job.model_copy(deep=True)
        return job

    def get(self, handle_id: str) -> TrackedJob | None:
        with self._lock:
            job = self._jobs.get(handle_id)
            return job.model_copy(deep=True) if job is not None else None

    def find_by_external_id(self, provider: str, external_job_id: str) -> TrackedJob | None:
        with self._lock:
            handle_id = self._external_index.get((provider, external_job_id))
            job = self._jobs.get(handle_id) if handle_id else None
            return job.model_copy(deep=True) if job is not None else None

    def list_by_subject(self, subject_id: str) -> list[TrackedJob]:
        with self._lock:
            return [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if subject_id in (job.handle.subject_id, job.handle.parent_id)
            ]

    def apply_snapshot(self, handle_id: str, snapshot: JobStatusSnapshot) -> tuple[TransitionOutcome, TrackedJob]:
        with self._lock:
            job = self._jobs.get(handle_id)
            if job is None:
                raise InvalidRequestError(f"Unknown job handle {handle_id}")
            outcome, updated = apply_transition(job, snapshot)
            if outcome == TransitionOutcome.APPLIED:
                self._jobs[handle_id] = updated
            return outcome, updated.model_copy(deep=True)

    def record_follow_up(self, handle_id: str, error: str | None) -> TrackedJob:
        with self._lock:
            job = self._jobs.get(handle_id)
            if job is None:
                raise InvalidRequestError(f"Unknown job handle {handle_id}")
            updated = job.model_copy(
                update={
                    "follow_up_completed": error is None,
                    "follow_up_error": error,
                    "updated_at": utc_now(),
                }
            )
            self._jobs[handle_id] = updated
            return updated.model_copy(deep=True)


class InMemoryWebhookEventStore(WebhookEventStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: dict[str, WebhookEvent] = {}

    def add(self, event: WebhookEvent) -> WebhookEvent:
        with self._lock:
            self._events[event.event_id] = event.model_copy(deep=True)
        return event

    def get(self, event_id: str) -> WebhookEvent | None:
        with self._lock:
            event = self._events.get(event_id)
            return event.model_copy(deep=True) if event is not None else None

    def save(self, event: WebhookEvent) -> WebhookEvent:
        with self._lock:
            if event.event_id not in self._events:
                raise InvalidRequestError(f"Unknown webhook event {event.event_id}")
            self._events[event.event_id] = event.model_copy(deep=True)
        return event

    def list_due(self, now: datetime, limit: int = 100) -> list[WebhookEvent]:
        with self._lock:
            due = [
                event
                for event in self._events.values()
                if not event.processed
                and not event.stuck
                and (event.next_attempt_at is None or event.next_attempt_at <= now)
            ]
        due.sort(key=lambda event: event.received_at)
        return [event.model_copy(deep=True) for event in due[:limit]]

    def list_stuck(self) -> list[WebhookEvent]:
        with self._lock:
            stuck = [event.model_copy(deep=True) for event in self._events.values() if event.stuck]
        return sorted(stuck, key=lambda event: event.received_at)

    def purge(self, received_before: datetime) -> int:
        with self._lock:
            expired = [event_id for event_id, event in self._events.items() if event.received_at < received_before]
            for event_id in expired:
                del self._events[event_id]
        return len(expired)
