"""Persistence interfaces for tracked jobs and webhook events."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from shared.enums import TransitionOutcome
from shared.models import JobStatusSnapshot, TrackedJob, WebhookEvent


class JobStore(ABC):
    """Storage for tracked provider jobs.

    ``apply_snapshot`` reads, transitions and writes a job as one atomic step so
    that a poller and a webhook reconciler racing on the same job cannot move
    it backwards.
    """

    @abstractmethod
    def save(self, job: TrackedJob) -> TrackedJob:
        """Insert or replace a job."""

    @abstractmethod
    def get(self, handle_id: str) -> TrackedJob | None:
        """Return a job by its handle id."""

    @abstractmethod
    def find_by_external_id(self, provider: str, external_job_id: str) -> TrackedJob | None:
        """Correlate a provider job id back to the tracked job."""

    @abstractmethod
    def list_by_subject(self, subject_id: str) -> list[TrackedJob]:
        """Return jobs whose subject or parent is ``subject_id``."""

    @abstractmethod
    def apply_snapshot(self, handle_id: str, snapshot: JobStatusSnapshot) -> tuple[TransitionOutcome, TrackedJob]:
        """Fold ``snapshot`` into the stored job and persist the result."""

    @abstractmethod
    def record_follow_up(self, handle_id: str, error: str | None) -> TrackedJob:
        """Mark the follow-up action as done (``error`` is None) or record its failure."""


class WebhookEventStore(ABC):
    """Storage for webhook events between intake and reconciliation."""

    @abstractmethod
    def add(self, event: WebhookEvent) -> WebhookEvent:
        """Persist a newly received event."""

    @abstractmethod
    def get(self, event_id: str) -> WebhookEvent | None:
        """Return an event by id."""

    @abstractmethod
    def save(self, event: WebhookEvent) -> WebhookEvent:
        """Write back processing state of an existing event."""

    @abstractmethod
    def list_due(self, now: datetime, limit: int = 100) -> list[WebhookEvent]:
        """Unprocessed, non-stuck events whose next attempt is due, oldest first."""

    @abstractmethod
    def list_stuck(self) -> list[WebhookEvent]:
        """Events that exhausted their retries."""

    @abstractmethod
    def purge(self, received_before: datetime) -> int:
        """Delete events received before the cutoff, processed or not."""
