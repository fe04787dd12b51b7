"""SQLAlchemy-backed stores."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from models.database import ProcessingJob, WebhookEventRecord
from shared.enums import ErrorCode, JobKind, JobStatus, TransitionOutcome
from shared.exceptions import InvalidRequestError, JobHandleError
from shared.models import JobError, JobHandle, JobStatusSnapshot, ResultReference, TrackedJob, WebhookEvent
from shared.utils import setup_logging, utc_now

from services.orchestration.transitions import apply_transition

from .base import JobStore, WebhookEventStore

logger = setup_logging("sql-store")


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class _SessionMixin:
    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


class SqlJobStore(_SessionMixin, JobStore):
    @staticmethod
    def _to_model(row: ProcessingJob) -> TrackedJob:
        handle = JobHandle(
            handle_id=row.job_id,
            subject_id=row.entity_id,
            kind=JobKind(row.job_type),
            provider=row.provider,
            parent_id=row.parent_id,
            external_job_id=row.external_job_id,
        )
        error = None
        if row.error_code:
            error = JobError(
                code=ErrorCode(row.error_code),
                message=row.error_message or "",
                retryable=bool(row.error_retryable),
            )
        return TrackedJob(
            handle=handle,
            status=JobStatus(row.status),
            progress=row.progress_percent or 0,
            stage=row.stage,
            result=ResultReference(**row.result_data) if row.result_data else None,
            error=error,
            follow_up_completed=bool(row.follow_up_completed),
            follow_up_error=row.follow_up_error,
            created_at=_as_utc(row.created_at) or utc_now(),
            updated_at=_as_utc(row.updated_at) or utc_now(),
            completed_at=_as_utc(row.completed_at),
        )

    @staticmethod
    def _apply_to_row(row: ProcessingJob, job: TrackedJob) -> None:
        handle = job.handle
        row.job_id = handle.handle_id
        row.job_type = handle.kind.value
        row.provider = handle.provider
        row.external_job_id = handle.external_job_id
        row.entity_id = handle.subject_id
        row.parent_id = handle.parent_id
        row.status = job.status.value
        row.progress_percent = job.progress
        row.stage = job.stage
        row.result_data = job.result.model_dump(mode="json") if job.result else None
        row.error_code = job.error.code.value if job.error else None
        row.error_message = job.error.message if job.error else None
        row.error_retryable = job.error.retryable if job.error else False
        row.follow_up_completed = job.follow_up_completed
        row.follow_up_error = job.follow_up_error
        row.completed_at = job.completed_at
        row.created_at = job.created_at
        row.updated_at = job.updated_at

    @staticmethod
    def _row(session: Session, handle_id: str, for_update: bool = False) -> ProcessingJob | None:
        query = session.query(ProcessingJob).filter(ProcessingJob.job_id == handle_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def save(self, job: TrackedJob) -> TrackedJob:
        try:
            with self._session() as session:
                row = self._row(session, job.handle.handle_id) or ProcessingJob()
                self._apply_to_row(row, job)
                session.add(row)
        except IntegrityError as exc:
            raise JobHandleError(
                f"External job {job.handle.external_job_id} on {job.handle.provider} is already tracked"
            ) from exc
        return job

    def get(self, handle_id: str) -> TrackedJob | None:
        with self._session() as session:
            row = self._row(session, handle_id)
            return self._to_model(row) if row is not None else None

    def find_by_external_id(self, provider: str, external_job_id: str) -> TrackedJob | None:
        with self._session() as session:
            row = (
                session.query(ProcessingJob)
                .filter(ProcessingJob.provider == provider, ProcessingJob.external_job_id == external_job_id)
                .first()
            )
            return self._to_model(row) if row is not None else None

    def list_by_subject(self, subject_id: str) -> list[TrackedJob]:
        with self._session() as session:
            rows = (
                session.query(ProcessingJob)
                .filter(or_(ProcessingJob.entity_id == subject_id, ProcessingJob.parent_id == subject_id))
                .order_by(ProcessingJob.id)
                .all()
            )
            return [self._to_model(row) for row in rows]

    def apply_snapshot(self, handle_id: str, snapshot: JobStatusSnapshot) -> tuple[TransitionOutcome, TrackedJob]:
        with self._session() as session:
            row = self._row(session, handle_id, for_update=True)
            if row is None:
                raise InvalidRequestError(f"Unknown job handle {handle_id}")
            outcome, updated = apply_transition(self._to_model(row), snapshot)
            if outcome == TransitionOutcome.APPLIED:
                self._apply_to_row(row, updated)
            return outcome, updated

    def record_follow_up(self, handle_id: str, error: str | None) -> TrackedJob:
        with self._session() as session:
            row = self._row(session, handle_id, for_update=True)
            if row is None:
                raise InvalidRequestError(f"Unknown job handle {handle_id}")
            row.follow_up_completed = error is None
            row.follow_up_error = error
            row.updated_at = utc_now()
            session.flush()
            return self._to_model(row)


class SqlWebhookEventStore(_SessionMixin, WebhookEventStore):
    @staticmethod
    def _to_model(row: WebhookEventRecord) -> WebhookEvent:
        return WebhookEvent(
            event_id=row.event_id,
            provider=row.provider,
            external_job_id=row.external_job_id,
            event_type=row.event_type,
            snapshot=JobStatusSnapshot.model_validate(row.snapshot),
            payload=row.payload or {},
            received_at=_as_utc(row.received_at) or utc_now(),
            processed=bool(row.processed),
            processed_at=_as_utc(row.processed_at),
            retry_count=row.retry_count or 0,
            next_attempt_at=_as_utc(row.next_attempt_at),
            stuck=bool(row.stuck),
            error_message=row.error_message,
        )

    @staticmethod
    def _values(event: WebhookEvent) -> dict[str, Any]:
        return {
            "event_id": event.event_id,
            "provider": event.provider,
            "external_job_id": event.external_job_id,
            "event_type": event.event_type,
            "snapshot": event.snapshot.model_dump(mode="json"),
            "payload": event.payload,
            "received_at": event.received_at,
            "processed": event.processed,
            "processed_at": event.processed_at,
            "retry_count": event.retry_count,
            "next_attempt_at": event.next_attempt_at,
            "stuck": event.stuck,
            "error_message": event.error_message,
        }

    def add(self, event: WebhookEvent) -> WebhookEvent:
        with self._session() as session:
            session.add(WebhookEventRecord(**self._values(event)))
        return event

    def get(self, event_id: str) -> WebhookEvent | None:
        with self._session() as session:
            row = session.query(WebhookEventRecord).filter(WebhookEventRecord.event_id == event_id).first()
            return self._to_model(row) if row is not None else None

    def save(self, event: WebhookEvent) -> WebhookEvent:
        with self._session() as session:
            row = session.query(WebhookEventRecord).filter(WebhookEventRecord.event_id == event.event_id).first()
            if row is None:
                raise InvalidRequestError(f"Unknown webhook event {event.event_id}")
            for field, value in self._values(event).items():
                setattr(row, field, value)
        return event

    def list_due(self, now: datetime, limit: int = 100) -> list[WebhookEvent]:
        with self._session() as session:
            rows = (
                session.query(WebhookEventRecord)
                .filter(
                    WebhookEventRecord.processed.is_(False),
                    WebhookEventRecord.stuck.is_(False),
                    or_(WebhookEventRecord.next_attempt_at.is_(None), WebhookEventRecord.next_attempt_at <= now),
                )
                .order_by(WebhookEventRecord.received_at, WebhookEventRecord.id)
                .limit(limit)
                .all()
            )
            return [self._to_model(row) for row in rows]

    def list_stuck(self) -> list[WebhookEvent]:
        with self._session() as session:
            rows = (
                session.query(WebhookEventRecord)
                .filter(WebhookEventRecord.stuck.is_(True))
                .order_by(WebhookEventRecord.received_at)
                .all()
            )
            return [self._to_model(row) for row in rows]

    def purge(self, received_before: datetime) -> int:
        with self._session() as session:
            deleted = (
                session.query(WebhookEventRecord)
                .filter(WebhookEventRecord.received_at < received_before)
                .delete(synchronize_session=False)
            )
        if deleted:
            logger.info(f"Purged {deleted} webhook events received before {received_before.isoformat()}")
        return deleted
