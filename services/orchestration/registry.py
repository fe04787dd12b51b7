"""In-memory registry of batch and monitor status, keyed by (subject_id, kind)."""

import threading
from datetime import datetime, timedelta
from typing import Any

from shared.config import config
from shared.enums import AnalysisState, JobKind
from shared.exceptions import InvalidRequestError
from shared.models import AnalysisStatusRecord, ProgressSnapshot
from shared.utils import new_id, setup_logging, truncate, utc_now

logger = setup_logging("status-registry")

RegistryKey = tuple[str, JobKind]


class AnalysisStatusRegistry:
    """
    Latest run state per (subject_id, kind).

    Every write carries the ``run_id`` handed out by :meth:`start`; writes from a
    run that has since been superseded are ignored and reported as ``False``.
    Readers always receive immutable records.
    """

    def __init__(
        self,
        max_errors: int | None = None,
        retention_seconds: float | None = None,
        max_entries: int | None = None,
    ) -> None:
        self.max_errors = int(max_errors or config.get_pipeline_value("registry.max_errors", 50))
        self.retention = timedelta(
            seconds=float(retention_seconds or config.get_pipeline_value("registry.retention_seconds", 3600))
        )
        self.max_entries = int(max_entries or config.get_pipeline_value("registry.max_entries", 1000))
        self._lock = threading.Lock()
        self._records: dict[RegistryKey, AnalysisStatusRecord] = {}

    @staticmethod
    def make_key(subject_id: Any, kind: Any) -> RegistryKey:
        if not isinstance(subject_id, str) or not subject_id.strip():
            raise InvalidRequestError("subject_id must be a non-empty string")
        try:
            job_kind = JobKind(kind)
        except ValueError as exc:
            raise InvalidRequestError(f"Unknown job kind: {kind!r}") from exc
        return subject_id, job_kind

    def start(self, subject_id: str, kind: JobKind | str, total: int, message: str | None = None) -> str:
        """Register a new run and return its run id. Any previous record for the key is replaced."""
        key = self.make_key(subject_id, kind)
        run_id = new_id()
        now = utc_now()
        record = AnalysisStatusRecord(
            subject_id=key[0],
            kind=key[1],
            state=AnalysisState.PENDING,
            progress=ProgressSnapshot(total=total),
            message=message,
            run_id=run_id,
            started_at=now,
            updated_at=now,
        )
        with self._lock:
            previous = self._records.get(key)
            self._records[key] = record
        if previous is not None and previous.is_running:
            logger.info(f"Run {previous.run_id} for {key[0]}/{key[1].value} superseded by {run_id}")
        return run_id

    def mark_in_progress(self, subject_id: str, kind: JobKind | str, run_id: str, message: str | None = None) -> bool:
        return self._update(subject_id, kind, run_id, state=AnalysisState.IN_PROGRESS, message=message)

    def update_progress(
        self,
        subject_id: str,
        kind: JobKind | str,
        run_id: str,
        progress: ProgressSnapshot,
        message: str | None = None,
    ) -> bool:
        return self._update(subject_id, kind, run_id, state=AnalysisState.IN_PROGRESS, progress=progress, message=message)

    def add_error(self, subject_id: str, kind: JobKind | str, run_id: str, error: str) -> bool:
        key = self.make_key(subject_id, kind)
        with self._lock:
            record = self._current(key, run_id)
            if record is None:
                return False
            errors = (*record.errors, truncate(error))[-self.max_errors:]
            self._records[key] = record.model_copy(update={"errors": errors, "updated_at": utc_now()})
            return True

    def complete(
        self,
        subject_id: str,
        kind: JobKind | str,
        run_id: str,
        state: AnalysisState,
        message: str | None = None,
        progress: ProgressSnapshot | None = None,
    ) -> bool:
        if state.is_running or state == AnalysisState.NOT_STARTED:
            raise ValueError(f"{state.value} is not a final state")
        key = self.make_key(subject_id, kind)
        now = utc_now()
        with self._lock:
            record = self._current(key, run_id)
            if record is None:
                return False
            update: dict[str, Any] = {"state": state, "completed_at": now, "updated_at": now}
            if message is not None:
                update["message"] = message
            if progress is not None:
                update["progress"] = progress
            self._records[key] = record.model_copy(update=update)
        logger.info(f"Run {run_id} for {key[0]}/{key[1].value} finished as {state.value}")
        return True

    def get(self, subject_id: str, kind: JobKind | str) -> AnalysisStatusRecord:
        """Return the current record, or a NOT_STARTED placeholder for unknown keys."""
        key = self.make_key(subject_id, kind)
        with self._lock:
            record = self._records.get(key)
        if record is None:
            return AnalysisStatusRecord(subject_id=key[0], kind=key[1])
        return record

    def get_active(self, subject_id: str | None = None) -> list[AnalysisStatusRecord]:
        with self._lock:
            records = list(self._records.values())
        return [
            record
            for record in records
            if record.is_running and (subject_id is None or record.subject_id == subject_id)
        ]

    def cleanup(self, now: datetime | None = None) -> int:
        """Evict finished records past the retention window, then trim to ``max_entries``."""
        now = now or utc_now()
        cutoff = now - self.retention
        with self._lock:
            expired = [
                key
                for key, record in self._records.items()
                if not record.is_running and (record.completed_at or record.updated_at or now) < cutoff
            ]
            for key in expired:
                del self._records[key]

            overflow = len(self._records) - self.max_entries
            if overflow > 0:
                finished = sorted(
                    (key for key, record in self._records.items() if not record.is_running),
                    key=lambda item: self._records[item].updated_at or now,
                )
                for key in finished[:overflow]:
                    del self._records[key]
                    expired.append(key)

        if expired:
            logger.info(f"Cleaned up {len(expired)} old status records")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def _current(self, key: RegistryKey, run_id: str) -> AnalysisStatusRecord | None:
        record = self._records.get(key)
        if record is None or record.run_id != run_id:
            return None
        if not record.is_running:
            return None
        return record

    def _update(self, subject_id: str, kind: JobKind | str, run_id: str, **changes: Any) -> bool:
        key = self.make_key(subject_id, kind)
        update = {name: value for name, value in changes.items() if value is not None}
        update["updated_at"] = utc_now()
        with self._lock:
            record = self._current(key, run_id)
            if record is None:
                return False
            self._records[key] = record.model_copy(update=update)
            return True
