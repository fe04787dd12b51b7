"""Thread-safe progress counters for a single batch run."""

import threading

from shared.models import ProgressSnapshot


class ProgressTracker:
    """Mutable counters behind a lock; readers get immutable snapshots."""

    def __init__(self, total: int) -> None:
        if total < 0:
            raise ValueError("total must not be negative")
        self._lock = threading.Lock()
        self._total = total
        self._completed = 0
        self._failed = 0
        self._skipped = 0
        self._in_progress = 0

    def _remaining(self) -> int:
        return self._total - self._completed - self._failed - self._skipped

    def start(self) -> ProgressSnapshot:
        with self._lock:
            if self._in_progress >= self._remaining():
                raise ValueError("No unprocessed items left to start")
            self._in_progress += 1
            return self._snapshot()

    def complete(self, started: bool = True) -> ProgressSnapshot:
        with self._lock:
            self._finish(started)
            self._completed += 1
            return self._snapshot()

    def fail(self, started: bool = True) -> ProgressSnapshot:
        with self._lock:
            self._finish(started)
            self._failed += 1
            return self._snapshot()

    def skip(self) -> ProgressSnapshot:
        with self._lock:
            if self._in_progress >= self._remaining():
                raise ValueError("No unprocessed items left to skip")
            self._skipped += 1
            return self._snapshot()

    def fail_remaining(self) -> ProgressSnapshot:
        """Count every started or unstarted item without an outcome as failed."""
        with self._lock:
            self._failed += self._remaining()
            self._in_progress = 0
            return self._snapshot()

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot()

    def _finish(self, started: bool) -> None:
        if started:
            if self._in_progress == 0:
                raise ValueError("No item is in progress")
            self._in_progress -= 1
        elif self._in_progress >= self._remaining():
            raise ValueError("No unprocessed items left")

    def _snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            total=self._total,
            completed=self._completed,
            failed=self._failed,
            skipped=self._skipped,
            in_progress=self._in_progress,
        )
