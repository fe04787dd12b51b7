"""Tests for the batch progress tracker."""

import threading

import pytest

from services.orchestration.progress import ProgressTracker
from shared.models import ProgressSnapshot


class TestProgressTracker:
    def test_counts_move_through_lifecycle(self) -> None:
        tracker = ProgressTracker(4)
        tracker.skip()
        tracker.start()
        tracker.start()
        snapshot = tracker.complete()
        assert (snapshot.completed, snapshot.in_progress, snapshot.skipped) == (1, 1, 1)
        snapshot = tracker.fail()
        assert (snapshot.failed, snapshot.in_progress) == (1, 0)
        assert snapshot.percentage == 75

    def test_skipped_counts_toward_percentage(self) -> None:
        tracker = ProgressTracker(2)
        snapshot = tracker.skip()
        assert snapshot.skipped == 1
        assert snapshot.completed == 0
        assert snapshot.percentage == 50

    def test_cannot_start_more_than_remaining(self) -> None:
        tracker = ProgressTracker(1)
        tracker.start()
        with pytest.raises(ValueError):
            tracker.start()

    def test_fail_without_start(self) -> None:
        tracker = ProgressTracker(2)
        snapshot = tracker.fail(started=False)
        assert snapshot.failed == 1
        assert snapshot.in_progress == 0

    def test_fail_remaining_settles_started_and_pending_items(self) -> None:
        tracker = ProgressTracker(5)
        tracker.skip()
        tracker.start()
        tracker.complete()
        tracker.start()
        snapshot = tracker.fail_remaining()
        assert (snapshot.completed, snapshot.failed, snapshot.skipped, snapshot.in_progress) == (1, 3, 1, 0)
        assert snapshot.processed == 5
        assert tracker.fail_remaining() == snapshot

    def test_snapshot_is_immutable(self) -> None:
        snapshot = ProgressTracker(3).snapshot()
        with pytest.raises(Exception):
            snapshot.completed = 2  # type: ignore[misc]

    def test_snapshot_validation_rejects_inconsistent_counts(self) -> None:
        with pytest.raises(ValueError):
            ProgressSnapshot(total=2, completed=2, failed=1)
        with pytest.raises(ValueError):
            ProgressSnapshot(total=2, completed=1, in_progress=2)

    def test_concurrent_updates_keep_invariants(self) -> None:
        total = 400
        tracker = ProgressTracker(total)
        observed: list[ProgressSnapshot] = []

        def worker(index: int) -> None:
            for offset in range(50):
                tracker.start()
                if (index + offset) % 3 == 0:
                    tracker.fail()
                else:
                    tracker.complete()
                observed.append(tracker.snapshot())

        threads = [threading.Thread(target=worker, args=(index,)) for index in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        final = tracker.snapshot()
        assert final.completed + final.failed == total
        assert final.in_progress == 0
        for snapshot in observed:
            assert snapshot.completed + snapshot.failed + snapshot.skipped <= snapshot.total
            assert snapshot.in_progress <= snapshot.total - snapshot.processed
