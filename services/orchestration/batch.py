"""Batch orchestration: run a collection of items with bounded parallelism and aggregate status."""

import asyncio
from collections.abc import Iterable

from shared.enums import AnalysisState, ErrorCode, ItemOutcomeStatus, JobKind
from shared.exceptions import InvalidRequestError
from shared.models import AnalysisStatusRecord, BatchItem, JobError, OrchestrationOptions, ProgressSnapshot
from shared.utils import setup_logging

from .executor import BoundedExecutor, ItemOutcome
from .progress import ProgressTracker
from .registry import AnalysisStatusRegistry, RegistryKey
from .work import UnitOfWork

logger = setup_logging("batch-orchestrator")

DEADLINE_MESSAGE = "Batch processing timeout - some items may not have been processed"

# Outcomes where the batch stopped waiting on an item that had already started
ABANDONED_CODES = frozenset({ErrorCode.TIMEOUT, ErrorCode.DEADLINE_EXCEEDED, ErrorCode.CANCELLED})


def determine_final_state(progress: ProgressSnapshot) -> AnalysisState:
    """A batch fails only when nothing completed or was skipped and at least one item failed."""
    if progress.completed + progress.skipped == 0 and progress.failed > 0:
        return AnalysisState.FAILED
    return AnalysisState.COMPLETED


class _BatchRun:
    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self.task: asyncio.Task[None] | None = None

    def cancel(self) -> bool:
        if self.task is None or self.task.done():
            return False
        self.task.cancel()
        return True


class BatchOrchestrator:
    """Start batches in the background and report their progress through the status registry."""

    def __init__(self, registry: AnalysisStatusRegistry) -> None:
        self.registry = registry
        self._runs: dict[RegistryKey, _BatchRun] = {}

    def start_batch(
        self,
        subject_id: str,
        kind: JobKind | str,
        items: Iterable[BatchItem],
        work: UnitOfWork,
        options: OrchestrationOptions | None = None,
    ) -> str:
        """Accept a batch and return its run id; processing continues in a background task."""
        key = self.registry.make_key(subject_id, kind)
        items = list(items)
        item_ids = [item.item_id for item in items]
        if len(set(item_ids)) != len(item_ids):
            raise InvalidRequestError("Batch item ids must be unique")
        options = options or OrchestrationOptions.for_kind(key[1])

        previous = self._runs.get(key)
        if previous is not None and previous.cancel():
            logger.info(f"Superseding running batch {previous.run_id} for {subject_id}/{key[1].value}")

        run = _BatchRun(self.registry.start(subject_id, key[1], total=len(items), message="Batch accepted"))
        run.task = asyncio.create_task(self._run_batch(run.run_id, key, items, work, options))
        run.task.add_done_callback(lambda _task: self._forget(key, run))
        self._runs[key] = run
        logger.info(
            f"Accepted batch {run.run_id} for {subject_id}/{key[1].value}: {len(items)} items, "
            f"max {options.max_concurrent} concurrent, parallel={'on' if options.parallel_enabled else 'off'}"
        )
        return run.run_id

    def cancel_batch(self, subject_id: str, kind: JobKind | str) -> bool:
        key = self.registry.make_key(subject_id, kind)
        run = self._runs.get(key)
        if run is None or not run.cancel():
            return False
        logger.info(f"Cancellation requested for batch {run.run_id}")
        return True

    def is_running(self, subject_id: str, kind: JobKind | str) -> bool:
        run = self._runs.get(self.registry.make_key(subject_id, kind))
        return run is not None and run.task is not None and not run.task.done()

    async def wait_for_batch(
        self, subject_id: str, kind: JobKind | str, timeout: float | None = None
    ) -> AnalysisStatusRecord:
        """Wait until the current run for the key finishes (or ``timeout`` elapses) and return its record."""
        key = self.registry.make_key(subject_id, kind)
        run = self._runs.get(key)
        if run is not None and run.task is not None:
            await asyncio.wait({run.task}, timeout=timeout)
        return self.registry.get(*key)

    async def shutdown(self) -> None:
        tasks = [run.task for run in self._runs.values() if run.task is not None and not run.task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _forget(self, key: RegistryKey, run: _BatchRun) -> None:
        if self._runs.get(key) is run:
            del self._runs[key]

    async def _run_batch(
        self,
        run_id: str,
        key: RegistryKey,
        items: list[BatchItem],
        work: UnitOfWork,
        options: OrchestrationOptions,
    ) -> None:
        subject_id, kind = key
        registry = self.registry

        if not items:
            registry.complete(subject_id, kind, run_id, AnalysisState.COMPLETED, "No items to process", ProgressSnapshot())
            return

        tracker = ProgressTracker(len(items))
        try:
            registry.mark_in_progress(subject_id, kind, run_id, message=f"Processing {len(items)} items")

            pending: list[BatchItem] = []
            for item in items:
                if self._is_complete(work, item):
                    tracker.skip()
                    logger.info(f"Skipping item {item.display_label}: already completed")
                else:
                    pending.append(item)
            self._publish(run_id, key, tracker.snapshot())

            if options.parallel_enabled and len(pending) > 1:
                await self._run_concurrent(run_id, key, pending, work, options, tracker)
            else:
                await self._run_sequential(run_id, key, pending, work, options, tracker)

            progress = tracker.snapshot()
            state = determine_final_state(progress)
            message = (
                f"Processed {progress.total} items: {progress.completed} completed, "
                f"{progress.skipped} skipped, {progress.failed} failed"
            )
            registry.complete(subject_id, kind, run_id, state, message, progress)
        except asyncio.CancelledError:
            registry.complete(subject_id, kind, run_id, AnalysisState.CANCELLED, "Batch cancelled", tracker.fail_remaining())
            raise
        except Exception as exc:
            logger.error(f"Batch {run_id} for {subject_id}/{kind.value} failed unexpectedly: {exc}")
            registry.add_error(subject_id, kind, run_id, f"Unexpected error: {exc}")
            registry.complete(
                subject_id, kind, run_id, AnalysisState.FAILED, f"Unexpected error: {exc}", tracker.snapshot()
            )

    async def _run_concurrent(
        self,
        run_id: str,
        key: RegistryKey,
        pending: list[BatchItem],
        work: UnitOfWork,
        options: OrchestrationOptions,
        tracker: ProgressTracker,
    ) -> None:
        executor: BoundedExecutor[BatchItem] = BoundedExecutor(options.max_concurrent, options.per_item_timeout)

        def on_start(_item: BatchItem) -> None:
            self._publish(run_id, key, tracker.start())

        def on_finish(item: BatchItem, outcome: ItemOutcome) -> None:
            self._record_outcome(run_id, key, tracker, work, item, outcome)

        summary = await executor.run(
            pending, work.execute, key=lambda item: item.item_id, on_start=on_start, on_finish=on_finish
        )
        if summary.deadline_exceeded:
            logger.warning(f"Batch {run_id} exceeded its deadline")
            self.registry.add_error(key[0], key[1], run_id, DEADLINE_MESSAGE)

    async def _run_sequential(
        self,
        run_id: str,
        key: RegistryKey,
        pending: list[BatchItem],
        work: UnitOfWork,
        options: OrchestrationOptions,
        tracker: ProgressTracker,
    ) -> None:
        for item in pending:
            self._publish(run_id, key, tracker.start())
            try:
                result = await asyncio.wait_for(work.execute(item), timeout=options.per_item_timeout)
            except asyncio.CancelledError:
                cancelled = ItemOutcome(
                    item_id=item.item_id,
                    status=ItemOutcomeStatus.CANCELLED,
                    error=JobError(code=ErrorCode.CANCELLED, message="Execution cancelled"),
                )
                self._record_outcome(run_id, key, tracker, work, item, cancelled)
                raise
            except asyncio.TimeoutError:
                outcome = ItemOutcome(
                    item_id=item.item_id,
                    status=ItemOutcomeStatus.FAILED,
                    error=JobError(
                        code=ErrorCode.TIMEOUT,
                        message=f"Timed out after {options.per_item_timeout:g}s",
                        retryable=True,
                    ),
                )
            except Exception as exc:
                outcome = ItemOutcome(
                    item_id=item.item_id, status=ItemOutcomeStatus.FAILED, error=JobError.from_exception(exc)
                )
            else:
                outcome = ItemOutcome(item_id=item.item_id, status=ItemOutcomeStatus.SUCCEEDED, result=result)
            self._record_outcome(run_id, key, tracker, work, item, outcome)

    def _record_outcome(
        self,
        run_id: str,
        key: RegistryKey,
        tracker: ProgressTracker,
        work: UnitOfWork,
        item: BatchItem,
        outcome: ItemOutcome,
    ) -> None:
        if outcome.dispatched and outcome.error is not None and outcome.error.code in ABANDONED_CODES:
            self._abandon(work, item, outcome.error)

        if outcome.status == ItemOutcomeStatus.SUCCEEDED:
            snapshot = tracker.complete()
        elif outcome.status == ItemOutcomeStatus.CANCELLED:
            snapshot = tracker.fail(started=outcome.dispatched)
        else:
            snapshot = tracker.fail(started=outcome.dispatched)
            message = outcome.error.message if outcome.error else "Unknown error"
            logger.warning(f"Item {item.display_label} failed: {message}")
            self.registry.add_error(key[0], key[1], run_id, f"{item.display_label}: {message}")
        self._publish(run_id, key, snapshot)

    def _publish(self, run_id: str, key: RegistryKey, snapshot: ProgressSnapshot) -> None:
        try:
            self.registry.update_progress(key[0], key[1], run_id, snapshot)
        except Exception as exc:
            logger.warning(f"Failed to publish progress for batch {run_id}: {exc}")

    @staticmethod
    def _abandon(work: UnitOfWork, item: BatchItem, error: JobError) -> None:
        try:
            work.abandon(item, error)
        except Exception as exc:
            logger.error(f"Could not release item {item.display_label} after {error.code.value}: {exc}")

    @staticmethod
    def _is_complete(work: UnitOfWork, item: BatchItem) -> bool:
        try:
            return work.is_complete(item)
        except Exception as exc:
            logger.warning(f"Completion check failed for item {item.display_label}, processing it: {exc}")
            return False
