"""Bounded-concurrency executor for batches of asynchronous work."""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from shared.enums import ErrorCode, ItemOutcomeStatus
from shared.models import JobError
from shared.utils import setup_logging

logger = setup_logging("bounded-executor")

T = TypeVar("T")


class ItemOutcome(BaseModel):
    """Terminal result of one item handed to the executor."""

    item_id: str
    status: ItemOutcomeStatus
    result: Any = None
    error: JobError | None = None
    dispatched: bool = True

    @property
    def succeeded(self) -> bool:
        return self.status == ItemOutcomeStatus.SUCCEEDED


class ExecutionSummary(BaseModel):
    outcomes: list[ItemOutcome] = Field(default_factory=list)
    deadline_exceeded: bool = False
    cancelled: bool = False
    max_active: int = 0
    elapsed_seconds: float = 0.0

    def count(self, status: ItemOutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def succeeded(self) -> int:
        return self.count(ItemOutcomeStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self.count(ItemOutcomeStatus.FAILED)

    def by_item(self) -> dict[str, ItemOutcome]:
        return {outcome.item_id: outcome for outcome in self.outcomes}


def compute_deadline(item_count: int, per_item_timeout: float, max_concurrent: int) -> float:
    """Global time budget for a batch: enough for every wave of items, never less than two timeouts."""
    if max_concurrent <= 0:
        raise ValueError("max_concurrent must be positive")
    return max(item_count * per_item_timeout / max_concurrent, per_item_timeout * 2)


class BoundedExecutor(Generic[T]):
    """
    Run one unit of work per item with at most ``max_concurrent`` running at once.

    A task is only created once a semaphore permit has been acquired, and the
    permit is held until the task finishes, so the number of live tasks never
    exceeds the limit. Each unit gets ``per_item_timeout`` seconds; the whole run
    gets ``deadline`` seconds (see :func:`compute_deadline`). Per-item failures
    are captured as outcomes and never raised to the caller.

    An executor instance drives a single run.
    """

    def __init__(self, max_concurrent: int, per_item_timeout: float, deadline: float | None = None) -> None:
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        if per_item_timeout <= 0:
            raise ValueError("per_item_timeout must be positive")
        self.max_concurrent = max_concurrent
        self.per_item_timeout = per_item_timeout
        self.deadline = deadline
        self._cancel_event = asyncio.Event()
        self._active = 0
        self._max_active = 0

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop dispatching and cancel in-flight work."""
        self._cancel_event.set()

    async def run(
        self,
        items: Iterable[T],
        work: Callable[[T], Awaitable[Any]],
        key: Callable[[T], str] = str,
        on_start: Callable[[T], None] | None = None,
        on_finish: Callable[[T, ItemOutcome], None] | None = None,
    ) -> ExecutionSummary:
        entries = [(key(item), item) for item in items]
        loop = asyncio.get_running_loop()
        started_at = loop.time()
        if not entries:
            return ExecutionSummary()

        deadline = self.deadline
        if deadline is None:
            deadline = compute_deadline(len(entries), self.per_item_timeout, self.max_concurrent)

        outcomes: dict[str, ItemOutcome] = {}
        tasks: dict[str, asyncio.Task[None]] = {}
        semaphore = asyncio.Semaphore(self.max_concurrent)

        def record(item: T, outcome: ItemOutcome) -> None:
            outcomes[outcome.item_id] = outcome
            if on_finish is None:
                return
            try:
                on_finish(item, outcome)
            except Exception as exc:
                logger.error(f"Completion callback failed for item {outcome.item_id}: {exc}")

        def release(_task: asyncio.Task[None]) -> None:
            self._active -= 1
            semaphore.release()

        async def run_one(item_id: str, item: T) -> None:
            try:
                result = await asyncio.wait_for(work(item), timeout=self.per_item_timeout)
            except asyncio.TimeoutError:
                outcome = ItemOutcome(
                    item_id=item_id,
                    status=ItemOutcomeStatus.FAILED,
                    error=JobError(
                        code=ErrorCode.TIMEOUT,
                        message=f"Timed out after {self.per_item_timeout:g}s",
                        retryable=True,
                    ),
                )
            except Exception as exc:
                logger.warning(f"Item {item_id} failed: {exc}")
                outcome = ItemOutcome(
                    item_id=item_id,
                    status=ItemOutcomeStatus.FAILED,
                    error=JobError.from_exception(exc),
                )
            else:
                outcome = ItemOutcome(item_id=item_id, status=ItemOutcomeStatus.SUCCEEDED, result=result)
            record(item, outcome)

        async def dispatch() -> None:
            for item_id, item in entries:
                await semaphore.acquire()
                if self.cancelled:
                    semaphore.release()
                    return
                self._active += 1
                self._max_active = max(self._max_active, self._active)
                if on_start is not None:
                    try:
                        on_start(item)
                    except Exception as exc:
                        logger.error(f"Start callback failed for item {item_id}: {exc}")
                task = asyncio.create_task(run_one(item_id, item))
                task.add_done_callback(release)
                tasks[item_id] = task

        async def join(dispatcher: asyncio.Task[None]) -> None:
            await dispatcher
            if tasks:
                await asyncio.wait(list(tasks.values()))

        def settle(deadline_exceeded: bool) -> None:
            """Give every item without an outcome a FAILED or CANCELLED one."""
            for item_id, item in entries:
                if item_id in outcomes:
                    continue
                dispatched = item_id in tasks
                if deadline_exceeded:
                    outcome = ItemOutcome(
                        item_id=item_id,
                        status=ItemOutcomeStatus.FAILED,
                        error=JobError(
                            code=ErrorCode.DEADLINE_EXCEEDED,
                            message=f"Batch deadline of {deadline:g}s exceeded",
                            retryable=True,
                        ),
                        dispatched=dispatched,
                    )
                else:
                    outcome = ItemOutcome(
                        item_id=item_id,
                        status=ItemOutcomeStatus.CANCELLED,
                        error=JobError(code=ErrorCode.CANCELLED, message="Execution cancelled"),
                        dispatched=dispatched,
                    )
                record(item, outcome)

        dispatcher = asyncio.create_task(dispatch())
        joiner = asyncio.create_task(join(dispatcher))
        cancel_waiter = asyncio.create_task(self._cancel_event.wait())

        try:
            done, _ = await asyncio.wait(
                {joiner, cancel_waiter}, timeout=deadline, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            self.cancel()
            await self._shutdown(dispatcher, joiner, cancel_waiter, tasks)
            settle(deadline_exceeded=False)
            raise

        deadline_exceeded = False
        cancelled = False
        if joiner not in done:
            if cancel_waiter in done:
                cancelled = True
                logger.info("Execution cancelled, stopping in-flight work")
            else:
                deadline_exceeded = True
                logger.warning(f"Global deadline of {deadline:g}s exceeded, cancelling in-flight work")

        await self._shutdown(dispatcher, joiner, cancel_waiter, tasks)
        settle(deadline_exceeded)

        return ExecutionSummary(
            outcomes=[outcomes[item_id] for item_id, _ in entries],
            deadline_exceeded=deadline_exceeded,
            cancelled=cancelled,
            max_active=self._max_active,
            elapsed_seconds=loop.time() - started_at,
        )

    @staticmethod
    async def _shutdown(
        dispatcher: asyncio.Task[None],
        joiner: asyncio.Task[None],
        cancel_waiter: asyncio.Task[Any],
        tasks: dict[str, asyncio.Task[None]],
    ) -> None:
        for helper in (cancel_waiter, joiner, dispatcher):
            helper.cancel()
        pending = [task for task in tasks.values() if not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(dispatcher, joiner, cancel_waiter, *pending, return_exceptions=True)
