"""Units of work that a batch runs for each of its items."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from services.providers import get_provider_client
from services.storage import JobStore
from shared.enums import ErrorCode, JobKind, JobStatus
from shared.exceptions import JobCancelledError, JobTimeoutError, TerminalProviderError
from shared.models import BatchItem, JobError, JobHandle, JobSpec, JobStatusSnapshot, OrchestrationOptions, TrackedJob
from shared.utils import setup_logging

from .monitor import JobMonitor, ProviderFactory

logger = setup_logging("batch-work")


class UnitOfWork(ABC):
    """What a batch does for one item."""

    def is_complete(self, item: BatchItem) -> bool:
        """Whether the item's output already exists and it can be skipped."""
        return item.already_completed

    @abstractmethod
    async def execute(self, item: BatchItem) -> Any:
        """Process one item; raise to report failure."""

    def abandon(self, item: BatchItem, error: JobError) -> None:
        """Called when the batch stops waiting on a started item (timeout, deadline or cancellation)."""


class CallableWork(UnitOfWork):
    """Adapt a plain coroutine function (and optional completion check) to :class:`UnitOfWork`."""

    def __init__(
        self,
        func: Callable[[BatchItem], Awaitable[Any]],
        is_complete: Callable[[BatchItem], bool] | None = None,
    ) -> None:
        self.func = func
        self._is_complete = is_complete

    def is_complete(self, item: BatchItem) -> bool:
        if item.already_completed:
            return True
        return bool(self._is_complete(item)) if self._is_complete else False

    async def execute(self, item: BatchItem) -> Any:
        return await self.func(item)


class ProviderJobWork(UnitOfWork):
    """
    Submit one provider job per item and follow it to completion.

    The batch slot stays occupied for the whole polling lifecycle because the
    monitor loop runs in-line. Items whose job already completed in an earlier
    run of the same batch are skipped.
    """

    def __init__(
        self,
        parent_id: str,
        kind: JobKind,
        provider: str,
        job_store: JobStore,
        monitor: JobMonitor,
        options: OrchestrationOptions,
        provider_factory: ProviderFactory = get_provider_client,
    ) -> None:
        self.parent_id = parent_id
        self.kind = kind
        self.provider = provider
        self.job_store = job_store
        self.monitor = monitor
        self.options = options
        self.provider_factory = provider_factory
        self._watching: dict[str, JobHandle] = {}
        if options.per_item_timeout <= options.max_wait:
            logger.warning(
                f"{kind.value} items time out after {options.per_item_timeout:g}s, before the "
                f"{options.max_wait:g}s monitoring window closes"
            )

    def is_complete(self, item: BatchItem) -> bool:
        if item.already_completed:
            return True
        return any(
            job.handle.kind == self.kind
            and job.handle.parent_id == self.parent_id
            and job.status == JobStatus.COMPLETED
            for job in self.job_store.list_by_subject(item.item_id)
        )

    async def execute(self, item: BatchItem) -> Any:
        client = self.provider_factory(self.provider)
        handle = JobHandle(
            subject_id=item.item_id,
            kind=self.kind,
            provider=self.provider,
            parent_id=self.parent_id,
        )
        external_job_id = await client.submit(JobSpec(kind=self.kind, subject_id=item.item_id, payload=item.payload))
        handle.assign_external_job_id(external_job_id)
        self.job_store.save(TrackedJob(handle=handle))
        logger.info(f"Item {item.display_label} submitted as {self.provider} job {external_job_id}")

        self._watching[item.item_id] = handle
        try:
            job = await self.monitor.run(handle, self.options)
        except Exception:
            self._watching.pop(item.item_id, None)
            raise
        self._watching.pop(item.item_id, None)

        if job.status == JobStatus.COMPLETED:
            return job.result
        if job.status == JobStatus.CANCELLED:
            raise JobCancelledError(f"Provider cancelled job {external_job_id}")
        message = job.error.message if job.error else f"Job {external_job_id} failed"
        if job.error and job.error.code == ErrorCode.TIMEOUT:
            raise JobTimeoutError(message)
        raise TerminalProviderError(message)

    def abandon(self, item: BatchItem, error: JobError) -> None:
        """Close out the stored job so it does not stay PROCESSING with nobody polling it."""
        handle = self._watching.pop(item.item_id, None)
        if handle is None:
            return
        if error.code == ErrorCode.CANCELLED:
            snapshot = JobStatusSnapshot.cancelled(error.message)
        else:
            snapshot = JobStatusSnapshot(status=JobStatus.FAILED, error=error)
        outcome, job = self.job_store.apply_snapshot(handle.handle_id, snapshot)
        logger.warning(
            f"Stopped following {self.provider} job {handle.external_job_id} for item {item.display_label}: "
            f"{error.message} (job {job.status.value}, {outcome.value})"
        )
