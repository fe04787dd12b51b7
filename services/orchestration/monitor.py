"""Polling monitor for single provider jobs."""

import asyncio
import math
from collections.abc import Callable

from services.providers import ProviderClient, get_provider_client
from services.storage import JobStore
from shared.enums import AnalysisState, ErrorCode, JobStatus
from shared.exceptions import InvalidRequestError, TransientProviderError
from shared.models import (
    JobHandle,
    JobStatusSnapshot,
    OrchestrationOptions,
    ProgressSnapshot,
    TrackedJob,
)
from shared.utils import setup_logging

from .actions import FollowUpRunner
from .poller import poll_job_status
from .registry import AnalysisStatusRegistry

logger = setup_logging("job-monitor")

ProviderFactory = Callable[[str], ProviderClient]


def max_poll_attempts(options: OrchestrationOptions) -> int:
    return max(1, math.ceil(round(options.max_wait / options.poll_interval, 6)))


class JobMonitor:
    """Poll a provider until a job reaches a terminal state or the wait budget runs out."""

    def __init__(
        self,
        job_store: JobStore,
        registry: AnalysisStatusRegistry,
        follow_up: FollowUpRunner,
        provider_factory: ProviderFactory = get_provider_client,
    ) -> None:
        self.job_store = job_store
        self.registry = registry
        self.follow_up = follow_up
        self.provider_factory = provider_factory
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def start_monitor(self, handle: JobHandle, options: OrchestrationOptions | None = None) -> bool:
        """Schedule background monitoring; returns False if the handle is already monitored."""
        if not handle.external_job_id:
            raise InvalidRequestError(f"Handle {handle.handle_id} has no external job id to monitor")
        self.registry.make_key(handle.subject_id, handle.kind)

        existing = self._tasks.get(handle.handle_id)
        if existing is not None and not existing.done():
            logger.info(f"Job {handle.handle_id} is already being monitored")
            return False

        if self.job_store.get(handle.handle_id) is None:
            self.job_store.save(TrackedJob(handle=handle))

        options = options or OrchestrationOptions.for_kind(handle.kind)
        run_id = self.registry.start(
            handle.subject_id,
            handle.kind,
            total=1,
            message=f"Monitoring {handle.provider} job {handle.external_job_id}",
        )
        task = asyncio.create_task(self._run_reported(handle, options, run_id))
        self._tasks[handle.handle_id] = task
        task.add_done_callback(lambda _task: self._forget(handle.handle_id, _task))
        logger.info(
            f"Started monitoring {handle.kind.value} job {handle.external_job_id} "
            f"(poll every {options.poll_interval:g}s, up to {max_poll_attempts(options)} polls)"
        )
        return True

    def cancel_monitor(self, handle_id: str) -> bool:
        task = self._tasks.get(handle_id)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info(f"Cancelled monitoring of job {handle_id}")
        return True

    def is_monitoring(self, handle_id: str) -> bool:
        task = self._tasks.get(handle_id)
        return task is not None and not task.done()

    async def wait(self, handle_id: str) -> None:
        task = self._tasks.get(handle_id)
        if task is not None:
            await asyncio.wait({task})

    async def shutdown(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _forget(self, handle_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(handle_id) is task:
            del self._tasks[handle_id]

    async def run(
        self,
        handle: JobHandle,
        options: OrchestrationOptions,
        on_update: Callable[[TrackedJob], None] | None = None,
    ) -> TrackedJob:
        """Poll until terminal and return the final job.

        Every tick sleeps first, then stops early if the stored job is already
        terminal (for example because a webhook completed it), then polls.
        Transient errors use up an attempt without stopping the loop.
        """
        if not handle.external_job_id:
            raise InvalidRequestError(f"Handle {handle.handle_id} has no external job id to monitor")
        client = self.provider_factory(handle.provider)
        attempts = max_poll_attempts(options)
        external_job_id = handle.external_job_id

        for attempt in range(1, attempts + 1):
            await asyncio.sleep(options.poll_interval)

            stored = self.job_store.get(handle.handle_id)
            if stored is not None and stored.is_terminal:
                logger.info(f"Job {handle.handle_id} already {stored.status.value}, stopping monitor")
                return await self._finish(stored)

            try:
                snapshot = await poll_job_status(client, handle)
            except TransientProviderError as exc:
                logger.warning(f"Poll {attempt}/{attempts} for {external_job_id} failed: {exc.message}")
                continue
            except Exception as exc:
                logger.error(f"Unexpected error polling {external_job_id} (attempt {attempt}/{attempts}): {exc}")
                continue

            outcome, job = self.job_store.apply_snapshot(handle.handle_id, snapshot)
            logger.debug(f"Poll {attempt}/{attempts} for {external_job_id}: {snapshot.status.value} ({outcome.value})")
            if on_update is not None:
                on_update(job)
            if job.is_terminal:
                return await self._finish(job)

        logger.warning(f"Job {external_job_id} did not finish after {attempts} polls, marking as failed")
        timeout = JobStatusSnapshot.failed(
            ErrorCode.TIMEOUT,
            f"Job did not finish within {options.max_wait:g}s ({attempts} polls)",
            retryable=True,
        )
        _, job = self.job_store.apply_snapshot(handle.handle_id, timeout)
        if on_update is not None:
            on_update(job)
        return await self._finish(job)

    async def _finish(self, job: TrackedJob) -> TrackedJob:
        if job.needs_follow_up:
            return await self.follow_up.run(job)
        return job

    async def _run_reported(self, handle: JobHandle, options: OrchestrationOptions, run_id: str) -> None:
        subject_id, kind = handle.subject_id, handle.kind
        registry = self.registry
        registry.update_progress(subject_id, kind, run_id, ProgressSnapshot(total=1, in_progress=1))

        def report(job: TrackedJob) -> None:
            if not job.is_terminal:
                stage = f" ({job.stage})" if job.stage else ""
                registry.mark_in_progress(subject_id, kind, run_id, message=f"{job.progress}% complete{stage}")

        try:
            job = await self.run(handle, options, on_update=report)
        except asyncio.CancelledError:
            registry.complete(
                subject_id, kind, run_id, AnalysisState.CANCELLED, "Monitoring cancelled", ProgressSnapshot(total=1)
            )
            raise
        except Exception as exc:
            logger.error(f"Unexpected error monitoring job {handle.handle_id}: {exc}")
            registry.add_error(subject_id, kind, run_id, f"Unexpected error: {exc}")
            registry.complete(
                subject_id, kind, run_id, AnalysisState.FAILED, f"Unexpected error: {exc}", ProgressSnapshot(total=1)
            )
            return

        if job.status == JobStatus.COMPLETED:
            message = "Job completed"
            if job.follow_up_error:
                message = f"Job completed, follow-up failed: {job.follow_up_error}"
            registry.complete(
                subject_id, kind, run_id, AnalysisState.COMPLETED, message, ProgressSnapshot(total=1, completed=1)
            )
        elif job.status == JobStatus.CANCELLED:
            registry.complete(
                subject_id, kind, run_id, AnalysisState.CANCELLED, "Job cancelled by provider", ProgressSnapshot(total=1)
            )
        else:
            error = job.error.message if job.error else "Job failed"
            registry.add_error(subject_id, kind, run_id, f"{handle.external_job_id}: {error}")
            registry.complete(
                subject_id, kind, run_id, AnalysisState.FAILED, error, ProgressSnapshot(total=1, failed=1)
            )
