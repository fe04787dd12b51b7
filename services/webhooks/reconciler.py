"""Fold stored webhook events into tracked job status."""

import asyncio
from datetime import datetime, timedelta

from services.orchestration.actions import FollowUpRunner
from services.storage import JobStore, WebhookEventStore
from shared.config import config
from shared.enums import TransitionOutcome
from shared.models import WebhookEvent
from shared.utils import setup_logging, truncate, utc_now

from .queue import QueueManager

logger = setup_logging("webhook-reconciler")


class WebhookReconciler:
    """
    Correlate webhook events with tracked jobs and apply them.

    Events are woken through the Redis queue and also found by a periodic
    sweep, so a lost queue message only delays processing. Events that cannot
    be applied are retried with exponential backoff and flagged as stuck once
    retries run out; they are never dropped before the retention window ends.
    """

    def __init__(
        self,
        event_store: WebhookEventStore,
        job_store: JobStore,
        follow_up: FollowUpRunner,
        queue: QueueManager | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        backoff_max: float | None = None,
        retention_days: float | None = None,
    ) -> None:
        self.event_store = event_store
        self.job_store = job_store
        self.follow_up = follow_up
        self.queue = queue
        self.max_retries = int(max_retries or config.get_pipeline_value("webhooks.max_retries", 5))
        self.backoff_base = float(backoff_base or config.get_pipeline_value("webhooks.backoff_base_seconds", 2))
        self.backoff_max = float(backoff_max or config.get_pipeline_value("webhooks.backoff_max_seconds", 300))
        self.retention = timedelta(days=float(retention_days or config.get_pipeline_value("webhooks.retention_days", 7)))
        self._wakeup: asyncio.Event | None = None

    def backoff_delay(self, retry_count: int) -> float:
        return min(self.backoff_base * (2 ** retry_count), self.backoff_max)

    def notify(self) -> None:
        """Wake :meth:`run_forever` early, e.g. right after intake."""
        if self._wakeup is not None:
            self._wakeup.set()

    async def process(self, event_id: str) -> bool:
        """Apply one event; returns True once the event is processed."""
        event = self.event_store.get(event_id)
        if event is None:
            logger.warning(f"Webhook event {event_id} not found")
            return False
        if event.processed:
            return True
        if event.stuck:
            return False

        job = self.job_store.find_by_external_id(event.provider, event.external_job_id)
        if job is None:
            self._schedule_retry(event, f"No tracked job for {event.provider} job {event.external_job_id}")
            return False

        try:
            outcome, job = self.job_store.apply_snapshot(job.handle.handle_id, event.snapshot)
            if outcome != TransitionOutcome.APPLIED:
                logger.info(
                    f"Webhook {event.event_id} for job {job.handle.handle_id} was {outcome.value} "
                    f"(job is {job.status.value}, event says {event.snapshot.status.value})"
                )
            if job.needs_follow_up:
                await self.follow_up.run(job)
        except Exception as exc:
            logger.error(f"Failed to apply webhook event {event.event_id}: {exc}")
            self._schedule_retry(event, str(exc) or type(exc).__name__)
            return False

        event.processed = True
        event.processed_at = utc_now()
        event.next_attempt_at = None
        event.error_message = None
        self.event_store.save(event)
        return True

    def _schedule_retry(self, event: WebhookEvent, reason: str) -> None:
        delay = self.backoff_delay(event.retry_count)
        event.retry_count += 1
        event.error_message = truncate(reason)
        if event.retry_count >= self.max_retries:
            event.stuck = True
            event.next_attempt_at = None
            logger.error(f"Webhook event {event.event_id} is stuck after {event.retry_count} attempts: {reason}")
        else:
            event.next_attempt_at = utc_now() + timedelta(seconds=delay)
            logger.warning(
                f"Webhook event {event.event_id} deferred ({event.retry_count}/{self.max_retries}), "
                f"retrying in {delay:g}s: {reason}"
            )
        self.event_store.save(event)

    async def drain_queue(self, limit: int = 100) -> int:
        """Process event ids waiting on the wake-up queue."""
        if self.queue is None:
            return 0
        handled = 0
        for _ in range(limit):
            try:
                event_id = await self.queue.dequeue()
            except ConnectionError as exc:
                logger.warning(f"Webhook queue unavailable: {exc}")
                break
            if event_id is None:
                break
            await self.process(event_id)
            handled += 1
        return handled

    async def sweep(self, now: datetime | None = None, limit: int = 100) -> int:
        """Process due events in the order they were received."""
        processed = 0
        for event in self.event_store.list_due(now or utc_now(), limit=limit):
            if await self.process(event.event_id):
                processed += 1
        return processed

    def purge(self, now: datetime | None = None) -> int:
        cutoff = (now or utc_now()) - self.retention
        return self.event_store.purge(cutoff)

    def list_stuck(self) -> list[WebhookEvent]:
        return self.event_store.list_stuck()

    async def run_forever(self, interval: float | None = None) -> None:
        interval = float(interval or config.get_pipeline_value("webhooks.sweep_interval_seconds", 30))
        self._wakeup = asyncio.Event()
        logger.info(f"Webhook reconciler started (sweep every {interval:g}s)")
        try:
            while True:
                try:
                    await self.drain_queue()
                    await self.sweep()
                    self.purge()
                except Exception as exc:
                    logger.error(f"Webhook reconciliation pass failed: {exc}")
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
                self._wakeup.clear()
        finally:
            self._wakeup = None
            logger.info("Webhook reconciler stopped")
