"""Orchestration service facade used by the HTTP layer and by other services."""

import asyncio
from collections.abc import Iterable
from typing import Any

from services.providers import get_provider_client
from services.storage import (
    InMemoryJobStore,
    InMemoryWebhookEventStore,
    JobStore,
    SqlJobStore,
    SqlWebhookEventStore,
    WebhookEventStore,
)
from services.webhooks import QueueManager, WebhookIntake, WebhookReconciler
from shared.config import config
from shared.enums import JobKind
from shared.exceptions import MalformedEventError
from shared.models import (
    AnalysisStatusRecord,
    BatchItem,
    JobHandle,
    OrchestrationOptions,
    TrackedJob,
    WebhookEvent,
)
from shared.utils import setup_logging

from .actions import FollowUpRunner, ResultAction, build_result_action
from .batch import BatchOrchestrator
from .monitor import JobMonitor, ProviderFactory
from .registry import AnalysisStatusRegistry
from .work import ProviderJobWork, UnitOfWork

logger = setup_logging("orchestration-service")


class OrchestrationService:
    """Entry point for batches, single-job monitors, status queries and webhooks."""

    def __init__(
        self,
        job_store: JobStore | None = None,
        event_store: WebhookEventStore | None = None,
        registry: AnalysisStatusRegistry | None = None,
        queue: QueueManager | None = None,
        result_action: ResultAction | None = None,
        provider_factory: ProviderFactory = get_provider_client,
    ) -> None:
        if job_store is None or event_store is None:
            default_jobs, default_events = self._default_stores()
            job_store = job_store or default_jobs
            event_store = event_store or default_events
        if queue is None and config.get("webhook_queue_enabled", True):
            queue = QueueManager()

        self.job_store = job_store
        self.event_store = event_store
        self.queue = queue
        self.provider_factory = provider_factory
        self.registry = registry or AnalysisStatusRegistry()
        self.follow_up = FollowUpRunner(job_store, result_action or build_result_action())
        self.monitor = JobMonitor(job_store, self.registry, self.follow_up, provider_factory)
        self.batches = BatchOrchestrator(self.registry)
        self.intake = WebhookIntake(event_store, queue)
        self.reconciler = WebhookReconciler(event_store, job_store, self.follow_up, queue)
        self._background: list[asyncio.Task[None]] = []

    @staticmethod
    def _default_stores() -> tuple[JobStore, WebhookEventStore]:
        if not config.get("database_url"):
            logger.info("No DATABASE_URL configured, using in-memory stores")
            return InMemoryJobStore(), InMemoryWebhookEventStore()

        from database import get_session_factory, init_database

        init_database()
        session_factory = get_session_factory()
        return SqlJobStore(session_factory), SqlWebhookEventStore(session_factory)

    def start_batch(
        self,
        subject_id: str,
        kind: JobKind | str,
        items: Iterable[BatchItem],
        options: OrchestrationOptions | None = None,
        work: UnitOfWork | None = None,
        provider: str | None = None,
    ) -> str:
        """Start processing ``items`` in the background and return the run id.

        Without an explicit ``work`` each item becomes one job on ``provider``
        (the configured default provider if omitted).
        """
        subject_id, job_kind = self.registry.make_key(subject_id, kind)
        options = options or OrchestrationOptions.for_kind(job_kind)
        if work is None:
            work = ProviderJobWork(
                parent_id=subject_id,
                kind=job_kind,
                provider=provider or config.get("default_provider", "stub"),
                job_store=self.job_store,
                monitor=self.monitor,
                options=options,
                provider_factory=self.provider_factory,
            )
        return self.batches.start_batch(subject_id, job_kind, items, work, options)

    def start_monitor(self, handle: JobHandle, options: OrchestrationOptions | None = None) -> bool:
        return self.monitor.start_monitor(handle, options)

    def get_status(self, subject_id: str, kind: JobKind | str) -> AnalysisStatusRecord:
        return self.registry.get(subject_id, kind)

    def get_active(self, subject_id: str | None = None) -> list[AnalysisStatusRecord]:
        return self.registry.get_active(subject_id)

    def get_job(self, handle_id: str) -> TrackedJob | None:
        return self.job_store.get(handle_id)

    def list_jobs(self, subject_id: str) -> list[TrackedJob]:
        return self.job_store.list_by_subject(subject_id)

    def cancel_batch(self, subject_id: str, kind: JobKind | str) -> bool:
        return self.batches.cancel_batch(subject_id, kind)

    def cancel_monitor(self, handle_id: str) -> bool:
        return self.monitor.cancel_monitor(handle_id)

    async def wait_for_batch(
        self, subject_id: str, kind: JobKind | str, timeout: float | None = None
    ) -> AnalysisStatusRecord:
        return await self.batches.wait_for_batch(subject_id, kind, timeout)

    async def ingest_webhook_event(self, provider: str, raw_event: Any) -> bool:
        """Store a provider callback; returns False only when the payload is malformed."""
        try:
            await self.intake.ingest(provider, raw_event)
        except MalformedEventError:
            return False
        self.reconciler.notify()
        return True

    def list_stuck_events(self) -> list[WebhookEvent]:
        return self.reconciler.list_stuck()

    async def _cleanup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.registry.cleanup()
            except Exception as exc:
                logger.error(f"Status registry cleanup failed: {exc}")

    async def startup(self) -> None:
        """Start the webhook reconciler and registry cleanup loops."""
        if self._background:
            return
        cleanup_interval = float(config.get_pipeline_value("registry.cleanup_interval_seconds", 300))
        self._background = [
            asyncio.create_task(self.reconciler.run_forever()),
            asyncio.create_task(self._cleanup_loop(cleanup_interval)),
        ]
        logger.info("Orchestration background tasks started")

    async def shutdown(self) -> None:
        """Stop background loops and cancel running batches and monitors."""
        background, self._background = self._background, []
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        await self.batches.shutdown()
        await self.monitor.shutdown()
        if self.queue is not None:
            await self.queue.close()
        logger.info("Orchestration service stopped")
