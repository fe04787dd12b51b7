"""Job and webhook event persistence."""

from .base import JobStore, WebhookEventStore
from .memory import InMemoryJobStore, InMemoryWebhookEventStore
from .sql import SqlJobStore, SqlWebhookEventStore

__all__ = [
    "InMemoryJobStore",
    "InMemoryWebhookEventStore",
    "JobStore",
    "SqlJobStore",
    "SqlWebhookEventStore",
    "WebhookEventStore",
]
