"""
Database models package - SQLAlchemy ORM models
"""

from .job import ProcessingJob
from .webhook_event import WebhookEventRecord

__all__ = [
    "ProcessingJob",
    "WebhookEventRecord",
]
