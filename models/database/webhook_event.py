"""
Webhook event model - provider callbacks awaiting reconciliation
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text

from database import Base
from shared.utils import utc_now


class WebhookEventRecord(Base):
    """Provider callback stored on receipt and processed asynchronously"""

    __tablename__ = "webhook_events"
    __table_args__ = (
        Index("ix_webhook_events_pending", "processed", "stuck", "next_attempt_at"),
        Index("ix_webhook_events_correlation", "provider", "external_job_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(100), unique=True, nullable=False, index=True)
    provider = Column(String(50), nullable=False)
    external_job_id = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=False)
    snapshot = Column(JSON, nullable=False)
    payload = Column(JSON, nullable=True)
    received_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)
    processed = Column(Boolean, default=False, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    stuck = Column(Boolean, default=False, nullable=False)
    error_message = Column(Text, nullable=True)
