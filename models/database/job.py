"""
Processing job model - provider job tracking
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint

from database import Base
from shared.utils import utc_now


class ProcessingJob(Base):
    """One externally executed job and the state of its follow-up action"""

    __tablename__ = "processing_jobs"
    __table_args__ = (UniqueConstraint("provider", "external_job_id", name="uq_processing_jobs_provider_external"),)

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(100), unique=True, nullable=False, index=True)
    job_type = Column(String(50), nullable=False)  # slide_analysis, avatar_video, render_job, ...
    provider = Column(String(50), nullable=False)
    external_job_id = Column(String(255), nullable=True, index=True)
    entity_id = Column(String(255), nullable=False, index=True)
    parent_id = Column(String(255), nullable=True)
    status = Column(String(50), default="pending", nullable=False)  # pending, processing, completed, failed, cancelled
    progress_percent = Column(Integer, default=0, nullable=False)
    stage = Column(String(255), nullable=True)
    result_data = Column(JSON, nullable=True)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    error_retryable = Column(Boolean, default=False, nullable=False)
    follow_up_completed = Column(Boolean, default=False, nullable=False)
    follow_up_error = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
