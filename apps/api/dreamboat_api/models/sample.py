"""
Sample Models

Pre-purchase preview generations over a fixed set of scenarios.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from ..database import Base
from .batch import JobStatus


class SampleJob(Base):
    """
    Sample generation job.

    ``fingerprint`` identifies the accepted-photo set the job was started
    from. Only the newest job per owner has ``is_current`` set.
    """

    __tablename__ = "sample_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(255), ForeignKey("owners.id"), nullable=False, index=True)
    fingerprint = Column(String(64), nullable=False, index=True)
    source_photo_ids = Column(JSON, default=list, nullable=False)
    scenarios = Column(JSON, default=list, nullable=False)
    status = Column(String(20), default=JobStatus.QUEUED.value, nullable=False)
    is_current = Column(Boolean, default=True, nullable=False)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    previews = relationship(
        "SamplePreview",
        back_populates="sample_job",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<SampleJob {self.id} status={self.status} current={self.is_current}>"


class SamplePreview(Base):
    __tablename__ = "sample_previews"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sample_job_id = Column(Uuid, ForeignKey("sample_jobs.id"), nullable=False, index=True)
    scenario = Column(String(100), nullable=False)
    storage_key = Column(Text, nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    sample_job = relationship("SampleJob", back_populates="previews")
