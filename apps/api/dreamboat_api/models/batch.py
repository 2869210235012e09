"""
Generation Batch Models

A paid full-generation run and the images it produces.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from ..database import Base


class JobStatus(str, Enum):
    """Status values shared by sample jobs and batches."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


IN_FLIGHT_STATUSES = (JobStatus.QUEUED.value, JobStatus.RUNNING.value)


class GenerationBatch(Base):
    """
    Full generation batch.

    ``in_flight_owner_id`` holds the owner id while the batch is queued or
    running and is cleared on completion; its unique index admits one
    in-flight batch per owner.
    """

    __tablename__ = "generation_batches"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(255), ForeignKey("owners.id"), nullable=False, index=True)
    credit_id = Column(Uuid, ForeignKey("purchase_credits.id"), nullable=False)

    scenarios = Column(JSON, default=list, nullable=False)
    source_photo_ids = Column(JSON, default=list, nullable=False)
    expected_images = Column(Integer, nullable=False, default=0)

    status = Column(String(20), default=JobStatus.QUEUED.value, nullable=False, index=True)
    in_flight_owner_id = Column(String(255), nullable=True, unique=True)
    is_partial = Column(Boolean, default=False, nullable=False)
    credit_restored = Column(Boolean, default=False, nullable=False)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    curated_at = Column(DateTime, nullable=True)

    images = relationship(
        "GeneratedImage",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="GeneratedImage.position",
    )

    def __repr__(self):
        return f"<GenerationBatch {self.id} status={self.status}>"


class GeneratedImage(Base):
    """
    Generated image model.

    ``selected_profile_order`` is 1..N when the image is part of the
    owner's profile set; unique per owner.
    """

    __tablename__ = "generated_images"
    __table_args__ = (
        UniqueConstraint("owner_id", "selected_profile_order", name="uq_profile_order"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id = Column(Uuid, ForeignKey("generation_batches.id"), nullable=False, index=True)
    owner_id = Column(String(255), ForeignKey("owners.id"), nullable=False, index=True)
    scenario = Column(String(100), nullable=False)
    storage_key = Column(Text, nullable=False, unique=True)
    position = Column(Integer, nullable=False, default=0)
    selected_profile_order = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    batch = relationship("GenerationBatch", back_populates="images")

    def __repr__(self):
        return f"<GeneratedImage {self.id} scenario={self.scenario}>"
