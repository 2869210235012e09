"""
Photo Model

User-submitted photos and the upload slots that precede them.
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
    Uuid,
)

from ..database import Base


class PhotoStatus(str, Enum):
    """Photo validation status values."""
    PENDING = "pending"
    VALIDATING = "validating"
    VALIDATED = "validated"
    FAILED = "failed"
    BYPASSED = "bypassed"


ACCEPTED_STATUSES = (PhotoStatus.VALIDATED.value, PhotoStatus.BYPASSED.value)
BLOCKING_STATUSES = (
    PhotoStatus.PENDING.value,
    PhotoStatus.VALIDATING.value,
    PhotoStatus.FAILED.value,
)


class WarningKind(str, Enum):
    """Reasons a photo is unsuitable."""
    MULTIPLE_SUBJECTS = "multiple_subjects"
    FACE_OBSCURED = "face_obscured"
    POOR_LIGHTING = "poor_lighting"
    IS_SCREENSHOT = "is_screenshot"
    FACE_PARTIALLY_OBSCURED = "face_partially_obscured"


class Photo(Base):
    """
    Uploaded photo model.

    A photo is active until ``retired_at`` is set by a replacement.
    Retired rows are kept and excluded from quota counts.
    """

    __tablename__ = "photos"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(255), ForeignKey("owners.id"), nullable=False, index=True)

    # File info
    storage_key = Column(Text, nullable=False, unique=True)
    original_filename = Column(String(255), nullable=False)
    content_type = Column(String(100), nullable=True)
    size_bytes = Column(Integer, nullable=True)

    # Validation
    validation_status = Column(
        String(20), default=PhotoStatus.PENDING.value, nullable=False, index=True
    )
    warnings = Column(JSON, default=list, nullable=False)
    validation_fallback = Column(Boolean, default=False, nullable=False)
    validation_started_at = Column(DateTime, nullable=True)
    validated_at = Column(DateTime, nullable=True)

    # Replacement
    retired_at = Column(DateTime, nullable=True)
    replaced_by_id = Column(Uuid, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @property
    def is_active(self) -> bool:
        return self.retired_at is None

    def __repr__(self):
        return f"<Photo {self.id} owner={self.owner_id} status={self.validation_status}>"


class UploadSlot(Base):
    """
    Reserved upload location.

    Unconsumed, unexpired slots that do not replace an existing photo
    count toward the owner's photo quota.
    """

    __tablename__ = "upload_slots"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(255), ForeignKey("owners.id"), nullable=False, index=True)
    storage_key = Column(Text, nullable=False, unique=True)
    original_filename = Column(String(255), nullable=False)
    content_type = Column(String(100), nullable=False)
    size_bytes = Column(Integer, nullable=True)
    replaces_photo_id = Column(Uuid, nullable=True)
    expires_at = Column(DateTime, nullable=False)
    consumed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<UploadSlot {self.storage_key} owner={self.owner_id}>"
