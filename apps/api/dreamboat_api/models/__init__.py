"""
Database Models

SQLAlchemy ORM models for DreamBoat.
"""

from .owner import Owner
from .photo import Photo, PhotoStatus, UploadSlot, WarningKind
from .credit import CreditStatus, PurchaseCredit, PurchaseStore
from .batch import GeneratedImage, GenerationBatch, JobStatus
from .sample import SampleJob, SamplePreview

__all__ = [
    "Owner",
    "Photo",
    "PhotoStatus",
    "UploadSlot",
    "WarningKind",
    "CreditStatus",
    "PurchaseCredit",
    "PurchaseStore",
    "GeneratedImage",
    "GenerationBatch",
    "JobStatus",
    "SampleJob",
    "SamplePreview",
]
