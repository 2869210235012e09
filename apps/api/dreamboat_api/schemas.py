"""
Pydantic Schemas

Request/Response models for the API.
"""
from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


# ============================================================================
# Photo Schemas
# ============================================================================

class UploadSlotRequest(BaseModel):
    """Request to reserve an upload location."""
    file_name: str = Field(..., min_length=1, max_length=255, examples=["IMG_0042.jpg"])
    content_type: str = Field(..., examples=["image/jpeg"])
    size_bytes: int | None = Field(default=None, ge=1)
    replaces_photo_id: UUID | None = None


class UploadSlotResponse(BaseModel):
    """Presigned upload location."""
    url: str
    storage_key: str
    expires_in: int
    replaces_photo_id: UUID | None = None


class PhotoConfirmRequest(BaseModel):
    storage_key: str


class PhotoResponse(BaseModel):
    """Photo details response."""
    id: UUID
    original_filename: str
    content_type: str | None
    validation_status: str
    warnings: list[str]
    validation_fallback: bool
    created_at: datetime
    validated_at: datetime | None = None
    url: str | None = None

    model_config = {"from_attributes": True}


class PhotoListResponse(BaseModel):
    photos: list[PhotoResponse]
    total: int
    max_photos: int
    can_proceed: bool


class ReadinessResponse(BaseModel):
    """Active photo counts per status."""
    counts: dict[str, int]
    can_proceed: bool


class ValidationResponse(BaseModel):
    """Verdict for one photo."""
    photo_id: UUID
    status: str
    is_valid: bool
    warnings: list[str]
    sample_generation_started: bool = False


class BypassResponse(BaseModel):
    photo: PhotoResponse
    sample_generation_started: bool = False


class ReplaceRequest(BaseModel):
    """Replace a photo with an upload reserved via ``replaces_photo_id``."""
    storage_key: str


class ReplaceResponse(BaseModel):
    old_photo_id: UUID
    photo: PhotoResponse
    is_valid: bool
    warnings: list[str]
    sample_generation_started: bool = False


# ============================================================================
# Scenario & Sample Schemas
# ============================================================================

class ScenarioResponse(BaseModel):
    id: str
    name: str
    description: str


class ScenarioListResponse(BaseModel):
    scenarios: list[ScenarioResponse]
    scenarios_per_batch: int
    sample_scenarios: list[str]


class SampleStartResponse(BaseModel):
    job_id: UUID
    status: str
    created: bool


class SamplePreviewResponse(BaseModel):
    id: UUID
    scenario: str
    url: str


class SampleStatusResponse(BaseModel):
    """Sample polling response. Previews are empty until the job is done."""
    job_id: UUID | None = None
    status: str | None = None
    done: bool
    previews: list[SamplePreviewResponse] = []


# ============================================================================
# Generation Schemas
# ============================================================================

class GenerationRequest(BaseModel):
    """Request to start a paid generation batch."""
    scenarios: list[str] = Field(
        ...,
        description="Ordered scenario ids",
        examples=[["photoshoot", "nature", "rooftop", "coffee_new", "sports", "winter"]],
    )
    credit_id: UUID | None = Field(
        default=None,
        description="Credit to spend; defaults to the oldest unredeemed credit",
    )


class GeneratedImageResponse(BaseModel):
    id: UUID
    batch_id: UUID
    scenario: str
    url: str
    selected_profile_order: int | None = None


class BatchResponse(BaseModel):
    """Generation batch details."""
    id: UUID
    status: str
    scenarios: list[str]
    expected_images: int
    is_partial: bool
    credit_restored: bool
    error_message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class BatchStatusResponse(BaseModel):
    batch: BatchResponse
    done: bool
    images: list[GeneratedImageResponse] = []


class GenerationStatusResponse(BaseModel):
    is_generating: bool
    batch_id: UUID | None = None


class GeneratedImageListResponse(BaseModel):
    images: list[GeneratedImageResponse]
    total: int


# ============================================================================
# Profile Schemas
# ============================================================================

class ProfileSelection(BaseModel):
    image_id: UUID
    order: int


class ProfileSelectionRequest(BaseModel):
    """Replace the whole profile set."""
    selections: list[ProfileSelection]


class ProfileToggleRequest(BaseModel):
    """Set or clear one slot. ``order=None`` removes the image."""
    image_id: UUID
    order: int | None = None


class ProfilePhotosResponse(BaseModel):
    photos: list[GeneratedImageResponse]


# ============================================================================
# Payment Schemas
# ============================================================================

class AccessResponse(BaseModel):
    has_access: bool
    payment_id: UUID | None = None


class IAPValidateRequest(BaseModel):
    platform: Literal["ios", "android"]
    receipt: str
    product_id: str | None = None
    transaction_id: str


class IAPValidateResponse(BaseModel):
    valid: bool
    payment_id: UUID | None = None


class IAPPurchase(BaseModel):
    receipt: str
    product_id: str | None = None
    transaction_id: str


class IAPRestoreRequest(BaseModel):
    platform: Literal["ios", "android"]
    purchases: list[IAPPurchase]


class IAPRestoreResponse(BaseModel):
    restored_count: int
    payment_ids: list[UUID]


class CheckoutResponse(BaseModel):
    has_access: bool
    payment_id: UUID | None = None
    checkout_url: str | None = None
    session_id: str | None = None


class PaymentResponse(BaseModel):
    id: UUID
    store: str
    status: str
    amount_cents: int | None = None
    currency: str | None = None
    batch_id: UUID | None = None
    created_at: datetime
    redeemed_at: datetime | None = None

    model_config = {"from_attributes": True}


class PaymentHistoryResponse(BaseModel):
    payments: list[PaymentResponse]


# ============================================================================
# Worker Callback Schemas
# ============================================================================

class WorkerImage(BaseModel):
    scenario: str
    storage_key: str


class WorkerImagesRequest(BaseModel):
    images: list[WorkerImage]


class WorkerFinishRequest(BaseModel):
    errors: list[str] = []


class WorkerAck(BaseModel):
    status: str
    created_count: int = 0


# ============================================================================
# Health Schemas
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    services: dict[str, str]
