"""
Photo Routes

Upload, validation, bypass and replacement of user photos.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status

from ..auth import get_current_owner
from ..config import Settings, get_settings
from ..deps import get_generation_service, get_photo_manager, get_storage
from ..models import Photo
from ..schemas import (
    BypassResponse,
    PhotoConfirmRequest,
    PhotoListResponse,
    PhotoResponse,
    ReadinessResponse,
    ReplaceRequest,
    ReplaceResponse,
    UploadSlotRequest,
    UploadSlotResponse,
    ValidationResponse,
)
from ..services import GenerationService, PhotoLifecycleManager, StorageGateway

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/photos", tags=["photos"])


# ============================================================================
# Helper functions
# ============================================================================

def photo_to_response(photo: Photo, storage: StorageGateway) -> PhotoResponse:
    """Convert Photo model to response schema."""
    response = PhotoResponse.model_validate(photo)
    response.url = storage.get_presigned_url(photo.storage_key)
    return response


# ============================================================================
# Upload
# ============================================================================

@router.post("/upload-slots", response_model=UploadSlotResponse, status_code=status.HTTP_201_CREATED)
async def request_upload_slot(
    data: UploadSlotRequest,
    owner_id: str = Depends(get_current_owner),
    photos: PhotoLifecycleManager = Depends(get_photo_manager),
) -> UploadSlotResponse:
    """
    Reserve a presigned upload URL.

    The client PUTs the file bytes to ``url`` with the declared content
    type, then confirms the upload with ``POST /photos``.
    """
    ticket = await photos.request_upload_slot(
        owner_id,
        data.file_name,
        data.content_type,
        data.size_bytes,
        data.replaces_photo_id,
    )
    return UploadSlotResponse(
        url=ticket.url,
        storage_key=ticket.storage_key,
        expires_in=ticket.expires_in,
        replaces_photo_id=ticket.replaces_photo_id,
    )


@router.post("", response_model=PhotoResponse, status_code=status.HTTP_201_CREATED)
async def confirm_upload(
    data: PhotoConfirmRequest,
    owner_id: str = Depends(get_current_owner),
    photos: PhotoLifecycleManager = Depends(get_photo_manager),
    storage: StorageGateway = Depends(get_storage),
) -> PhotoResponse:
    """Register an uploaded file as a pending photo."""
    photo = await photos.confirm_upload(owner_id, data.storage_key)
    return photo_to_response(photo, storage)


@router.get("", response_model=PhotoListResponse)
async def list_photos(
    owner_id: str = Depends(get_current_owner),
    photos: PhotoLifecycleManager = Depends(get_photo_manager),
    storage: StorageGateway = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> PhotoListResponse:
    """List active photos with the owner's readiness to generate."""
    active = await photos.list_active(owner_id)
    return PhotoListResponse(
        photos=[photo_to_response(p, storage) for p in active],
        total=len(active),
        max_photos=settings.max_active_photos,
        can_proceed=await photos.can_proceed(owner_id),
    )


@router.get("/readiness", response_model=ReadinessResponse)
async def readiness(
    owner_id: str = Depends(get_current_owner),
    photos: PhotoLifecycleManager = Depends(get_photo_manager),
) -> ReadinessResponse:
    return ReadinessResponse(
        counts=await photos.readiness(owner_id),
        can_proceed=await photos.can_proceed(owner_id),
    )


# ============================================================================
# Validation
# ============================================================================

@router.post("/{photo_id}/validate", response_model=ValidationResponse)
async def validate_photo(
    photo_id: UUID,
    owner_id: str = Depends(get_current_owner),
    photos: PhotoLifecycleManager = Depends(get_photo_manager),
    generation: GenerationService = Depends(get_generation_service),
) -> ValidationResponse:
    """
    Validate a photo.

    Once no photo is left pending, validating or failed, preview
    generation starts and ``sample_generation_started`` is true.
    """
    verdict = await photos.validate(owner_id, photo_id)
    started = await generation.maybe_start_sample(owner_id)
    return ValidationResponse(
        photo_id=verdict.photo_id,
        status=verdict.status,
        is_valid=verdict.is_valid,
        warnings=verdict.warnings,
        sample_generation_started=started,
    )


@router.post("/{photo_id}/bypass", response_model=BypassResponse)
async def bypass_photo(
    photo_id: UUID,
    owner_id: str = Depends(get_current_owner),
    photos: PhotoLifecycleManager = Depends(get_photo_manager),
    generation: GenerationService = Depends(get_generation_service),
    storage: StorageGateway = Depends(get_storage),
) -> BypassResponse:
    """Keep a failed photo despite its warnings."""
    photo = await photos.bypass(owner_id, photo_id)
    started = await generation.maybe_start_sample(owner_id)
    return BypassResponse(
        photo=photo_to_response(photo, storage),
        sample_generation_started=started,
    )


@router.post("/{photo_id}/replace", response_model=ReplaceResponse)
async def replace_photo(
    photo_id: UUID,
    data: ReplaceRequest,
    owner_id: str = Depends(get_current_owner),
    photos: PhotoLifecycleManager = Depends(get_photo_manager),
    generation: GenerationService = Depends(get_generation_service),
    storage: StorageGateway = Depends(get_storage),
) -> ReplaceResponse:
    """
    Replace a photo with a new upload and validate it.

    The upload slot must have been requested with ``replaces_photo_id``.
    """
    new_photo, verdict = await photos.replace(owner_id, photo_id, data.storage_key)
    started = await generation.maybe_start_sample(owner_id)
    return ReplaceResponse(
        old_photo_id=photo_id,
        photo=photo_to_response(new_photo, storage),
        is_valid=verdict.is_valid,
        warnings=verdict.warnings,
        sample_generation_started=started,
    )
