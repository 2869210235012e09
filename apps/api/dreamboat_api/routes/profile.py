"""
Profile Routes

Generated image gallery and the curated profile set.
"""

import logging

from fastapi import APIRouter, Depends

from ..auth import get_current_owner
from ..deps import get_curation_engine, get_storage
from ..schemas import (
    GeneratedImageListResponse,
    ProfilePhotosResponse,
    ProfileSelectionRequest,
    ProfileToggleRequest,
)
from ..services import CurationEngine, StorageGateway
from .generation import image_to_response

logger = logging.getLogger(__name__)
router = APIRouter(tags=["profile"])


@router.get("/generated-images", response_model=GeneratedImageListResponse)
async def list_generated_images(
    owner_id: str = Depends(get_current_owner),
    curation: CurationEngine = Depends(get_curation_engine),
    storage: StorageGateway = Depends(get_storage),
) -> GeneratedImageListResponse:
    """All generated images, newest batch first."""
    images = await curation.list_images(owner_id)
    return GeneratedImageListResponse(
        images=[image_to_response(i, storage) for i in images],
        total=len(images),
    )


@router.get("/profile/photos", response_model=ProfilePhotosResponse)
async def get_profile_photos(
    owner_id: str = Depends(get_current_owner),
    curation: CurationEngine = Depends(get_curation_engine),
    storage: StorageGateway = Depends(get_storage),
) -> ProfilePhotosResponse:
    selected = await curation.selected(owner_id)
    return ProfilePhotosResponse(photos=[image_to_response(i, storage) for i in selected])


@router.put("/profile/photos", response_model=ProfilePhotosResponse)
async def set_profile_photos(
    data: ProfileSelectionRequest,
    owner_id: str = Depends(get_current_owner),
    curation: CurationEngine = Depends(get_curation_engine),
    storage: StorageGateway = Depends(get_storage),
) -> ProfilePhotosResponse:
    """Replace the whole profile set."""
    selected = await curation.set_selected(
        owner_id, [(s.image_id, s.order) for s in data.selections]
    )
    return ProfilePhotosResponse(photos=[image_to_response(i, storage) for i in selected])


@router.post("/profile/photos/toggle", response_model=ProfilePhotosResponse)
async def toggle_profile_photo(
    data: ProfileToggleRequest,
    owner_id: str = Depends(get_current_owner),
    curation: CurationEngine = Depends(get_curation_engine),
    storage: StorageGateway = Depends(get_storage),
) -> ProfilePhotosResponse:
    selected = await curation.toggle(owner_id, data.image_id, data.order)
    return ProfilePhotosResponse(photos=[image_to_response(i, storage) for i in selected])
