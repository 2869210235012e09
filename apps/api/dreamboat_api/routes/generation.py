"""
Generation Routes

Scenario catalog, sample previews and paid generation batches.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status

from dreamboat_shared.scenarios import get_available_scenarios

from ..auth import get_current_owner
from ..config import Settings, get_settings
from ..deps import get_generation_service, get_storage
from ..models import GeneratedImage
from ..schemas import (
    BatchResponse,
    BatchStatusResponse,
    GeneratedImageResponse,
    GenerationRequest,
    GenerationStatusResponse,
    SamplePreviewResponse,
    SampleStartResponse,
    SampleStatusResponse,
    ScenarioListResponse,
    ScenarioResponse,
)
from ..services import GenerationService, StorageGateway
from ..services.generation import SampleStatus

logger = logging.getLogger(__name__)
router = APIRouter(tags=["generation"])


# ============================================================================
# Helper functions
# ============================================================================

def image_to_response(image: GeneratedImage, storage: StorageGateway) -> GeneratedImageResponse:
    return GeneratedImageResponse(
        id=image.id,
        batch_id=image.batch_id,
        scenario=image.scenario,
        url=storage.get_presigned_url(image.storage_key),
        selected_profile_order=image.selected_profile_order,
    )


def sample_to_response(
    sample: SampleStatus,
    storage: StorageGateway,
    include_previews: bool = True,
) -> SampleStatusResponse:
    previews = sample.previews if include_previews else []
    return SampleStatusResponse(
        job_id=sample.job.id if sample.job else None,
        status=sample.status,
        done=sample.done,
        previews=[
            SamplePreviewResponse(
                id=p.id,
                scenario=p.scenario,
                url=storage.get_presigned_url(p.storage_key),
            )
            for p in previews
        ],
    )


# ============================================================================
# Scenarios
# ============================================================================

@router.get("/scenarios", response_model=ScenarioListResponse)
async def list_scenarios(settings: Settings = Depends(get_settings)) -> ScenarioListResponse:
    """Get available generation scenarios."""
    return ScenarioListResponse(
        scenarios=[ScenarioResponse(**s) for s in get_available_scenarios()],
        scenarios_per_batch=settings.scenarios_per_batch,
        sample_scenarios=list(settings.sample_scenarios),
    )


# ============================================================================
# Samples
# ============================================================================

@router.post("/samples", response_model=SampleStartResponse)
async def start_sample(
    owner_id: str = Depends(get_current_owner),
    generation: GenerationService = Depends(get_generation_service),
) -> SampleStartResponse:
    """Start preview generation; returns the existing job for an unchanged photo set."""
    job, created = await generation.start_sample(owner_id)
    return SampleStartResponse(job_id=job.id, status=job.status, created=created)


@router.get("/samples", response_model=SampleStatusResponse)
async def get_sample_photos(
    owner_id: str = Depends(get_current_owner),
    generation: GenerationService = Depends(get_generation_service),
    storage: StorageGateway = Depends(get_storage),
) -> SampleStatusResponse:
    """Current previews. ``previews`` stays empty while generation runs."""
    return sample_to_response(await generation.poll_sample(owner_id), storage)


@router.get("/samples/status", response_model=SampleStatusResponse)
async def poll_sample(
    owner_id: str = Depends(get_current_owner),
    generation: GenerationService = Depends(get_generation_service),
    storage: StorageGateway = Depends(get_storage),
) -> SampleStatusResponse:
    """Lightweight progress check without preview URLs."""
    sample = await generation.poll_sample(owner_id)
    return sample_to_response(sample, storage, include_previews=False)


# ============================================================================
# Full generation
# ============================================================================

@router.post("/generations", response_model=BatchResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_generation(
    data: GenerationRequest,
    owner_id: str = Depends(get_current_owner),
    generation: GenerationService = Depends(get_generation_service),
) -> BatchResponse:
    """
    Start a paid generation batch.

    Spends one credit. Returns 402 without a credit and 409 while
    another batch is in flight.
    """
    batch = await generation.start_full(owner_id, data.scenarios, data.credit_id)
    return BatchResponse.model_validate(batch)


@router.get("/generations/status", response_model=GenerationStatusResponse)
async def generation_status(
    owner_id: str = Depends(get_current_owner),
    generation: GenerationService = Depends(get_generation_service),
) -> GenerationStatusResponse:
    batch = await generation.generation_status(owner_id)
    return GenerationStatusResponse(
        is_generating=batch is not None,
        batch_id=batch.id if batch else None,
    )


@router.get("/generations/{batch_id}", response_model=BatchStatusResponse)
async def poll_generation(
    batch_id: UUID,
    owner_id: str = Depends(get_current_owner),
    generation: GenerationService = Depends(get_generation_service),
    storage: StorageGateway = Depends(get_storage),
) -> BatchStatusResponse:
    """Batch progress; images are listed once it has completed."""
    result = await generation.poll_full(owner_id, batch_id)
    return BatchStatusResponse(
        batch=BatchResponse.model_validate(result.batch),
        done=result.done,
        images=[image_to_response(i, storage) for i in result.images],
    )
