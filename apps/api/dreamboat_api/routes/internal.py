"""
Worker Callback Routes

The generation worker reports progress and results here. Guarded by a
shared worker token instead of user authentication.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from ..auth import require_worker
from ..deps import get_generation_service
from ..schemas import WorkerAck, WorkerFinishRequest, WorkerImagesRequest
from ..services import GenerationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/internal", tags=["internal"], dependencies=[Depends(require_worker)])


# ============================================================================
# Samples
# ============================================================================

@router.post("/samples/{job_id}/start", response_model=WorkerAck)
async def sample_started(
    job_id: UUID,
    generation: GenerationService = Depends(get_generation_service),
) -> WorkerAck:
    job = await generation.mark_sample_running(job_id)
    return WorkerAck(status=job.status)


@router.post("/samples/{job_id}/images", response_model=WorkerAck)
async def sample_images(
    job_id: UUID,
    data: WorkerImagesRequest,
    generation: GenerationService = Depends(get_generation_service),
) -> WorkerAck:
    created = await generation.add_sample_previews(job_id, [i.model_dump() for i in data.images])
    return WorkerAck(status="ok", created_count=created)


@router.post("/samples/{job_id}/finish", response_model=WorkerAck)
async def sample_finished(
    job_id: UUID,
    data: WorkerFinishRequest,
    generation: GenerationService = Depends(get_generation_service),
) -> WorkerAck:
    job = await generation.finish_sample(job_id, data.errors)
    return WorkerAck(status=job.status)


# ============================================================================
# Batches
# ============================================================================

@router.post("/batches/{batch_id}/start", response_model=WorkerAck)
async def batch_started(
    batch_id: UUID,
    generation: GenerationService = Depends(get_generation_service),
) -> WorkerAck:
    batch = await generation.mark_batch_running(batch_id)
    return WorkerAck(status=batch.status)


@router.post("/batches/{batch_id}/images", response_model=WorkerAck)
async def batch_images(
    batch_id: UUID,
    data: WorkerImagesRequest,
    generation: GenerationService = Depends(get_generation_service),
) -> WorkerAck:
    """Register images incrementally, one scenario at a time."""
    created = await generation.add_batch_images(batch_id, [i.model_dump() for i in data.images])
    return WorkerAck(status="ok", created_count=created)


@router.post("/batches/{batch_id}/finish", response_model=WorkerAck)
async def batch_finished(
    batch_id: UUID,
    data: WorkerFinishRequest,
    generation: GenerationService = Depends(get_generation_service),
) -> WorkerAck:
    batch = await generation.finish_batch(batch_id, data.errors)
    return WorkerAck(status=batch.status)
