"""
Generation Service

Starts sample and full generation jobs, reports their progress to
polling clients, and records what the worker produces.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dreamboat_shared.scenarios import is_known_scenario

from .. import metrics
from ..config import Settings
from ..errors import (
    CreditAlreadyRedeemed,
    CreditNotAvailable,
    CreditNotFound,
    ExternalServiceTimeout,
    GenerationInProgress,
    InvalidSelection,
    NotFound,
    PartialGenerationFailure,
    PhotosNotReady,
)
from ..models import (
    GeneratedImage,
    GenerationBatch,
    JobStatus,
    SampleJob,
    SamplePreview,
)
from ..models.batch import IN_FLIGHT_STATUSES
from .credits import CreditGate
from .curation import CurationEngine
from .owners import lock_owner
from .photos import PhotoLifecycleManager
from .queue import QueueService

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Generation timed out"


def photo_set_fingerprint(photo_ids) -> str:
    """Stable identifier of a set of accepted photos."""
    joined = ",".join(sorted(str(photo_id) for photo_id in photo_ids))
    return hashlib.sha256(joined.encode()).hexdigest()


@dataclass
class SampleStatus:
    job: SampleJob | None
    done: bool
    previews: list[SamplePreview] = field(default_factory=list)

    @property
    def status(self) -> str | None:
        return self.job.status if self.job else None


@dataclass
class BatchStatus:
    batch: GenerationBatch
    images: list[GeneratedImage] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.batch.status not in IN_FLIGHT_STATUSES


class GenerationService:
    """
    Sample and full generation lifecycle.

    Full batches are serialized per owner by the unique in-flight marker
    on ``generation_batches`` and paid for by exactly one credit.
    """

    def __init__(
        self,
        db: AsyncSession,
        photos: PhotoLifecycleManager,
        credits: CreditGate,
        queue: QueueService,
        curation: CurationEngine,
        settings: Settings,
    ):
        self.db = db
        self.photos = photos
        self.credits = credits
        self.queue = queue
        self.curation = curation
        self.settings = settings

    def _is_stale(self, created_at: datetime) -> bool:
        deadline = timedelta(seconds=self.settings.generation_timeout_seconds)
        return created_at < datetime.utcnow() - deadline

    # =========================================================================
    # Samples
    # =========================================================================

    async def _current_sample(self, owner_id: str) -> SampleJob | None:
        result = await self.db.execute(
            select(SampleJob)
            .where(SampleJob.owner_id == owner_id, SampleJob.is_current.is_(True))
            .order_by(SampleJob.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def start_sample(self, owner_id: str) -> tuple[SampleJob, bool]:
        """
        Start preview generation for the current accepted photos.

        Idempotent while a job for the same photo set is queued, running
        or completed. A different photo set supersedes the previous job.

        Returns:
            Tuple of (job, created)

        Raises:
            PhotosNotReady: photos still pending, validating or failed
        """
        await lock_owner(self.db, owner_id)
        if not await self.photos.can_proceed(owner_id):
            raise PhotosNotReady()

        accepted = await self.photos.accepted_photos(owner_id)
        fingerprint = photo_set_fingerprint(p.id for p in accepted)

        current = await self._current_sample(owner_id)
        if (
            current is not None
            and current.fingerprint == fingerprint
            and current.status != JobStatus.FAILED.value
        ):
            return current, False

        await self.db.execute(
            update(SampleJob)
            .where(SampleJob.owner_id == owner_id, SampleJob.is_current.is_(True))
            .values(is_current=False)
            .execution_options(synchronize_session="fetch")
        )

        scenarios = list(self.settings.sample_scenarios)
        job = SampleJob(
            owner_id=owner_id,
            fingerprint=fingerprint,
            source_photo_ids=[str(p.id) for p in accepted],
            scenarios=scenarios,
            status=JobStatus.QUEUED.value,
            is_current=True,
        )
        self.db.add(job)
        await self.db.commit()

        queued = await asyncio.to_thread(
            self.queue.enqueue_sample,
            job.id,
            owner_id,
            [p.storage_key for p in accepted],
            scenarios,
        )
        if not queued:
            job.status = JobStatus.FAILED.value
            job.error_message = "Failed to queue sample generation"
            job.completed_at = datetime.utcnow()
            await self.db.commit()
            logger.error(f"Sample job {job.id} could not be queued")
            return job, True

        logger.info(f"Started sample job {job.id} for owner {owner_id}")
        return job, True

    async def maybe_start_sample(self, owner_id: str) -> bool:
        """Start a sample if the owner's photos allow it. True if a new job was queued."""
        if not await self.photos.can_proceed(owner_id):
            return False
        try:
            job, created = await self.start_sample(owner_id)
        except PhotosNotReady:
            return False
        return created and job.status != JobStatus.FAILED.value

    async def poll_sample(self, owner_id: str) -> SampleStatus:
        job = await self._current_sample(owner_id)
        if job is None:
            return SampleStatus(job=None, done=False)

        if job.status in IN_FLIGHT_STATUSES and self._is_stale(job.created_at):
            logger.warning(f"Sample job {job.id} exceeded its deadline")
            await self.finish_sample(job.id, [TIMEOUT_MESSAGE])
            await self.db.refresh(job)

        if job.status in IN_FLIGHT_STATUSES:
            return SampleStatus(job=job, done=False)

        return SampleStatus(job=job, done=True, previews=await self._previews(job.id))

    async def get_sample_photos(self, owner_id: str) -> list[SamplePreview]:
        """Previews of the current sample; empty while it is generating."""
        status = await self.poll_sample(owner_id)
        return status.previews

    async def _previews(self, job_id: UUID) -> list[SamplePreview]:
        result = await self.db.execute(
            select(SamplePreview)
            .where(SamplePreview.sample_job_id == job_id)
            .order_by(SamplePreview.created_at, SamplePreview.id)
        )
        return list(result.scalars().all())

    async def _get_sample(self, job_id: UUID) -> SampleJob:
        job = await self.db.get(SampleJob, job_id)
        if job is None:
            raise NotFound("Sample job not found")
        return job

    async def mark_sample_running(self, job_id: UUID) -> SampleJob:
        job = await self._get_sample(job_id)
        await self.db.execute(
            update(SampleJob)
            .where(SampleJob.id == job_id, SampleJob.status == JobStatus.QUEUED.value)
            .values(status=JobStatus.RUNNING.value, started_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(job)
        return job

    async def add_sample_previews(self, job_id: UUID, items: list[dict]) -> int:
        """Record previews reported by the worker. Known storage keys are skipped."""
        await self._get_sample(job_id)
        keys = [item["storage_key"] for item in items]
        result = await self.db.execute(
            select(SamplePreview.storage_key).where(SamplePreview.storage_key.in_(keys))
        )
        known = set(result.scalars().all())

        created = 0
        for item in items:
            if item["storage_key"] in known:
                continue
            known.add(item["storage_key"])
            self.db.add(
                SamplePreview(
                    sample_job_id=job_id,
                    scenario=item["scenario"],
                    storage_key=item["storage_key"],
                )
            )
            created += 1
        await self.db.flush()
        return created

    async def finish_sample(self, job_id: UUID, errors: list[str] | None = None) -> SampleJob:
        """Close a sample job: completed if any preview exists, failed otherwise."""
        job = await self._get_sample(job_id)
        count = await self.db.scalar(
            select(func.count(SamplePreview.id)).where(SamplePreview.sample_job_id == job_id)
        )
        status = JobStatus.COMPLETED if count else JobStatus.FAILED

        result = await self.db.execute(
            update(SampleJob)
            .where(SampleJob.id == job_id, SampleJob.status.in_(IN_FLIGHT_STATUSES))
            .values(
                status=status.value,
                error_message="; ".join(errors) if errors else None,
                completed_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(job)
        if result.rowcount == 1:
            metrics.jobs_finished.labels(job_type="sample", status=status.value).inc()
            logger.info(f"Sample job {job_id} {status.value} with {count} previews")
        return job

    # =========================================================================
    # Full batches
    # =========================================================================

    def _check_scenarios(self, scenarios: list[str]):
        expected = self.settings.scenarios_per_batch
        if len(scenarios) != expected:
            raise InvalidSelection(f"Select exactly {expected} scenarios")
        if len(set(scenarios)) != len(scenarios):
            raise InvalidSelection("Scenarios must be distinct")
        unknown = [s for s in scenarios if not is_known_scenario(s)]
        if unknown:
            raise InvalidSelection(f"Unknown scenarios: {unknown}")

    async def _in_flight_batch(self, owner_id: str) -> GenerationBatch | None:
        result = await self.db.execute(
            select(GenerationBatch).where(GenerationBatch.in_flight_owner_id == owner_id)
        )
        return result.scalar_one_or_none()

    async def start_full(
        self,
        owner_id: str,
        scenarios: list[str],
        credit_id: UUID | None = None,
    ) -> GenerationBatch:
        """
        Start a paid generation batch.

        The batch insert and the credit redemption commit together. If
        the job cannot be queued afterwards the batch is failed and the
        credit restored.

        Args:
            owner_id: Owner
            scenarios: Ordered scenario ids
            credit_id: Credit to spend; defaults to the oldest unredeemed one

        Raises:
            InvalidSelection: wrong number of scenarios or unknown ids
            PhotosNotReady: photos block generation
            CreditNotAvailable: no credit to spend
            CreditNotFound / CreditAlreadyRedeemed: the given credit cannot be spent
            GenerationInProgress: another batch is queued or running
            ExternalServiceTimeout: the job could not be queued
        """
        self._check_scenarios(scenarios)

        await lock_owner(self.db, owner_id)
        if not await self.photos.can_proceed(owner_id):
            raise PhotosNotReady()

        if await self._in_flight_batch(owner_id) is not None:
            raise GenerationInProgress()

        if credit_id is None:
            access = await self.credits.check_access(owner_id)
            if not access.has_unredeemed_credit:
                raise CreditNotAvailable()
            credit_id = access.credit_id
        else:
            await self.credits.get_spendable(credit_id, owner_id)

        accepted = await self.photos.accepted_photos(owner_id)
        batch = GenerationBatch(
            owner_id=owner_id,
            credit_id=credit_id,
            scenarios=list(scenarios),
            source_photo_ids=[str(p.id) for p in accepted],
            expected_images=len(scenarios) * self.settings.images_per_scenario,
            status=JobStatus.QUEUED.value,
            in_flight_owner_id=owner_id,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(batch)
        except IntegrityError:
            raise GenerationInProgress()

        try:
            await self.credits.redeem(credit_id, owner_id, batch.id)
        except (CreditNotFound, CreditAlreadyRedeemed):
            await self.db.rollback()
            raise
        await self.db.commit()

        queued = await asyncio.to_thread(
            self.queue.enqueue_batch,
            batch.id,
            owner_id,
            [p.storage_key for p in accepted],
            list(scenarios),
            self.settings.images_per_scenario,
        )
        if not queued:
            logger.error(f"Batch {batch.id} could not be queued, restoring credit")
            await self.finish_batch(batch.id, ["Failed to queue generation"])
            await self.db.commit()
            raise ExternalServiceTimeout(
                "Generation service unavailable. Your credit has been restored."
            )

        logger.info(
            f"Started batch {batch.id} for owner {owner_id} ({len(scenarios)} scenarios)"
        )
        return batch

    async def get_batch(self, owner_id: str, batch_id: UUID) -> GenerationBatch:
        batch = await self.db.get(GenerationBatch, batch_id)
        if batch is None or batch.owner_id != owner_id:
            raise NotFound("Batch not found")
        return batch

    async def poll_full(self, owner_id: str, batch_id: UUID) -> BatchStatus:
        """Batch progress; images are included once the batch has completed."""
        batch = await self.get_batch(owner_id, batch_id)
        if batch.status in IN_FLIGHT_STATUSES and self._is_stale(batch.created_at):
            logger.warning(f"Batch {batch_id} exceeded its deadline")
            await self.finish_batch(batch_id, [TIMEOUT_MESSAGE])
            await self.db.refresh(batch)

        if batch.status != JobStatus.COMPLETED.value:
            return BatchStatus(batch=batch)
        return BatchStatus(batch=batch, images=await self._batch_images(batch_id))

    async def generation_status(self, owner_id: str) -> GenerationBatch | None:
        """The owner's queued or running batch, if any."""
        batch = await self._in_flight_batch(owner_id)
        if batch is not None and self._is_stale(batch.created_at):
            await self.finish_batch(batch.id, [TIMEOUT_MESSAGE])
            return None
        return batch

    async def _batch_images(self, batch_id: UUID) -> list[GeneratedImage]:
        result = await self.db.execute(
            select(GeneratedImage)
            .where(GeneratedImage.batch_id == batch_id)
            .order_by(GeneratedImage.position)
        )
        return list(result.scalars().all())

    async def _get_batch(self, batch_id: UUID) -> GenerationBatch:
        batch = await self.db.get(GenerationBatch, batch_id)
        if batch is None:
            raise NotFound("Batch not found")
        return batch

    async def mark_batch_running(self, batch_id: UUID) -> GenerationBatch:
        batch = await self._get_batch(batch_id)
        await self.db.execute(
            update(GenerationBatch)
            .where(
                GenerationBatch.id == batch_id,
                GenerationBatch.status == JobStatus.QUEUED.value,
            )
            .values(status=JobStatus.RUNNING.value, started_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(batch)
        return batch

    async def add_batch_images(self, batch_id: UUID, items: list[dict]) -> int:
        """
        Record images reported by the worker.

        Known storage keys are skipped so the worker can resend a whole
        scenario. Images for a batch that already finished are ignored.
        """
        batch = await self._get_batch(batch_id)
        if batch.status not in IN_FLIGHT_STATUSES:
            logger.warning(f"Ignoring {len(items)} images for finished batch {batch_id}")
            return 0

        keys = [item["storage_key"] for item in items]
        result = await self.db.execute(
            select(GeneratedImage.storage_key).where(GeneratedImage.storage_key.in_(keys))
        )
        known = set(result.scalars().all())
        position = await self.db.scalar(
            select(func.count(GeneratedImage.id)).where(GeneratedImage.batch_id == batch_id)
        ) or 0

        created = 0
        for item in items:
            if item["storage_key"] in known:
                continue
            known.add(item["storage_key"])
            self.db.add(
                GeneratedImage(
                    batch_id=batch_id,
                    owner_id=batch.owner_id,
                    scenario=item["scenario"],
                    storage_key=item["storage_key"],
                    position=position,
                )
            )
            position += 1
            created += 1
        await self.db.flush()
        logger.info(f"Registered {created} images for batch {batch_id}")
        return created

    async def finish_batch(self, batch_id: UUID, errors: list[str] | None = None) -> GenerationBatch:
        """
        Close a batch.

        No images: failed, credit restored. Some images: completed and
        auto-curated; fewer than expected marks the batch partial without
        restoring the credit. Finishing twice is a no-op.
        """
        batch = await self._get_batch(batch_id)
        count = await self.db.scalar(
            select(func.count(GeneratedImage.id)).where(GeneratedImage.batch_id == batch_id)
        ) or 0
        status = JobStatus.COMPLETED if count else JobStatus.FAILED
        is_partial = 0 < count < batch.expected_images

        result = await self.db.execute(
            update(GenerationBatch)
            .where(
                GenerationBatch.id == batch_id,
                GenerationBatch.status.in_(IN_FLIGHT_STATUSES),
            )
            .values(
                status=status.value,
                in_flight_owner_id=None,
                is_partial=is_partial,
                error_message="; ".join(errors) if errors else None,
                completed_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(batch)
        if result.rowcount != 1:
            return batch

        metrics.jobs_finished.labels(job_type="batch", status=status.value).inc()

        if status == JobStatus.FAILED:
            batch.credit_restored = await self.credits.restore(batch.credit_id)
            await self.db.flush()
            logger.error(f"Batch {batch_id} produced no images: {batch.error_message}")
            return batch

        if is_partial:
            metrics.partial_batches.inc()
            logger.warning(
                f"Batch {batch_id}: {PartialGenerationFailure.default_message} "
                f"({count} of {batch.expected_images} images)"
            )

        await self.curation.auto_select(batch_id)
        logger.info(f"Batch {batch_id} completed with {count} images")
        return batch
