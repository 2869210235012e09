"""
Photo Lifecycle Manager

Upload slots, upload confirmation, validation, bypass and replacement
of user photos. Every status change is a conditional UPDATE so that
concurrent requests on the same photo observe a single transition.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import metrics
from ..config import Settings
from ..errors import (
    AlreadyInProgress,
    ExternalServiceTimeout,
    InvalidStateTransition,
    InvalidUpload,
    NotFound,
    QuotaExceeded,
)
from ..models import Photo, PhotoStatus, UploadSlot
from ..models.photo import ACCEPTED_STATUSES
from .owners import lock_owner
from .storage import StorageGateway
from .validation import ValidationVerdict

logger = logging.getLogger(__name__)

# Margin on top of the full retry schedule before a "validating" claim counts as abandoned
STALE_CLAIM_MARGIN_SECONDS = 60


@dataclass
class UploadTicket:
    """A reserved upload location returned to the client."""
    url: str
    storage_key: str
    expires_in: int
    replaces_photo_id: UUID | None = None


@dataclass
class VerdictResult:
    """Validation outcome of a single photo."""
    photo_id: UUID
    status: str
    is_valid: bool
    warnings: list[str] = field(default_factory=list)
    fallback: bool = False


def verdict_for(photo: Photo) -> VerdictResult:
    return VerdictResult(
        photo_id=photo.id,
        status=photo.validation_status,
        is_valid=photo.validation_status == PhotoStatus.VALIDATED.value,
        warnings=list(photo.warnings or []),
        fallback=bool(photo.validation_fallback),
    )


class PhotoLifecycleManager:
    """
    Owns the per-photo state machine.

    pending -> validating -> validated | failed, failed -> bypassed,
    and any active photo -> retired through replace().
    """

    def __init__(
        self,
        db: AsyncSession,
        storage: StorageGateway,
        engine,
        settings: Settings,
    ):
        self.db = db
        self.storage = storage
        self.engine = engine
        self.settings = settings

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_photo(self, owner_id: str, photo_id: UUID) -> Photo:
        photo = await self.db.get(Photo, photo_id)
        if photo is None or photo.owner_id != owner_id:
            raise NotFound("Photo not found")
        return photo

    async def _get_active_photo(self, owner_id: str, photo_id: UUID) -> Photo:
        photo = await self.get_photo(owner_id, photo_id)
        if photo.retired_at is not None:
            raise InvalidStateTransition("Photo has been replaced")
        return photo

    async def list_active(self, owner_id: str) -> list[Photo]:
        result = await self.db.execute(
            select(Photo)
            .where(Photo.owner_id == owner_id, Photo.retired_at.is_(None))
            .order_by(Photo.created_at, Photo.id)
        )
        return list(result.scalars().all())

    async def accepted_photos(self, owner_id: str) -> list[Photo]:
        """Active photos that may feed a generation, oldest first."""
        result = await self.db.execute(
            select(Photo)
            .where(
                Photo.owner_id == owner_id,
                Photo.retired_at.is_(None),
                Photo.validation_status.in_(ACCEPTED_STATUSES),
            )
            .order_by(Photo.created_at, Photo.id)
        )
        return list(result.scalars().all())

    async def readiness(self, owner_id: str) -> dict[str, int]:
        """Count active photos per validation status."""
        result = await self.db.execute(
            select(Photo.validation_status, func.count(Photo.id))
            .where(Photo.owner_id == owner_id, Photo.retired_at.is_(None))
            .group_by(Photo.validation_status)
        )
        counts = {status.value: 0 for status in PhotoStatus}
        for status, count in result.all():
            counts[status] = count
        return counts

    async def can_proceed(self, owner_id: str) -> bool:
        """
        True when generation may start.

        Requires at least one validated or bypassed photo and no active
        photo that is pending, validating or failed.
        """
        counts = await self.readiness(owner_id)
        blocked = (
            counts[PhotoStatus.PENDING.value]
            + counts[PhotoStatus.VALIDATING.value]
            + counts[PhotoStatus.FAILED.value]
        )
        accepted = counts[PhotoStatus.VALIDATED.value] + counts[PhotoStatus.BYPASSED.value]
        return blocked == 0 and accepted > 0

    async def _count_active(self, owner_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Photo.id)).where(
                Photo.owner_id == owner_id, Photo.retired_at.is_(None)
            )
        )
        return result.scalar() or 0

    async def _count_open_slots(self, owner_id: str, now: datetime) -> int:
        result = await self.db.execute(
            select(func.count(UploadSlot.id)).where(
                UploadSlot.owner_id == owner_id,
                UploadSlot.consumed_at.is_(None),
                UploadSlot.replaces_photo_id.is_(None),
                UploadSlot.expires_at > now,
            )
        )
        return result.scalar() or 0

    # =========================================================================
    # Upload
    # =========================================================================

    async def request_upload_slot(
        self,
        owner_id: str,
        file_name: str,
        content_type: str,
        size_bytes: int | None = None,
        replaces_photo_id: UUID | None = None,
    ) -> UploadTicket:
        """
        Reserve an upload location.

        Args:
            owner_id: Requesting owner
            file_name: Client-side file name
            content_type: MIME type the client will upload
            size_bytes: Declared size, checked against the upload limit
            replaces_photo_id: Active photo this upload will replace

        Returns:
            UploadTicket with a presigned PUT URL

        Raises:
            InvalidUpload: unsupported type or oversize file
            QuotaExceeded: active photos plus open slots would exceed the limit
        """
        if content_type not in self.settings.allowed_content_types:
            raise InvalidUpload(f"Unsupported content type: {content_type}")
        if size_bytes is not None and size_bytes > self.settings.max_upload_size_bytes:
            raise InvalidUpload(
                f"File exceeds the {self.settings.max_upload_size_mb}MB upload limit"
            )

        await lock_owner(self.db, owner_id)
        now = datetime.utcnow()

        if replaces_photo_id is not None:
            await self._get_active_photo(owner_id, replaces_photo_id)
        else:
            in_use = await self._count_active(owner_id) + await self._count_open_slots(owner_id, now)
            if in_use >= self.settings.max_active_photos:
                raise QuotaExceeded(
                    f"You can have at most {self.settings.max_active_photos} photos. "
                    "Replace an existing photo instead."
                )

        expires_in = self.settings.upload_url_expires_seconds
        key = self.storage.build_photo_key(owner_id, file_name)
        url = await asyncio.to_thread(
            self.storage.create_upload_url, key, content_type, expires_in
        )

        self.db.add(
            UploadSlot(
                owner_id=owner_id,
                storage_key=key,
                original_filename=file_name,
                content_type=content_type,
                size_bytes=size_bytes,
                replaces_photo_id=replaces_photo_id,
                expires_at=now + timedelta(seconds=expires_in),
            )
        )
        await self.db.flush()

        logger.info(f"Reserved upload slot {key} for owner {owner_id}")
        return UploadTicket(
            url=url,
            storage_key=key,
            expires_in=expires_in,
            replaces_photo_id=replaces_photo_id,
        )

    async def _find_photo_by_key(self, owner_id: str, storage_key: str) -> Photo | None:
        result = await self.db.execute(select(Photo).where(Photo.storage_key == storage_key))
        photo = result.scalar_one_or_none()
        if photo is not None and photo.owner_id != owner_id:
            raise NotFound("Upload not found")
        return photo

    async def _take_slot(
        self,
        owner_id: str,
        storage_key: str,
        replaces_photo_id: UUID | None,
    ) -> UploadSlot:
        result = await self.db.execute(
            select(UploadSlot).where(
                UploadSlot.storage_key == storage_key,
                UploadSlot.owner_id == owner_id,
            )
        )
        slot = result.scalar_one_or_none()
        if slot is None:
            raise NotFound("Upload slot not found")
        if slot.replaces_photo_id != replaces_photo_id:
            if slot.replaces_photo_id is None:
                raise InvalidUpload("This upload was not reserved as a replacement")
            raise InvalidUpload("This upload replaces a photo; use the replace endpoint")
        if slot.consumed_at is None and slot.expires_at <= datetime.utcnow():
            raise InvalidUpload("Upload slot expired, request a new one")

        exists = await asyncio.to_thread(self.storage.file_exists, storage_key)
        if not exists:
            raise InvalidUpload("Uploaded file not found in storage")
        return slot

    async def confirm_upload(self, owner_id: str, storage_key: str) -> Photo:
        """
        Register an uploaded file as a pending photo.

        Idempotent on ``storage_key``: confirming twice returns the same photo.
        """
        existing = await self._find_photo_by_key(owner_id, storage_key)
        if existing is not None:
            return existing

        slot = await self._take_slot(owner_id, storage_key, replaces_photo_id=None)

        await lock_owner(self.db, owner_id)
        if await self._count_active(owner_id) >= self.settings.max_active_photos:
            raise QuotaExceeded()

        photo = Photo(
            owner_id=owner_id,
            storage_key=storage_key,
            original_filename=slot.original_filename,
            content_type=slot.content_type,
            size_bytes=slot.size_bytes,
            validation_status=PhotoStatus.PENDING.value,
            warnings=[],
        )
        try:
            async with self.db.begin_nested():
                self.db.add(photo)
                slot.consumed_at = datetime.utcnow()
        except IntegrityError:
            existing = await self._find_photo_by_key(owner_id, storage_key)
            if existing is None:
                raise
            return existing

        logger.info(f"Confirmed upload {storage_key} as photo {photo.id}")
        return photo

    # =========================================================================
    # Validation
    # =========================================================================

    def _stale_claim_cutoff(self, now: datetime) -> datetime:
        s = self.settings
        window = (
            s.validation_timeout_seconds * s.validation_max_attempts
            + s.validation_retry_delay_seconds * (2 ** s.validation_max_attempts)
            + STALE_CLAIM_MARGIN_SECONDS
        )
        return now - timedelta(seconds=window)

    async def _claim(self, photo_id: UUID) -> bool:
        """Move a photo into validating. Returns False if another caller owns it."""
        now = datetime.utcnow()
        result = await self.db.execute(
            update(Photo)
            .where(
                Photo.id == photo_id,
                Photo.retired_at.is_(None),
                or_(
                    Photo.validation_status == PhotoStatus.PENDING.value,
                    and_(
                        Photo.validation_status == PhotoStatus.VALIDATING.value,
                        Photo.validation_started_at < self._stale_claim_cutoff(now),
                    ),
                ),
            )
            .values(
                validation_status=PhotoStatus.VALIDATING.value,
                validation_started_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _check_with_retries(self, storage_key: str) -> ValidationVerdict | None:
        """Run the engine with per-attempt timeouts. None means every attempt failed."""
        attempts = self.settings.validation_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(
                    self.engine.check(storage_key),
                    timeout=self.settings.validation_timeout_seconds,
                )
            except (ExternalServiceTimeout, asyncio.TimeoutError) as e:
                logger.warning(
                    f"Validation attempt {attempt}/{attempts} for {storage_key} failed: "
                    f"{e or type(e).__name__}"
                )
                if attempt < attempts:
                    await asyncio.sleep(
                        self.settings.validation_retry_delay_seconds * (2 ** (attempt - 1))
                    )
        return None

    async def validate(self, owner_id: str, photo_id: UUID) -> VerdictResult:
        """
        Validate a pending photo.

        The claim is committed before the external call so concurrent
        callers see ``validating`` and get AlreadyInProgress. A photo that
        already has a verdict returns it without calling the engine.

        When the engine stays unavailable after all retries the photo is
        accepted without warnings and flagged with ``validation_fallback``.

        Raises:
            AlreadyInProgress: another request is validating this photo
        """
        photo = await self._get_active_photo(owner_id, photo_id)
        if photo.validation_status not in (
            PhotoStatus.PENDING.value,
            PhotoStatus.VALIDATING.value,
        ):
            return verdict_for(photo)

        if not await self._claim(photo_id):
            await self.db.refresh(photo)
            if photo.validation_status == PhotoStatus.VALIDATING.value:
                raise AlreadyInProgress()
            if photo.retired_at is not None:
                raise InvalidStateTransition("Photo has been replaced")
            return verdict_for(photo)

        await self.db.commit()

        verdict = await self._check_with_retries(photo.storage_key)
        fallback = verdict is None
        if fallback:
            logger.error(
                f"Validation service unavailable for photo {photo_id}; accepting without verdict"
            )
            metrics.validation_fallbacks.inc()
            metrics.validation_checks.labels(outcome="fallback").inc()
            verdict = ValidationVerdict(is_valid=True, warnings=[])
        else:
            metrics.validation_checks.labels(
                outcome="valid" if verdict.is_valid else "invalid"
            ).inc()

        status = PhotoStatus.VALIDATED if verdict.is_valid else PhotoStatus.FAILED
        await self.db.execute(
            update(Photo)
            .where(
                Photo.id == photo_id,
                Photo.validation_status == PhotoStatus.VALIDATING.value,
            )
            .values(
                validation_status=status.value,
                warnings=list(verdict.warnings),
                validation_fallback=fallback,
                validated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(photo)

        logger.info(
            f"Photo {photo_id} validated: status={photo.validation_status} warnings={photo.warnings}"
        )
        return verdict_for(photo)

    # =========================================================================
    # Bypass / Replace
    # =========================================================================

    async def bypass(self, owner_id: str, photo_id: UUID) -> Photo:
        """
        Accept a failed photo despite its warnings.

        No-op when the photo is already bypassed.

        Raises:
            InvalidStateTransition: photo is not failed
        """
        photo = await self._get_active_photo(owner_id, photo_id)
        if photo.validation_status == PhotoStatus.BYPASSED.value:
            return photo

        result = await self.db.execute(
            update(Photo)
            .where(
                Photo.id == photo_id,
                Photo.validation_status == PhotoStatus.FAILED.value,
            )
            .values(validation_status=PhotoStatus.BYPASSED.value)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(photo)
        if result.rowcount != 1 and photo.validation_status != PhotoStatus.BYPASSED.value:
            raise InvalidStateTransition(
                f"Only failed photos can be bypassed (photo is {photo.validation_status})"
            )

        logger.info(f"Photo {photo_id} bypassed by owner {owner_id}")
        return photo

    async def replace(
        self,
        owner_id: str,
        old_photo_id: UUID,
        storage_key: str,
    ) -> tuple[Photo, VerdictResult]:
        """
        Swap an active photo for a newly uploaded one, then validate it.

        The new photo is created and the old one retired in one
        transaction, so the active count never rises. Retrying with the
        same ``storage_key`` returns the existing replacement.

        Args:
            owner_id: Requesting owner
            old_photo_id: Active photo to retire
            storage_key: Key of an upload reserved with ``replaces_photo_id``

        Returns:
            Tuple of (new photo, its verdict)
        """
        existing = await self._find_photo_by_key(owner_id, storage_key)
        if existing is not None:
            old = await self.db.get(Photo, old_photo_id)
            if old is None or old.owner_id != owner_id or old.replaced_by_id != existing.id:
                raise InvalidUpload("This upload was not reserved as a replacement")
            if existing.validation_status == PhotoStatus.PENDING.value:
                return existing, await self.validate(owner_id, existing.id)
            return existing, verdict_for(existing)

        await lock_owner(self.db, owner_id)
        old = await self._get_active_photo(owner_id, old_photo_id)
        slot = await self._take_slot(owner_id, storage_key, replaces_photo_id=old.id)

        now = datetime.utcnow()
        new_photo = Photo(
            owner_id=owner_id,
            storage_key=storage_key,
            original_filename=slot.original_filename,
            content_type=slot.content_type,
            size_bytes=slot.size_bytes,
            validation_status=PhotoStatus.PENDING.value,
            warnings=[],
        )
        self.db.add(new_photo)
        await self.db.flush()

        old.retired_at = now
        old.replaced_by_id = new_photo.id
        slot.consumed_at = now
        await self.db.commit()

        logger.info(f"Photo {old.id} replaced by {new_photo.id}")
        return new_photo, await self.validate(owner_id, new_photo.id)
