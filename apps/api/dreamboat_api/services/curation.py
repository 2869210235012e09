"""
Curation Engine

Chooses the owner's profile set from generated images, either
automatically after a batch or by explicit user selection.
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InvalidSelection, NotFound
from ..models import GeneratedImage, GenerationBatch

logger = logging.getLogger(__name__)


def pick_profile_set(
    images: Iterable[GeneratedImage],
    scenario_order: Sequence[str],
    limit: int,
) -> list[GeneratedImage]:
    """
    Pick up to ``limit`` images, spreading picks across scenarios.

    Each pass takes the next unpicked image of every scenario in
    ``scenario_order``; scenarios missing from the order follow in
    order of first appearance. Within a scenario images keep their
    ``position`` order.

    Args:
        images: Candidate images
        scenario_order: Batch scenario order
        limit: Maximum number of picks

    Returns:
        Picked images in selection order
    """
    groups: OrderedDict[str, list[GeneratedImage]] = OrderedDict(
        (scenario, []) for scenario in scenario_order
    )
    for image in sorted(images, key=lambda i: (i.position, str(i.id))):
        groups.setdefault(image.scenario, []).append(image)

    picked: list[GeneratedImage] = []
    depth = 0
    while len(picked) < limit:
        took_any = False
        for bucket in groups.values():
            if depth < len(bucket):
                picked.append(bucket[depth])
                took_any = True
                if len(picked) == limit:
                    break
        if not took_any:
            break
        depth += 1
    return picked


class CurationEngine:
    """Profile set selection for one owner's generated images."""

    def __init__(self, db: AsyncSession, max_profile_photos: int = 6):
        self.db = db
        self.max_profile_photos = max_profile_photos

    async def selected(self, owner_id: str) -> list[GeneratedImage]:
        """The owner's profile set in display order."""
        result = await self.db.execute(
            select(GeneratedImage)
            .where(
                GeneratedImage.owner_id == owner_id,
                GeneratedImage.selected_profile_order.is_not(None),
            )
            .order_by(GeneratedImage.selected_profile_order)
        )
        return list(result.scalars().all())

    async def list_images(self, owner_id: str) -> list[GeneratedImage]:
        result = await self.db.execute(
            select(GeneratedImage)
            .join(GenerationBatch, GenerationBatch.id == GeneratedImage.batch_id)
            .where(GeneratedImage.owner_id == owner_id)
            .order_by(GenerationBatch.created_at.desc(), GeneratedImage.position)
        )
        return list(result.scalars().all())

    async def _clear(self, owner_id: str):
        await self.db.execute(
            update(GeneratedImage)
            .where(
                GeneratedImage.owner_id == owner_id,
                GeneratedImage.selected_profile_order.is_not(None),
            )
            .values(selected_profile_order=None)
            .execution_options(synchronize_session="fetch")
        )

    async def auto_select(self, batch_id: UUID) -> list[GeneratedImage]:
        """
        Fill the profile set from a finished batch.

        Does nothing when the owner already has any selection, so a
        manual choice always wins.
        """
        batch = await self.db.get(GenerationBatch, batch_id)
        if batch is None:
            raise NotFound("Batch not found")

        current = await self.selected(batch.owner_id)
        if current:
            logger.info(f"Owner {batch.owner_id} already has a profile set, skipping auto-select")
            return current

        result = await self.db.execute(
            select(GeneratedImage).where(GeneratedImage.batch_id == batch_id)
        )
        picks = pick_profile_set(
            result.scalars().all(), batch.scenarios or [], self.max_profile_photos
        )

        try:
            async with self.db.begin_nested():
                for order, image in enumerate(picks, start=1):
                    image.selected_profile_order = order
                batch.curated_at = datetime.utcnow()
        except IntegrityError:
            logger.info(f"Profile set for {batch.owner_id} changed concurrently, keeping it")
            return await self.selected(batch.owner_id)

        logger.info(f"Auto-selected {len(picks)} profile photos from batch {batch_id}")
        return picks

    async def _owned_images(self, owner_id: str, image_ids: list[UUID]) -> dict[UUID, GeneratedImage]:
        result = await self.db.execute(
            select(GeneratedImage).where(
                GeneratedImage.owner_id == owner_id,
                GeneratedImage.id.in_(image_ids),
            )
        )
        images = {image.id: image for image in result.scalars().all()}
        missing = set(image_ids) - set(images)
        if missing:
            raise NotFound(f"Images not found: {sorted(str(i) for i in missing)}")
        return images

    def _check_order(self, order: int):
        if not 1 <= order <= self.max_profile_photos:
            raise InvalidSelection(
                f"Order must be between 1 and {self.max_profile_photos}"
            )

    async def set_selected(
        self,
        owner_id: str,
        selections: list[tuple[UUID, int]],
    ) -> list[GeneratedImage]:
        """
        Replace the whole profile set.

        Args:
            owner_id: Owner
            selections: (image_id, order) pairs; an empty list clears the set

        Raises:
            InvalidSelection: too many picks, duplicate images or orders
        """
        if len(selections) > self.max_profile_photos:
            raise InvalidSelection(f"Select at most {self.max_profile_photos} photos")

        image_ids = [image_id for image_id, _ in selections]
        orders = [order for _, order in selections]
        if len(set(image_ids)) != len(image_ids):
            raise InvalidSelection("Each image can be selected once")
        if len(set(orders)) != len(orders):
            raise InvalidSelection("Each order can be used once")
        for order in orders:
            self._check_order(order)

        images = await self._owned_images(owner_id, image_ids)

        await self._clear(owner_id)
        await self.db.flush()
        for image_id, order in selections:
            images[image_id].selected_profile_order = order
        await self.db.flush()

        logger.info(f"Owner {owner_id} set {len(selections)} profile photos")
        return await self.selected(owner_id)

    async def toggle(self, owner_id: str, image_id: UUID, order: int | None) -> list[GeneratedImage]:
        """
        Change one slot of the profile set.

        ``order=None`` removes the image. Assigning an order evicts the
        image currently holding it; assigning an image its current order
        removes it.
        """
        image = (await self._owned_images(owner_id, [image_id]))[image_id]

        if order is None or image.selected_profile_order == order:
            image.selected_profile_order = None
        else:
            self._check_order(order)
            await self.db.execute(
                update(GeneratedImage)
                .where(
                    GeneratedImage.owner_id == owner_id,
                    GeneratedImage.selected_profile_order == order,
                    GeneratedImage.id != image_id,
                )
                .values(selected_profile_order=None)
                .execution_options(synchronize_session="fetch")
            )
            image.selected_profile_order = order
        await self.db.flush()
        return await self.selected(owner_id)
