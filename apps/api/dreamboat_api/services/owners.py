"""
Owner Service

Lazy owner creation and the per-owner row lock.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Owner

logger = logging.getLogger(__name__)


async def ensure_owner(db: AsyncSession, owner_id: str, email: str | None = None) -> Owner:
    """Return the owner row, creating it on first sight."""
    owner = await db.get(Owner, owner_id)
    if owner is not None:
        return owner

    try:
        async with db.begin_nested():
            owner = Owner(id=owner_id, email=email)
            db.add(owner)
        logger.info(f"Created owner {owner_id}")
    except IntegrityError:
        # Created concurrently by another request
        owner = await db.get(Owner, owner_id, populate_existing=True)
    return owner


async def lock_owner(db: AsyncSession, owner_id: str) -> Owner:
    """
    Take the owner's row lock for the rest of the transaction.

    Serializes quota checks and generation starts per owner. Backends
    without row locks (SQLite) ignore FOR UPDATE.
    """
    await ensure_owner(db, owner_id)
    result = await db.execute(
        select(Owner).where(Owner.id == owner_id).with_for_update()
    )
    return result.scalar_one()
