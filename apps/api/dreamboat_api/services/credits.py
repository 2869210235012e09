"""
Credit Gate

Turns verified purchases into credits and hands out exactly one
generation per credit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import metrics
from ..errors import CreditAlreadyRedeemed, CreditNotFound, InvalidPurchase
from ..models import CreditStatus, PurchaseCredit, PurchaseStore
from .owners import ensure_owner
from .payments import CheckoutSession, StripeCheckout, StorePurchaseVerifier

logger = logging.getLogger(__name__)


@dataclass
class AccessStatus:
    has_unredeemed_credit: bool
    credit_id: UUID | None = None


@dataclass
class StorePurchase:
    """One purchase presented by the client for restore."""
    receipt: str
    transaction_id: str
    product_id: str | None = None


class CreditGate:
    """
    Purchase credits.

    ``redeem`` is the only path from unredeemed to redeemed and is a
    compare-and-set, so two concurrent redemptions cannot both succeed.
    """

    def __init__(
        self,
        db: AsyncSession,
        verifier: StorePurchaseVerifier,
        checkout: StripeCheckout | None = None,
    ):
        self.db = db
        self.verifier = verifier
        self.checkout = checkout

    # =========================================================================
    # Access
    # =========================================================================

    async def check_access(self, owner_id: str) -> AccessStatus:
        """Report the owner's oldest unredeemed credit, if any."""
        result = await self.db.execute(
            select(PurchaseCredit.id)
            .where(
                PurchaseCredit.owner_id == owner_id,
                PurchaseCredit.status == CreditStatus.UNREDEEMED.value,
            )
            .order_by(PurchaseCredit.created_at, PurchaseCredit.id)
            .limit(1)
        )
        credit_id = result.scalar_one_or_none()
        return AccessStatus(has_unredeemed_credit=credit_id is not None, credit_id=credit_id)

    async def history(self, owner_id: str) -> list[PurchaseCredit]:
        result = await self.db.execute(
            select(PurchaseCredit)
            .where(PurchaseCredit.owner_id == owner_id)
            .order_by(PurchaseCredit.created_at.desc())
        )
        return list(result.scalars().all())

    # =========================================================================
    # Minting
    # =========================================================================

    async def _find(self, store: str, transaction_id: str) -> PurchaseCredit | None:
        result = await self.db.execute(
            select(PurchaseCredit).where(
                PurchaseCredit.store == store,
                PurchaseCredit.external_transaction_id == transaction_id,
            )
        )
        return result.scalar_one_or_none()

    def _check_owner(self, credit: PurchaseCredit, owner_id: str) -> PurchaseCredit:
        if credit.owner_id != owner_id:
            logger.warning(
                f"Owner {owner_id} presented transaction {credit.external_transaction_id} "
                f"owned by {credit.owner_id}"
            )
            raise InvalidPurchase("This purchase belongs to another account")
        return credit

    async def _create_credit(
        self,
        owner_id: str,
        store: str,
        transaction_id: str,
        product_id: str | None = None,
        amount_cents: int | None = None,
        currency: str | None = None,
    ) -> PurchaseCredit:
        """
        Insert a credit for a store transaction.

        A concurrent insert of the same transaction loses on the unique
        constraint and returns the winner's credit.
        """
        await ensure_owner(self.db, owner_id)
        credit = PurchaseCredit(
            owner_id=owner_id,
            store=store,
            external_transaction_id=transaction_id,
            product_id=product_id,
            amount_cents=amount_cents,
            currency=currency,
            status=CreditStatus.UNREDEEMED.value,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(credit)
        except IntegrityError:
            existing = await self._find(store, transaction_id)
            if existing is None:
                raise
            return self._check_owner(existing, owner_id)

        metrics.credits_created.labels(store=store).inc()
        logger.info(f"Created credit {credit.id} from {store} transaction {transaction_id}")
        return credit

    async def validate_external_purchase(
        self,
        owner_id: str,
        store: str,
        receipt: str,
        transaction_id: str,
        product_id: str | None = None,
    ) -> PurchaseCredit:
        """
        Verify an in-app purchase and mint its credit.

        Idempotent on (store, transaction_id): a known transaction returns
        its credit without asking the store again.

        Raises:
            InvalidPurchase: store rejected the receipt or the transaction
                belongs to someone else
        """
        existing = await self._find(store, transaction_id)
        if existing is not None:
            return self._check_owner(existing, owner_id)

        verified = await self.verifier.verify(store, receipt, transaction_id, product_id)
        return await self._create_credit(
            owner_id,
            store,
            verified.transaction_id,
            product_id=verified.product_id,
            amount_cents=verified.amount_cents,
            currency=verified.currency,
        )

    async def restore_purchases(
        self,
        owner_id: str,
        store: str,
        purchases: list[StorePurchase],
    ) -> list[PurchaseCredit]:
        """
        Re-register purchases reported by the store's restore flow.

        Purchases the store rejects are skipped.
        """
        restored = []
        for purchase in purchases:
            try:
                credit = await self.validate_external_purchase(
                    owner_id,
                    store,
                    purchase.receipt,
                    purchase.transaction_id,
                    purchase.product_id,
                )
            except InvalidPurchase as e:
                logger.info(f"Skipping purchase {purchase.transaction_id} on restore: {e}")
                continue
            restored.append(credit)

        logger.info(f"Restored {len(restored)}/{len(purchases)} purchases for owner {owner_id}")
        return restored

    async def record_checkout(
        self,
        owner_id: str,
        session_id: str,
        amount_cents: int | None = None,
        currency: str | None = None,
    ) -> PurchaseCredit:
        """Mint a credit for a completed hosted checkout session."""
        return await self._create_credit(
            owner_id,
            PurchaseStore.STRIPE.value,
            session_id,
            amount_cents=amount_cents,
            currency=currency,
        )

    async def start_checkout(self, owner_id: str) -> tuple[AccessStatus, CheckoutSession | None]:
        """Open a hosted checkout unless the owner already holds a credit."""
        access = await self.check_access(owner_id)
        if access.has_unredeemed_credit or self.checkout is None:
            return access, None
        return access, await self.checkout.create_session(owner_id)

    # =========================================================================
    # Redemption
    # =========================================================================

    async def get_spendable(self, credit_id: UUID, owner_id: str) -> PurchaseCredit:
        """
        Look up a credit the owner could spend right now.

        Raises:
            CreditNotFound: no such credit for this owner
            CreditAlreadyRedeemed: the credit was already spent
        """
        credit = await self.db.get(PurchaseCredit, credit_id)
        if credit is None or credit.owner_id != owner_id:
            raise CreditNotFound()
        if credit.status != CreditStatus.UNREDEEMED.value:
            raise CreditAlreadyRedeemed()
        return credit

    async def redeem(self, credit_id: UUID, owner_id: str, batch_id: UUID) -> PurchaseCredit:
        """
        Spend a credit on a batch.

        Raises:
            CreditNotFound: no such credit for this owner
            CreditAlreadyRedeemed: the credit was already spent
        """
        result = await self.db.execute(
            update(PurchaseCredit)
            .where(
                PurchaseCredit.id == credit_id,
                PurchaseCredit.owner_id == owner_id,
                PurchaseCredit.status == CreditStatus.UNREDEEMED.value,
            )
            .values(
                status=CreditStatus.REDEEMED.value,
                batch_id=batch_id,
                redeemed_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        credit = await self.db.get(PurchaseCredit, credit_id, populate_existing=True)
        if result.rowcount != 1:
            if credit is None or credit.owner_id != owner_id:
                raise CreditNotFound()
            raise CreditAlreadyRedeemed()

        metrics.credits_redeemed.inc()
        logger.info(f"Credit {credit_id} redeemed for batch {batch_id}")
        return credit

    async def restore(self, credit_id: UUID) -> bool:
        """
        Return a redeemed credit to its owner.

        Only used to compensate a batch that produced nothing.
        """
        result = await self.db.execute(
            update(PurchaseCredit)
            .where(
                PurchaseCredit.id == credit_id,
                PurchaseCredit.status == CreditStatus.REDEEMED.value,
            )
            .values(
                status=CreditStatus.UNREDEEMED.value,
                batch_id=None,
                restored_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"Credit {credit_id} was not redeemed, nothing to restore")
            return False

        metrics.credits_restored.inc()
        logger.info(f"Credit {credit_id} restored")
        return True
