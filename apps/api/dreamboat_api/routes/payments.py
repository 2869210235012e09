"""
Payment Routes

Access checks, in-app purchase validation and restore, Stripe hosted
checkout and payment history.
"""

import logging

from fastapi import APIRouter, Depends, Header, Request

from ..auth import get_current_owner
from ..deps import get_credit_gate, get_stripe_checkout
from ..errors import InvalidPurchase
from ..schemas import (
    AccessResponse,
    CheckoutResponse,
    IAPRestoreRequest,
    IAPRestoreResponse,
    IAPValidateRequest,
    IAPValidateResponse,
    PaymentHistoryResponse,
    PaymentResponse,
)
from ..services import CreditGate
from ..services.credits import StorePurchase
from ..services.payments import StripeCheckout

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/access", response_model=AccessResponse)
async def check_access(
    owner_id: str = Depends(get_current_owner),
    credits: CreditGate = Depends(get_credit_gate),
) -> AccessResponse:
    """Whether the owner holds an unredeemed credit."""
    access = await credits.check_access(owner_id)
    return AccessResponse(has_access=access.has_unredeemed_credit, payment_id=access.credit_id)


# ============================================================================
# In-app purchases
# ============================================================================

@router.post("/iap/validate", response_model=IAPValidateResponse)
async def validate_purchase(
    data: IAPValidateRequest,
    owner_id: str = Depends(get_current_owner),
    credits: CreditGate = Depends(get_credit_gate),
) -> IAPValidateResponse:
    """
    Validate a store receipt and mint a credit.

    Safe to retry: the same transaction always maps to the same credit.
    """
    credit = await credits.validate_external_purchase(
        owner_id,
        data.platform,
        data.receipt,
        data.transaction_id,
        data.product_id,
    )
    return IAPValidateResponse(valid=True, payment_id=credit.id)


@router.post("/iap/restore", response_model=IAPRestoreResponse)
async def restore_purchases(
    data: IAPRestoreRequest,
    owner_id: str = Depends(get_current_owner),
    credits: CreditGate = Depends(get_credit_gate),
) -> IAPRestoreResponse:
    restored = await credits.restore_purchases(
        owner_id,
        data.platform,
        [
            StorePurchase(
                receipt=p.receipt,
                transaction_id=p.transaction_id,
                product_id=p.product_id,
            )
            for p in data.purchases
        ],
    )
    return IAPRestoreResponse(
        restored_count=len(restored),
        payment_ids=[credit.id for credit in restored],
    )


# ============================================================================
# Hosted checkout
# ============================================================================

@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    owner_id: str = Depends(get_current_owner),
    credits: CreditGate = Depends(get_credit_gate),
) -> CheckoutResponse:
    """Open a Stripe checkout session, or report the existing credit."""
    access, session = await credits.start_checkout(owner_id)
    return CheckoutResponse(
        has_access=access.has_unredeemed_credit,
        payment_id=access.credit_id,
        checkout_url=session.url if session else None,
        session_id=session.session_id if session else None,
    )


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    checkout: StripeCheckout = Depends(get_stripe_checkout),
    credits: CreditGate = Depends(get_credit_gate),
):
    """Mint a credit when a checkout session completes."""
    payload = await request.body()
    event = checkout.parse_event(payload, stripe_signature)

    if event["type"] != "checkout.session.completed":
        logger.info(f"Ignoring Stripe event {event['type']}")
        return {"received": True}

    session = event["data"]["object"]
    owner_id = (session.get("metadata") or {}).get("owner_id") or session.get("client_reference_id")
    if not owner_id:
        logger.error(f"Checkout session {session.get('id')} has no owner")
        raise InvalidPurchase("Checkout session has no owner")

    credit = await credits.record_checkout(
        owner_id,
        session["id"],
        session.get("amount_total"),
        session.get("currency"),
    )
    logger.info(f"Checkout {session['id']} recorded as credit {credit.id}")
    return {"received": True}


@router.get("/history", response_model=PaymentHistoryResponse)
async def payment_history(
    owner_id: str = Depends(get_current_owner),
    credits: CreditGate = Depends(get_credit_gate),
) -> PaymentHistoryResponse:
    payments = await credits.history(owner_id)
    return PaymentHistoryResponse(payments=[PaymentResponse.model_validate(p) for p in payments])
