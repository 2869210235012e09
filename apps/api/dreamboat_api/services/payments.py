"""
Payment Providers

Store receipt verification (App Store, Google Play) and Stripe hosted
checkout. These talk to the outside world only; credits are minted by
the CreditGate.
"""

import asyncio
import logging
from dataclasses import dataclass

import httpx
import stripe

from ..config import Settings
from ..errors import ExternalServiceTimeout, InvalidPurchase
from ..models import PurchaseStore

logger = logging.getLogger(__name__)

APPLE_SANDBOX_RECEIPT = 21007
GOOGLE_PLAY_API = "https://androidpublisher.googleapis.com/androidpublisher/v3"


@dataclass
class VerifiedPurchase:
    """A purchase the store has confirmed."""
    store: str
    transaction_id: str
    product_id: str | None = None
    amount_cents: int | None = None
    currency: str | None = None


@dataclass
class CheckoutSession:
    session_id: str
    url: str


class StorePurchaseVerifier:
    """Verifies in-app purchase receipts with the issuing store."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None):
        self.settings = settings
        self.http = http or httpx.AsyncClient(timeout=15.0)

    async def aclose(self):
        await self.http.aclose()

    async def verify(
        self,
        store: str,
        receipt: str,
        transaction_id: str,
        product_id: str | None = None,
    ) -> VerifiedPurchase:
        """
        Verify a receipt.

        Args:
            store: "ios" or "android"
            receipt: App Store receipt data or Play purchase token
            transaction_id: Store transaction identifier
            product_id: Purchased product

        Returns:
            VerifiedPurchase whose transaction_id comes from the store,
            never from the client

        Raises:
            InvalidPurchase: store rejected the receipt, or the receipt
                does not contain the claimed transaction
            ExternalServiceTimeout: store could not be reached
        """
        if not receipt or not transaction_id:
            raise InvalidPurchase("Receipt and transaction id are required")

        try:
            if store == PurchaseStore.IOS.value:
                verified = await self._verify_apple(receipt, transaction_id, product_id)
            elif store == PurchaseStore.ANDROID.value:
                verified = await self._verify_google(receipt, product_id)
            else:
                raise InvalidPurchase(f"Unsupported store: {store}")
        except httpx.HTTPError as e:
            logger.error(f"{store} receipt verification failed: {e}")
            raise ExternalServiceTimeout("Store verification unavailable") from e

        if verified is None:
            raise InvalidPurchase()
        return verified

    def _purchase(self, store: str, transaction_id: str, product_id: str | None) -> VerifiedPurchase:
        return VerifiedPurchase(
            store=store,
            transaction_id=transaction_id,
            product_id=product_id,
            amount_cents=self.settings.checkout_amount_cents,
            currency=self.settings.checkout_currency,
        )

    async def _verify_apple(
        self, receipt: str, transaction_id: str, product_id: str | None
    ) -> VerifiedPurchase | None:
        payload = {
            "receipt-data": receipt,
            "password": self.settings.apple_shared_secret,
            "exclude-old-transactions": True,
        }
        response = await self.http.post(self.settings.apple_verify_url, json=payload)
        response.raise_for_status()
        data = response.json()

        # Sandbox receipts sent to production come back with 21007
        if data.get("status") == APPLE_SANDBOX_RECEIPT:
            response = await self.http.post(self.settings.apple_sandbox_verify_url, json=payload)
            response.raise_for_status()
            data = response.json()

        if data.get("status") != 0:
            logger.warning(f"Apple rejected receipt with status {data.get('status')}")
            return None

        entries = list(data.get("latest_receipt_info") or [])
        entries += (data.get("receipt") or {}).get("in_app") or []
        for entry in entries:
            if str(entry.get("transaction_id")) != transaction_id:
                continue
            if product_id and entry.get("product_id") != product_id:
                logger.warning(
                    f"Apple transaction {transaction_id} is for {entry.get('product_id')}, not {product_id}"
                )
                return None
            return self._purchase(
                PurchaseStore.IOS.value, str(entry["transaction_id"]), entry.get("product_id")
            )

        logger.warning(f"Apple receipt does not contain transaction {transaction_id}")
        return None

    async def _verify_google(
        self, purchase_token: str, product_id: str | None
    ) -> VerifiedPurchase | None:
        # Credits for Play purchases are keyed on the order id, or the
        # purchase token when the order id is unavailable
        if not product_id:
            return None

        if not self.settings.google_access_token:
            logger.warning("Google Play credentials not configured, accepting purchase token as-is")
            return self._purchase(PurchaseStore.ANDROID.value, purchase_token, product_id)

        url = (
            f"{GOOGLE_PLAY_API}/applications/{self.settings.google_package_name}"
            f"/purchases/products/{product_id}/tokens/{purchase_token}"
        )
        response = await self.http.get(
            url,
            headers={"Authorization": f"Bearer {self.settings.google_access_token}"},
        )
        if response.status_code in (400, 404, 410):
            return None
        response.raise_for_status()
        data = response.json()
        # purchaseState 0 = purchased
        if data.get("purchaseState") != 0:
            return None
        return self._purchase(
            PurchaseStore.ANDROID.value, data.get("orderId") or purchase_token, product_id
        )


class StripeCheckout:
    """Stripe hosted checkout sessions and webhook verification."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def create_session(self, owner_id: str) -> CheckoutSession:
        """Create a one-off payment session for one generation."""
        s = self.settings
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=s.stripe_secret_key,
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": s.checkout_currency,
                            "product_data": {"name": s.checkout_product_name},
                            "unit_amount": s.checkout_amount_cents,
                        },
                        "quantity": 1,
                    }
                ],
                mode="payment",
                success_url=f"{s.app_url}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{s.app_url}/payment-cancelled",
                client_reference_id=owner_id,
                metadata={"owner_id": owner_id},
            )
        except stripe.error.StripeError as e:
            logger.error(f"Failed to create checkout session: {e}")
            raise ExternalServiceTimeout("Payment provider unavailable") from e

        logger.info(f"Created checkout session {session.id} for owner {owner_id}")
        return CheckoutSession(session_id=session.id, url=session.url)

    def parse_event(self, payload: bytes, signature: str | None) -> dict:
        """
        Verify a webhook signature and return the event.

        Raises:
            InvalidPurchase: bad payload or signature
        """
        try:
            return stripe.Webhook.construct_event(
                payload, signature or "", self.settings.stripe_webhook_secret
            )
        except (ValueError, stripe.error.SignatureVerificationError) as e:
            logger.warning(f"Rejected Stripe webhook: {e}")
            raise InvalidPurchase("Invalid webhook signature") from e
