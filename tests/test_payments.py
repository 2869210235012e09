"""
Tests for store receipt verification.
"""

import json

import httpx
import pytest
from sqlalchemy import func, select

from dreamboat_api.errors import ExternalServiceTimeout, InvalidPurchase
from dreamboat_api.models import PurchaseCredit
from dreamboat_api.services import CreditGate
from dreamboat_api.services.payments import StorePurchaseVerifier

from .fakes import OWNER

PRODUCTION = "buy.itunes.apple.com"
SANDBOX = "sandbox.itunes.apple.com"


def apple_receipt(*transactions, product_id="gen_pack", status=0):
    return {
        "status": status,
        "receipt": {
            "in_app": [{"transaction_id": t, "product_id": product_id} for t in transactions]
        },
    }


class StoreApi:
    """MockTransport handler answering with canned store responses."""

    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, body = self.responses[request.url.host]
        return httpx.Response(status_code, json=body)


@pytest.fixture
async def make_verifier(settings):
    clients = []

    def build(handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return StorePurchaseVerifier(settings, http=client)

    yield build
    for client in clients:
        await client.aclose()


class TestAppleReceipts:
    async def test_transaction_in_receipt(self, make_verifier):
        api = StoreApi({PRODUCTION: (200, apple_receipt("real-1"))})
        verifier = make_verifier(api)

        verified = await verifier.verify("ios", "receipt-data", "real-1", "gen_pack")

        assert verified.store == "ios"
        assert verified.transaction_id == "real-1"
        assert verified.product_id == "gen_pack"
        assert json.loads(api.requests[0].content)["receipt-data"] == "receipt-data"

    async def test_transaction_missing_from_receipt(self, make_verifier):
        verifier = make_verifier(StoreApi({PRODUCTION: (200, apple_receipt("real-1"))}))

        for i in range(3):
            with pytest.raises(InvalidPurchase):
                await verifier.verify("ios", "same-receipt", f"other-{i}", "gen_pack")

    async def test_latest_receipt_info_is_searched(self, make_verifier):
        body = {"status": 0, "receipt": {"in_app": []},
                "latest_receipt_info": [{"transaction_id": "real-2", "product_id": "gen_pack"}]}
        verifier = make_verifier(StoreApi({PRODUCTION: (200, body)}))

        verified = await verifier.verify("ios", "receipt-data", "real-2", "gen_pack")

        assert verified.transaction_id == "real-2"

    async def test_product_must_match(self, make_verifier):
        receipt = apple_receipt("real-1", product_id="something_else")
        verifier = make_verifier(StoreApi({PRODUCTION: (200, receipt)}))

        with pytest.raises(InvalidPurchase):
            await verifier.verify("ios", "receipt-data", "real-1", "gen_pack")

    async def test_sandbox_receipt_is_retried_against_sandbox(self, make_verifier):
        api = StoreApi({
            PRODUCTION: (200, {"status": 21007}),
            SANDBOX: (200, apple_receipt("sandbox-1")),
        })
        verifier = make_verifier(api)

        verified = await verifier.verify("ios", "receipt-data", "sandbox-1", "gen_pack")

        assert verified.transaction_id == "sandbox-1"
        assert [r.url.host for r in api.requests] == [PRODUCTION, SANDBOX]

    async def test_rejected_status(self, make_verifier):
        verifier = make_verifier(StoreApi({PRODUCTION: (200, apple_receipt("real-1", status=21003))}))

        with pytest.raises(InvalidPurchase):
            await verifier.verify("ios", "receipt-data", "real-1", "gen_pack")

    async def test_store_unreachable(self, make_verifier):
        def broken(request):
            raise httpx.ConnectError("refused", request=request)

        verifier = make_verifier(broken)

        with pytest.raises(ExternalServiceTimeout):
            await verifier.verify("ios", "receipt-data", "real-1", "gen_pack")


class TestGooglePurchases:
    async def test_credit_keyed_on_order_id(self, make_verifier, settings):
        settings.google_access_token = "play-token"
        api = StoreApi({
            "androidpublisher.googleapis.com": (200, {"purchaseState": 0, "orderId": "GPA.1"})
        })
        verifier = make_verifier(api)

        first = await verifier.verify("android", "purchase-token", "client-a", "gen_pack")
        second = await verifier.verify("android", "purchase-token", "client-b", "gen_pack")

        assert first.transaction_id == second.transaction_id == "GPA.1"
        assert api.requests[0].url.path.endswith("/products/gen_pack/tokens/purchase-token")
        assert api.requests[0].headers["Authorization"] == "Bearer play-token"

    async def test_unknown_token(self, make_verifier, settings):
        settings.google_access_token = "play-token"
        verifier = make_verifier(StoreApi({"androidpublisher.googleapis.com": (404, {})}))

        with pytest.raises(InvalidPurchase):
            await verifier.verify("android", "purchase-token", "client-a", "gen_pack")

    async def test_cancelled_purchase(self, make_verifier, settings):
        settings.google_access_token = "play-token"
        verifier = make_verifier(
            StoreApi({"androidpublisher.googleapis.com": (200, {"purchaseState": 1, "orderId": "GPA.1"})})
        )

        with pytest.raises(InvalidPurchase):
            await verifier.verify("android", "purchase-token", "client-a", "gen_pack")

    async def test_without_credentials_keys_on_token(self, make_verifier, settings):
        settings.google_access_token = ""
        api = StoreApi({})
        verifier = make_verifier(api)

        verified = await verifier.verify("android", "purchase-token", "client-a", "gen_pack")

        assert verified.transaction_id == "purchase-token"
        assert api.requests == []


async def test_replayed_receipt_mints_one_credit(db, make_verifier):
    verifier = make_verifier(StoreApi({PRODUCTION: (200, apple_receipt("real-1"))}))
    credits = CreditGate(db, verifier)

    credit = await credits.validate_external_purchase(OWNER, "ios", "same-receipt", "real-1", "gen_pack")
    await db.commit()
    for i in range(3):
        with pytest.raises(InvalidPurchase):
            await credits.validate_external_purchase(
                OWNER, "ios", "same-receipt", f"other-{i}", "gen_pack"
            )

    assert credit.external_transaction_id == "real-1"
    assert await db.scalar(select(func.count(PurchaseCredit.id))) == 1
