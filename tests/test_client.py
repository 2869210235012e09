"""
Tests for the client-side polling and purchase helpers.
"""

import asyncio
import json
import threading

import httpx
import pytest

from dreamboat_client import (
    ApiError,
    DreamboatClient,
    PurchaseCancelled,
    PurchaseFlow,
    PurchaseListenerBridge,
    PurchaseUpdate,
    RepeatingTask,
    poll_until,
)


class Responses:
    """Async fetch returning scripted values; exceptions are raised."""

    def __init__(self, *values):
        self.values = list(values)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        value = self.values.pop(0) if len(self.values) > 1 else self.values[0]
        if isinstance(value, Exception):
            raise value
        return value


class TestRepeatingTask:
    async def test_stops_when_done(self):
        fetch = Responses({"done": False}, {"done": False}, {"done": True})
        seen = []

        async with RepeatingTask(fetch, 0, done=lambda r: r["done"], on_result=seen.append) as task:
            result = await task.wait(timeout=1)

        assert result == {"done": True}
        assert fetch.calls == 3
        assert len(seen) == 3
        assert not task.running

    async def test_cancel_stops_polling(self):
        fetch = Responses({"done": False})
        task = RepeatingTask(fetch, 0.01).start()
        await asyncio.sleep(0.05)

        await task.cancel()
        calls = fetch.calls
        await asyncio.sleep(0.05)

        assert not task.running
        assert fetch.calls == calls
        with pytest.raises(asyncio.CancelledError):
            await task.wait()

    async def test_cancel_is_repeatable(self):
        task = RepeatingTask(Responses({}), 0.01).start()
        await task.cancel()
        await task.cancel()

    async def test_transport_errors_are_retried(self):
        request = httpx.Request("GET", "http://api.test/samples")
        fetch = Responses(httpx.ConnectError("down", request=request), {"done": True})

        result = await poll_until(fetch, lambda r: r["done"], interval=0, timeout=1)

        assert result == {"done": True}
        assert fetch.calls == 2

    async def test_other_errors_end_polling(self):
        fetch = Responses(ApiError(404, "not_found", "Batch not found"))

        with pytest.raises(ApiError):
            await poll_until(fetch, lambda r: True, interval=0, timeout=1)
        assert fetch.calls == 1

    async def test_timeout_stops_timer(self):
        fetch = Responses({"done": False})

        with pytest.raises(asyncio.TimeoutError):
            await poll_until(fetch, lambda r: r["done"], interval=0.01, timeout=0.05)
        calls = fetch.calls
        await asyncio.sleep(0.05)

        assert fetch.calls == calls

    async def test_wait_before_start(self):
        with pytest.raises(RuntimeError):
            await RepeatingTask(Responses({}), 1).wait()


class FakeStore:
    """Store connection whose callbacks fire from a background thread."""

    def __init__(self, outcome=None):
        self.listeners = []
        self.outcome = outcome
        self.finished = []

    def add_listener(self, on_update, on_error):
        self.listeners.append((on_update, on_error))

    def remove_listener(self, on_update, on_error):
        self.listeners.remove((on_update, on_error))

    def request_purchase(self, product_id):
        if self.outcome is None:
            return
        listeners = list(self.listeners)

        def deliver():
            for on_update, on_error in listeners:
                if isinstance(self.outcome, Exception):
                    on_error(self.outcome)
                else:
                    on_update(PurchaseUpdate("other_product", "t0", "r0", "ios"))
                    on_update(self.outcome)
                    on_update(self.outcome)

        threading.Thread(target=deliver).start()

    def finish_transaction(self, update):
        self.finished.append(update)


UPDATE = PurchaseUpdate("gen_pack", "txn-1", "receipt-1", "ios")


class TestPurchaseListenerBridge:
    async def test_resolves_with_matching_update(self):
        store = FakeStore(UPDATE)

        update = await PurchaseListenerBridge(store).purchase("gen_pack", timeout=1)

        assert update == UPDATE
        assert store.listeners == []

    async def test_error_is_raised_and_listeners_removed(self):
        store = FakeStore(PurchaseCancelled())

        with pytest.raises(PurchaseCancelled):
            await PurchaseListenerBridge(store).purchase("gen_pack", timeout=1)
        assert store.listeners == []

    async def test_timeout_removes_listeners(self):
        store = FakeStore()

        with pytest.raises(asyncio.TimeoutError):
            await PurchaseListenerBridge(store).purchase("gen_pack", timeout=0.05)
        assert store.listeners == []

    async def test_cancellation_removes_listeners(self):
        store = FakeStore()
        task = asyncio.create_task(PurchaseListenerBridge(store).purchase("gen_pack"))
        await asyncio.sleep(0.01)
        assert len(store.listeners) == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.listeners == []


def api_client(handler) -> DreamboatClient:
    return DreamboatClient("http://api.test", "token", transport=httpx.MockTransport(handler))


class TestPurchaseFlow:
    async def test_finishes_transaction_after_validation(self):
        requests = []

        def handler(request):
            requests.append((request.url.path, json.loads(request.content), request.headers["Authorization"]))
            return httpx.Response(200, json={"valid": True, "payment_id": "p-1"})

        store = FakeStore(UPDATE)
        async with api_client(handler) as client:
            result = await PurchaseFlow(PurchaseListenerBridge(store), client).buy("gen_pack", timeout=1)

        assert result == {"valid": True, "payment_id": "p-1"}
        assert store.finished == [UPDATE]
        path, body, auth = requests[0]
        assert path == "/api/payments/iap/validate"
        assert body["transaction_id"] == "txn-1"
        assert auth == "Bearer token"

    async def test_rejected_purchase_is_not_finished(self):
        def handler(request):
            return httpx.Response(400, json={"error": "invalid_purchase", "detail": "Purchase could not be verified"})

        store = FakeStore(UPDATE)
        async with api_client(handler) as client:
            with pytest.raises(ApiError) as excinfo:
                await PurchaseFlow(PurchaseListenerBridge(store), client).buy("gen_pack", timeout=1)

        assert excinfo.value.status_code == 400
        assert excinfo.value.code == "invalid_purchase"
        assert store.finished == []


class TestDreamboatClient:
    async def test_error_without_json_body(self):
        async with api_client(lambda request: httpx.Response(502, text="Bad Gateway")) as client:
            with pytest.raises(ApiError) as excinfo:
                await client.check_access()
        assert excinfo.value.code == "http_error"
        assert excinfo.value.detail == "Bad Gateway"

    async def test_polls_batch_until_done(self):
        states = iter(["queued", "running", "completed"])

        def handler(request):
            status = next(states)
            return httpx.Response(
                200, json={"batch": {"status": status}, "done": status == "completed", "images": []}
            )

        async with api_client(handler) as client:
            result = await poll_until(lambda: client.get_batch("b-1"), lambda r: r["done"], interval=0, timeout=1)

        assert result["batch"]["status"] == "completed"
