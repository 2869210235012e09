"""
Store Purchases

Bridges a callback-style store SDK into awaitables. The store connection
reports purchase results through listeners; ``PurchaseListenerBridge``
turns one purchase request into one future and always detaches its
listeners afterwards.

A store connection is any object with::

    add_listener(on_update, on_error)
    remove_listener(on_update, on_error)
    request_purchase(product_id)
    finish_transaction(update)
"""

import asyncio
import logging
from dataclasses import dataclass

from .api import DreamboatClient

logger = logging.getLogger(__name__)


@dataclass
class PurchaseUpdate:
    """A purchase reported by the store."""
    product_id: str
    transaction_id: str
    receipt: str
    platform: str  # "ios" or "android"


class PurchaseCancelled(Exception):
    """The user dismissed the store sheet."""


class PurchaseListenerBridge:
    """One store connection, many sequential purchase futures."""

    def __init__(self, store):
        self.store = store

    async def purchase(self, product_id: str, timeout: float | None = 300.0) -> PurchaseUpdate:
        """
        Request a purchase and wait for the store's answer.

        Listener callbacks may fire on any thread; results are handed to
        the event loop with ``call_soon_threadsafe``. Listeners are
        removed on success, error, timeout and cancellation alike.

        Raises:
            PurchaseCancelled: user cancelled
            asyncio.TimeoutError: no answer within ``timeout``
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def settle(setter, value):
            if not future.done():
                setter(value)

        def on_update(update: PurchaseUpdate):
            if update.product_id != product_id:
                return
            loop.call_soon_threadsafe(settle, future.set_result, update)

        def on_error(error: Exception):
            loop.call_soon_threadsafe(settle, future.set_exception, error)

        self.store.add_listener(on_update, on_error)
        try:
            self.store.request_purchase(product_id)
            return await asyncio.wait_for(future, timeout)
        finally:
            self.store.remove_listener(on_update, on_error)


class PurchaseFlow:
    """Purchase, validate with the backend, then acknowledge to the store."""

    def __init__(self, bridge: PurchaseListenerBridge, client: DreamboatClient):
        self.bridge = bridge
        self.client = client

    async def buy(self, product_id: str, timeout: float | None = 300.0) -> dict:
        """
        Run a full purchase.

        The transaction is only finished with the store after the backend
        has minted a credit, so a crash in between leaves it pending for
        the store to redeliver.

        Returns:
            The backend's validation response (``valid``, ``payment_id``)
        """
        update = await self.bridge.purchase(product_id, timeout=timeout)
        result = await self.client.validate_purchase(
            update.platform,
            update.receipt,
            update.transaction_id,
            update.product_id,
        )
        if result.get("valid"):
            self.bridge.store.finish_transaction(update)
            logger.info(f"Purchase {update.transaction_id} validated as {result.get('payment_id')}")
        return result
