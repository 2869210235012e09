"""
DreamBoat Client

Async client for the DreamBoat API with session-scoped polling and
store purchase bridging.
"""

from .api import ApiError, DreamboatClient
from .polling import RepeatingTask, poll_until
from .purchases import PurchaseCancelled, PurchaseFlow, PurchaseListenerBridge, PurchaseUpdate

__all__ = [
    "ApiError",
    "DreamboatClient",
    "RepeatingTask",
    "poll_until",
    "PurchaseCancelled",
    "PurchaseFlow",
    "PurchaseListenerBridge",
    "PurchaseUpdate",
]
