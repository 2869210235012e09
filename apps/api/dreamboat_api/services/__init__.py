"""
DreamBoat API Services

Business logic and external service integrations.
"""

from .storage import StorageGateway
from .queue import QueueService
from .validation import GeminiValidationEngine, ValidationVerdict
from .photos import PhotoLifecycleManager
from .credits import CreditGate
from .curation import CurationEngine
from .generation import GenerationService

__all__ = [
    "StorageGateway",
    "QueueService",
    "GeminiValidationEngine",
    "ValidationVerdict",
    "PhotoLifecycleManager",
    "CreditGate",
    "CurationEngine",
    "GenerationService",
]
