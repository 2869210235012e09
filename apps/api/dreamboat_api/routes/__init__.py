"""
API Routes

FastAPI routers for DreamBoat endpoints.
"""

from .health import router as health_router
from .photos import router as photos_router
from .generation import router as generation_router
from .payments import router as payments_router
from .profile import router as profile_router
from .internal import router as internal_router

__all__ = [
    "health_router",
    "photos_router",
    "generation_router",
    "payments_router",
    "profile_router",
    "internal_router",
]
