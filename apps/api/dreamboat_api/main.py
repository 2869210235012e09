"""
DreamBoat API

FastAPI application for the DreamBoat profile photo generator.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .config import get_settings
from .database import close_db, init_db
from .errors import register_error_handlers
from .routes import (
    generation_router,
    health_router,
    internal_router,
    payments_router,
    photos_router,
    profile_router,
)
from .services import GeminiValidationEngine, QueueService, StorageGateway
from .services.payments import StorePurchaseVerifier, StripeCheckout

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting DreamBoat API...")
    await init_db()
    logger.info("Database initialized")

    storage = StorageGateway(settings)
    storage.ensure_bucket()
    app.state.storage = storage
    app.state.queue = QueueService(settings)
    app.state.validation_engine = GeminiValidationEngine(settings, storage)
    app.state.purchase_verifier = StorePurchaseVerifier(settings)
    app.state.stripe_checkout = StripeCheckout(settings)

    yield

    # Shutdown
    logger.info("Shutting down DreamBoat API...")
    await app.state.purchase_verifier.aclose()
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="AI profile photo generator",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Include routers
app.include_router(health_router)
app.include_router(photos_router, prefix=settings.api_prefix)
app.include_router(generation_router, prefix=settings.api_prefix)
app.include_router(payments_router, prefix=settings.api_prefix)
app.include_router(profile_router, prefix=settings.api_prefix)
app.include_router(internal_router, prefix=settings.api_prefix)

# Prometheus metrics endpoint
Instrumentator().instrument(app).expose(app, endpoint="/metrics")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dreamboat_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
