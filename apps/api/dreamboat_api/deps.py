"""
Dependencies

Per-request service construction. Long-lived collaborators (storage,
queue, validation engine, payment providers) are created once in the
application lifespan and kept on ``app.state``; services are built per
request around the request's database session.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import get_db
from .services import (
    CreditGate,
    CurationEngine,
    GenerationService,
    PhotoLifecycleManager,
    QueueService,
    StorageGateway,
)
from .services.payments import StorePurchaseVerifier, StripeCheckout


def get_storage(request: Request) -> StorageGateway:
    return request.app.state.storage


def get_queue(request: Request) -> QueueService:
    return request.app.state.queue


def get_validation_engine(request: Request):
    return request.app.state.validation_engine


def get_purchase_verifier(request: Request) -> StorePurchaseVerifier:
    return request.app.state.purchase_verifier


def get_stripe_checkout(request: Request) -> StripeCheckout:
    return request.app.state.stripe_checkout


def get_photo_manager(
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    engine=Depends(get_validation_engine),
    settings: Settings = Depends(get_settings),
) -> PhotoLifecycleManager:
    return PhotoLifecycleManager(db, storage, engine, settings)


def get_credit_gate(
    db: AsyncSession = Depends(get_db),
    verifier: StorePurchaseVerifier = Depends(get_purchase_verifier),
    checkout: StripeCheckout = Depends(get_stripe_checkout),
) -> CreditGate:
    return CreditGate(db, verifier, checkout)


def get_curation_engine(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> CurationEngine:
    return CurationEngine(db, settings.max_profile_photos)


def get_generation_service(
    db: AsyncSession = Depends(get_db),
    photos: PhotoLifecycleManager = Depends(get_photo_manager),
    credits: CreditGate = Depends(get_credit_gate),
    queue: QueueService = Depends(get_queue),
    curation: CurationEngine = Depends(get_curation_engine),
    settings: Settings = Depends(get_settings),
) -> GenerationService:
    return GenerationService(db, photos, credits, queue, curation, settings)
