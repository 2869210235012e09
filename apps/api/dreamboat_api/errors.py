"""
Domain Errors

Error taxonomy shared by the services and mapped to HTTP responses.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

ALREADY_STARTED_MESSAGE = "You may already have started a generation"


class DreamboatError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 400
    code = "error"
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(DreamboatError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class InvalidUpload(DreamboatError):
    status_code = 400
    code = "invalid_upload"
    default_message = "Upload rejected"


class QuotaExceeded(DreamboatError):
    status_code = 409
    code = "quota_exceeded"
    default_message = "Photo limit reached. Replace or remove a photo first."


class AlreadyInProgress(DreamboatError):
    status_code = 409
    code = "already_in_progress"
    default_message = "Validation already in progress for this photo"


class InvalidStateTransition(DreamboatError):
    status_code = 409
    code = "invalid_state_transition"
    default_message = "Operation not allowed in the current state"


class PhotosNotReady(DreamboatError):
    status_code = 409
    code = "photos_not_ready"
    default_message = (
        "Photos are not ready. Wait for validation to finish, "
        "then bypass or replace any photo that failed."
    )


class CreditNotAvailable(DreamboatError):
    status_code = 402
    code = "credit_not_available"
    default_message = "A purchase is required to start a generation"


class CreditNotFound(DreamboatError):
    status_code = 404
    code = "credit_not_found"
    default_message = "Credit not found"


class CreditAlreadyRedeemed(DreamboatError):
    status_code = 409
    code = "credit_already_redeemed"
    default_message = ALREADY_STARTED_MESSAGE


class GenerationInProgress(DreamboatError):
    status_code = 409
    code = "generation_in_progress"
    default_message = ALREADY_STARTED_MESSAGE


class InvalidSelection(DreamboatError):
    status_code = 422
    code = "invalid_selection"
    default_message = "Invalid profile photo selection"


class InvalidPurchase(DreamboatError):
    status_code = 400
    code = "invalid_purchase"
    default_message = "Purchase could not be verified"


class ExternalServiceTimeout(DreamboatError):
    status_code = 503
    code = "external_service_timeout"
    default_message = "An external service did not respond in time"


class PartialGenerationFailure(DreamboatError):
    """Logged when a batch finishes with fewer images than expected. Never raised to clients."""

    status_code = 200
    code = "partial_generation_failure"
    default_message = "Some scenarios failed to generate"


async def dreamboat_error_handler(request: Request, exc: DreamboatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DreamboatError, dreamboat_error_handler)
