"""
Validation Engine

Judges whether a photo is suitable for generation using Gemini.
The engine is unreliable by contract: any upstream problem surfaces as
ExternalServiceTimeout and the caller decides how to retry or fall back.
"""

import asyncio
import io
import json
import logging
import re
from dataclasses import dataclass, field

import google.generativeai as genai
from PIL import Image as PILImage

from ..config import Settings
from ..errors import ExternalServiceTimeout
from ..models.photo import WarningKind
from .storage import StorageGateway

logger = logging.getLogger(__name__)


VALIDATION_PROMPT = """Analyze this photo for dating profile suitability. Evaluate the following criteria:

1. MULTIPLE_PEOPLE: Is there more than one person clearly visible in this photo?
2. FACE_VISIBILITY: Is the main subject's face completely covered, obscured, or significantly blurred? (Sunglasses are OK, but masks, heavy blur, or turned away are not)
3. LIGHTING: Is the lighting so dark that the main subject's face is not clearly visible?
4. SCREENSHOT: Is this a screenshot of another photo, social media post, or screen capture? (UI elements, status bars, photo-of-a-screen artifacts, device bezels)
5. FACE_PARTIALLY_COVERED: Are key facial features partially covered or hidden? (hand over mouth, hair over eyes, chin cut off - sunglasses alone are OK)

Respond with ONLY a valid JSON object in this exact format, no additional text:
{"multiple_people": true or false, "face_covered_or_blurred": true or false, "poor_lighting": true or false, "is_screenshot": true or false, "face_partially_covered": true or false}"""

# Model answer keys, in the order warnings are reported
ANSWER_TO_WARNING = {
    "multiple_people": WarningKind.MULTIPLE_SUBJECTS,
    "face_covered_or_blurred": WarningKind.FACE_OBSCURED,
    "poor_lighting": WarningKind.POOR_LIGHTING,
    "is_screenshot": WarningKind.IS_SCREENSHOT,
    "face_partially_covered": WarningKind.FACE_PARTIALLY_OBSCURED,
}

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class ValidationVerdict:
    """Outcome of one validation check."""
    is_valid: bool
    warnings: list[str] = field(default_factory=list)


def parse_verdict(response_text: str) -> ValidationVerdict:
    """
    Turn the model's JSON answer into a verdict.

    Raises:
        ValueError: if the text holds no parseable JSON object
    """
    match = _JSON_OBJECT.search(response_text or "")
    if not match:
        raise ValueError(f"Invalid JSON response from Gemini: {response_text!r}")

    answer = json.loads(match.group(0))
    warnings = [
        kind.value for key, kind in ANSWER_TO_WARNING.items() if bool(answer.get(key))
    ]
    return ValidationVerdict(is_valid=not warnings, warnings=warnings)


class GeminiValidationEngine:
    """Photo suitability checks backed by a Gemini vision model."""

    def __init__(self, settings: Settings, storage: StorageGateway, model=None):
        self.settings = settings
        self.storage = storage
        if model is None:
            genai.configure(api_key=settings.gemini_api_key)
            model = genai.GenerativeModel(settings.validation_model)
        self.model = model

    async def check(self, storage_key: str) -> ValidationVerdict:
        """
        Validate the image stored at ``storage_key``.

        Args:
            storage_key: Object key of the photo

        Returns:
            ValidationVerdict with zero or more warnings

        Raises:
            ExternalServiceTimeout: on download, model or parse failure
        """
        try:
            image_bytes = await asyncio.to_thread(self.storage.download_bytes, storage_key)
            image = PILImage.open(io.BytesIO(image_bytes))
            if image.mode != "RGB":
                image = image.convert("RGB")

            response = await self.model.generate_content_async([VALIDATION_PROMPT, image])
            if not response.candidates:
                raise RuntimeError("Gemini returned no candidates")

            verdict = parse_verdict(response.text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Validation check failed for {storage_key}: {e}")
            raise ExternalServiceTimeout(f"Validation service unavailable: {e}") from e

        logger.info(
            f"Validated {storage_key}: valid={verdict.is_valid} warnings={verdict.warnings}"
        )
        return verdict
