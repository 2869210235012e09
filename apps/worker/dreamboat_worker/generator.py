"""
Image Generator

Places the subject of the reference photos into a scenario using a
Gemini image model.
"""

import io
import logging

import google.generativeai as genai
from PIL import Image as PILImage

from dreamboat_shared.scenarios import get_prompt_for_scenario

from .config import Settings

logger = logging.getLogger(__name__)

IDENTITY_INSTRUCTIONS = """Generate a photorealistic photo of the SAME person shown in the reference images.

CRITICAL REQUIREMENTS - identity fidelity:
- Preserve the person's face, skin tone, hair and body type exactly
- Exactly one person in the frame
- Natural, flattering composition suitable for a dating profile

Scene:
{prompt}

Avoid: {negative}"""


class GenerationError(Exception):
    """Raised when the model returns no usable image."""


class ImageGenerator:
    """Scenario image generation backed by Gemini."""

    def __init__(self, settings: Settings, model=None):
        self.settings = settings
        if model is None:
            genai.configure(api_key=settings.gemini_api_key)
            model = genai.GenerativeModel(settings.generation_model)
        self.model = model

    @staticmethod
    def load_reference(image_bytes: bytes) -> PILImage.Image:
        image = PILImage.open(io.BytesIO(image_bytes))
        if image.mode != "RGB":
            image = image.convert("RGB")
        return image

    def generate(self, scenario: str, references: list[PILImage.Image]) -> bytes:
        """
        Generate one image for a scenario.

        Args:
            scenario: Scenario id from the shared catalog
            references: Reference photos of the subject

        Returns:
            JPEG bytes

        Raises:
            GenerationError: response held no image
        """
        prompt, negative = get_prompt_for_scenario(scenario)
        content = [IDENTITY_INSTRUCTIONS.format(prompt=prompt, negative=negative)]
        content.extend(references[: self.settings.max_reference_photos])

        response = self.model.generate_content(
            content,
            request_options={"timeout": self.settings.generation_timeout_seconds},
        )

        if not response.candidates:
            raise GenerationError("Gemini returned no candidates")

        for part in response.candidates[0].content.parts:
            if getattr(part, "inline_data", None) and part.inline_data.data:
                return self._to_jpeg(part.inline_data.data)

        raise GenerationError("Gemini response did not contain an image")

    def _to_jpeg(self, image_bytes: bytes) -> bytes:
        """Validate the returned bytes and re-encode as JPEG."""
        img = PILImage.open(io.BytesIO(image_bytes))
        img.verify()
        img = PILImage.open(io.BytesIO(image_bytes))
        if img.mode != "RGB":
            img = img.convert("RGB")
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=self.settings.output_jpeg_quality)
        return buffer.getvalue()
