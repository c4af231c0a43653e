"""
Image generators for Banana Batch.
"""

from abc import ABC, abstractmethod
from typing import Union

from ..models import GenerationOutput, ReferenceImage
from ..pricing import ImageModel


class ImageGenerator(ABC):
    """Abstract base class for reference-image generators."""

    @abstractmethod
    async def generate(
        self,
        images: list[ReferenceImage],
        prompt_text: str,
        aspect_ratio: str,
        image_size: str,
        model: Union[str, ImageModel],
        temperature: float,
    ) -> GenerationOutput:
        """Generate one image from the reference images and a prompt.

        Args:
            images: Reference images, sent with every call
            prompt_text: Fully composed prompt
            aspect_ratio: e.g. "4:5"
            image_size: "1K", "2K" or "4K"
            model: Image model identifier
            temperature: Sampling temperature

        Returns:
            GenerationOutput with a data URL and the reported token usage

        Raises:
            InvalidCredentialError: The API key was rejected
            RemoteGenerationError: Any other API or network failure
            NoImageInResponseError: The response held no image
        """
        pass

    @abstractmethod
    def name(self) -> str:
        """Return the generator name."""
        pass

    async def aclose(self) -> None:
        pass


# Lazy imports to avoid loading all generators at startup
def get_gemini_generator():
    from .gemini import GeminiImageGenerator
    return GeminiImageGenerator


def get_dryrun_generator():
    from .dryrun import DryRunGenerator
    return DryRunGenerator
