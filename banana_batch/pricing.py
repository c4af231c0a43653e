"""
Per-model price table for the supported Gemini image models.

Each model is priced either per token (input, output text, output image) or
with a flat rate per generated image. The two shapes are separate types, so a
model can never carry both an output token rate and a flat image rate.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union

from .errors import BananaBatchError


class UnknownModelError(BananaBatchError, ValueError):
    """Model identifier is not in the price table."""
    pass


class ImageModel(Enum):
    """Supported image generation models."""

    NANO_BANANA = "gemini-2.5-flash-image"
    NANO_BANANA_PRO = "gemini-3-pro-image-preview"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def from_string(cls, value: Union[str, "ImageModel"]) -> "ImageModel":
        if isinstance(value, ImageModel):
            return value
        for model in cls:
            if model.value == value:
                return model
        raise UnknownModelError(
            f"Unknown model: {value}. Use one of: {', '.join(m.value for m in cls)}"
        )


_LABELS = {
    ImageModel.NANO_BANANA: "Nano Banana",
    ImageModel.NANO_BANANA_PRO: "Nano Banana Pro",
}

DEFAULT_MODEL = ImageModel.NANO_BANANA


@dataclass(frozen=True)
class TokenPricing:
    """USD per token."""

    input: float
    output_text: float
    output_image: float

    @property
    def output_image_flat(self) -> float:
        return 0.0


@dataclass(frozen=True)
class FlatImagePricing:
    """USD per generated image, with optional input token rate."""

    per_image: float
    input: float = 0.0

    @property
    def output_text(self) -> float:
        return 0.0

    @property
    def output_image(self) -> float:
        return 0.0

    @property
    def output_image_flat(self) -> float:
        return self.per_image


ModelPricing = Union[TokenPricing, FlatImagePricing]


PRICE_TABLE: dict[ImageModel, ModelPricing] = {
    ImageModel.NANO_BANANA: FlatImagePricing(per_image=0.039),
    ImageModel.NANO_BANANA_PRO: TokenPricing(
        input=2.00 / 1_000_000,
        output_text=12.00 / 1_000_000,
        output_image=120.00 / 1_000_000,
    ),
}


def get_pricing(model: Union[str, ImageModel]) -> ModelPricing:
    """Look up the price table entry for a model identifier."""
    return PRICE_TABLE[ImageModel.from_string(model)]


def call_cost(
    pricing: ModelPricing,
    input_tokens: int,
    output_text_tokens: int,
    output_image_tokens: int,
) -> float:
    """Cost of one generation call that produced a single image."""
    return (
        input_tokens * pricing.input
        + output_text_tokens * pricing.output_text
        + output_image_tokens * pricing.output_image
        + pricing.output_image_flat
    )
