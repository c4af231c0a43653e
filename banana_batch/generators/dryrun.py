"""
Offline generator that returns a placeholder image without calling any API.
"""

from typing import Union

from . import ImageGenerator
from ..models import GenerationOutput, ReferenceImage, TokenUsage
from ..pricing import ImageModel

# 1x1 transparent PNG
PLACEHOLDER_PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class DryRunGenerator(ImageGenerator):
    """Echoes a placeholder image and fixed token counts."""

    def __init__(self, input_tokens: int = 258, output_image_tokens: int = 1290):
        self.input_tokens = input_tokens
        self.output_image_tokens = output_image_tokens
        self.calls: list[str] = []

    def name(self) -> str:
        return "dryrun"

    async def generate(
        self,
        images: list[ReferenceImage],
        prompt_text: str,
        aspect_ratio: str = "4:5",
        image_size: str = "2K",
        model: Union[str, ImageModel] = ImageModel.NANO_BANANA,
        temperature: float = 1.0,
    ) -> GenerationOutput:
        self.calls.append(prompt_text)
        input_tokens = self.input_tokens * max(len(images), 1)
        return GenerationOutput(
            image_url=f"data:image/png;base64,{PLACEHOLDER_PNG_BASE64}",
            usage=TokenUsage(
                input_tokens=input_tokens,
                output_text_tokens=0,
                output_image_tokens=self.output_image_tokens,
                total_tokens=input_tokens + self.output_image_tokens,
            ),
        )
