"""
Gemini image generator (Nano Banana / Nano Banana Pro) for Banana Batch.

Sends the composed prompt plus every reference image to the
generateContent endpoint and returns the first image as a data URL.
"""

import logging
from typing import Optional, Union

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from . import ImageGenerator
from ..errors import InvalidCredentialError, NoImageInResponseError, RemoteGenerationError
from ..models import GenerationOutput, ReferenceImage, TokenUsage
from ..pricing import ImageModel

logger = logging.getLogger(__name__)


GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"

# Messages the API uses for a bad or expired key
_CREDENTIAL_MARKERS = (
    "API_KEY_INVALID",
    "API key not valid",
    "API key expired",
    "Requested entity was not found",
)


def parse_usage(data: dict) -> TokenUsage:
    """Token usage from a generateContent response's usageMetadata."""
    meta = data.get("usageMetadata") or {}
    input_tokens = int(meta.get("promptTokenCount", 0) or 0)

    text_tokens = 0
    image_tokens = 0
    details = meta.get("candidatesTokensDetails") or []
    for detail in details:
        count = int(detail.get("tokenCount", 0) or 0)
        if detail.get("modality") == "IMAGE":
            image_tokens += count
        else:
            text_tokens += count
    if not details:
        image_tokens = int(meta.get("candidatesTokenCount", 0) or 0)

    # Thinking tokens are billed as text output
    text_tokens += int(meta.get("thoughtsTokenCount", 0) or 0)

    total = int(meta.get("totalTokenCount", 0) or 0) or input_tokens + text_tokens + image_tokens
    return TokenUsage(
        input_tokens=input_tokens,
        output_text_tokens=text_tokens,
        output_image_tokens=image_tokens,
        total_tokens=total,
    )


def extract_image_url(data: dict) -> str:
    """Return the first inline image of a response as a data URL."""
    for candidate in data.get("candidates") or []:
        content = candidate.get("content") or {}
        for part in content.get("parts") or []:
            inline_data = part.get("inlineData") or {}
            if inline_data.get("data"):
                mime_type = inline_data.get("mimeType") or "image/png"
                return f"data:{mime_type};base64,{inline_data['data']}"

    block_reason = (data.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        raise NoImageInResponseError(f"Prompt blocked: {block_reason}")

    candidates = data.get("candidates") or []
    if candidates and candidates[0].get("finishReason") in ("SAFETY", "IMAGE_SAFETY", "PROHIBITED_CONTENT"):
        raise NoImageInResponseError("Image generation blocked by safety filters")

    raise NoImageInResponseError()


def _error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error") or {}
    except ValueError:
        return response.text
    message = error.get("message") or response.text
    reasons = [d.get("reason") for d in error.get("details") or [] if isinstance(d, dict) and d.get("reason")]
    if reasons:
        message = f"{message} ({', '.join(reasons)})"
    return message


def raise_for_error(response: httpx.Response) -> None:
    """Map a failed HTTP response onto the generation error taxonomy."""
    if response.is_success:
        return
    message = _error_message(response)
    if response.status_code in (401, 403) or any(m in message for m in _CREDENTIAL_MARKERS):
        raise InvalidCredentialError(f"Gemini API error {response.status_code}: {message}")
    raise RemoteGenerationError(
        f"Gemini API error {response.status_code}: {message}",
        status_code=response.status_code,
    )


class GeminiImageGenerator(ImageGenerator):
    """
    Gemini image generator.

    One instance serves both Nano Banana (gemini-2.5-flash-image, flat rate)
    and Nano Banana Pro (gemini-3-pro-image-preview, token priced); the model
    is chosen per call.
    """

    def __init__(
        self,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 180.0,
    ):
        """
        Initialize the Gemini generator.

        Args:
            api_key: Google API key
            client: Optional pre-built client (tests pass one with a mock transport)
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise InvalidCredentialError(
                "Google API key not provided. Set GEMINI_API_KEY or GOOGLE_API_KEY."
            )
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def name(self) -> str:
        return "gemini"

    def build_payload(
        self,
        images: list[ReferenceImage],
        prompt_text: str,
        aspect_ratio: str,
        image_size: str,
        model: ImageModel,
        temperature: float,
    ) -> dict:
        parts = [{"text": prompt_text}]
        for image in images:
            parts.append({
                "inlineData": {
                    "mimeType": image.mime_type,
                    "data": image.to_base64(),
                }
            })

        image_config = {"aspectRatio": aspect_ratio}
        # Only the Pro model accepts an output size
        if model == ImageModel.NANO_BANANA_PRO:
            image_config["imageSize"] = image_size

        return {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "temperature": temperature,
                "imageConfig": image_config,
            },
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((
            httpx.ConnectTimeout,
            httpx.ReadTimeout,
            httpx.NetworkError,
        )),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _post_with_retry(self, model: ImageModel, payload: dict) -> httpx.Response:
        """POST with automatic retry on transient network failures."""
        return await self._client.post(
            f"{GEMINI_API_BASE}/{model.value}:generateContent",
            params={"key": self.api_key},
            json=payload,
            headers={"Content-Type": "application/json"},
        )

    async def generate(
        self,
        images: list[ReferenceImage],
        prompt_text: str,
        aspect_ratio: str = "4:5",
        image_size: str = "2K",
        model: Union[str, ImageModel] = ImageModel.NANO_BANANA,
        temperature: float = 1.0,
    ) -> GenerationOutput:
        model = ImageModel.from_string(model)
        payload = self.build_payload(images, prompt_text, aspect_ratio, image_size, model, temperature)

        try:
            response = await self._post_with_retry(model, payload)
        except httpx.HTTPError as e:
            raise RemoteGenerationError(f"Gemini API request failed: {e}") from e

        raise_for_error(response)

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteGenerationError(f"Gemini API returned invalid JSON: {e}") from e

        if data.get("error"):
            raise RemoteGenerationError(f"Gemini API error: {data['error'].get('message', 'Unknown error')}")

        image_url = extract_image_url(data)
        usage = parse_usage(data)
        logger.debug("Gemini %s returned image, %d tokens", model.value, usage.total_tokens)
        return GenerationOutput(image_url=image_url, usage=usage)

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
