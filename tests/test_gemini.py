"""Tests for the Gemini image generator."""

import json

import httpx
import pytest

from banana_batch.errors import (
    InvalidCredentialError,
    NoImageInResponseError,
    RemoteGenerationError,
)
from banana_batch.generators.dryrun import DryRunGenerator
from banana_batch.generators.gemini import (
    GeminiImageGenerator,
    extract_image_url,
    parse_usage,
)
from banana_batch.models import ReferenceImage
from banana_batch.pricing import ImageModel


IMAGE = ReferenceImage(name="face.png", data=b"\x89PNG", mime_type="image/png")

SUCCESS = {
    "candidates": [{
        "content": {"parts": [
            {"text": "Here you go"},
            {"inlineData": {"mimeType": "image/png", "data": "iVBORw0K"}},
        ]},
        "finishReason": "STOP",
    }],
    "usageMetadata": {
        "promptTokenCount": 300,
        "candidatesTokenCount": 1300,
        "candidatesTokensDetails": [
            {"modality": "TEXT", "tokenCount": 10},
            {"modality": "IMAGE", "tokenCount": 1290},
        ],
        "totalTokenCount": 1600,
    },
}


def make_generator(handler, requests=None):
    def record(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return GeminiImageGenerator(api_key="test-key", client=client)


class TestParseUsage:
    def test_splits_by_modality(self):
        usage = parse_usage(SUCCESS)
        assert usage.input_tokens == 300
        assert usage.output_text_tokens == 10
        assert usage.output_image_tokens == 1290
        assert usage.total_tokens == 1600

    def test_without_details_counts_candidates_as_image(self):
        usage = parse_usage({"usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 1290}})
        assert usage.output_image_tokens == 1290
        assert usage.total_tokens == 1295

    def test_thinking_tokens_count_as_text(self):
        usage = parse_usage({"usageMetadata": {"candidatesTokenCount": 100, "thoughtsTokenCount": 40}})
        assert usage.output_text_tokens == 40

    def test_missing_metadata(self):
        assert parse_usage({}).total_tokens == 0


class TestExtractImage:
    def test_first_inline_image(self):
        assert extract_image_url(SUCCESS) == "data:image/png;base64,iVBORw0K"

    def test_text_only_response(self):
        data = {"candidates": [{"content": {"parts": [{"text": "I can't"}]}}]}
        with pytest.raises(NoImageInResponseError, match="No image data found in response"):
            extract_image_url(data)

    def test_blocked_prompt(self):
        with pytest.raises(NoImageInResponseError, match="SAFETY"):
            extract_image_url({"promptFeedback": {"blockReason": "SAFETY"}})


class TestGenerate:
    @pytest.mark.asyncio
    async def test_success(self):
        requests = []
        generator = make_generator(lambda r: httpx.Response(200, json=SUCCESS), requests)

        output = await generator.generate([IMAGE], "Edit:\nwide", "16:9", "2K", ImageModel.NANO_BANANA, 0.7)
        await generator.aclose()

        assert output.image_url == "data:image/png;base64,iVBORw0K"
        assert output.usage.output_image_tokens == 1290

        request = requests[0]
        assert request.url.path.endswith("/gemini-2.5-flash-image:generateContent")
        assert request.url.params["key"] == "test-key"
        body = json.loads(request.content)
        parts = body["contents"][0]["parts"]
        assert parts[0] == {"text": "Edit:\nwide"}
        assert parts[1]["inlineData"] == {"mimeType": "image/png", "data": IMAGE.to_base64()}
        config = body["generationConfig"]
        assert config["temperature"] == 0.7
        assert config["responseModalities"] == ["TEXT", "IMAGE"]
        assert config["imageConfig"] == {"aspectRatio": "16:9"}

    @pytest.mark.asyncio
    async def test_pro_model_sends_image_size(self):
        requests = []
        generator = make_generator(lambda r: httpx.Response(200, json=SUCCESS), requests)
        await generator.generate([IMAGE], "p", "4:5", "4K", "gemini-3-pro-image-preview", 1.0)

        body = json.loads(requests[0].content)
        assert body["generationConfig"]["imageConfig"] == {"aspectRatio": "4:5", "imageSize": "4K"}

    @pytest.mark.asyncio
    async def test_rejected_key(self):
        generator = make_generator(lambda r: httpx.Response(
            400,
            json={"error": {
                "code": 400,
                "message": "API key not valid. Please pass a valid API key.",
                "details": [{"reason": "API_KEY_INVALID"}],
            }},
        ))
        with pytest.raises(InvalidCredentialError):
            await generator.generate([IMAGE], "p")

    @pytest.mark.asyncio
    async def test_forbidden_is_credential_error(self):
        generator = make_generator(lambda r: httpx.Response(403, json={"error": {"message": "denied"}}))
        with pytest.raises(InvalidCredentialError):
            await generator.generate([IMAGE], "p")

    @pytest.mark.asyncio
    async def test_server_error(self):
        generator = make_generator(lambda r: httpx.Response(500, text="internal"))
        with pytest.raises(RemoteGenerationError) as excinfo:
            await generator.generate([IMAGE], "p")
        assert excinfo.value.status_code == 500
        assert not isinstance(excinfo.value, InvalidCredentialError)

    @pytest.mark.asyncio
    async def test_no_image(self):
        generator = make_generator(lambda r: httpx.Response(200, json={"candidates": []}))
        with pytest.raises(NoImageInResponseError):
            await generator.generate([IMAGE], "p")

    def test_empty_key(self):
        with pytest.raises(InvalidCredentialError):
            GeminiImageGenerator(api_key="")


class TestDryRun:
    @pytest.mark.asyncio
    async def test_placeholder_output(self):
        generator = DryRunGenerator()
        output = await generator.generate([IMAGE, IMAGE], "prompt")
        assert output.image_url.startswith("data:image/png;base64,")
        assert output.usage.input_tokens == 516
        assert output.usage.total_tokens == 516 + 1290
        assert generator.calls == ["prompt"]
