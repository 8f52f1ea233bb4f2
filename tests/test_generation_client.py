import asyncio
import base64
import json

import httpx
import pytest

from converter_backend.exceptions import DownloadFailed, GenerationFailed, QuotaExceeded
from converter_backend.generation_client import GeneratedAssetRef, GeneratedImage, ImageGenerationClient

ENDPOINT = "https://router.test/fal-ai/qwen-image"


def _client(handler) -> ImageGenerationClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ImageGenerationClient(http, api_key="hf_test", endpoint=ENDPOINT)


class TestSubmitPrompt:
    def test_returns_first_image_url(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"images": [{"url": "https://cdn.test/out.png"}]})

        ref = asyncio.run(_client(handler).submit_prompt("a lighthouse at dusk"))

        assert ref == GeneratedAssetRef(url="https://cdn.test/out.png")
        assert seen["auth"] == "Bearer hf_test"
        assert seen["body"] == {"prompt": "a lighthouse at dusk", "sync_mode": True}

    def test_402_is_quota_exceeded(self) -> None:
        client = _client(lambda request: httpx.Response(402, json={"error": "credits"}))

        with pytest.raises(QuotaExceeded) as exc_info:
            asyncio.run(client.submit_prompt("a cat"))

        assert exc_info.value.to_payload()["success"] is False

    def test_other_errors_are_generation_failures(self) -> None:
        client = _client(lambda request: httpx.Response(422, json={"error": "bad prompt"}))

        with pytest.raises(GenerationFailed) as exc_info:
            asyncio.run(client.submit_prompt("a cat"))

        assert exc_info.value.status_code == 400
        assert exc_info.value.details == {"error": "bad prompt"}

    @pytest.mark.parametrize(
        "body",
        [{}, {"images": []}, {"images": [{"url": ""}]}, {"images": {"url": "https://cdn.test/out.png"}}, ["x"]],
    )
    def test_empty_result_is_generation_failure(self, body) -> None:
        client = _client(lambda request: httpx.Response(200, json=body))

        with pytest.raises(GenerationFailed, match="Image generation failed") as exc_info:
            asyncio.run(client.submit_prompt("a cat"))

        assert "empty result" in exc_info.value.details


class TestFetchBytes:
    def test_downloads_image(self) -> None:
        client = _client(lambda request: httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"}))

        image = asyncio.run(client.fetch_bytes(GeneratedAssetRef(url="https://cdn.test/out.png")))

        assert image.content == b"\x89PNG"
        assert image.data_uri == "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()

    def test_non_200_is_download_failure(self) -> None:
        client = _client(lambda request: httpx.Response(404))

        with pytest.raises(DownloadFailed):
            asyncio.run(client.fetch_bytes(GeneratedAssetRef(url="https://cdn.test/gone.png")))


def test_data_uri_uses_media_type() -> None:
    image = GeneratedImage(content=b"abc", media_type="image/jpeg")
    assert image.data_uri == "data:image/jpeg;base64,YWJj"
