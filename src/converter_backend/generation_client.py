from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict

import httpx

from .configuration import Settings
from .exceptions import DownloadFailed, GenerationFailed, QuotaExceeded

logger = logging.getLogger(__name__)

QUOTA_MESSAGE = "You have exceeded your monthly API credits. Please upgrade plan or try later."


@dataclass(frozen=True)
class GeneratedAssetRef:
    url: str


@dataclass(frozen=True)
class GeneratedImage:
    content: bytes
    media_type: str = "image/png"

    @property
    def data_uri(self) -> str:
        encoded = base64.b64encode(self.content).decode("ascii")
        return f"data:{self.media_type};base64,{encoded}"


def _body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class ImageGenerationClient:
    """Text-to-image requests against the Hugging Face inference router."""

    def __init__(self, http: httpx.AsyncClient, api_key: str, endpoint: str) -> None:
        self._http = http
        self.api_key = api_key
        self.endpoint = endpoint

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImageGenerationClient":
        config = settings.image_generation
        http = httpx.AsyncClient(timeout=settings.providers.timeout_seconds)
        return cls(http, api_key=config.api_key, endpoint=config.endpoint)

    async def aclose(self) -> None:
        await self._http.aclose()

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    async def submit_prompt(self, text: str) -> GeneratedAssetRef:
        """
        Ask the provider for one image.

        Raises:
            QuotaExceeded: The provider answered 402
            GenerationFailed: Any other error status, or a success without an image URL
        """
        try:
            response = await self._http.post(
                self.endpoint,
                json={"prompt": text, "sync_mode": True},
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise GenerationFailed("Image generation failed", details=str(exc)) from exc

        if response.status_code == 402:
            logger.warning("Image generation quota exceeded")
            raise QuotaExceeded(QUOTA_MESSAGE)

        if response.is_error:
            logger.error(f"Generation provider error {response.status_code}: {response.text}")
            raise GenerationFailed("Hugging Face API error", details=_body(response), status_code=400)

        data = _body(response)
        images = data.get("images") if isinstance(data, dict) else None
        first = images[0] if isinstance(images, list) and images else None
        url = first.get("url") if isinstance(first, dict) else None
        if not url:
            raise GenerationFailed("Image generation failed", details="empty result: no image URL found in provider response")

        return GeneratedAssetRef(url=url)

    async def fetch_bytes(self, ref: GeneratedAssetRef) -> GeneratedImage:
        """
        Raises:
            DownloadFailed: The image URL did not answer 200
        """
        try:
            response = await self._http.get(ref.url)
        except httpx.HTTPError as exc:
            raise DownloadFailed("Failed to download generated image", details=str(exc)) from exc

        if response.status_code != 200:
            raise DownloadFailed(
                "Failed to download generated image",
                details=f"{response.status_code} {response.reason_phrase}",
            )

        media_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
        if not media_type.startswith("image/"):
            media_type = "image/png"
        return GeneratedImage(content=response.content, media_type=media_type)
