"""Client for The Cat API image search endpoint."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .config import MAX_GALLERY_LIMIT, CatApiSettings
from .exceptions import UpstreamError
from .types import CatPhoto


logger = logging.getLogger(__name__)


def _primary_breed(image: dict[str, Any]) -> dict[str, Any]:
    breeds = image.get("breeds") or []
    if breeds and isinstance(breeds[0], dict):
        return breeds[0]
    return {}


def create_alt_text(image: dict[str, Any]) -> str:
    breed_name = _primary_breed(image).get("name")
    return f"猫の写真 ({breed_name})" if breed_name else "猫の写真"


def create_attribution(image: dict[str, Any]) -> str:
    breed_name = _primary_breed(image).get("name")
    if breed_name:
        return f"Image courtesy of The Cat API ― Breed: {breed_name}"
    return "Image courtesy of The Cat API"


def to_photo(image: Any) -> CatPhoto:
    """Project one upstream image record onto a CatPhoto."""

    if not isinstance(image, dict):
        raise UpstreamError(message="Cat API returned a non-object image record")
    image_id = image.get("id")
    url = image.get("url")
    if not isinstance(image_id, str) or not image_id or not isinstance(url, str) or not url:
        raise UpstreamError(message="Cat API image record is missing id or url", details={"record": image})
    breed = _primary_breed(image)
    return CatPhoto(
        id=image_id,
        url=url,
        alt=create_alt_text(image),
        attribution=create_attribution(image),
        breed_name=breed.get("name"),
        temperament=breed.get("temperament"),
        origin=breed.get("origin"),
        wikipedia_url=breed.get("wikipedia_url"),
    )


class CatApiClient:
    """Performs single, unretried GETs against The Cat API."""

    def __init__(self, settings: CatApiSettings, *, http_client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self._client = http_client or httpx.AsyncClient(timeout=settings.timeout_seconds)
        self._owns_client = http_client is None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.settings.api_key:
            headers["x-api-key"] = self.settings.api_key
        return headers

    async def _search(self, params: dict[str, str] | None = None) -> list[Any]:
        try:
            response = await self._client.get(self.settings.endpoint, params=params, headers=self._headers())
        except httpx.HTTPError as exc:
            raise UpstreamError(message=f"Cat API request failed: {exc}") from exc
        if not response.is_success:
            raise UpstreamError(
                message=f"Cat API request failed with status {response.status_code}",
                details={"status": response.status_code},
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(message="Cat API returned invalid JSON") from exc
        if not isinstance(payload, list):
            raise UpstreamError(message="Cat API returned unexpected data")
        return payload

    async def fetch_gallery(self, limit: int | None = None) -> list[CatPhoto]:
        """Fetch up to ``limit`` random cat photos that carry breed metadata."""

        limit = self.settings.default_limit if limit is None else limit
        if not 1 <= limit <= MAX_GALLERY_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_GALLERY_LIMIT}")
        payload = await self._search({"limit": str(limit), "has_breeds": "1", "order": "RAND"})
        photos = [to_photo(image) for image in payload[:limit]]
        logger.debug("fetched %d cat photos (limit=%d)", len(photos), limit)
        return photos

    async def fetch_random_image_url(self) -> str:
        """Fetch the URL of one random cat image."""

        payload = await self._search()
        if not payload:
            raise UpstreamError(message="Cat API returned unexpected data")
        first = payload[0]
        url = first.get("url") if isinstance(first, dict) else None
        if not isinstance(url, str) or not url:
            raise UpstreamError(message="Cat API response does not contain an image URL")
        return url

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
