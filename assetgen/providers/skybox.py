"""
Blockade Labs skybox client.

Submits panorama generations and reads their status over the REST API.
API key: set BLOCKADE_API_KEY or pass it to the constructor.
"""
import logging
from typing import Optional

import httpx

from assetgen.config import settings
from assetgen.providers.base import (
    ProviderAPIError, ProviderError, ProviderTransportError, check_response,
)
from assetgen.providers.payloads import SkyboxStatus

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Skybox"


class SkyboxClient:
    """Image-family provider backed by the Blockade Labs skybox API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else (settings.blockade_api_key or "")
        self.base_url = (base_url or settings.blockade_api_base).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self._http = http_client

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self):
        return {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if not self.is_configured():
            raise ProviderAPIError("Skybox service is not configured (missing API key)")
        url = f"{self.base_url}{path}"
        try:
            if self._http is not None:
                return await self._http.request(method, url, headers=self._headers(), **kwargs)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TransportError as e:
            raise ProviderTransportError(f"Skybox network error: {e}") from e

    async def submit(
        self,
        prompt: str,
        style_id: str,
        negative_prompt: Optional[str] = None,
    ) -> str:
        """Start a generation. Returns the provider generation id."""
        payload = {
            "prompt": prompt,
            "style_id": int(style_id) if str(style_id).isdigit() else style_id,
            "negative_prompt": negative_prompt or "",
        }
        logger.info("Submitting skybox generation (style %s): %.50s", style_id, prompt)
        resp = await self._request("POST", "/skybox", json=payload)
        check_response(resp, PROVIDER_NAME)
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderAPIError(f"Skybox returned invalid JSON: {e}") from e

        status = SkyboxStatus.from_payload(data)
        if not status.id:
            raise ProviderError("No generation ID returned from skybox API")
        logger.info("Skybox generation submitted: %s", status.id)
        return status.id

    async def get_status(self, generation_id: str) -> SkyboxStatus:
        resp = await self._request("GET", f"/skybox/generations/{generation_id}")
        check_response(resp, PROVIDER_NAME, tracking_id=generation_id)
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderAPIError(f"Skybox returned invalid JSON: {e}") from e
        return SkyboxStatus.from_payload(data, generation_id=generation_id)
