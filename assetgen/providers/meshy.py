"""
Meshy text-to-3d client.

Uses the Meshy v2 REST API directly via httpx.
API key: set MESHY_API_KEY or pass it to the constructor.
"""
import logging
from typing import Optional

import httpx

from assetgen.config import settings
from assetgen.jobs.models import MeshConfig
from assetgen.providers.base import (
    ProviderAPIError, ProviderError, ProviderTransportError, check_response,
)
from assetgen.providers.payloads import MeshyTaskStatus

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Meshy"


class MeshyClient:
    """Mesh-family provider backed by the Meshy cloud API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else (settings.meshy_api_key or "")
        self.base_url = (base_url or settings.meshy_api_base).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self._http = http_client

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self):
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if not self.is_configured():
            raise ProviderAPIError("Meshy service is not configured (missing API key)")
        url = f"{self.base_url}{path}"
        try:
            if self._http is not None:
                return await self._http.request(method, url, headers=self._headers(), **kwargs)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TransportError as e:
            raise ProviderTransportError(f"Meshy network error: {e}") from e

    async def submit(self, prompt: str, config: MeshConfig) -> str:
        """Start a preview text-to-3d task. Returns the task id."""
        # Preview mode: untextured geometry, the cheapest tier
        payload = {
            "mode": "preview",
            "prompt": prompt.strip(),
            "art_style": config.style,
            "ai_model": config.model_variant,
            "topology": config.topology,
            "target_polycount": config.target_polycount,
            "should_remesh": True,
            "symmetry_mode": "auto",
            "moderation": False,
        }
        logger.info("Submitting text-to-3D task (%s): %.50s", config.model_variant, prompt)
        resp = await self._request("POST", "/text-to-3d", json=payload)
        check_response(resp, PROVIDER_NAME)
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderAPIError(f"Meshy returned invalid JSON: {e}") from e
        task_id = data.get("result") if isinstance(data, dict) else None
        if not task_id:
            raise ProviderError("No task ID returned from Meshy API")
        logger.info("Meshy task submitted: %s", task_id)
        return str(task_id)

    async def get_status(self, task_id: str) -> MeshyTaskStatus:
        resp = await self._request("GET", f"/text-to-3d/{task_id}")
        check_response(resp, PROVIDER_NAME, tracking_id=task_id)
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderAPIError(f"Meshy returned invalid JSON: {e}") from e
        return MeshyTaskStatus.from_payload(data, task_id=task_id)
