"""Asset proxy: streams a provider-hosted file back through this service."""

import logging
from urllib.parse import unquote, urlparse

import httpx
from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from assetgen.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

_FORWARD_HEADERS = {
    "User-Agent": "assetgen-proxy/0.1",
    "Accept": "*/*",
    "Accept-Encoding": "identity",
}


async def _close(response: httpx.Response, client: httpx.AsyncClient):
    await response.aclose()
    await client.aclose()


@router.get("/proxy-asset")
async def proxy_asset(url: str = Query(..., min_length=1)):
    """Stream the asset at ``url``. Upstream 4xx statuses are passed through."""
    target = unquote(url)
    if urlparse(target).scheme not in ("http", "https"):
        raise HTTPException(status_code=400, detail="Only http(s) URLs can be proxied")

    logger.info("Proxying asset %s", target[:100])
    client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    try:
        upstream = await client.send(
            client.build_request("GET", target, headers=_FORWARD_HEADERS),
            stream=True,
            follow_redirects=True,
        )
    except httpx.HTTPError as e:
        await client.aclose()
        logger.warning("Asset proxy error for %s: %s", target[:100], e)
        raise HTTPException(status_code=502, detail=f"Failed to fetch asset: {e}")

    if upstream.status_code >= 400:
        body = (await upstream.aread())[:200].decode("utf-8", errors="replace")
        await _close(upstream, client)
        logger.warning("Asset proxy got %d for %s", upstream.status_code, target[:100])
        raise HTTPException(
            status_code=upstream.status_code,
            detail=f"Failed to fetch asset: {upstream.status_code} {body}".strip(),
        )

    return StreamingResponse(
        upstream.aiter_bytes(),
        media_type=upstream.headers.get("content-type", "application/octet-stream"),
        headers={"Cache-Control": "public, max-age=3600"},
        background=BackgroundTask(_close, upstream, client),
    )
