"""Download boundary: fetching generated assets and naming their downloads.

Some provider CDNs refuse direct cross-origin downloads, so URLs on the
configured domains are fetched through the service's own proxy endpoint
first and fall back to the original URL if the proxy call fails.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote, urlparse

import httpx

from assetgen.config import settings
from assetgen.jobs.models import AssetKind, DownloadInfo, Job
from assetgen.providers.base import StorageError

logger = logging.getLogger(__name__)


def should_proxy(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return any(host == d or host.endswith("." + d) for d in settings.proxied_asset_domains)


def proxy_url(url: str) -> str:
    return f"{settings.proxy_base_url.rstrip('/')}/api/v1/proxy-asset?url={quote(url, safe='')}"


async def _get_bytes(client: httpx.AsyncClient, url: str) -> bytes:
    resp = await client.get(url, follow_redirects=True)
    resp.raise_for_status()
    if not resp.content:
        raise StorageError(f"Empty response body from {url[:100]}")
    return resp.content


async def fetch_asset(url: str, http_client: Optional[httpx.AsyncClient] = None) -> bytes:
    """Download an asset's bytes, through the proxy where configured."""
    client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    try:
        if should_proxy(url):
            try:
                return await _get_bytes(client, proxy_url(url))
            except (httpx.HTTPError, StorageError) as e:
                logger.warning("Proxy fetch failed for %s, trying direct: %s", url[:100], e)
        try:
            return await _get_bytes(client, url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise StorageError(f"Failed to fetch asset: {e}") from e
    finally:
        if http_client is None:
            await client.aclose()


def prompt_slug(prompt: str) -> str:
    """Lowercase alphanumeric slug of the first 30 characters."""
    slug = re.sub(r"[^a-z0-9\s]", "", prompt.lower())
    slug = re.sub(r"\s+", "-", slug)[:30]
    return slug.rstrip("-")


def download_filename(prompt: str, timestamp: str, kind: AssetKind, fmt: str) -> str:
    try:
        date = datetime.fromtimestamp(int(timestamp) / 1000, tz=timezone.utc)
    except (TypeError, ValueError):
        date = datetime.now(timezone.utc)
    return f"{prompt_slug(prompt)}-{kind.value}-{date.strftime('%Y-%m-%d')}.{fmt}"


def build_download_info(job: Job, kind: AssetKind) -> Optional[DownloadInfo]:
    """Download details for one of a job's assets, or None if it has none."""
    if kind == AssetKind.IMAGE:
        result = job.image_result
        url = job.image_url or (result.download_url if result else None)
        fmt = result.format if result else "png"
    else:
        result = job.mesh_result
        url = job.mesh_url or (result.download_url if result else None)
        fmt = result.format.value if result else "glb"
    if not url:
        return None

    timestamp = job.storage_timestamp or str(int(job.created_at.timestamp() * 1000))
    return DownloadInfo(
        filename=download_filename(job.prompt, timestamp, kind, fmt),
        url=url,
        format=fmt,
        kind=kind,
        size=(result.metadata.size or 0) if result else 0,
    )
