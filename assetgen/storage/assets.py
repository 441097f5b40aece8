"""Durable copies of generated assets in Supabase Storage.

Provider download links expire, so each finished asset is copied into the
storage bucket. The copy is best effort: when it fails the run keeps the
provider's link.
"""

import asyncio
import logging
from typing import Optional

from assetgen.config import settings
from assetgen.jobs.models import AssetKind
from assetgen.providers.base import StorageError
from assetgen.storage.downloads import fetch_asset

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "hdr": "image/vnd.radiance",
    "glb": "model/gltf-binary",
    "obj": "model/obj",
    "usdz": "model/vnd.usdz+zip",
    "fbx": "application/octet-stream",
}


def asset_path(requester_id: str, timestamp: str, job_id: str, kind: AssetKind, fmt: str) -> str:
    return f"user/{requester_id}/{timestamp}/{job_id}/{kind.value}.{fmt}"


class SupabaseAssetStore:
    """Uploads bytes to a storage bucket and returns their public URL."""

    def __init__(self, client=None, bucket: Optional[str] = None):
        self._client = client
        self.bucket = bucket or settings.storage_bucket

    def _supabase(self):
        if self._client is None:
            from assetgen.db.supabase_client import get_supabase
            self._client = get_supabase()
        return self._client

    def _upload_sync(self, path: str, data: bytes, content_type: str) -> str:
        bucket = self._supabase().storage.from_(self.bucket)
        bucket.upload(path, data, file_options={"content-type": content_type, "upsert": "true"})
        return bucket.get_public_url(path)

    async def store(self, data: bytes, path: str, content_type: str) -> str:
        loop = asyncio.get_running_loop()
        try:
            url = await loop.run_in_executor(None, self._upload_sync, path, data, content_type)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Upload to {self.bucket}/{path} failed: {e}") from e
        if not url:
            raise StorageError(f"No public URL returned for {self.bucket}/{path}")
        return url.rstrip("?")


class AssetPersistenceAdapter:
    """Copies an asset from its provider link into durable storage."""

    def __init__(self, store: Optional[SupabaseAssetStore] = None, fetch=fetch_asset):
        self.store = store or SupabaseAssetStore()
        self._fetch = fetch

    async def persist(
        self,
        ephemeral_url: str,
        job_id: str,
        requester_id: str,
        timestamp: str,
        kind: AssetKind,
        fmt: str,
    ) -> str:
        """Return the durable URL, or ``ephemeral_url`` if the copy failed."""
        path = asset_path(requester_id, timestamp, job_id, kind, fmt)
        try:
            data = await self._fetch(ephemeral_url)
            url = await self.store.store(data, path, CONTENT_TYPES.get(fmt, "application/octet-stream"))
        except StorageError as e:
            logger.warning("Keeping provider URL for %s of job %s: %s", kind.value, job_id, e)
            return ephemeral_url
        except Exception:
            logger.exception("Unexpected error storing %s for job %s, keeping provider URL", kind.value, job_id)
            return ephemeral_url
        logger.info("Stored %s for job %s at %s (%d bytes)", kind.value, job_id, path, len(data))
        return url
