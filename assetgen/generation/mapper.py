"""Result mapper: terminal provider payload -> canonical result entity.

Pure functions. Timestamps come from the payload, never from the clock, so
equal payloads always map to equal results.
"""

from typing import Optional, Tuple

from assetgen.jobs.models import (
    AssetMetadata, ImageConfig, ImageResult, MeshConfig, MeshFormat, MeshResult,
)
from assetgen.providers.payloads import MeshyTaskStatus, SkyboxStatus, parse_timestamp


IMAGE_FORMAT = "png"

# Per-asset estimates, used when no cost is configured
DEFAULT_IMAGE_COST = 0.03
DEFAULT_MESH_COST = 0.05


def map_image_result(
    status: SkyboxStatus,
    prompt: str,
    config: Optional[ImageConfig] = None,
    estimated_cost: float = DEFAULT_IMAGE_COST,
) -> ImageResult:
    """Map a completed skybox status (with a file URL) to an ImageResult."""
    if not status.file_url:
        raise ValueError(f"Skybox generation {status.id} has no file URL")
    config = config or ImageConfig()
    generation_ms = None
    if status.created_at and status.updated_at:
        generation_ms = int((status.updated_at - status.created_at).total_seconds() * 1000)

    return ImageResult(
        id=status.id,
        download_url=status.file_url,
        thumbnail_url=status.thumbnail_url or status.file_url,
        prompt=status.prompt or prompt,
        style_id=config.style_id or status.style_id,
        negative_prompt=config.negative_prompt,
        format=IMAGE_FORMAT,
        created_at=status.created_at,
        updated_at=status.updated_at or status.created_at,
        metadata=AssetMetadata(
            size=status.size,
            style_name=status.style_name,
            generation_time_ms=generation_ms,
            estimated_cost=estimated_cost,
        ),
    )


def pick_model_url(status: MeshyTaskStatus, fmt: MeshFormat) -> Tuple[MeshFormat, Optional[str]]:
    """URL for the requested format, falling back to GLB then OBJ."""
    for candidate in (fmt, MeshFormat.GLB, MeshFormat.OBJ):
        url = status.model_urls.get(candidate.value)
        if url:
            return candidate, url
    return fmt, None


def map_mesh_result(
    status: MeshyTaskStatus,
    prompt: str,
    config: Optional[MeshConfig] = None,
    estimated_cost: float = DEFAULT_MESH_COST,
) -> MeshResult:
    """Map a SUCCEEDED Meshy task to a MeshResult."""
    config = config or MeshConfig()
    fmt, download_url = pick_model_url(status, config.format)
    if not download_url:
        raise ValueError(f"Meshy task {status.id} has no downloadable model URL")

    generation_ms = None
    if status.started_at and status.finished_at:
        generation_ms = status.finished_at - status.started_at
    finished = status.finished_at or status.started_at or status.created_at

    return MeshResult(
        id=status.id,
        download_url=download_url,
        preview_url=status.video_url,
        thumbnail_url=status.thumbnail_url,
        prompt=status.prompt or prompt,
        format=fmt,
        quality=config.quality,
        style=config.style,
        model_variant=config.model_variant,
        topology=config.topology,
        model_urls=dict(status.model_urls),
        created_at=parse_timestamp(status.created_at),
        updated_at=parse_timestamp(finished),
        metadata=AssetMetadata(
            polycount=config.target_polycount,
            generation_time_ms=generation_ms,
            estimated_cost=estimated_cost,
        ),
    )
