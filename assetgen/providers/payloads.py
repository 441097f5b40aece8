"""Normalized shapes of raw provider status payloads.

Provider responses drift between API versions: fields move under ``data``
or ``result`` envelopes and switch between snake_case and camelCase. Each
payload is reduced here to a tagged, all-optional model so nothing past the
client layer ever touches a raw dict.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def _containers(payload: Any, envelopes: Iterable[str]) -> List[dict]:
    """Return the payload and any nested envelope dicts, in lookup order."""
    containers: List[dict] = []
    if isinstance(payload, dict):
        containers.append(payload)
        for key in envelopes:
            val = payload.get(key)
            if isinstance(val, dict):
                containers.append(val)
    return containers or [{}]


def _pick_first(containers: Iterable[dict], keys: Iterable[str], default=None):
    for c in containers:
        for k in keys:
            val = c.get(k)
            if val not in (None, "", [], {}):
                return val
    return default


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _error_message(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return _as_str(value.get("message") or value.get("error")) or None
    if value in (None, ""):
        return None
    return str(value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO string or epoch (seconds or milliseconds) into UTC."""
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


class SkyboxStatus(BaseModel):
    """Status of one Blockade Labs skybox generation."""
    model_config = ConfigDict(frozen=True)

    provider: Literal["blockade"] = "blockade"
    id: str
    status: str = ""
    file_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None
    style_id: Optional[str] = None
    style_name: Optional[str] = None
    prompt: Optional[str] = None
    size: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload: Any, generation_id: str = "") -> "SkyboxStatus":
        c = _containers(payload, ("data", "request", "result"))
        return cls(
            id=str(_pick_first(c, ("id", "generationId", "generation_id"), generation_id)),
            status=str(_pick_first(c, ("status",), "")).lower(),
            file_url=_pick_first(c, ("file_url", "fileUrl", "imageUrl")),
            thumbnail_url=_pick_first(c, ("thumbnail_url", "thumb_url", "thumbnailUrl")),
            error_message=_error_message(
                _pick_first(c, ("error_message", "errorMessage", "error"))
            ),
            style_id=_as_str(_pick_first(c, ("style_id", "skybox_style_id", "styleId"))),
            style_name=_pick_first(c, ("style_name", "skybox_style_name", "styleName")),
            prompt=_pick_first(c, ("prompt",)),
            size=_as_int(_pick_first(c, ("size", "file_size"))),
            created_at=parse_timestamp(_pick_first(c, ("created_at", "createdAt"))),
            updated_at=parse_timestamp(_pick_first(c, ("updated_at", "updatedAt"))),
        )


class MeshyTaskStatus(BaseModel):
    """Status of one Meshy text-to-3d task. Times are epoch milliseconds."""
    model_config = ConfigDict(frozen=True)

    provider: Literal["meshy"] = "meshy"
    id: str
    status: str = ""
    progress: int = 0
    model_urls: Dict[str, str] = Field(default_factory=dict)
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    task_error: Optional[str] = None
    prompt: Optional[str] = None
    art_style: Optional[str] = None
    created_at: Optional[int] = None
    started_at: Optional[int] = None
    finished_at: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Any, task_id: str = "") -> "MeshyTaskStatus":
        c = _containers(payload, ("data", "result", "task_result"))
        urls = _pick_first(c, ("model_urls", "modelUrls", "output_model_urls"), {})
        model_urls = {
            k: v for k, v in urls.items() if isinstance(v, str) and v
        } if isinstance(urls, dict) else {}
        return cls(
            id=str(_pick_first(c, ("id", "task_id", "taskId"), task_id)),
            status=str(_pick_first(c, ("status", "task_status"), "")).upper(),
            progress=_as_int(_pick_first(c, ("progress", "progress_percentage"), 0)) or 0,
            model_urls=model_urls,
            video_url=_pick_first(c, ("video_url", "videoUrl")),
            thumbnail_url=_pick_first(c, ("thumbnail_url", "thumbnailUrl")),
            task_error=_error_message(_pick_first(c, ("task_error", "taskError", "error"))),
            prompt=_pick_first(c, ("prompt",)),
            art_style=_pick_first(c, ("art_style", "artStyle")),
            created_at=_as_int(_pick_first(c, ("created_at", "createdAt"))),
            started_at=_as_int(_pick_first(c, ("started_at", "startedAt"))),
            finished_at=_as_int(_pick_first(c, ("finished_at", "finishedAt"))),
        )
