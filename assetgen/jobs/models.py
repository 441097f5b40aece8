"""Job, request and result data models for asset generation runs."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator
import uuid


MESH_DISABLED = "disabled"
MAX_PROMPT_LENGTH = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class AssetKind(str, Enum):
    IMAGE = "image"
    MESH = "mesh"


class MeshFormat(str, Enum):
    GLB = "glb"
    USDZ = "usdz"
    OBJ = "obj"
    FBX = "fbx"


class GenerationStage(str, Enum):
    INITIALIZING = "initializing"
    IMAGE_GENERATING = "image_generating"
    MESH_GENERATING = "mesh_generating"
    STORING = "storing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class ImageConfig(BaseModel):
    style_id: Optional[str] = None
    negative_prompt: Optional[str] = None

    @field_validator("style_id", mode="before")
    @classmethod
    def _coerce_style_id(cls, value):
        # Provider style ids are numeric, callers send either form
        if isinstance(value, int):
            return str(value)
        return value


class MeshConfig(BaseModel):
    style: Literal["realistic", "sculpture", "cartoon", "anime"] = "realistic"
    model_variant: str = "meshy-4"
    topology: Literal["quad", "triangle"] = "triangle"
    target_polycount: int = 30000
    format: MeshFormat = MeshFormat.GLB
    quality: Literal["low", "medium", "high", "ultra"] = "medium"


class GenerationRequest(BaseModel):
    """One prompt, up to two assets.

    Mesh generation is on unless ``mesh_config`` is the string "disabled";
    image generation is on only when ``image_config`` is given.
    """
    prompt: str = ""
    requester_id: str = ""
    image_config: Optional[ImageConfig] = None
    mesh_config: Union[MeshConfig, Literal["disabled"], None] = None

    @property
    def image_enabled(self) -> bool:
        return self.image_config is not None

    @property
    def mesh_enabled(self) -> bool:
        return self.mesh_config != MESH_DISABLED

    def resolved_mesh_config(self) -> Optional[MeshConfig]:
        if not self.mesh_enabled:
            return None
        if isinstance(self.mesh_config, MeshConfig):
            return self.mesh_config
        return MeshConfig()


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class AssetMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    size: Optional[int] = None
    style_name: Optional[str] = None
    polycount: Optional[int] = None
    generation_time_ms: Optional[int] = None
    estimated_cost: float = 0.0


class ImageResult(BaseModel):
    """Terminal snapshot of a finished panorama generation."""
    model_config = ConfigDict(frozen=True)

    id: str
    status: Literal["completed"] = "completed"
    download_url: str
    thumbnail_url: Optional[str] = None
    prompt: str
    style_id: Optional[str] = None
    negative_prompt: Optional[str] = None
    format: str = "png"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: AssetMetadata = Field(default_factory=AssetMetadata)


class MeshResult(BaseModel):
    """Terminal snapshot of a finished mesh generation."""
    model_config = ConfigDict(frozen=True)

    id: str
    status: Literal["completed"] = "completed"
    download_url: str
    preview_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    prompt: str
    format: MeshFormat = MeshFormat.GLB
    quality: str = "medium"
    style: str = "realistic"
    model_variant: Optional[str] = None
    topology: Optional[str] = None
    model_urls: Dict[str, str] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: AssetMetadata = Field(default_factory=AssetMetadata)


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------

class JobMetadata(BaseModel):
    elapsed_ms: int = 0
    estimated_cost: float = 0.0
    retry_count: int = 0


class Job(BaseModel):
    """Durable record of one orchestrated generation run."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    prompt: str
    requester_id: str
    status: JobStatus = JobStatus.PENDING
    image_result: Optional[ImageResult] = None
    mesh_result: Optional[MeshResult] = None
    image_url: Optional[str] = None
    mesh_url: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    metadata: JobMetadata = Field(default_factory=JobMetadata)

    # Submitted configuration, used to rebuild a request on retry
    image_config: Optional[ImageConfig] = None
    mesh_enabled: bool = True
    mesh_config: Optional[MeshConfig] = None
    retried_from: Optional[str] = None
    storage_timestamp: str = ""

    # Run lease: held by the orchestrator while the job is pending
    lease_token: Optional[str] = None
    leased_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def is_terminal(self) -> bool:
        return self.status != JobStatus.PENDING


# ---------------------------------------------------------------------------
# Progress and responses
# ---------------------------------------------------------------------------

class GenerationProgress(BaseModel):
    """Transient progress of one run, for display only."""
    job_id: str
    stage: GenerationStage = GenerationStage.INITIALIZING
    image_progress: float = 0.0
    mesh_progress: float = 0.0
    overall_progress: float = 0.0
    message: str = ""
    errors: List[str] = Field(default_factory=list)


class GenerationResponse(BaseModel):
    success: bool
    job_id: str = ""
    image_result: Optional[ImageResult] = None
    mesh_result: Optional[MeshResult] = None
    errors: List[str] = Field(default_factory=list)
    message: str = ""


class DownloadInfo(BaseModel):
    filename: str
    url: str
    format: str
    kind: AssetKind
    size: int = 0
