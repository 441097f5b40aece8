"""Generation API: start runs, read jobs and progress, cancel, retry, download."""

from typing import List, Literal, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from assetgen.auth.supabase_auth import get_requester_id
from assetgen.generation.orchestrator import InvalidRequestError
from assetgen.jobs.models import (
    AssetKind, DownloadInfo, GenerationProgress, GenerationRequest, GenerationStage,
    ImageConfig, Job, JobStatus, MeshConfig,
)
from assetgen.jobs.store import JobNotFoundError, RunInProgressError
from assetgen.storage.downloads import build_download_info

router = APIRouter()

# These will be set by main.py during lifespan
_orchestrator = None
_store = None


def set_orchestrator(orchestrator):
    global _orchestrator
    _orchestrator = orchestrator


def set_job_store(store):
    global _store
    _store = store


class GenerateBody(BaseModel):
    prompt: str
    image_config: Optional[ImageConfig] = None
    mesh_config: Union[MeshConfig, Literal["disabled"], None] = None


class GenerateAccepted(BaseModel):
    job_id: str
    status: str
    message: str
    retried_from: Optional[str] = None


def _require_ready():
    if _orchestrator is None or _store is None:
        raise HTTPException(status_code=503, detail="Generation service not initialized")


async def _owned_job(job_id: str, requester_id: str) -> Job:
    job = await _store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if job.requester_id != requester_id:
        raise HTTPException(status_code=403, detail="Not allowed to access this job")
    return job


@router.post("/generate", response_model=GenerateAccepted, status_code=202)
async def start_generation(body: GenerateBody, requester_id: str = Depends(get_requester_id)):
    """Start a skybox and/or mesh generation. Poll the job for the outcome."""
    _require_ready()
    request = GenerationRequest(
        prompt=body.prompt,
        requester_id=requester_id,
        image_config=body.image_config,
        mesh_config=body.mesh_config,
    )
    try:
        job = await _orchestrator.start(request)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "errors": e.errors})
    except RunInProgressError as e:
        raise HTTPException(status_code=409, detail={"message": str(e), "job_id": e.job_id})
    return GenerateAccepted(
        job_id=job.id,
        status=job.status.value,
        message="Generation started. Poll GET /api/v1/jobs/{id} for the result.",
    )


@router.get("/jobs", response_model=List[Job])
async def list_jobs(
    limit: int = Query(20, ge=1, le=100),
    status: Optional[JobStatus] = None,
    requester_id: str = Depends(get_requester_id),
):
    """The requester's most recent jobs."""
    _require_ready()
    return await _store.list_for_requester(requester_id, limit=limit, status=status)


@router.get("/jobs/{job_id}", response_model=Job)
async def get_job(job_id: str, requester_id: str = Depends(get_requester_id)):
    _require_ready()
    return await _owned_job(job_id, requester_id)


@router.get("/jobs/{job_id}/progress", response_model=GenerationProgress)
async def get_progress(job_id: str, requester_id: str = Depends(get_requester_id)):
    """Live progress of a run; finished jobs report their final stage."""
    _require_ready()
    job = await _owned_job(job_id, requester_id)
    snapshot = _orchestrator.progress.snapshot(job_id)
    if snapshot is not None:
        return snapshot
    if job.status == JobStatus.PENDING:
        return GenerationProgress(job_id=job_id, message="Waiting for progress...")
    failed = job.status == JobStatus.FAILED
    return GenerationProgress(
        job_id=job_id,
        stage=GenerationStage.FAILED if failed else GenerationStage.COMPLETED,
        overall_progress=0.0 if failed else 100.0,
        message=f"Generation {job.status.value}",
        errors=job.errors,
    )


@router.post("/jobs/{job_id}/cancel", response_model=Job)
async def cancel_job(job_id: str, requester_id: str = Depends(get_requester_id)):
    _require_ready()
    await _owned_job(job_id, requester_id)
    job = await _orchestrator.cancel(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/jobs/{job_id}/retry", response_model=GenerateAccepted, status_code=202)
async def retry_job(job_id: str, requester_id: str = Depends(get_requester_id)):
    """Start a new job with the prompt and settings of an earlier one."""
    _require_ready()
    await _owned_job(job_id, requester_id)
    try:
        job = await _orchestrator.start_retry(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "errors": e.errors})
    except RunInProgressError as e:
        raise HTTPException(status_code=409, detail={"message": str(e), "job_id": e.job_id})
    return GenerateAccepted(
        job_id=job.id,
        status=job.status.value,
        message="Retry started.",
        retried_from=job_id,
    )


@router.get("/jobs/{job_id}/download/{kind}", response_model=DownloadInfo)
async def get_download_info(
    job_id: str,
    kind: AssetKind,
    requester_id: str = Depends(get_requester_id),
):
    _require_ready()
    job = await _owned_job(job_id, requester_id)
    info = build_download_info(job, kind)
    if info is None:
        raise HTTPException(status_code=404, detail=f"No {kind.value} asset for this job")
    return info
