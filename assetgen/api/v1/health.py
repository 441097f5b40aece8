"""Health check endpoint."""

from fastapi import APIRouter
import platform
import sys

from assetgen.config import settings

router = APIRouter()

# Set by main.py during lifespan
_orchestrator = None


def set_orchestrator(orchestrator):
    global _orchestrator
    _orchestrator = orchestrator


@router.get("/health")
async def health_check():
    """Service health and which providers are configured."""
    providers = {"skybox": False, "meshy": False}
    active_runs = 0
    if _orchestrator is not None:
        providers["skybox"] = _orchestrator.skybox_client.is_configured()
        providers["meshy"] = _orchestrator.meshy_client.is_configured()
        active_runs = len(_orchestrator.active_jobs())

    return {
        "status": "healthy" if _orchestrator is not None else "starting",
        "providers": providers,
        "job_store": settings.job_store_mode,
        "active_runs": active_runs,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
