"""Asset Generation Service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assetgen.config import settings
from assetgen.api.v1.router import v1_router
from assetgen.api.v1.health import router as health_root_router
from assetgen.api.v1 import generation as generation_api
from assetgen.api.v1 import health as health_api
from assetgen.generation.orchestrator import GenerationOrchestrator
from assetgen.generation.pollers import PollPolicy
from assetgen.jobs.progress import progress_channel
from assetgen.jobs.store import build_job_store
from assetgen.providers.meshy import MeshyClient
from assetgen.providers.skybox import SkyboxClient
from assetgen.storage.assets import AssetPersistenceAdapter

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_orchestrator() -> GenerationOrchestrator:
    """Wire the store, provider clients and storage from settings."""
    return GenerationOrchestrator(
        store=build_job_store(),
        skybox_client=SkyboxClient(),
        meshy_client=MeshyClient(),
        persistence=AssetPersistenceAdapter(),
        progress=progress_channel,
        image_policy=PollPolicy.for_images(),
        mesh_policy=PollPolicy.for_meshes(),
        lease_seconds=settings.run_lease_seconds,
    )


# Global orchestrator reference
_orchestrator = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    global _orchestrator

    logger.info("Starting Asset Generation Service on port %s", settings.service_port)
    logger.info("Job store: %s", settings.job_store_mode)

    _orchestrator = build_orchestrator()
    if not _orchestrator.skybox_client.is_configured():
        logger.warning("BLOCKADE_API_KEY is not set, skybox generation will fail")
    if not _orchestrator.meshy_client.is_configured():
        logger.warning("MESHY_API_KEY is not set, mesh generation will fail")

    # Wire orchestrator and store into API endpoints
    generation_api.set_orchestrator(_orchestrator)
    generation_api.set_job_store(_orchestrator.store)
    health_api.set_orchestrator(_orchestrator)

    yield

    # Shutdown
    logger.info("Shutting down Asset Generation Service")
    await _orchestrator.shutdown()


app = FastAPI(
    title="Asset Generation Service",
    description="Skybox and 3D mesh generation from a single text prompt",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow frontend dev server and any configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints
