"""Sub-job launchers: submit one generation and hand its id to the poller."""

import logging
from typing import Optional

from assetgen.generation.pollers import PollPolicy, poll_image_status, poll_mesh_status
from assetgen.jobs.cancellation import CancellationController
from assetgen.jobs.models import (
    GenerationRequest, GenerationStage, ImageResult, MeshConfig, MeshResult,
)
from assetgen.jobs.progress import ProgressAggregator
from assetgen.providers.base import ProviderError

logger = logging.getLogger(__name__)


async def launch_image(
    request: GenerationRequest,
    job_id: str,
    client,
    progress: ProgressAggregator,
    token: CancellationController,
    policy: Optional[PollPolicy] = None,
    estimated_cost: Optional[float] = None,
) -> ImageResult:
    config = request.image_config
    token.raise_if_cancelled()
    progress.set_stage(job_id, GenerationStage.IMAGE_GENERATING, "Starting skybox generation...")
    progress.set_image_progress(job_id, 5)

    try:
        generation_id = await client.submit(
            request.prompt, config.style_id, negative_prompt=config.negative_prompt,
        )
    except ProviderError as e:
        raise ProviderError(f"Failed to start image generation: {e}") from e

    # A cancellation during submit is seen here, before the first poll
    token.raise_if_cancelled()
    progress.set_image_progress(job_id, 10, "Skybox generation started, polling for results...")
    logger.info("Job %s: polling skybox %s", job_id, generation_id)

    kwargs = {}
    if estimated_cost is not None:
        kwargs["estimated_cost"] = estimated_cost
    return await poll_image_status(
        client,
        generation_id,
        request.prompt,
        config=config,
        token=token,
        on_progress=lambda pct, msg: progress.set_image_progress(job_id, pct, msg),
        policy=policy,
        **kwargs,
    )


async def launch_mesh(
    request: GenerationRequest,
    job_id: str,
    client,
    progress: ProgressAggregator,
    token: CancellationController,
    policy: Optional[PollPolicy] = None,
    estimated_cost: Optional[float] = None,
) -> MeshResult:
    config: MeshConfig = request.resolved_mesh_config() or MeshConfig()
    token.raise_if_cancelled()
    progress.set_stage(job_id, GenerationStage.MESH_GENERATING, "Starting mesh generation...")
    progress.set_mesh_progress(job_id, 5)

    try:
        task_id = await client.submit(request.prompt, config)
    except ProviderError as e:
        raise ProviderError(f"Failed to start mesh generation: {e}") from e

    token.raise_if_cancelled()
    progress.set_mesh_progress(job_id, 10, "Mesh generation started, polling for results...")
    logger.info("Job %s: polling Meshy task %s", job_id, task_id)

    kwargs = {}
    if estimated_cost is not None:
        kwargs["estimated_cost"] = estimated_cost
    return await poll_mesh_status(
        client,
        task_id,
        request.prompt,
        config=config,
        token=token,
        on_progress=lambda pct, msg: progress.set_mesh_progress(job_id, pct, msg),
        policy=policy,
        **kwargs,
    )
