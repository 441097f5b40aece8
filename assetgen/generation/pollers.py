"""Backoff pollers for the image (skybox) and mesh (Meshy) providers.

Each poller repeatedly reads one submitted task's status, adapts its wait to
the reported sub-status, and returns a mapped result or raises once the task
is terminal or the attempt ceiling is reached. Waits go through the run's
CancellationController, so a cancellation ends a pending wait immediately.
"""

import logging
import random
from dataclasses import dataclass
from typing import Callable, Optional

from assetgen.config import settings
from assetgen.generation.mapper import (
    DEFAULT_IMAGE_COST, DEFAULT_MESH_COST, map_image_result, map_mesh_result,
)
from assetgen.jobs.cancellation import CancellationController
from assetgen.jobs.models import ImageConfig, ImageResult, MeshConfig, MeshResult
from assetgen.providers.base import (
    GenerationFailedError, PollTimeoutError,
    ProviderRateLimitError, ProviderTransportError, is_not_found,
)

logger = logging.getLogger(__name__)

# Progress callback: fn(percent, message)
ProgressCallback = Callable[[float, Optional[str]], None]

IMAGE_SUCCESS_STATUSES = ("completed", "complete")
IMAGE_ACTIVE_STATUSES = ("dispatched", "processing")
IMAGE_FAILURE_STATUSES = ("failed", "error", "abort")


@dataclass
class PollPolicy:
    """Timing knobs for one poller. All intervals are in seconds."""
    max_attempts: int = 120
    base_interval: float = 5.0
    active_interval_min: float = 5.0
    active_interval_max: float = 10.0
    max_interval: float = 30.0
    backoff_factor: float = 1.2
    unresolved_factor: float = 1.5
    jitter_ratio: float = 0.0

    @classmethod
    def for_images(cls) -> "PollPolicy":
        return cls(
            max_attempts=settings.max_poll_attempts,
            base_interval=settings.image_base_interval_seconds,
            active_interval_min=settings.image_base_interval_seconds,
            active_interval_max=settings.image_active_interval_max_seconds,
            max_interval=settings.max_poll_interval_seconds,
        )

    @classmethod
    def for_meshes(cls) -> "PollPolicy":
        return cls(
            max_attempts=settings.max_poll_attempts,
            base_interval=settings.mesh_base_interval_seconds,
            max_interval=settings.max_poll_interval_seconds,
            jitter_ratio=0.1,
        )


class _ProgressTracker:
    """Keeps reported progress non-decreasing."""

    def __init__(self, callback: Optional[ProgressCallback]):
        self._callback = callback
        self.value = 0.0

    def report(self, value: float, message: Optional[str] = None) -> None:
        self.value = max(self.value, float(value))
        if self._callback is not None:
            self._callback(self.value, message)

    def hold(self, message: Optional[str] = None) -> None:
        self.report(self.value, message)


async def poll_image_status(
    client,
    generation_id: str,
    prompt: str,
    config: Optional[ImageConfig] = None,
    token: Optional[CancellationController] = None,
    on_progress: Optional[ProgressCallback] = None,
    policy: Optional[PollPolicy] = None,
    estimated_cost: float = DEFAULT_IMAGE_COST,
) -> ImageResult:
    """Poll a skybox generation until it completes with a file URL."""
    policy = policy or PollPolicy.for_images()
    token = token or CancellationController()
    progress = _ProgressTracker(on_progress)
    interval = policy.base_interval
    last_status = "unknown"

    for attempt in range(1, policy.max_attempts + 1):
        try:
            status = await client.get_status(generation_id)
        except Exception as e:
            if is_not_found(e):
                logger.warning("Skybox %s not found or expired, giving up: %s", generation_id, e)
                raise
            interval = min(interval * 2, policy.max_interval)
            logger.warning(
                "Error polling skybox %s (attempt %d/%d), retrying in %.1fs: %s",
                generation_id, attempt, policy.max_attempts, interval, e,
            )
            if attempt < policy.max_attempts:
                await token.sleep(interval)
            continue

        last_status = status.status or "unknown"

        if last_status == "pending":
            progress.report(10, "Skybox queued...")
            interval = policy.base_interval
        elif last_status in IMAGE_ACTIVE_STATUSES:
            pct = 30 + 50 * attempt / policy.max_attempts
            progress.report(pct, f"Generating skybox... {round(max(progress.value, pct))}%")
            interval = min(max(interval, policy.active_interval_min), policy.active_interval_max)
        elif last_status in IMAGE_SUCCESS_STATUSES:
            if status.file_url:
                result = map_image_result(status, prompt, config, estimated_cost=estimated_cost)
                progress.report(100, "Skybox generation completed!")
                logger.info("Skybox %s completed after %d attempt(s)", generation_id, attempt)
                return result
            # Reported complete before the asset link is attached
            progress.hold("Finalizing skybox...")
            interval = min(interval * policy.unresolved_factor, policy.active_interval_max)
            logger.info("Skybox %s is %s without a file URL, polling again", generation_id, last_status)
        elif last_status in IMAGE_FAILURE_STATUSES:
            message = status.error_message or "Unknown error"
            logger.warning("Skybox %s ended with status %s: %s", generation_id, last_status, message)
            raise GenerationFailedError(f"Image generation failed: {message}")
        else:
            progress.report(min(90.0, attempt / policy.max_attempts * 90))

        if attempt < policy.max_attempts:
            logger.debug(
                "Skybox %s: %s, next poll in %.1fs (attempt %d/%d)",
                generation_id, last_status, interval, attempt, policy.max_attempts,
            )
            await token.sleep(interval)
            interval = min(interval * policy.backoff_factor, policy.max_interval)

    logger.warning(
        "Skybox %s timed out after %d attempts, last status %s",
        generation_id, policy.max_attempts, last_status,
    )
    raise PollTimeoutError(
        f"Image generation timed out after {policy.max_attempts} attempts",
        attempts=policy.max_attempts,
        last_status=last_status,
    )


async def poll_mesh_status(
    client,
    task_id: str,
    prompt: str,
    config: Optional[MeshConfig] = None,
    token: Optional[CancellationController] = None,
    on_progress: Optional[ProgressCallback] = None,
    policy: Optional[PollPolicy] = None,
    estimated_cost: float = DEFAULT_MESH_COST,
    rng: Optional[random.Random] = None,
) -> MeshResult:
    """Poll a Meshy task until SUCCEEDED, FAILED or CANCELED."""
    policy = policy or PollPolicy.for_meshes()
    token = token or CancellationController()
    rng = rng or random.Random()
    progress = _ProgressTracker(on_progress)
    interval = policy.base_interval
    last_status = "unknown"

    for attempt in range(1, policy.max_attempts + 1):
        try:
            status = await client.get_status(task_id)
        except Exception as e:
            if is_not_found(e):
                logger.warning("Meshy task %s not found or expired, giving up: %s", task_id, e)
                raise
            logger.warning(
                "Error polling Meshy task %s (attempt %d/%d): %s",
                task_id, attempt, policy.max_attempts, e,
            )
            if attempt < policy.max_attempts:
                # Network trouble and rate limits get one extra full interval
                extra = interval if isinstance(e, (ProviderTransportError, ProviderRateLimitError)) else 0.0
                await token.sleep(interval + extra)
            continue

        last_status = status.status or "unknown"

        if last_status == "PENDING":
            progress.report(10, "Mesh generation queued...")
        elif last_status == "IN_PROGRESS":
            pct = min(90.0, 20 + status.progress * 0.7)
            progress.report(pct, f"Generating mesh... {round(max(progress.value, pct))}%")
        elif last_status == "SUCCEEDED":
            try:
                result = map_mesh_result(status, prompt, config, estimated_cost=estimated_cost)
            except ValueError as e:
                raise GenerationFailedError(f"Mesh generation failed: {e}") from e
            progress.report(100, "Mesh generation completed!")
            logger.info("Meshy task %s succeeded after %d attempt(s)", task_id, attempt)
            return result
        elif last_status == "FAILED":
            message = status.task_error or "Unknown error"
            logger.warning("Meshy task %s failed: %s", task_id, message)
            raise GenerationFailedError(f"Mesh generation failed: {message}")
        elif last_status == "CANCELED":
            logger.warning("Meshy task %s was cancelled by the provider", task_id)
            raise GenerationFailedError("Mesh generation was cancelled")

        if attempt < policy.max_attempts:
            delay = interval + rng.uniform(0, policy.jitter_ratio * interval)
            logger.debug(
                "Meshy task %s: %s (%d%%), next poll in %.1fs (attempt %d/%d)",
                task_id, last_status, status.progress, delay, attempt, policy.max_attempts,
            )
            await token.sleep(delay)
            interval = min(interval * policy.backoff_factor, policy.max_interval)

    logger.warning(
        "Meshy task %s timed out after %d attempts, last status %s",
        task_id, policy.max_attempts, last_status,
    )
    raise PollTimeoutError(
        f"Mesh generation timed out after {policy.max_attempts} attempts",
        attempts=policy.max_attempts,
        last_status=last_status,
    )
