"""Generation orchestrator.

One run per request: create the Job, launch the enabled sub-jobs side by
side, wait for all of them to settle, copy results to durable storage and
write the final Job. A failing sub-job never cancels its sibling.
"""

import asyncio
import logging
import time
import uuid
from typing import Dict, List, Optional, Set, Tuple

from assetgen.config import settings
from assetgen.generation.launchers import launch_image, launch_mesh
from assetgen.generation.pollers import PollPolicy
from assetgen.jobs.cancellation import CANCELLED_BY_USER, CancellationController
from assetgen.jobs.models import (
    MAX_PROMPT_LENGTH, MESH_DISABLED, AssetKind, GenerationRequest, GenerationResponse,
    GenerationStage, ImageConfig, ImageResult, Job, JobMetadata, JobStatus, MeshConfig,
    MeshResult, utcnow,
)
from assetgen.jobs.progress import ProgressAggregator, progress_channel
from assetgen.jobs.store import (
    JobFinalizedError, JobNotFoundError, JobStore, JobStoreError, RunInProgressError,
)
from assetgen.providers.base import GenerationCancelledError, ProviderError

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    JobStatus.COMPLETED: "Generation succeeded",
    JobStatus.PARTIAL: "Generation partially completed",
    JobStatus.FAILED: "Generation failed",
}


class InvalidRequestError(ValueError):
    """The request failed validation; no job was created."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


def validate_request(request: GenerationRequest) -> List[str]:
    errors = []
    prompt = request.prompt.strip()
    if not prompt:
        errors.append("Prompt is required")
    elif len(prompt) > MAX_PROMPT_LENGTH:
        errors.append(f"Prompt must be {MAX_PROMPT_LENGTH} characters or less")
    if not request.requester_id:
        errors.append("Requester ID is required")
    if request.image_config is not None and not request.image_config.style_id:
        errors.append("Skybox style ID is required when skybox generation is enabled")
    if not request.image_enabled and not request.mesh_enabled:
        errors.append("At least one generation type must be enabled")
    return errors


def derive_status(
    image_enabled: bool,
    mesh_enabled: bool,
    image_result: Optional[ImageResult],
    mesh_result: Optional[MeshResult],
) -> JobStatus:
    enabled = int(image_enabled) + int(mesh_enabled)
    succeeded = int(image_enabled and image_result is not None) + int(mesh_enabled and mesh_result is not None)
    if succeeded == 0:
        return JobStatus.FAILED
    if succeeded == enabled:
        return JobStatus.COMPLETED
    return JobStatus.PARTIAL


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class GenerationOrchestrator:
    """Runs image and mesh generation for a prompt and records the outcome."""

    def __init__(
        self,
        store: JobStore,
        skybox_client,
        meshy_client,
        persistence=None,
        progress: Optional[ProgressAggregator] = None,
        image_policy: Optional[PollPolicy] = None,
        mesh_policy: Optional[PollPolicy] = None,
        lease_seconds: Optional[int] = None,
    ):
        self.store = store
        self.skybox_client = skybox_client
        self.meshy_client = meshy_client
        self.persistence = persistence
        self.progress = progress or progress_channel
        self.image_policy = image_policy
        self.mesh_policy = mesh_policy
        self.lease_seconds = lease_seconds if lease_seconds is not None else settings.run_lease_seconds
        self._active: Dict[str, CancellationController] = {}
        self._tasks: Set[asyncio.Task] = set()

    # -- public operations ---------------------------------------------------

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Run a full generation and wait for its outcome."""
        try:
            job, token = await self._begin(request)
        except InvalidRequestError as e:
            return GenerationResponse(success=False, errors=e.errors, message=str(e))
        except RunInProgressError as e:
            return GenerationResponse(success=False, errors=[str(e)], message=str(e))
        return await self._run(job, request, token)

    async def start(self, request: GenerationRequest) -> Job:
        """Create the job and run it in the background.

        Raises InvalidRequestError or RunInProgressError before any job
        exists; the returned job is still pending.
        """
        job, token = await self._begin(request)
        self._spawn(job, request, token)
        return job

    async def cancel(self, job_id: str, reason: str = CANCELLED_BY_USER) -> Optional[Job]:
        """Stop a run and mark its job failed.

        A poll request already in flight still completes; the run notices
        the cancellation at its next wait and does not write the job again.
        """
        token = self._active.pop(job_id, None)
        if token is not None:
            token.cancel(reason)
        self.progress.clear(job_id)
        try:
            return await self.store.update(
                job_id,
                status=JobStatus.FAILED,
                errors=[reason],
                lease_token=None,
                leased_at=None,
            )
        except JobFinalizedError:
            logger.info("Job %s already finished, nothing to cancel", job_id)
            return await self.store.get(job_id)

    async def retry(self, job_id: str) -> GenerationResponse:
        """Run a stored job's prompt again as a new job.

        The stored job is left untouched. Raises JobNotFoundError when it
        does not exist.
        """
        try:
            job, request, token = await self._begin_retry(job_id)
        except InvalidRequestError as e:
            return GenerationResponse(success=False, errors=e.errors, message=str(e))
        except RunInProgressError as e:
            return GenerationResponse(success=False, errors=[str(e)], message=str(e))
        return await self._run(job, request, token)

    async def start_retry(self, job_id: str) -> Job:
        """Like ``retry`` but runs in the background, returning the new job."""
        job, request, token = await self._begin_retry(job_id)
        self._spawn(job, request, token)
        return job

    def is_generating(self, job_id: Optional[str] = None) -> bool:
        if job_id is None:
            return bool(self._active)
        return job_id in self._active

    def active_jobs(self) -> List[str]:
        return list(self._active)

    async def shutdown(self) -> None:
        """Cancel background runs and mark their jobs failed."""
        for job_id in list(self._active):
            await self.cancel(job_id, reason="Generation interrupted by service shutdown")
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @staticmethod
    def rebuild_request(job: Job) -> GenerationRequest:
        image_config = None
        if job.image_result is not None:
            image_config = ImageConfig(
                style_id=job.image_result.style_id,
                negative_prompt=job.image_result.negative_prompt,
            )
        elif job.image_config is not None:
            image_config = job.image_config

        if job.mesh_result is not None:
            base = job.mesh_config or MeshConfig()
            mesh_config = base.model_copy(update={
                "quality": job.mesh_result.quality,
                "style": job.mesh_result.style,
                "format": job.mesh_result.format,
            })
        elif job.mesh_enabled:
            mesh_config = job.mesh_config or MeshConfig()
        else:
            mesh_config = MESH_DISABLED

        return GenerationRequest(
            prompt=job.prompt,
            requester_id=job.requester_id,
            image_config=image_config,
            mesh_config=mesh_config,
        )

    # -- run -----------------------------------------------------------------

    async def _begin(
        self,
        request: GenerationRequest,
        retried_from: Optional[str] = None,
        retry_count: int = 0,
    ) -> Tuple[Job, CancellationController]:
        errors = validate_request(request)
        if errors:
            logger.info("Rejected generation request: %s", "; ".join(errors))
            raise InvalidRequestError(errors)

        job_id = str(uuid.uuid4())
        job = await self.store.create(
            job_id,
            request.prompt.strip(),
            request.requester_id,
            lease_seconds=self.lease_seconds,
            image_config=request.image_config,
            mesh_enabled=request.mesh_enabled,
            mesh_config=request.resolved_mesh_config(),
            retried_from=retried_from,
            storage_timestamp=str(int(time.time() * 1000)),
            metadata=JobMetadata(retry_count=retry_count),
        )
        token = CancellationController(job_id)
        self._active[job_id] = token
        self.progress.start(job_id, request.image_enabled, request.mesh_enabled)
        logger.info(
            "Job %s created for %s (image=%s, mesh=%s)",
            job_id, request.requester_id, request.image_enabled, request.mesh_enabled,
        )
        return job, token

    async def _begin_retry(self, job_id: str) -> Tuple[Job, GenerationRequest, CancellationController]:
        previous = await self.store.get(job_id)
        if previous is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        request = self.rebuild_request(previous)
        logger.info("Retrying job %s", job_id)
        job, token = await self._begin(
            request,
            retried_from=previous.id,
            retry_count=previous.metadata.retry_count + 1,
        )
        return job, request, token

    def _spawn(self, job: Job, request: GenerationRequest, token: CancellationController) -> None:
        task = asyncio.create_task(self._run(job, request, token))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background generation run failed", exc_info=task.exception())

    async def _run(
        self,
        job: Job,
        request: GenerationRequest,
        token: CancellationController,
    ) -> GenerationResponse:
        try:
            return await self._execute(job, request, token)
        except Exception as e:
            logger.exception("Job %s: run crashed", job.id)
            if token.cancelled:
                return self._cancelled_response(job.id)
            errors = [f"Generation failed: {_error_message(e)}"]
            await self._mark_failed(job.id, errors)
            message = STATUS_MESSAGES[JobStatus.FAILED]
            self.progress.set_stage(job.id, GenerationStage.FAILED, message, errors=errors)
            return GenerationResponse(success=False, job_id=job.id, errors=errors, message=message)
        finally:
            if self._active.get(job.id) is token:
                del self._active[job.id]
            token.close()
            # Subscribers get the final snapshot, then the end marker
            self.progress.clear(job.id)

    async def _execute(
        self,
        job: Job,
        request: GenerationRequest,
        token: CancellationController,
    ) -> GenerationResponse:
        # Providers get the prompt exactly as stored on the job
        request = request.model_copy(update={"prompt": job.prompt})
        kinds: List[AssetKind] = []
        sub_jobs = []
        if request.image_enabled:
            kinds.append(AssetKind.IMAGE)
            sub_jobs.append(launch_image(
                request, job.id, self.skybox_client, self.progress, token,
                policy=self.image_policy, estimated_cost=settings.image_estimated_cost,
            ))
        if request.mesh_enabled:
            kinds.append(AssetKind.MESH)
            sub_jobs.append(launch_mesh(
                request, job.id, self.meshy_client, self.progress, token,
                policy=self.mesh_policy, estimated_cost=settings.mesh_estimated_cost,
            ))

        outcomes = await asyncio.gather(*sub_jobs, return_exceptions=True)

        image_result: Optional[ImageResult] = None
        mesh_result: Optional[MeshResult] = None
        errors: List[str] = []
        for kind, outcome in zip(kinds, outcomes):
            if isinstance(outcome, GenerationCancelledError):
                continue
            if isinstance(outcome, BaseException):
                message = _error_message(outcome)
                if not isinstance(outcome, ProviderError):
                    logger.error("Job %s: %s sub-job crashed", job.id, kind.value, exc_info=outcome)
                else:
                    logger.warning("Job %s: %s sub-job failed: %s", job.id, kind.value, message)
                errors.append(message)
            elif kind == AssetKind.IMAGE:
                image_result = outcome
            else:
                mesh_result = outcome

        if token.cancelled:
            return self._cancelled_response(job.id)

        image_url = mesh_url = None
        if image_result is not None or mesh_result is not None:
            self.progress.set_stage(job.id, GenerationStage.STORING, "Storing assets...")
        if image_result is not None:
            image_url = await self._persist(job, AssetKind.IMAGE, image_result.download_url, image_result.format)
        if mesh_result is not None:
            mesh_url = await self._persist(job, AssetKind.MESH, mesh_result.download_url, mesh_result.format.value)

        if token.cancelled:
            return self._cancelled_response(job.id)

        status = derive_status(request.image_enabled, request.mesh_enabled, image_result, mesh_result)
        estimated_cost = sum(
            r.metadata.estimated_cost for r in (image_result, mesh_result) if r is not None
        )
        elapsed_ms = int((utcnow() - job.created_at).total_seconds() * 1000)
        try:
            await self.store.update(
                job.id,
                status=status,
                image_result=image_result,
                mesh_result=mesh_result,
                image_url=image_url,
                mesh_url=mesh_url,
                errors=errors,
                metadata=JobMetadata(
                    elapsed_ms=elapsed_ms,
                    estimated_cost=round(estimated_cost, 4),
                    retry_count=job.metadata.retry_count,
                ),
                lease_token=None,
                leased_at=None,
            )
        except JobFinalizedError:
            # Cancelled between the last check and the write
            return self._cancelled_response(job.id)
        except JobStoreError as e:
            logger.exception("Job %s: failed to save final state", job.id)
            errors.append(f"Failed to save job: {e}")
            # The stored job must still leave pending and give up its lease
            status = JobStatus.FAILED
            await self._mark_failed(job.id, errors)

        message = STATUS_MESSAGES[status]
        stage = GenerationStage.FAILED if status == JobStatus.FAILED else GenerationStage.COMPLETED
        self.progress.set_stage(job.id, stage, message, errors=errors)
        logger.info(
            "Job %s finished: %s in %d ms (%d error(s))", job.id, status.value, elapsed_ms, len(errors),
        )
        return GenerationResponse(
            success=status != JobStatus.FAILED,
            job_id=job.id,
            image_result=image_result,
            mesh_result=mesh_result,
            errors=errors,
            message=message,
        )

    async def _mark_failed(self, job_id: str, errors: List[str]) -> None:
        try:
            await self.store.update(
                job_id,
                status=JobStatus.FAILED,
                errors=errors,
                lease_token=None,
                leased_at=None,
            )
        except JobFinalizedError:
            logger.info("Job %s already finished, leaving it as is", job_id)
        except Exception:
            logger.exception("Job %s: could not mark job failed, its lease will expire", job_id)

    async def _persist(self, job: Job, kind: AssetKind, url: str, fmt: str) -> str:
        if self.persistence is None:
            return url
        return await self.persistence.persist(
            url, job.id, job.requester_id, job.storage_timestamp, kind, fmt,
        )

    @staticmethod
    def _cancelled_response(job_id: str) -> GenerationResponse:
        logger.info("Job %s: run stopped after cancellation", job_id)
        return GenerationResponse(
            success=False,
            job_id=job_id,
            errors=[CANCELLED_BY_USER],
            message="Generation cancelled",
        )

