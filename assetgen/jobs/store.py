"""Job store interface with in-memory and Supabase implementations.

The orchestrator is the only writer of a job during its run. A job is
frozen once its status leaves ``pending``; a retry creates a new job.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from assetgen.config import settings
from assetgen.jobs.models import Job, JobStatus, utcnow


class JobStoreError(Exception):
    pass


class JobNotFoundError(JobStoreError):
    pass


class JobFinalizedError(JobStoreError):
    """The job already reached a terminal status."""
    pass


class RunInProgressError(JobStoreError):
    """The requester already holds a live run lease."""

    def __init__(self, requester_id: str, job_id: str):
        super().__init__(
            f"A generation is already running for this requester (job {job_id})"
        )
        self.requester_id = requester_id
        self.job_id = job_id


def lease_is_live(job: Job, lease_seconds: int, now: Optional[datetime] = None) -> bool:
    if job.status != JobStatus.PENDING or not job.lease_token or job.leased_at is None:
        return False
    now = now or utcnow()
    return now - job.leased_at < timedelta(seconds=lease_seconds)


def _new_job(
    job_id: str,
    prompt: str,
    requester_id: str,
    lease_seconds: Optional[int],
    fields: Dict[str, Any],
) -> Job:
    leased = lease_seconds is not None
    return Job(
        id=job_id,
        prompt=prompt,
        requester_id=requester_id,
        lease_token=str(uuid.uuid4()) if leased else None,
        leased_at=utcnow() if leased else None,
        **fields,
    )


def _apply_update(job: Job, fields: Dict[str, Any]) -> Job:
    data = job.model_dump()
    data.update(fields)
    data["updated_at"] = utcnow()
    return Job.model_validate(data)


class JobStore(ABC):
    """Abstract interface for job persistence (local or Supabase)."""

    @abstractmethod
    async def create(
        self,
        job_id: str,
        prompt: str,
        requester_id: str,
        lease_seconds: Optional[int] = None,
        **fields: Any,
    ) -> Job:
        """Create a pending job.

        With ``lease_seconds`` the job also takes the requester's run lease,
        raising RunInProgressError if another live lease exists.
        """
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    async def update(self, job_id: str, **fields: Any) -> Job:
        """Apply ``fields`` to a pending job. Returns the stored job."""
        ...

    @abstractmethod
    async def list_for_requester(
        self,
        requester_id: str,
        limit: int = 20,
        status: Optional[JobStatus] = None,
    ) -> List[Job]:
        """Most recent jobs first."""
        ...


class InMemoryJobStore(JobStore):
    """Process-local store. Each method runs without suspending, so the
    lease check and insert in ``create`` cannot interleave with another run."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}

    async def create(self, job_id, prompt, requester_id, lease_seconds=None, **fields):
        if job_id in self._jobs:
            raise JobStoreError(f"Job {job_id} already exists")
        if lease_seconds is not None:
            for other in self._jobs.values():
                if other.requester_id == requester_id and lease_is_live(other, lease_seconds):
                    raise RunInProgressError(requester_id, other.id)
        job = _new_job(job_id, prompt, requester_id, lease_seconds, fields)
        self._jobs[job_id] = job
        return job.model_copy(deep=True)

    async def get(self, job_id):
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def update(self, job_id, **fields):
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        if job.is_terminal():
            raise JobFinalizedError(f"Job {job_id} is already {job.status.value}")
        updated = _apply_update(job, fields)
        self._jobs[job_id] = updated
        return updated.model_copy(deep=True)

    async def list_for_requester(self, requester_id, limit=20, status=None):
        jobs = [
            j for j in self._jobs.values()
            if j.requester_id == requester_id and (status is None or j.status == status)
        ]
        # Newest first; ties keep the later insert first
        jobs.reverse()
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [j.model_copy(deep=True) for j in jobs[:limit]]


class SupabaseJobStore(JobStore):
    """Jobs persisted as rows of ``settings.jobs_table``.

    The Supabase client is synchronous; calls run in the default executor
    so the event loop keeps serving the pollers.
    """

    def __init__(self, client=None, table: Optional[str] = None):
        self._client = client
        self._table = table or settings.jobs_table

    def _supabase(self):
        if self._client is None:
            from assetgen.db.supabase_client import get_supabase
            self._client = get_supabase()
        return self._client

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn, *args)
        except JobStoreError:
            raise
        except Exception as e:
            raise JobStoreError(f"Supabase request on {self._table} failed: {e}") from e

    def _get_sync(self, job_id: str) -> Optional[Job]:
        response = (
            self._supabase().table(self._table)
            .select("*")
            .eq("id", job_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return Job.model_validate(response.data[0])

    def _create_sync(self, job_id, prompt, requester_id, lease_seconds, fields) -> Job:
        if lease_seconds is not None:
            # Best effort: Supabase gives no multi-statement transaction here
            active = (
                self._supabase().table(self._table)
                .select("*")
                .eq("requester_id", requester_id)
                .eq("status", JobStatus.PENDING.value)
                .execute()
            )
            for row in active.data or []:
                other = Job.model_validate(row)
                if lease_is_live(other, lease_seconds):
                    raise RunInProgressError(requester_id, other.id)
        job = _new_job(job_id, prompt, requester_id, lease_seconds, fields)
        self._supabase().table(self._table).insert(job.model_dump(mode="json")).execute()
        return job

    def _update_sync(self, job_id, fields) -> Job:
        current = self._get_sync(job_id)
        if current is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        if current.is_terminal():
            raise JobFinalizedError(f"Job {job_id} is already {current.status.value}")
        updated = _apply_update(current, fields)
        response = (
            self._supabase().table(self._table)
            .update(updated.model_dump(mode="json"))
            .eq("id", job_id)
            .eq("status", JobStatus.PENDING.value)
            .execute()
        )
        if not response.data:
            raise JobFinalizedError(f"Job {job_id} was finalized concurrently")
        return updated

    def _list_sync(self, requester_id, limit, status) -> List[Job]:
        query = (
            self._supabase().table(self._table)
            .select("*")
            .eq("requester_id", requester_id)
        )
        if status is not None:
            query = query.eq("status", status.value)
        response = query.order("created_at", desc=True).limit(limit).execute()
        return [Job.model_validate(row) for row in response.data or []]

    async def create(self, job_id, prompt, requester_id, lease_seconds=None, **fields):
        return await self._run(
            self._create_sync, job_id, prompt, requester_id, lease_seconds, fields
        )

    async def get(self, job_id):
        return await self._run(self._get_sync, job_id)

    async def update(self, job_id, **fields):
        return await self._run(self._update_sync, job_id, fields)

    async def list_for_requester(self, requester_id, limit=20, status=None):
        return await self._run(self._list_sync, requester_id, limit, status)


def build_job_store() -> JobStore:
    if settings.job_store_mode == "supabase":
        return SupabaseJobStore()
    return InMemoryJobStore()
