"""Per-job progress channel.

Both pollers and the orchestrator publish here; observers read the latest
snapshot or subscribe to a queue of snapshots. Writes are last-write-wins
and the stage only moves forward. Good enough for a progress display, not
for decisions.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

from assetgen.jobs.models import AssetKind, GenerationProgress, GenerationStage


_STAGE_RANK = {
    GenerationStage.INITIALIZING: 0,
    GenerationStage.IMAGE_GENERATING: 1,
    GenerationStage.MESH_GENERATING: 1,
    GenerationStage.STORING: 2,
    GenerationStage.COMPLETED: 3,
    GenerationStage.FAILED: 3,
}


class ProgressAggregator:
    """Combines the two per-family progress values into one record per job."""

    def __init__(self):
        self._records: Dict[str, GenerationProgress] = {}
        self._families: Dict[str, Tuple[bool, bool]] = {}
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    def start(self, job_id: str, image_enabled: bool, mesh_enabled: bool) -> GenerationProgress:
        record = GenerationProgress(
            job_id=job_id,
            stage=GenerationStage.INITIALIZING,
            message="Initializing generation...",
        )
        self._records[job_id] = record
        self._families[job_id] = (image_enabled, mesh_enabled)
        self._publish(job_id)
        return record.model_copy(deep=True)

    def set_stage(
        self,
        job_id: str,
        stage: GenerationStage,
        message: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        record = self._records.get(job_id)
        if record is None:
            return
        if _STAGE_RANK[stage] < _STAGE_RANK[record.stage]:
            return
        record.stage = stage
        if message is not None:
            record.message = message
        if errors is not None:
            record.errors = list(errors)
        if stage == GenerationStage.COMPLETED:
            record.overall_progress = 100.0
        self._publish(job_id)

    def set_family_progress(
        self,
        job_id: str,
        kind: AssetKind,
        value: float,
        message: Optional[str] = None,
    ) -> None:
        record = self._records.get(job_id)
        if record is None:
            return
        value = max(0.0, min(100.0, float(value)))
        if kind == AssetKind.IMAGE:
            record.image_progress = value
        else:
            record.mesh_progress = value
        if message is not None:
            record.message = message
        record.overall_progress = self._overall(job_id, record)
        self._publish(job_id)

    def set_image_progress(self, job_id: str, value: float, message: Optional[str] = None) -> None:
        self.set_family_progress(job_id, AssetKind.IMAGE, value, message)

    def set_mesh_progress(self, job_id: str, value: float, message: Optional[str] = None) -> None:
        self.set_family_progress(job_id, AssetKind.MESH, value, message)

    def add_error(self, job_id: str, error: str) -> None:
        record = self._records.get(job_id)
        if record is None:
            return
        record.errors.append(error)
        self._publish(job_id)

    def snapshot(self, job_id: str) -> Optional[GenerationProgress]:
        record = self._records.get(job_id)
        return record.model_copy(deep=True) if record else None

    def subscribe(self, job_id: str) -> asyncio.Queue:
        """Queue of snapshots for ``job_id``; ``None`` marks the end."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(job_id, []).append(queue)
        record = self._records.get(job_id)
        if record is not None:
            queue.put_nowait(record.model_copy(deep=True))
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(job_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(job_id, None)

    def clear(self, job_id: str) -> None:
        """Discard the record; later writes for this job are ignored."""
        self._records.pop(job_id, None)
        self._families.pop(job_id, None)
        for queue in self._subscribers.pop(job_id, []):
            queue.put_nowait(None)

    def _overall(self, job_id: str, record: GenerationProgress) -> float:
        image_enabled, mesh_enabled = self._families.get(job_id, (True, True))
        values = []
        if image_enabled:
            values.append(record.image_progress)
        if mesh_enabled:
            values.append(record.mesh_progress)
        if not values:
            return 0.0
        return round(sum(values) / len(values), 1)

    def _publish(self, job_id: str) -> None:
        record = self._records.get(job_id)
        if record is None:
            return
        for queue in self._subscribers.get(job_id, []):
            queue.put_nowait(record.model_copy(deep=True))


# Global instance
progress_channel = ProgressAggregator()
