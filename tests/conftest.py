"""Pytest configuration and fixtures."""

import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to sys.path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from assetgen.generation.orchestrator import GenerationOrchestrator
from assetgen.generation.pollers import PollPolicy
from assetgen.jobs.progress import ProgressAggregator
from assetgen.jobs.store import InMemoryJobStore
from assetgen.providers.payloads import MeshyTaskStatus, SkyboxStatus


IMAGE_URL = "https://images.blockadelabs.com/images/imagine/forest.png"
MESH_URL = "https://assets.meshy.ai/tasks/mesh-123/model.glb"


def skybox_status(status: str, **fields) -> SkyboxStatus:
    fields.setdefault("id", "sky-123")
    return SkyboxStatus(status=status, **fields)


def skybox_complete(**fields) -> SkyboxStatus:
    fields.setdefault("file_url", IMAGE_URL)
    fields.setdefault("thumbnail_url", IMAGE_URL.replace(".png", "_thumb.png"))
    return skybox_status("complete", **fields)


def meshy_status(status: str, progress: int = 0, **fields) -> MeshyTaskStatus:
    fields.setdefault("id", "mesh-123")
    return MeshyTaskStatus(status=status, progress=progress, **fields)


def meshy_succeeded(**fields) -> MeshyTaskStatus:
    fields.setdefault("model_urls", {"glb": MESH_URL})
    fields.setdefault("started_at", 1700000000000)
    fields.setdefault("finished_at", 1700000042000)
    fields.setdefault("created_at", 1699999990000)
    return meshy_status("SUCCEEDED", progress=100, **fields)


class ScriptedSkyboxClient:
    """Returns scripted statuses in order, repeating the last one.

    Script items that are exceptions are raised instead. With ``gate`` set,
    every status call blocks until the gate event is set.
    """

    def __init__(self, script, generation_id="sky-123", submit_error=None, gate=None):
        self.script = list(script)
        self.generation_id = generation_id
        self.submit_error = submit_error
        self.gate = gate
        self.submitted = []
        self.status_calls = 0
        self.completed_calls = 0

    def is_configured(self):
        return True

    async def submit(self, prompt, style_id, negative_prompt=None):
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append({
            "prompt": prompt, "style_id": style_id, "negative_prompt": negative_prompt,
        })
        return self.generation_id

    async def get_status(self, generation_id):
        self.status_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        self.completed_calls += 1
        if isinstance(item, Exception):
            raise item
        return item


class ScriptedMeshyClient(ScriptedSkyboxClient):
    def __init__(self, script, task_id="mesh-123", submit_error=None, gate=None):
        super().__init__(script, generation_id=task_id, submit_error=submit_error, gate=gate)

    async def submit(self, prompt, config):
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append({"prompt": prompt, "config": config})
        return self.generation_id


class RecordingPersistence:
    """Stands in for the storage adapter; ``fail`` keeps the provider URL."""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def persist(self, ephemeral_url, job_id, requester_id, timestamp, kind, fmt):
        self.calls.append((ephemeral_url, job_id, requester_id, timestamp, kind, fmt))
        if self.fail:
            return ephemeral_url
        return f"https://storage.example.com/user/{requester_id}/{timestamp}/{job_id}/{kind.value}.{fmt}"


def zero_policy(max_attempts: int = 120) -> PollPolicy:
    return PollPolicy(
        max_attempts=max_attempts,
        base_interval=0.0,
        active_interval_min=0.0,
        active_interval_max=0.0,
        max_interval=0.0,
    )


async def wait_until(predicate, timeout: float = 2.0):
    """Yield to the loop until ``predicate()`` is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def progress():
    return ProgressAggregator()


@pytest.fixture
def persistence():
    return RecordingPersistence()


@pytest.fixture
def make_orchestrator(store, progress, persistence):
    def _make(skybox_client=None, meshy_client=None, image_policy=None, mesh_policy=None, **kwargs):
        return GenerationOrchestrator(
            store=kwargs.pop("store", store),
            skybox_client=skybox_client or ScriptedSkyboxClient([skybox_complete()]),
            meshy_client=meshy_client or ScriptedMeshyClient([meshy_succeeded()]),
            persistence=kwargs.pop("persistence", persistence),
            progress=progress,
            image_policy=image_policy or zero_policy(),
            mesh_policy=mesh_policy or zero_policy(),
            **kwargs,
        )
    return _make
