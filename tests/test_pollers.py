"""Backoff poller tests (zero-interval policies)."""

import asyncio
import random
from unittest.mock import patch

import pytest

from assetgen.generation.pollers import PollPolicy, poll_image_status, poll_mesh_status
from assetgen.jobs.cancellation import CancellationController
from assetgen.jobs.models import ImageConfig
from assetgen.providers.base import (
    GenerationCancelledError, GenerationFailedError, GenerationNotFoundError,
    PollTimeoutError, ProviderAPIError, ProviderTransportError,
)

from conftest import (
    IMAGE_URL, ScriptedMeshyClient, ScriptedSkyboxClient, meshy_status, meshy_succeeded,
    skybox_complete, skybox_status, zero_policy,
)


class RecordingToken(CancellationController):
    """Records requested waits without sleeping."""

    def __init__(self):
        super().__init__("test")
        self.delays = []

    async def sleep(self, delay):
        self.raise_if_cancelled()
        self.delays.append(delay)


class TestImagePoller:

    @pytest.mark.asyncio
    async def test_pending_to_complete_returns_result(self):
        client = ScriptedSkyboxClient([
            skybox_status("pending"),
            skybox_status("dispatched"),
            skybox_status("processing"),
            skybox_complete(),
        ])
        seen = []
        result = await poll_image_status(
            client, "sky-123", "forest clearing at dawn",
            config=ImageConfig(style_id="7"),
            on_progress=lambda pct, msg: seen.append(pct),
            policy=zero_policy(),
        )

        assert result.download_url == IMAGE_URL
        assert result.style_id == "7"
        assert client.status_calls == 4
        assert seen[0] == 10
        assert seen[-1] == 100
        assert seen == sorted(seen)

    @pytest.mark.asyncio
    async def test_not_found_fails_without_further_polls(self):
        client = ScriptedSkyboxClient([
            GenerationNotFoundError("Skybox generation sky-123 not found. It may have expired or was never created."),
        ])
        with pytest.raises(GenerationNotFoundError) as exc_info:
            await poll_image_status(client, "sky-123", "p", policy=zero_policy())

        assert "not found" in str(exc_info.value)
        assert client.status_calls == 1

    @pytest.mark.asyncio
    async def test_expired_message_counts_as_not_found(self):
        client = ScriptedSkyboxClient([ProviderAPIError("Generation has expired", 410)])
        with pytest.raises(ProviderAPIError):
            await poll_image_status(client, "sky-123", "p", policy=zero_policy())
        assert client.status_calls == 1

    @pytest.mark.asyncio
    async def test_error_status_fails_with_provider_message(self):
        client = ScriptedSkyboxClient([
            skybox_status("processing"),
            skybox_status("error", error_message="NSFW content detected"),
        ])
        with pytest.raises(GenerationFailedError, match="NSFW content detected"):
            await poll_image_status(client, "sky-123", "p", policy=zero_policy())

    @pytest.mark.asyncio
    async def test_abort_is_terminal(self):
        client = ScriptedSkyboxClient([skybox_status("abort")])
        with pytest.raises(GenerationFailedError, match="Unknown error"):
            await poll_image_status(client, "sky-123", "p", policy=zero_policy())

    @pytest.mark.asyncio
    async def test_times_out_at_attempt_ceiling(self):
        client = ScriptedSkyboxClient([skybox_status("processing")])
        with pytest.raises(PollTimeoutError) as exc_info:
            await poll_image_status(client, "sky-123", "p", policy=zero_policy())

        assert str(exc_info.value) == "Image generation timed out after 120 attempts"
        assert exc_info.value.last_status == "processing"
        assert client.status_calls == 120

    @pytest.mark.asyncio
    async def test_success_on_last_attempt_is_not_a_timeout(self):
        client = ScriptedSkyboxClient([skybox_status("processing")] * 119 + [skybox_complete()])
        result = await poll_image_status(client, "sky-123", "p", policy=zero_policy())
        assert result.download_url == IMAGE_URL
        assert client.status_calls == 120

    @pytest.mark.asyncio
    async def test_unexpected_client_error_is_retried(self):
        client = ScriptedSkyboxClient([RuntimeError("connection reset mid-decode"), skybox_complete()])
        token = RecordingToken()

        result = await poll_image_status(client, "sky-123", "p", token=token, policy=PollPolicy())

        assert result.download_url == IMAGE_URL
        assert client.status_calls == 2
        assert token.delays == [10.0]

    @pytest.mark.asyncio
    async def test_complete_without_url_keeps_polling_and_holds_progress(self):
        client = ScriptedSkyboxClient([
            skybox_status("processing"),
            skybox_status("complete"),
            skybox_status("complete"),
            skybox_complete(),
        ])
        seen = []
        token = RecordingToken()
        await poll_image_status(
            client, "sky-123", "p", token=token,
            on_progress=lambda pct, msg: seen.append(pct), policy=PollPolicy(),
        )

        assert client.status_calls == 4
        assert seen[1] == seen[0]
        assert seen[2] == seen[0]
        # processing clamps to 5s, then x1.2; the unresolved complete scales x1.5 capped at 10s
        assert token.delays == [5.0, 9.0, 10.0]

    @pytest.mark.asyncio
    async def test_transient_errors_double_interval_and_count_as_attempts(self):
        client = ScriptedSkyboxClient([
            ProviderTransportError("Skybox network error: connection reset"),
            skybox_status("pending"),
            skybox_complete(),
        ])
        token = RecordingToken()
        await poll_image_status(client, "sky-123", "p", token=token, policy=PollPolicy())

        assert client.status_calls == 3
        assert token.delays == [10.0, 5.0]

    @pytest.mark.asyncio
    async def test_interval_backs_off_to_cap(self):
        client = ScriptedSkyboxClient([skybox_status("queued")] * 30 + [skybox_complete()])
        token = RecordingToken()
        await poll_image_status(client, "sky-123", "p", token=token, policy=PollPolicy())

        assert token.delays[0] == 5.0
        assert token.delays[1] == pytest.approx(6.0)
        assert max(token.delays) == 30.0

    @pytest.mark.asyncio
    async def test_cancellation_ends_pending_wait(self):
        client = ScriptedSkyboxClient([skybox_status("pending")])
        token = CancellationController("job-1")
        policy = PollPolicy(base_interval=30.0)

        task = asyncio.create_task(poll_image_status(client, "sky-123", "p", token=token, policy=policy))
        while client.status_calls == 0:
            await asyncio.sleep(0)
        token.cancel()

        with pytest.raises(GenerationCancelledError):
            await asyncio.wait_for(task, timeout=1.0)
        assert token.pending_waits == 0


class TestMeshPoller:

    @pytest.mark.asyncio
    async def test_pending_to_succeeded_returns_result(self):
        client = ScriptedMeshyClient([
            meshy_status("PENDING"),
            meshy_status("IN_PROGRESS", progress=20),
            meshy_status("IN_PROGRESS", progress=80),
            meshy_succeeded(),
        ])
        seen = []
        result = await poll_mesh_status(
            client, "mesh-123", "a wooden chair",
            on_progress=lambda pct, msg: seen.append(pct), policy=zero_policy(),
        )

        assert result.id == "mesh-123"
        assert seen == pytest.approx([10, 34, 76, 100])

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self):
        client = ScriptedMeshyClient([
            meshy_status("IN_PROGRESS", progress=60),
            meshy_status("IN_PROGRESS", progress=30),
            meshy_status("PENDING"),
            meshy_succeeded(),
        ])
        seen = []
        await poll_mesh_status(
            client, "mesh-123", "p", on_progress=lambda pct, msg: seen.append(pct), policy=zero_policy(),
        )
        assert seen == sorted(seen)

    @pytest.mark.asyncio
    async def test_failed_task_reports_task_error(self):
        client = ScriptedMeshyClient([meshy_status("FAILED", task_error="Prompt rejected")])
        with pytest.raises(GenerationFailedError, match="Mesh generation failed: Prompt rejected"):
            await poll_mesh_status(client, "mesh-123", "p", policy=zero_policy())

    @pytest.mark.asyncio
    async def test_canceled_task(self):
        client = ScriptedMeshyClient([meshy_status("CANCELED")])
        with pytest.raises(GenerationFailedError, match="Mesh generation was cancelled"):
            await poll_mesh_status(client, "mesh-123", "p", policy=zero_policy())

    @pytest.mark.asyncio
    async def test_succeeded_without_model_urls_fails(self):
        client = ScriptedMeshyClient([meshy_succeeded(model_urls={})])
        with pytest.raises(GenerationFailedError):
            await poll_mesh_status(client, "mesh-123", "p", policy=zero_policy())

    @pytest.mark.asyncio
    async def test_times_out_while_in_progress(self):
        client = ScriptedMeshyClient([meshy_status("IN_PROGRESS", progress=50)])
        with pytest.raises(PollTimeoutError) as exc_info:
            await poll_mesh_status(client, "mesh-123", "p", policy=zero_policy())

        assert str(exc_info.value) == "Mesh generation timed out after 120 attempts"
        assert exc_info.value.last_status == "IN_PROGRESS"
        assert client.status_calls == 120

    @pytest.mark.asyncio
    async def test_not_found_fails_immediately(self):
        client = ScriptedMeshyClient([GenerationNotFoundError("Meshy generation mesh-123 not found.")])
        with pytest.raises(GenerationNotFoundError):
            await poll_mesh_status(client, "mesh-123", "p", policy=zero_policy())
        assert client.status_calls == 1

    @pytest.mark.asyncio
    async def test_transport_error_waits_an_extra_interval(self):
        client = ScriptedMeshyClient([
            ProviderTransportError("Meshy network error"),
            meshy_succeeded(),
        ])
        token = RecordingToken()
        await poll_mesh_status(client, "mesh-123", "p", token=token, policy=PollPolicy.for_meshes())
        assert token.delays == [6.0]

    @pytest.mark.asyncio
    async def test_malformed_status_is_retried_after_a_normal_interval(self):
        client = ScriptedMeshyClient([
            ValueError("model_urls: Input should be a valid dictionary"),
            meshy_succeeded(),
        ])
        token = RecordingToken()

        result = await poll_mesh_status(client, "mesh-123", "p", token=token, policy=PollPolicy.for_meshes())

        assert result.download_url.endswith("model.glb")
        assert client.status_calls == 2
        assert token.delays == [3.0]

    @pytest.mark.asyncio
    async def test_jitter_stays_within_ten_percent(self):
        client = ScriptedMeshyClient([meshy_status("PENDING")] * 5 + [meshy_succeeded()])
        token = RecordingToken()
        policy = PollPolicy(base_interval=3.0, jitter_ratio=0.1)
        await poll_mesh_status(
            client, "mesh-123", "p", token=token, policy=policy, rng=random.Random(42),
        )

        interval = 3.0
        for delay in token.delays:
            assert interval <= delay <= interval * 1.1 + 1e-9
            interval = min(interval * 1.2, 30.0)

    @pytest.mark.asyncio
    async def test_default_policy_comes_from_settings(self):
        with patch("assetgen.generation.pollers.settings") as mock_settings:
            mock_settings.max_poll_attempts = 7
            mock_settings.mesh_base_interval_seconds = 1.5
            mock_settings.max_poll_interval_seconds = 12.0
            policy = PollPolicy.for_meshes()
        assert policy.max_attempts == 7
        assert policy.base_interval == 1.5
        assert policy.max_interval == 12.0
