"""Integration tests for generation API endpoints.

Routes run against an orchestrator wired to the in-memory store and a
scripted provider, so no database or network is needed.
"""

from uuid import uuid4

import pytest
import pytest_asyncio
from conftest import ScriptedAdapter, status_result
from httpx import ASGITransport, AsyncClient

from imagestudio.app import app
from imagestudio.models.image_generation import GenerationStatus


@pytest_asyncio.fixture
async def running_adapter():
    """Adapter whose jobs stay in progress until cancelled."""
    return ScriptedAdapter(statuses=[status_result(GenerationStatus.IN_PROGRESS)])


@pytest_asyncio.fixture
async def test_client(make_orchestrator, running_adapter):
    """Provide AsyncClient with the orchestrator injected into app.state."""
    orchestrator = make_orchestrator(running_adapter)
    app.state.orchestrator = orchestrator

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def submit_body(**overrides) -> dict:
    body = {
        "provider_id": "fal_seedream",
        "prompt": "a paper boat on a pond",
        "inputs": [{"type": "url", "value": "https://example.com/boat.png"}],
        "options": {"num_images": 2},
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
class TestSubmitEndpoint:
    """Test POST /api/generations."""

    async def test_submit_returns_queued_generation(self, test_client):
        response = await test_client.post("/api/generations", json=submit_body())

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "queued"
        assert data["provider_id"] == "fal_seedream"
        assert data["request_options"]["num_images"] == 2
        assert data["outputs"] == []

    async def test_submit_validation_error_returns_400(self, test_client):
        response = await test_client.post("/api/generations", json=submit_body(prompt="   "))

        assert response.status_code == 400
        assert response.json()["detail"]

    async def test_submit_unknown_provider_returns_400(self, test_client):
        response = await test_client.post(
            "/api/generations", json=submit_body(provider_id="nope")
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Unknown provider: nope"


@pytest.mark.asyncio
class TestHistoryEndpoints:
    """Test listing, fetching and deleting generations."""

    async def test_list_and_get(self, test_client):
        created = (await test_client.post("/api/generations", json=submit_body())).json()

        listed = await test_client.get("/api/generations", params={"limit": 500})
        assert listed.status_code == 200
        assert [job["id"] for job in listed.json()] == [created["id"]]

        fetched = await test_client.get(f"/api/generations/{created['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["prompt"] == "a paper boat on a pond"

    async def test_list_filters_by_status(self, test_client):
        await test_client.post("/api/generations", json=submit_body())

        response = await test_client.get("/api/generations", params={"status": "completed"})

        assert response.status_code == 200
        assert response.json() == []

    async def test_get_unknown_generation_returns_404(self, test_client):
        response = await test_client.get(f"/api/generations/{uuid4()}")

        assert response.status_code == 404

    async def test_delete_generation(self, test_client):
        created = (await test_client.post("/api/generations", json=submit_body())).json()
        await test_client.post(f"/api/generations/{created['id']}/cancel")

        response = await test_client.delete(f"/api/generations/{created['id']}")

        assert response.status_code == 204
        missing = await test_client.get(f"/api/generations/{created['id']}")
        assert missing.status_code == 404

    async def test_delete_unknown_output_returns_404(self, test_client):
        response = await test_client.delete(f"/api/generations/outputs/{uuid4()}")

        assert response.status_code == 404


@pytest.mark.asyncio
class TestCancelAndRetryEndpoints:
    async def test_cancel_running_generation(self, test_client):
        created = (await test_client.post("/api/generations", json=submit_body())).json()

        response = await test_client.post(f"/api/generations/{created['id']}/cancel")
        assert response.status_code == 200
        assert response.json() == {"success": True, "error": None}

        fetched = (await test_client.get(f"/api/generations/{created['id']}")).json()
        assert fetched["status"] == "cancelled"
        assert "Generation cancelled by user." in fetched["logs"]

    async def test_cancel_twice_is_success(self, test_client):
        created = (await test_client.post("/api/generations", json=submit_body())).json()

        await test_client.post(f"/api/generations/{created['id']}/cancel")
        again = await test_client.post(f"/api/generations/{created['id']}/cancel")

        assert again.status_code == 200
        assert again.json()["success"] is True

    async def test_cancel_unknown_generation_returns_404(self, test_client):
        response = await test_client.post(f"/api/generations/{uuid4()}/cancel")

        assert response.status_code == 404

    async def test_retry_creates_new_generation(self, test_client):
        created = (await test_client.post("/api/generations", json=submit_body())).json()
        await test_client.post(f"/api/generations/{created['id']}/cancel")

        response = await test_client.post(f"/api/generations/{created['id']}/retry")

        assert response.status_code == 201
        retried = response.json()
        assert retried["id"] != created["id"]
        assert retried["status"] == "queued"
        assert retried["input_sources"][0]["value"] == "https://example.com/boat.png"
        assert retried["request_options"]["num_images"] == 2
