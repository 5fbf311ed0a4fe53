"""Route tests for the unauthenticated ``GET /health`` endpoint."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from httpx import AsyncClient

from listing_harvester import __version__
from listing_harvester.adapters.registry import register, unregister
from listing_harvester.api.main import app
from tests.factories.fakes import FakeAdapter, InMemoryJobStore


@pytest.fixture(autouse=True)
def registered_fake_site() -> Iterator[None]:
    register(FakeAdapter)
    yield
    unregister(FakeAdapter.site)


@pytest.mark.asyncio
class TestHealth:
    async def test_no_api_key_needed(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/health", headers={"X-API-Key": ""})

        assert response.status_code == 200

    async def test_stopped_queue_reports_degraded(self, api_client: AsyncClient) -> None:
        body = (await api_client.get("/health")).json()

        assert body["status"] == "degraded"
        assert body["database"] == "ok"
        assert body["queue"] == "stopped"
        assert body["version"] == __version__
        assert "fake" in body["sites"]
        assert "timestamp" in body

    async def test_running_queue_with_reachable_database_is_ok(
        self, api_client: AsyncClient
    ) -> None:
        await app.state.job_queue.start()

        body = (await api_client.get("/health")).json()

        assert body["status"] == "ok"
        assert body["queue"] == "running"

    async def test_paused_queue(self, api_client: AsyncClient) -> None:
        await app.state.job_queue.start()
        app.state.job_queue.pause()

        body = (await api_client.get("/health")).json()

        assert body["queue"] == "paused"
        assert body["status"] == "degraded"

    async def test_database_outage_is_reported_not_raised(
        self, api_client: AsyncClient, store: InMemoryJobStore
    ) -> None:
        store.fail_on.add("ping")

        response = await api_client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "error"
        assert response.json()["status"] == "degraded"

    async def test_request_id_is_echoed(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["x-request-id"] == "req-123"
