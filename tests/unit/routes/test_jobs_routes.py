"""Route tests for job submission, status reads, data, logs and queue stats.

The ``api_client`` fixture wires the app to an in-memory store and a queue
whose worker runs jobs against ``FakeAdapter`` and a fake browser, so a
submitted job really executes in the background.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncGenerator, Iterator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from httpx import AsyncClient

from listing_harvester.adapters.registry import register, unregister
from listing_harvester.api.main import app
from listing_harvester.config.settings import get_settings
from tests.factories.fakes import FakeAdapter, InMemoryJobStore
from tests.factories.jobs import ScrapeJobFactory


@pytest.fixture(autouse=True)
def registered_fake_site() -> Iterator[None]:
    register(FakeAdapter)
    yield
    unregister(FakeAdapter.site)


@pytest_asyncio.fixture
async def client(api_client: AsyncClient, data_dir: Path) -> AsyncGenerator[AsyncClient, None]:
    """``api_client`` with result files read from the worker's ``data_dir``."""
    app.dependency_overrides[get_settings] = lambda: get_settings().model_copy(
        update={"data_dir": data_dir}
    )
    yield api_client


async def _wait_for_status(
    client: AsyncClient, job_id: str, wanted: str, timeout: float = 5.0
) -> dict[str, Any]:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        body = (await client.get(f"/api/jobs/{job_id}")).json()
        if body["status"] == wanted:
            return body
        if loop.time() > deadline:
            raise AssertionError(f"job {job_id} stuck in {body['status']}")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
class TestAuthentication:
    async def test_missing_key_is_rejected(self, client: AsyncClient) -> None:
        response = await client.get("/api/jobs", headers={"X-API-Key": ""})

        assert response.status_code == 401

    async def test_wrong_key_is_rejected(self, client: AsyncClient) -> None:
        response = await client.get("/api/jobs", headers={"X-API-Key": "nope"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key."


@pytest.mark.asyncio
class TestSubmission:
    async def test_submit_returns_201_and_persists_queued_row(
        self, client: AsyncClient, store: InMemoryJobStore
    ) -> None:
        response = await client.post(
            "/api/jobs",
            json={"site": "fake", "parameters": {"location": "seattle", "max_pages": 2}},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "queued"
        assert body["message"] == "Scraping job queued successfully"
        job = store.jobs[body["job_id"]]
        assert job.site == "fake"
        assert job.parameters == {"location": "seattle", "max_pages": 2}

    async def test_scrape_alias_accepts_the_same_payload(self, client: AsyncClient) -> None:
        response = await client.post("/api/scrape", json={"site": "fake", "format": "csv"})

        assert response.status_code == 201

    async def test_unknown_site_is_rejected(
        self, client: AsyncClient, store: InMemoryJobStore
    ) -> None:
        response = await client.post("/api/jobs", json={"site": "nowhere"})

        assert response.status_code == 422
        assert "Unknown site 'nowhere'" in response.json()["detail"]
        assert "fake" in response.json()["detail"]
        assert store.jobs == {}

    async def test_bad_format_is_rejected(self, client: AsyncClient) -> None:
        response = await client.post("/api/jobs", json={"site": "fake", "format": "xml"})

        assert response.status_code == 422

    async def test_invalid_page_budget_is_rejected_before_queueing(
        self, client: AsyncClient, store: InMemoryJobStore
    ) -> None:
        response = await client.post(
            "/api/jobs", json={"site": "fake", "parameters": {"maxPages": "abc"}}
        )

        assert response.status_code == 422
        assert store.jobs == {}

    async def test_enrich_job_type_without_urls_is_rejected(self, client: AsyncClient) -> None:
        response = await client.post("/api/jobs", json={"site": "fake", "job_type": "enrich"})

        assert response.status_code == 422

    async def test_enrich_endpoint_builds_parameters(
        self, client: AsyncClient, store: InMemoryJobStore
    ) -> None:
        response = await client.post(
            "/api/enrich",
            json={
                "site": "fake",
                "item_urls": ["https://listings.example.com/v/1-0"],
                "original_data": [{"name": "Venue 1-0", "url": "https://listings.example.com/v/1-0"}],
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Enrichment job queued successfully"
        job = store.jobs[body["job_id"]]
        assert job.job_type == "enrich"
        assert job.parameters["item_urls"] == ["https://listings.example.com/v/1-0"]
        assert job.parameters["original_data"][0]["name"] == "Venue 1-0"


@pytest.mark.asyncio
class TestReads:
    async def test_unknown_job_is_404(self, client: AsyncClient) -> None:
        response = await client.get(f"/api/jobs/{uuid.uuid4()}")

        assert response.status_code == 404

    async def test_malformed_job_id_is_422(self, client: AsyncClient) -> None:
        response = await client.get("/api/jobs/not-a-uuid")

        assert response.status_code == 422

    async def test_status_read_carries_no_cache_headers(
        self, client: AsyncClient, store: InMemoryJobStore
    ) -> None:
        job = ScrapeJobFactory.build(status="running", pages_scraped=2, items_extracted=20)
        await store.create_job(job)

        response = await client.get(f"/api/jobs/{job.id}")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
        assert response.headers["pragma"] == "no-cache"
        assert response.headers["expires"] == "0"
        body = response.json()
        assert body["status"] == "running"
        assert (body["pages_scraped"], body["items_extracted"]) == (2, 20)

    async def test_list_is_newest_first_and_filterable(
        self, client: AsyncClient, store: InMemoryJobStore
    ) -> None:
        older = ScrapeJobFactory.build(status="completed")
        newer = ScrapeJobFactory.build(status="failed")
        await store.create_job(older)
        await store.create_job(newer)

        listed = (await client.get("/api/jobs")).json()
        failed_only = (await client.get("/api/jobs", params={"status": "failed"})).json()

        assert [job["id"] for job in listed["jobs"]] == [str(newer.id), str(older.id)]
        assert [job["id"] for job in failed_only["jobs"]] == [str(newer.id)]

    async def test_list_rejects_out_of_range_limit(self, client: AsyncClient) -> None:
        response = await client.get("/api/jobs", params={"limit": 0})

        assert response.status_code == 422


@pytest.mark.asyncio
class TestResultData:
    async def test_data_before_completion_is_409(
        self, client: AsyncClient, store: InMemoryJobStore
    ) -> None:
        job = ScrapeJobFactory.build(status="running")
        await store.create_job(job)

        response = await client.get(f"/api/jobs/{job.id}/data")

        assert response.status_code == 409

    async def test_completed_job_without_file_is_404(
        self, client: AsyncClient, store: InMemoryJobStore
    ) -> None:
        job = ScrapeJobFactory.build(status="completed")
        await store.create_job(job)

        response = await client.get(f"/api/jobs/{job.id}/data")

        assert response.status_code == 404

    async def test_submitted_job_runs_and_exposes_its_items(self, client: AsyncClient) -> None:
        submitted = await client.post(
            "/api/jobs", json={"site": "fake", "parameters": {"max_pages": 2}}
        )
        job_id = submitted.json()["job_id"]

        finished = await _wait_for_status(client, job_id, "completed")
        data = await client.get(f"/api/jobs/{job_id}/data")

        assert finished["pages_scraped"] == 2
        assert finished["items_extracted"] == 20
        assert finished["result_file_path"].endswith(f"{job_id}.json")
        assert data.status_code == 200
        body = data.json()
        assert body["count"] == 20
        assert body["items"][0]["name"] == "Venue 1-0"


@pytest.mark.asyncio
class TestLogsAndStats:
    async def test_logs_of_finished_job(self, client: AsyncClient) -> None:
        submitted = await client.post("/api/jobs", json={"site": "fake"})
        job_id = submitted.json()["job_id"]
        await _wait_for_status(client, job_id, "completed")

        response = await client.get(f"/api/jobs/{job_id}/logs")

        assert response.status_code == 200
        logs = response.json()
        assert logs
        assert {"level", "message", "context", "created_at"} <= set(logs[0])

    async def test_logs_of_unknown_job_is_404(self, client: AsyncClient) -> None:
        response = await client.get(f"/api/jobs/{uuid.uuid4()}/logs")

        assert response.status_code == 404

    async def test_queue_stats(self, client: AsyncClient, store: InMemoryJobStore) -> None:
        await store.create_job(ScrapeJobFactory.build(status="completed"))
        await store.create_job(ScrapeJobFactory.build(status="failed"))

        response = await client.get("/api/queue/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["concurrency"] == 1
        assert body["running"] is False
        assert body["jobs_by_status"]["completed"] == 1
        assert body["jobs_by_status"]["failed"] == 1
        assert body["jobs_by_status"]["queued"] == 0

    async def test_queue_stats_survive_store_outage(
        self, client: AsyncClient, store: InMemoryJobStore
    ) -> None:
        store.fail_on.add("count_jobs_by_status")

        response = await client.get("/api/queue/stats")

        assert response.status_code == 200
        assert response.json()["jobs_by_status"] == {}
