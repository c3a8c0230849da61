from __future__ import annotations

import json
import time
from typing import Any, Iterator

import pytest
from fastapi.testclient import TestClient

from pipeline_stubs import EmbedderStub, StructurerStub, VerifierStub, make_container, parsed_recipe
from src.app.config import Settings
from src.app.deps import ServiceContainer
from src.app.domain.errors import InvocationError, UpstreamUnavailableError
from src.app.main import create_app

SHORTS_URL = "https://www.youtube.com/shorts/abc123"


def _settings() -> Settings:
    return Settings(_env_file=None, STORE_BACKEND="memory", GEMINI_API_KEY="test-key", LOG_LEVEL="WARNING")


def _client(container: ServiceContainer) -> TestClient:
    return TestClient(create_app(_settings(), services_factory=lambda settings: container))


def _ingest(client: TestClient, url: str = SHORTS_URL, **params: Any) -> Any:
    return client.post("/recipes", json={"type": "youtube-shorts", "data": {"url": url}}, params=params)


def _wait_for_job(client: TestClient, job_id: int, timeout: float = 5.0) -> dict[str, Any]:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/recipe-jobs/{job_id}").json()
        if body["status"] in ("completed", "failed") or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


@pytest.fixture
def client() -> Iterator[TestClient]:
    with _client(make_container()) as test_client:
        yield test_client


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"ok": True}


class TestIngestRecipe:
    def test_accepts_and_completes(self, client: TestClient) -> None:
        response = _ingest(client)

        assert response.status_code == 202
        body = response.json()
        assert body["externalRef"] == "abc123"
        assert body["kind"] == "youtube-shorts"
        assert [step["type"] for step in body["steps"]] == [
            "extract_content", "structure_content", "generate_embedding",
        ]

        job = _wait_for_job(client, body["id"])
        assert job["status"] == "completed"
        assert all(step["status"] == "completed" for step in job["steps"])

    def test_second_ingest_reports_existing_recipe(self, client: TestClient) -> None:
        first = _ingest(client).json()
        assert _wait_for_job(client, first["id"])["status"] == "completed"

        response = _ingest(client)

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "already_exists"
        recipe = client.get(f"/recipes/{detail['recipeId']}").json()
        assert recipe["name"] == "garlic pasta"
        assert recipe["sourceId"] == first["sourceId"]

    def test_invalid_url(self, client: TestClient) -> None:
        response = _ingest(client, url="https://www.youtube.com/watch?v=abc123")
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "validation"

    def test_unsupported_type(self, client: TestClient) -> None:
        response = client.post("/recipes", json={"type": "video", "data": {"url": SHORTS_URL}})
        assert response.status_code == 400

    def test_unavailable_video(self) -> None:
        container = make_container(verifier=VerifierStub(error=UpstreamUnavailableError("private")))
        with _client(container) as client:
            response = _ingest(client)
        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "upstream_unavailable"
        assert container.repository.row_counts()["sources"] == 0

    def test_failed_job_exposes_safe_message(self) -> None:
        container = make_container(embedder=EmbedderStub(error=InvocationError("provider returned 500")))
        with _client(container) as client:
            job = _wait_for_job(client, _ingest(client).json()["id"])

        assert job["status"] == "failed"
        assert "provider returned 500" not in job["errorMessage"]
        assert job["steps"][2]["errorMessage"] == "provider returned 500"

    def test_streams_events(self, client: TestClient) -> None:
        response = _ingest(client, stream="true")

        assert response.status_code == 202
        assert response.headers["content-type"].startswith("application/x-ndjson")
        events = [json.loads(line) for line in response.text.splitlines() if line]
        assert [e["event"] for e in events] == [
            "step_started", "step_succeeded",
            "step_started", "step_succeeded",
            "step_started", "step_succeeded",
            "pipeline_completed",
        ]
        assert events[0]["step_type"] == "extract_content"
        assert client.get(f"/recipes/{events[-1]['recipe_id']}").status_code == 200

    def test_unexpected_outcome_is_an_internal_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        container = make_container()

        async def ingest(kind: str, url: str) -> object:
            return object()

        monkeypatch.setattr(container.ingestion, "ingest", ingest)
        with _client(container) as client:
            response = _ingest(client)

        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "internal"


class TestReadRoutes:
    def test_unknown_job_and_recipe(self, client: TestClient) -> None:
        assert client.get("/recipe-jobs/999").status_code == 404
        assert client.get("/recipes/999").status_code == 404

    def test_search(self) -> None:
        container = make_container(structurer=StructurerStub(parsed_recipe("Tofu Bowl", tags=["vegan"])))
        with _client(container) as client:
            _wait_for_job(client, _ingest(client).json()["id"])
            response = client.get("/recipes", params={"q": "vegan tofu"})

        assert response.status_code == 200
        body = response.json()
        assert body["query"] == "vegan tofu"
        assert [item["recipe"]["name"] for item in body["items"]] == ["tofu bowl"]
        item = body["items"][0]
        assert item["similarity"] == pytest.approx(1.0)
        assert item["finalScore"] == pytest.approx(0.7 * item["similarity"] + 0.3 * item["keywordScore"])

    def test_search_requires_query(self, client: TestClient) -> None:
        assert client.get("/recipes", params={"q": ""}).status_code == 422
        assert client.get("/recipes", params={"q": "   "}).status_code == 400

    def test_search_provider_failure(self) -> None:
        container = make_container(embedder=EmbedderStub(error=InvocationError("quota")))
        with _client(container) as client:
            response = client.get("/recipes", params={"q": "pasta"})
        assert response.status_code == 503
