"""Tests for the garden HTTP endpoints."""

from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.core.config import Settings
from src.core.garden_context import build_context, open_garden
from src.core.local_cache import MEMORY_PATH, LocalCache
from src.interface.garden_router import router
from src.interface.wallet import StaticWalletProvider
from tests.unit.mocks import FakeContractGateway


@pytest.fixture
def client(test_settings: Settings) -> Iterator[TestClient]:
    """Client for an app whose lifespan opens a disconnected in-memory garden."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        context = build_context(
            config=test_settings,
            wallet=StaticWalletProvider(),
            gateway=FakeContractGateway(),
            cache=LocalCache(MEMORY_PATH),
        )
        async with open_garden(context) as garden:
            app.state.garden = garden
            yield

    app = FastAPI(lifespan=lifespan)
    app.include_router(router)
    with TestClient(app) as test_client:
        yield test_client


@pytest.mark.unit
class TestTasks:
    def test_list_starter_tasks(self, client: TestClient):
        response = client.get("/garden/tasks")

        assert response.status_code == 200
        assert {task["id"] for task in response.json()} == {"1", "2", "3"}

    def test_list_with_filters(self, client: TestClient):
        response = client.get("/garden/tasks", params={"status": "pending", "sort_by": "title", "sort_order": "asc"})

        assert [task["title"] for task in response.json()] == ["Call mom", "Morning workout"]

    def test_create_task(self, client: TestClient):
        response = client.post("/garden/tasks", json={"title": "Ship release", "priority": "high"})

        assert response.status_code == 201
        body = response.json()
        assert body["plant_type"] == "tree"
        assert body["compost_reward"] == 15
        assert body["sync_status"] == "local_only"

    def test_create_task_rejects_blank_title(self, client: TestClient):
        response = client.post("/garden/tasks", json={"title": "   "})

        assert response.status_code == 422

    def test_get_unknown_task(self, client: TestClient):
        response = client.get("/garden/tasks/missing")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "ERR_TASK_NOT_FOUND"

    def test_update_task(self, client: TestClient):
        response = client.patch("/garden/tasks/3", json={"priority": "high", "title": "Call mom tonight"})

        assert response.status_code == 200
        assert response.json()["compost_reward"] == 15
        assert response.json()["title"] == "Call mom tonight"

    def test_update_with_blank_title(self, client: TestClient):
        response = client.patch("/garden/tasks/3", json={"title": " "})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "ERR_INVALID_INPUT"

    def test_complete_and_toggle(self, client: TestClient):
        completed = client.post("/garden/tasks/1/complete")
        toggled = client.post("/garden/tasks/1/toggle")

        assert completed.json()["status"] == "completed"
        assert toggled.json()["status"] == "pending"
        assert client.get("/garden/profile").json()["compost"] == 128

    def test_completing_archived_task_conflicts(self, client: TestClient):
        client.post("/garden/tasks/3/archive")

        response = client.post("/garden/tasks/3/complete")

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "ERR_INVALID_STATE_TRANSITION"

    def test_active_only_hides_archived(self, client: TestClient):
        client.post("/garden/tasks/3/archive")

        response = client.get("/garden/tasks", params={"active_only": True})

        assert "3" not in {task["id"] for task in response.json()}

    def test_delete_task(self, client: TestClient):
        response = client.delete("/garden/tasks/2")

        assert response.status_code == 204
        assert client.get("/garden/tasks/2").status_code == 404
        assert client.get("/garden/plants").json() == []
        assert client.get("/garden/profile").json()["compost"] == 118


@pytest.mark.unit
class TestGarden:
    def test_focus_session(self, client: TestClient):
        response = client.post("/garden/focus-sessions", json={"duration": 600, "distractions_count": 1})

        assert response.status_code == 201
        assert response.json()["compost_earned"] == 20
        assert response.json()["focus_score"] == 90
        assert client.get("/garden/stats").json()["compost"] == 148

    def test_focus_session_for_unknown_task(self, client: TestClient):
        response = client.post("/garden/focus-sessions", json={"duration": 60, "task_id": "missing"})

        assert response.status_code == 404

    def test_verification(self, client: TestClient):
        response = client.post("/garden/profile/verification", json={"score": 1500})

        assert response.status_code == 200
        body = response.json()
        assert body["level"] == 4
        assert sorted(a["achievement_id"] for a in body["achievements"]) == ["community_bloom", "social_sprout"]
        assert sorted(body["seeds"]) == ["basic", "gold_seed", "silver_seed"]
        assert body["seeds"]["gold_seed"]["rarity"] == "rare"
        assert body["achievement_details"]["community_bloom"]["name"] == "Community Bloom"

    def test_profile_lists_starter_seed(self, client: TestClient):
        body = client.get("/garden/profile").json()

        assert body["seeds"] == {"basic": {"name": "Basic Seeds", "emoji": "🌱", "rarity": "common"}}
        assert body["achievement_details"] == {}

    def test_verification_rejects_negative_score(self, client: TestClient):
        response = client.post("/garden/profile/verification", json={"score": -1})

        assert response.status_code == 422

    def test_stats(self, client: TestClient):
        body = client.get("/garden/stats").json()

        assert body["total_tasks"] == 3
        assert body["completed_tasks"] == 1
        assert body["level"] == 1


@pytest.mark.unit
class TestSync:
    def test_overview_when_disconnected(self, client: TestClient):
        body = client.get("/garden/sync").json()

        assert body["connected"] is False
        assert set(body["sources"].values()) == {"defaults"}
        assert set(body["load_states"].values()) == {"hydrated"}

    def test_flush_skipped_when_disconnected(self, client: TestClient):
        client.post("/garden/tasks", json={"title": "Offline"})

        body = client.post("/garden/sync/flush").json()

        assert body["skipped"] is True
        assert client.get("/garden/sync").json()["outbox_size"] == 2

    def test_refresh_reloads_from_local_cache(self, client: TestClient):
        client.post("/garden/tasks", json={"title": "Survives refresh"})

        report = client.post("/garden/sync/refresh").json()

        assert report["aggregates"]["tasks"]["source"] == "local"
        titles = {task["title"] for task in client.get("/garden/tasks").json()}
        assert "Survives refresh" in titles
