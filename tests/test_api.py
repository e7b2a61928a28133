import pytest
from httpx import ASGITransport, AsyncClient

from library_visibility.config import Settings, get_settings
from library_visibility.core.auth import admin_key_matches
from library_visibility.db.database import get_db
from library_visibility.db.models import Performer, Scene, ScenePerformer
from library_visibility.main import app
from library_visibility.services.exclusion_service import get_exclusion_service
from library_visibility.services.hidden_entity_service import (
    HiddenEntityService, get_hidden_entity_service,
)

INSTANCE = "inst1"
ADMIN_HEADERS = {"Authorization": "Bearer test-admin-key"}


@pytest.fixture
async def client(session_factory, service):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_exclusion_service] = lambda: service
    app.dependency_overrides[get_hidden_entity_service] = lambda: HiddenEntityService(service)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def library(seed):
    await seed(
        Performer(id="perf1", instance_id=INSTANCE),
        Scene(id="scene1", instance_id=INSTANCE),
        Scene(id="scene2", instance_id=INSTANCE),
        ScenePerformer(scene_id="scene1", scene_instance_id=INSTANCE, performer_id="perf1", performer_instance_id=INSTANCE),
        ScenePerformer(scene_id="scene2", scene_instance_id=INSTANCE, performer_id="perf1", performer_instance_id=INSTANCE),
    )


async def test_requires_admin_key(client, user_id):
    response = await client.post(f"/api/v1/exclusions/recompute/{user_id}")
    assert response.status_code == 401

    response = await client.post(
        f"/api/v1/exclusions/recompute/{user_id}",
        headers={"Authorization": "Bearer wrong"},
    )
    assert response.status_code == 401


async def test_unconfigured_admin_key_is_503(client, user_id):
    app.dependency_overrides[get_settings] = lambda: Settings(admin_api_key="")

    response = await client.post(f"/api/v1/exclusions/recompute/{user_id}", headers=ADMIN_HEADERS)

    assert response.status_code == 503


@pytest.mark.parametrize("presented,configured,expected", [
    ("test-admin-key", "test-admin-key", True),
    ("test-admin-key", "other", False),
    ("", "test-admin-key", False),
    (None, None, False),
])
def test_admin_key_matches(presented, configured, expected):
    assert admin_key_matches(presented, configured) is expected


async def test_recompute_unknown_user_is_404(client):
    response = await client.post("/api/v1/exclusions/recompute/999", headers=ADMIN_HEADERS)
    assert response.status_code == 404


async def test_hide_recompute_and_inspect(client, user_id, library):
    response = await client.post(
        f"/api/v1/hidden/{user_id}",
        json={"entityType": "performer", "entityId": "perf1"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["cascadeCount"] == 2

    response = await client.post(f"/api/v1/exclusions/recompute/{user_id}", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert (body["total"], body["direct"], body["cascade"], body["empty"]) == (3, 1, 2, 0)

    response = await client.get("/api/v1/exclusions/stats", params={"user_id": user_id}, headers=ADMIN_HEADERS)
    counts = {(item["entityType"], item["reason"]): item["count"] for item in response.json()}
    assert counts == {("performer", "hidden"): 1, ("scene", "cascade"): 2}

    response = await client.get(f"/api/v1/exclusions/users/{user_id}/stats", headers=ADMIN_HEADERS)
    stats = {item["entityType"]: item for item in response.json()}
    assert stats["scene"]["excludedCount"] == 2
    assert stats["scene"]["visibleCount"] == 0

    response = await client.get(
        f"/api/v1/exclusions/users/{user_id}",
        params={"entity_type": "scenes", "reason": "cascade"},
        headers=ADMIN_HEADERS,
    )
    assert [item["entityId"] for item in response.json()] == ["scene1", "scene2"]


async def test_unhide_runs_recompute_in_background(client, user_id, library, task_manager):
    await client.post(
        f"/api/v1/hidden/{user_id}",
        json={"entityType": "performer", "entityId": "perf1"},
        headers=ADMIN_HEADERS,
    )

    response = await client.delete(f"/api/v1/hidden/{user_id}/performer/perf1", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    assert response.json()["recomputeQueued"] is True
    await task_manager.wait_all(timeout=10)

    response = await client.get(f"/api/v1/exclusions/users/{user_id}", headers=ADMIN_HEADERS)
    assert response.json() == []

    response = await client.delete(f"/api/v1/hidden/{user_id}/performer/perf1", headers=ADMIN_HEADERS)
    assert response.status_code == 404


async def test_unknown_entity_type_is_400(client, user_id):
    response = await client.post(
        f"/api/v1/hidden/{user_id}",
        json={"entityType": "movie", "entityId": "m1"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 400

    response = await client.get(f"/api/v1/hidden/{user_id}", params={"entity_type": "movie"}, headers=ADMIN_HEADERS)
    assert response.status_code == 400


async def test_list_and_unhide_all(client, user_id, library):
    for entity_id in ("scene1", "scene2"):
        await client.post(
            f"/api/v1/hidden/{user_id}",
            json={"entityType": "scene", "entityId": entity_id},
            headers=ADMIN_HEADERS,
        )

    response = await client.get(f"/api/v1/hidden/{user_id}", headers=ADMIN_HEADERS)
    assert sorted(item["entityId"] for item in response.json()) == ["scene1", "scene2"]

    response = await client.delete(f"/api/v1/hidden/{user_id}", headers=ADMIN_HEADERS)
    assert response.json() == {"removed": 2}

    response = await client.get(f"/api/v1/hidden/{user_id}", headers=ADMIN_HEADERS)
    assert response.json() == []


async def test_recompute_all(client, user_id, library):
    response = await client.post("/api/v1/exclusions/recompute-all", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    assert response.json() == {"success": 1, "failed": 0, "errors": []}
