"""End-to-end API tests: real app, real SQLite file, no Stash server."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

# Hey future me - nothing here talks to a Stash instance. The instance rows point at
# hosts that do not exist, and the scheduler is off (see the client fixture), so the
# only data the library ever sees is what the tests put in through the API.


@pytest.fixture
def user(client: TestClient) -> dict[str, str]:
    """Headers of a freshly created user."""
    response = client.post("/api/users", json={"username": "alice"})
    assert response.status_code == 201
    return {"X-User-Id": str(response.json()["id"])}


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["instances"] == 0
        assert body["scheduler"]["running"] is False

    def test_correlation_header(self, client: TestClient) -> None:
        response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"


class TestUsers:
    def test_crud(self, client: TestClient) -> None:
        created = client.post("/api/users", json={"username": "bob"}).json()

        assert client.get(f"/api/users/{created['id']}").json()["username"] == "bob"
        assert [u["username"] for u in client.get("/api/users").json()] == ["bob"]
        assert client.delete(f"/api/users/{created['id']}").status_code == 204
        assert client.get(f"/api/users/{created['id']}").status_code == 404

    def test_duplicate_is_conflict(self, client: TestClient) -> None:
        client.post("/api/users", json={"username": "bob"})
        assert client.post("/api/users", json={"username": "bob"}).status_code == 409

    def test_allowed_instances(self, client: TestClient, user: dict[str, str]) -> None:
        user_id = user["X-User-Id"]
        instance = client.post(
            "/api/instances", json={"name": "Home", "url": "http://home:9999/graphql"}
        ).json()

        response = client.put(
            f"/api/users/{user_id}/instances", json={"instance_ids": [instance["id"]]}
        )
        unknown = client.put(f"/api/users/{user_id}/instances", json={"instance_ids": ["nope"]})

        assert response.json()["instance_ids"] == [instance["id"]]
        assert unknown.status_code == 400


class TestInstances:
    def test_create_hides_api_key(self, client: TestClient) -> None:
        response = client.post(
            "/api/instances",
            json={"name": "Home", "url": "http://home:9999/graphql", "api_key": "secret"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["has_api_key"] is True
        assert "api_key" not in body
        assert client.get("/health").json()["instances"] == 1

    def test_bad_url_is_rejected(self, client: TestClient) -> None:
        response = client.post("/api/instances", json={"name": "Home", "url": "home:9999"})
        assert response.status_code == 400

    def test_update_and_delete(self, client: TestClient) -> None:
        created = client.post(
            "/api/instances", json={"name": "Home", "url": "http://home:9999/graphql"}
        ).json()

        patched = client.patch(f"/api/instances/{created['id']}", json={"enabled": False})
        deleted = client.delete(f"/api/instances/{created['id']}")

        assert patched.json()["enabled"] is False
        assert deleted.status_code == 204
        assert client.get(f"/api/instances/{created['id']}").status_code == 404

    def test_connection_check(self, client: TestClient) -> None:
        with patch(
            "peekstash.application.services.stash_instance_service.StashClient"
        ) as client_cls:
            client_cls.return_value.get_version = AsyncMock(return_value="v0.27.2")
            client_cls.return_value.close = AsyncMock()

            response = client.post(
                "/api/instances/test-connection", json={"url": "http://home:9999/graphql"}
            )

        assert response.json() == {"success": True, "version": "v0.27.2", "error": None}


class TestLibrary:
    def test_empty_library(self, client: TestClient, user: dict[str, str]) -> None:
        response = client.get("/api/library/scenes", headers=user)

        assert response.status_code == 200
        assert response.json() == {
            "entity_type": "scene",
            "items": [],
            "total": 0,
            "page": 1,
            "per_page": 40,
        }

    def test_filtered_query(self, client: TestClient, user: dict[str, str]) -> None:
        response = client.post(
            "/api/library/performers/query",
            headers=user,
            json={"filters": {"tags": {"value": ["3:abc"], "modifier": "INCLUDES_ALL"}}},
        )
        assert response.json()["total"] == 0

    def test_unknown_kind(self, client: TestClient, user: dict[str, str]) -> None:
        assert client.get("/api/library/markers", headers=user).status_code == 400

    def test_unknown_sort(self, client: TestClient, user: dict[str, str]) -> None:
        response = client.get("/api/library/tags", params={"sort": "bogus"}, headers=user)
        assert response.status_code == 400

    def test_user_header_required(self, client: TestClient) -> None:
        assert client.get("/api/library/scenes").status_code == 422

    def test_missing_entity(self, client: TestClient, user: dict[str, str]) -> None:
        response = client.get(
            "/api/library/scenes/1", params={"instance_id": "nope"}, headers=user
        )
        assert response.status_code == 404


class TestSync:
    def test_full_sync_without_instances(self, client: TestClient) -> None:
        response = client.post("/api/sync/full", params={"wait": "true"})

        assert response.status_code == 200
        assert response.json() == {"status": "completed", "results": []}

    def test_status_and_settings(self, client: TestClient) -> None:
        updated = client.put("/api/sync/settings", json={"sync_interval_minutes": 15})
        status = client.get("/api/sync/status").json()

        assert updated.json()["sync_interval_minutes"] == 15
        assert status["settings"]["sync_interval_minutes"] == 15
        assert status["states"] == []
        assert status["in_progress"] is False

    def test_interval_must_be_positive(self, client: TestClient) -> None:
        assert client.put("/api/sync/settings", json={"sync_interval_minutes": 0}).status_code == 422

    def test_scheduler_reports_interval(self, client: TestClient) -> None:
        client.put("/api/sync/settings", json={"sync_interval_minutes": 30})
        assert client.get("/api/sync/scheduler").json()["interval_minutes"] == 30

    def test_abort_without_pass(self, client: TestClient) -> None:
        assert client.post("/api/sync/abort").json() == {"aborted": False}

    def test_single_entity_without_instances(self, client: TestClient) -> None:
        response = client.post(
            "/api/sync/entity", json={"entity_type": "scene", "entity_id": "1"}
        )
        assert response.json() == {"changed": False}


class TestExclusions:
    def test_hide_flow(self, client: TestClient, user: dict[str, str]) -> None:
        hidden = client.post(
            "/api/exclusions/hidden",
            headers=user,
            json={"entity_type": "performers", "entity_id": "5", "instance_id": "abc"},
        )
        excluded = client.get("/api/exclusions/excluded", headers=user).json()
        removed = client.delete(
            "/api/exclusions/hidden/performer/5", params={"instance_id": "abc"}, headers=user
        )

        assert hidden.status_code == 201
        assert hidden.json()["entity_type"] == "performer"
        assert [(r["entity_type"], r["entity_id"], r["reason"]) for r in excluded] == [
            ("performer", "5", "hidden")
        ]
        assert removed.json() == {"removed": True}
        assert client.get("/api/exclusions/excluded", headers=user).json() == []

    def test_restrictions_validated(self, client: TestClient, user: dict[str, str]) -> None:
        user_id = user["X-User-Id"]

        ok = client.put(
            f"/api/exclusions/users/{user_id}/restrictions",
            json=[{"entity_type": "tags", "mode": "EXCLUDE", "entity_ids": ["1"]}],
        )
        bad = client.put(
            f"/api/exclusions/users/{user_id}/restrictions",
            json=[{"entity_type": "scenes", "mode": "EXCLUDE", "entity_ids": ["1"]}],
        )

        assert ok.json() == {"user_id": int(user_id), "restrictions": 1}
        assert bad.status_code == 400

    def test_recompute_all(self, client: TestClient, user: dict[str, str]) -> None:
        assert client.post("/api/exclusions/recompute-all").json()["success"] == 1


class TestStats:
    def test_empty_stats_and_rankings(self, client: TestClient, user: dict[str, str]) -> None:
        assert client.get("/api/stats", headers=user).json() == {
            "performers": {},
            "studios": {},
            "tags": {},
        }
        assert client.post("/api/stats/rankings/recompute", headers=user).json() == {
            "performer": 0,
            "studio": 0,
            "tag": 0,
            "scene": 0,
        }
        assert client.get("/api/stats/rankings/performers", headers=user).json() == []

    def test_rankings_for_unranked_kind(self, client: TestClient, user: dict[str, str]) -> None:
        assert client.get("/api/stats/rankings/galleries", headers=user).status_code == 400

    def test_recommendations_without_preferences(
        self, client: TestClient, user: dict[str, str]
    ) -> None:
        response = client.get("/api/stats/recommendations", headers=user)

        assert response.status_code == 200
        assert response.json()["scenes"] == []
        assert client.get("/api/stats/recommendations?limit=0", headers=user).status_code == 422
