"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from crmshift.api.dependencies import get_services
from crmshift.api.main import app

from .conftest import TOKEN_PATH, USER, FakeResponse


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestPropertiesApi:
    def test_list_properties(self, client, crm):
        crm.add_property("a", "contacts", "email", "Email", built_in=True)
        crm.add_property("a", "contacts", "favorite_color", "Favorite Color")

        response = client.get("/api/properties/a/contact", params={"user_id": USER, "property_type": "custom"})

        assert response.status_code == 200
        data = response.json()
        assert data["object_type"] == "contacts"
        assert data["counts"] == {"total": 2, "default": 1, "custom": 1}
        assert [p["name"] for p in data["properties"]] == ["favorite_color"]

    def test_unknown_instance(self, client):
        response = client.get("/api/properties/c/contacts", params={"user_id": USER})
        assert response.status_code == 400

    def test_unauthorized_tenant(self, client):
        response = client.get("/api/properties/a/contacts", params={"user_id": "stranger"})

        assert response.status_code == 401
        assert response.json()["error"] == "NO_REFRESH_TOKEN"

    def test_upstream_outage(self, client, crm):
        crm.queue("POST", TOKEN_PATH, FakeResponse(503, {"message": "down"}))

        response = client.get("/api/properties/a/contacts", params={"user_id": USER})
        assert response.status_code == 503


class TestMappingsApi:
    def test_add_edit_list_delete(self, client):
        added = client.post("/api/mappings/contacts", json={"user_id": USER, "source_label": "Favorite Color"})
        assert added.status_code == 201
        assert added.json()["category"] == "userdefined"

        edited = client.put("/api/mappings/contacts", json={
            "user_id": USER, "source": "Favorite Color", "target": "Preferred Colour", "expected_version": 1,
        })
        assert edited.status_code == 200
        assert edited.json()["version"] == 2

        listed = client.get("/api/mappings/contact", params={"user_id": USER}).json()
        assert listed["total"] == 4
        assert listed["rows"][0]["target_label"] == "Preferred Colour"

        deleted = client.delete("/api/mappings/contacts", params={"user_id": USER, "source": "Favorite Color"})
        assert deleted.json()["removed"] == 1

    def test_default_edit_is_forbidden(self, client):
        response = client.put("/api/mappings/contacts", json={"user_id": USER, "source": "Email", "target": "Mail"})

        assert response.status_code == 403
        assert response.json()["error"] == "IMMUTABLE_MAPPING"

    def test_version_conflict(self, client):
        client.put("/api/mappings/deals", json={
            "user_id": USER, "source": "Amount", "target": "Deal Value", "category": "custom",
        })
        response = client.put("/api/mappings/deals", json={
            "user_id": USER, "source": "Amount", "target": "Revenue", "expected_version": 0,
        })

        assert response.status_code == 409
        assert response.json()["details"]["actual_version"] == 1

    def test_revert(self, client):
        client.put("/api/mappings/deals", json={
            "user_id": USER, "source": "Amount", "target": "Revenue", "category": "custom",
        })
        response = client.post("/api/mappings/deals/revert", json={"user_id": USER, "source": "Amount"})

        assert response.status_code == 200
        assert response.json()["target_label"] == "Amount"

    def test_rewrite(self, client, mappings):
        mappings.add_mapping(USER, "contacts", "Nickname")

        response = client.post("/api/mappings/rewrite", json={"user_id": USER})

        assert response.status_code == 200
        assert response.json()["entries_after"] == 1


class TestMigrationsApi:
    def test_migrate_properties(self, client, crm, mappings):
        mappings.add_mapping(USER, "contacts", "Favorite Color")

        response = client.post("/api/migrations/properties", json={"user_id": USER, "object_types": ["contacts"]})

        assert response.status_code == 200
        data = response.json()
        assert data["created_count"] == 1
        assert data["outcomes"][0]["outcome"] == "created"
        assert "favorite_color" in crm.properties["b"]["contacts"]

    def test_dry_run(self, client, crm, mappings):
        mappings.add_mapping(USER, "contacts", "Favorite Color")

        response = client.post("/api/migrations/properties", json={
            "user_id": USER, "object_types": ["contacts"], "dry_run": True,
        })

        assert response.json()["dry_run"] is True
        assert crm.count("POST", "/crm/v3/properties/") == 0

    def test_object_types_required(self, client):
        response = client.post("/api/migrations/properties", json={"user_id": USER, "object_types": []})
        assert response.status_code == 422

    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "healthy"}
