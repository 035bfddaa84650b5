"""
Test authentication and API key management endpoints.
"""
import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.database.models import APIKey


def test_register_user(client: TestClient, test_user):
    """Test user registration."""
    response = client.post("/api/v1/auth/register", json=test_user)
    assert response.status_code == 200

    data = response.json()
    assert data["username"] == test_user["username"]
    assert data["email"] == test_user["email"]
    assert "password" not in data


def test_duplicate_registration(client: TestClient, test_user):
    """Test duplicate user registration."""
    client.post("/api/v1/auth/register", json=test_user)

    response = client.post("/api/v1/auth/register", json=test_user)
    assert response.status_code == 400
    assert "already registered" in response.json()["error"]


def test_login_user(client: TestClient, test_user):
    """Test user login."""
    client.post("/api/v1/auth/register", json=test_user)

    response = client.post(
        "/api/v1/auth/login",
        data={"username": test_user["username"], "password": test_user["password"]}
    )
    assert response.status_code == 200

    data = response.json()
    assert "access_token" in data
    assert data["token_type"] == "bearer"


def test_invalid_login(client: TestClient):
    """Test invalid login."""
    response = client.post(
        "/api/v1/auth/login",
        data={"username": "nonexistent", "password": "wrongpassword"}
    )
    assert response.status_code == 401
    assert "Incorrect username or password" in response.json()["error"]


def test_get_current_user(client: TestClient, test_user, auth_headers):
    """Test getting current user info."""
    response = client.get("/api/v1/auth/me", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["username"] == test_user["username"]


def test_create_api_key(client: TestClient, auth_headers):
    """Test API key creation."""
    response = client.post(
        "/api/v1/auth/api-keys", json={"name": "my key"}, headers=auth_headers
    )
    assert response.status_code == 200

    data = response.json()
    assert data["name"] == "my key"
    assert data["api_key"].startswith("apk_")
    assert len(data["api_key"]) == len("apk_") + 32


def test_create_api_key_default_name(client: TestClient, auth_headers):
    response = client.post("/api/v1/auth/api-keys", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["name"].startswith("API key ")


def test_active_api_key_limit(client: TestClient, auth_headers):
    """A user may hold at most MAX_ACTIVE_API_KEYS active keys."""
    created = [
        client.post("/api/v1/auth/api-keys", headers=auth_headers).json()
        for _ in range(settings.MAX_ACTIVE_API_KEYS)
    ]

    response = client.post("/api/v1/auth/api-keys", headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "API_KEY_LIMIT_REACHED"

    # revoking one frees a slot
    client.delete(f"/api/v1/auth/api-keys/{created[0]['id']}", headers=auth_headers)
    response = client.post("/api/v1/auth/api-keys", headers=auth_headers)
    assert response.status_code == 200


def test_list_api_keys(client: TestClient, auth_headers, api_key):
    """Test listing API keys."""
    response = client.get("/api/v1/auth/api-keys", headers=auth_headers)
    assert response.status_code == 200

    data = response.json()
    assert len(data) == 1
    assert data[0]["key_hint"].startswith("apk_")
    assert data[0]["key_hint"] != api_key["api_key"]
    assert data[0]["is_active"] is True


def test_rotate_api_key(client: TestClient, auth_headers, api_key, db_session):
    response = client.put(
        f"/api/v1/auth/api-keys/{api_key['id']}/rotate", headers=auth_headers
    )
    assert response.status_code == 200

    rotated = response.json()
    assert rotated["id"] == api_key["id"]
    assert rotated["api_key"] != api_key["api_key"]

    stored = db_session.get(APIKey, api_key["id"])
    assert stored.key == rotated["api_key"]


def test_rotate_revoked_key_fails(client: TestClient, auth_headers, api_key):
    client.delete(f"/api/v1/auth/api-keys/{api_key['id']}", headers=auth_headers)

    response = client.put(
        f"/api/v1/auth/api-keys/{api_key['id']}/rotate", headers=auth_headers
    )
    assert response.status_code == 404


def test_deactivate_unknown_key(client: TestClient, auth_headers):
    response = client.delete("/api/v1/auth/api-keys/999", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.parametrize("path", ["/api/v1/auth/me", "/api/v1/auth/api-keys", "/api/v1/usage"])
def test_dashboard_endpoints_reject_bad_token(client: TestClient, path):
    response = client.get(path, headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
