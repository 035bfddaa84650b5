"""
Test configuration and fixtures.
"""
import os

# Must be set before the application modules create their engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.database.database import SessionLocal, engine
from app.database.models import Base, Company


@pytest.fixture(autouse=True)
def reset_database():
    """Give every test an empty schema."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db_session():
    """Plain database session for arranging and inspecting data."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    """Create test client (runs the application lifespan)."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def services(client):
    """Service container of the running application."""
    return app.state.services


@pytest.fixture
def test_user():
    """Test user data."""
    return {
        "username": "testuser",
        "email": "test@example.com",
        "password": "testpassword123"
    }


@pytest.fixture
def auth_headers(client: TestClient, test_user):
    """Register and log in the test user."""
    client.post("/api/v1/auth/register", json=test_user)
    response = client.post(
        "/api/v1/auth/login",
        data={"username": test_user["username"], "password": test_user["password"]}
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api_key(client: TestClient, auth_headers):
    """Create an API key for the test user."""
    response = client.post(
        "/api/v1/auth/api-keys", json={"name": "test key"}, headers=auth_headers
    )
    return response.json()


@pytest.fixture
def companies(db_session):
    """A few company profiles."""
    rows = [
        Company(symbol="AAPL", company_name="Apple Inc.", price=190.0, market_cap=3.0e12,
                exchange="NASDAQ", sector="Technology", industry="Consumer Electronics",
                currency="USD", country="US"),
        Company(symbol="MSFT", company_name="Microsoft Corporation", price=410.0, market_cap=3.1e12,
                exchange="NASDAQ", sector="Technology", industry="Software",
                currency="USD", country="US"),
        Company(symbol="XOM", company_name="Exxon Mobil Corporation", price=110.0, market_cap=4.4e11,
                exchange="NYSE", sector="Energy", industry="Oil & Gas",
                currency="USD", country="US"),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows
