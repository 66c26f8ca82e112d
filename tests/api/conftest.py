import pytest
from fastapi.testclient import TestClient

from app.api.user import limiter
from app.core.security import create_access_token
from app.main import app


def _bearer(account_id: int, role: str = "user", **claims) -> dict:
    token = create_access_token(dict(claims, sub=str(account_id), role=role))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(service):
    """TestClient bound to the in-memory service; lifespan is not run."""
    app.state.ip_service = service
    limiter.reset()
    yield TestClient(app)
    app.state.ip_service = None


@pytest.fixture
def admin_headers():
    return _bearer(100, role="admin")


@pytest.fixture
def service_headers():
    return _bearer(200, role="service")


@pytest.fixture
def auth():
    """Build Authorization headers: auth(account_id, role="user", **claims)."""
    return _bearer
