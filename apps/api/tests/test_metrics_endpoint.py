from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import encode_identity_token
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.platform.security.identity import Identity, Role
from app.records.models import Organization


def _headers(role: Role, organization_id: str = "org-metrics") -> dict[str, str]:
    identity = Identity(id=f"metrics-{role.value}", role=role, organization_id=organization_id)
    return {"Authorization": f"Bearer {encode_identity_token(identity)}"}


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        session.add(Organization(id="org-metrics", name="Metrics Garage"))
        session.commit()
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_security_metrics(client: TestClient) -> None:
    assert client.get("/health").status_code == 200

    created = client.post("/api/customers", json={"name": "Metrics Customer"}, headers=_headers(Role.OWNER))
    assert created.status_code == 201
    assert client.get(f"/api/customers/{created.json()['id']}", headers=_headers(Role.OWNER)).status_code == 200

    denied = client.delete(f"/api/customers/{created.json()['id']}", headers=_headers(Role.MEMBER))
    assert denied.status_code == 403

    redirected = client.get("/api/navigation", params={"path": "/reports"}, headers=_headers(Role.MEMBER))
    assert redirected.json()["reason"] == "permission_denied"

    metrics = client.get("/metrics", headers=_headers(Role.ADMIN))
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "authz_decisions_total" in body
    assert "scope_resolutions_total" in body
    assert "navigation_redirects_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/customers/{id}"' in body
    assert 'resource="customers",action="delete",outcome="deny"' in body
    assert 'reason="permission_denied"' in body


def test_metrics_requires_reports_permission(client: TestClient) -> None:
    assert client.get("/metrics").status_code == 401

    response = client.get("/metrics", headers=_headers(Role.MEMBER))
    assert response.status_code == 403
    assert response.json()["detail"] == "You don't have permission to view reports."


def test_metrics_disabled_returns_not_found(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    assert client.get("/metrics", headers=_headers(Role.OWNER)).status_code == 404
