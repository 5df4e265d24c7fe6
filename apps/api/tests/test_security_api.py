from __future__ import annotations

import json
from collections.abc import Generator

import httpx
import pytest
from fastapi.testclient import TestClient

from app import audit
from app.core.auth import encode_identity_token
from app.core.config import get_settings
from app.core.context import ELEVATED_SESSION_HEADER
from app.main import app
from app.platform.security.elevated import ElevatedSessionState, elevated_sessions
from app.platform.security.identity import Identity, Role


def _headers(role: Role, organization_id: str | None = "org-a", *, subject: str | None = None) -> dict[str, str]:
    identity = Identity(id=subject or f"{role.value}-{organization_id}", role=role, organization_id=organization_id)
    return {"Authorization": f"Bearer {encode_identity_token(identity)}"}


def _identity_provider(request: httpx.Request) -> httpx.Response:
    payload = json.loads(request.content)
    if request.url.path.endswith("superadmin-login"):
        if payload.get("password_hash") != "correct-horse":
            return httpx.Response(401, json={"authenticated": False, "message": "Invalid credentials"})
        return httpx.Response(
            200,
            json={"authenticated": True, "token": "tok-root", "superadmin": {"role": "super-admin"}},
        )
    return httpx.Response(200, json={"verified": payload.get("token") == "tok-root"})


@pytest.fixture(autouse=True)
def clear_state(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setattr(
        elevated_sessions,
        "_client",
        httpx.AsyncClient(transport=httpx.MockTransport(_identity_provider)),
    )
    audit.audit_entries.clear()
    elevated_sessions.reset()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    elevated_sessions.reset()
    get_settings.cache_clear()


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


def test_navigation_for_anonymous_user_redirects_to_login(client: TestClient) -> None:
    response = client.get("/api/navigation", params={"path": "/invoices/42"})

    assert response.status_code == 200
    assert response.json() == {
        "outcome": "redirect",
        "location": "/auth/login",
        "reason": "unauthenticated",
        "state": {"from": "/invoices/42"},
    }


def test_navigation_uses_configured_paths(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOGIN_PATH", "/signin")
    get_settings.cache_clear()

    response = client.get("/api/navigation", params={"path": "/customers"})

    assert response.json()["location"] == "/signin"


def test_navigation_permission_denied_for_member(client: TestClient) -> None:
    response = client.get("/api/navigation", params={"path": "/reports"}, headers=_headers(Role.MEMBER))

    assert response.json()["outcome"] == "redirect"
    assert response.json()["reason"] == "permission_denied"
    assert response.json()["location"] == "/"

    allowed = client.get("/api/navigation", params={"path": "/tasks"}, headers=_headers(Role.MEMBER))
    assert allowed.json()["outcome"] == "allow"


def test_navigation_ignores_external_redirect_target(client: TestClient) -> None:
    response = client.get(
        "/api/navigation",
        params={"path": "/reports", "redirect_to": "https://evil.example"},
        headers=_headers(Role.MEMBER),
    )

    assert response.json()["reason"] == "permission_denied"
    assert response.json()["location"] == "/"


def test_navigation_superadmin_section_needs_elevated_session(client: TestClient) -> None:
    headers = _headers(Role.SUPER_ADMIN, None, subject="root")

    without = client.get("/api/navigation", params={"path": "/superadmin/organizations"}, headers=headers)
    assert without.json()["location"] == "/superadmin/login"
    assert without.json()["reason"] == "elevated_session_required"

    with_session = client.get(
        "/api/navigation",
        params={"path": "/superadmin/organizations"},
        headers={**headers, ELEVATED_SESSION_HEADER: "tok-root"},
    )
    assert with_session.json()["outcome"] == "allow"


def test_permission_check_returns_denial_message(client: TestClient) -> None:
    response = client.post(
        "/api/permissions/check",
        json={"resource": "invoices", "action": "delete", "show_denied": True},
        headers=_headers(Role.MEMBER),
    )

    assert response.status_code == 200
    assert response.json() == {"outcome": "denied", "message": "You don't have permission to delete invoices."}

    allowed = client.post(
        "/api/permissions/check",
        json={"resource": "invoices", "action": "create"},
        headers=_headers(Role.MEMBER),
    )
    assert allowed.json()["outcome"] == "content"


def test_permission_matrix(client: TestClient) -> None:
    response = client.get("/api/permissions", headers=_headers(Role.MEMBER))

    assert response.status_code == 200
    body = response.json()
    assert body["role"] == "member"
    assert body["capabilities"]["invoices"] == ["view", "create"]
    assert body["capabilities"]["reports"] == []


def test_me_reports_identity_and_scope(client: TestClient) -> None:
    assert client.get("/me").status_code == 401

    response = client.get("/me", headers=_headers(Role.OWNER, "org-a"))

    assert response.status_code == 200
    body = response.json()
    assert body["identity"]["role"] == "owner"
    assert body["scope"] == {"kind": "tenant", "organization_id": "org-a"}
    assert body["elevated_session_valid"] is False
    assert "manage" in body["capabilities"]["customers"]


def test_elevated_session_lifecycle(client: TestClient) -> None:
    headers = _headers(Role.SUPER_ADMIN, None, subject="root")

    acquired = client.post(
        "/api/superadmin/session",
        json={"username": "root@example.com", "password": "correct-horse"},
        headers=headers,
    )
    assert acquired.status_code == 201
    assert acquired.json() == {"state": "valid", "valid": True, "token": "tok-root"}

    # The stored token is verified again on the next request.
    state = client.get("/api/superadmin/session", headers=headers)
    assert state.json()["valid"] is True

    me = client.get("/me", headers=headers)
    assert me.json()["scope"]["kind"] == "unscoped"

    revoked = client.delete("/api/superadmin/session", headers=headers)
    assert revoked.json() == {"state": "no_session", "valid": False, "token": None}
    assert elevated_sessions.stored_token("root") is None

    after = client.get("/me", headers=headers)
    assert after.json()["scope"]["kind"] == "none"


def test_elevated_session_rejected_credentials(client: TestClient) -> None:
    response = client.post(
        "/api/superadmin/session",
        json={"username": "root@example.com", "password": "wrong"},
        headers=_headers(Role.SUPER_ADMIN, None, subject="root"),
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"
    assert audit.entries_for("elevated.acquire_failed")


def test_tenant_roles_cannot_acquire_elevated_session(client: TestClient) -> None:
    response = client.post(
        "/api/superadmin/session",
        json={"username": "owner@example.com", "password": "correct-horse"},
        headers=_headers(Role.OWNER),
    )

    assert response.status_code == 403


def test_logout_revokes_elevated_session(client: TestClient) -> None:
    headers = _headers(Role.SUPER_USER, None, subject="root")
    elevated_sessions.store.set(elevated_sessions.token_key("root"), "tok-root")

    response = client.post("/api/auth/logout", headers=headers)

    assert response.status_code == 200
    assert response.json() == {"status": "signed_out"}
    assert elevated_sessions.stored_token("root") is None
    assert elevated_sessions.state("root") == ElevatedSessionState.NO_SESSION
    assert audit.entries_for("elevated.revoked")
