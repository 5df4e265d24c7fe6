from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Generator
from typing import Any

import httpx
import pytest

from app import audit
from app.platform.security.context import build_security_context
from app.platform.security.elevated import ElevatedSessionManager, ElevatedSessionState
from app.platform.security.errors import VerificationFailure
from app.platform.security.identity import Identity, Role, SessionSnapshot
from app.platform.security.scope import UNSCOPED, TenantScope


VERIFY_URL = "http://identity.test/functions/v1/verify-superadmin-token"
LOGIN_URL = "http://identity.test/functions/v1/superadmin-login"


@pytest.fixture(autouse=True)
def clear_audit() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    yield
    audit.audit_entries.clear()


def _run(handler: Callable[[httpx.Request], Any], scenario: Callable[[ElevatedSessionManager], Any]) -> Any:
    async def main() -> Any:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            manager = ElevatedSessionManager(
                verify_url=VERIFY_URL,
                login_url=LOGIN_URL,
                timeout_seconds=1.0,
                client=client,
            )
            return await scenario(manager)

    return asyncio.run(main())


def test_acquire_stores_token_and_marks_session_valid() -> None:
    seen: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == LOGIN_URL
        seen.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={"authenticated": True, "token": "tok-1", "superadmin": {"role": "super-admin"}},
        )

    async def scenario(manager: ElevatedSessionManager) -> tuple[str, ElevatedSessionState, str | None]:
        token = await manager.acquire("root", "root@example.com", "s3cret")
        return token, manager.state("root"), manager.stored_token("root")

    token, state, stored = _run(handler, scenario)

    assert token == "tok-1"
    assert state == ElevatedSessionState.VALID
    assert stored == "tok-1"
    assert seen == [{"username": "root@example.com", "password_hash": "s3cret"}]
    assert len(audit.entries_for("elevated.acquired")) == 1


def test_acquire_rejected_credentials() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"authenticated": False, "message": "Invalid credentials"})

    async def scenario(manager: ElevatedSessionManager) -> None:
        with pytest.raises(VerificationFailure) as excinfo:
            await manager.acquire("root", "root@example.com", "wrong")
        assert excinfo.value.reason == "rejected"
        assert str(excinfo.value) == "Invalid credentials"
        assert manager.stored_token("root") is None
        assert manager.state("root") == ElevatedSessionState.NO_SESSION

    _run(handler, scenario)
    assert len(audit.entries_for("elevated.acquire_failed")) == 1


def test_acquire_rejects_non_elevated_account() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"authenticated": True, "token": "tok-x", "role": "member"})

    async def scenario(manager: ElevatedSessionManager) -> None:
        with pytest.raises(VerificationFailure) as excinfo:
            await manager.acquire("root", "someone@example.com", "pw")
        assert excinfo.value.reason == "not_elevated"
        assert manager.stored_token("root") is None

    _run(handler, scenario)


def test_acquire_unreachable_provider() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario(manager: ElevatedSessionManager) -> None:
        with pytest.raises(VerificationFailure) as excinfo:
            await manager.acquire("root", "root@example.com", "pw")
        assert excinfo.value.reason == "unreachable"

    _run(handler, scenario)


def test_verify_without_token_is_no_session() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no remote call expected")

    async def scenario(manager: ElevatedSessionManager) -> tuple[bool, ElevatedSessionState]:
        return await manager.verify("root"), manager.state("root")

    valid, state = _run(handler, scenario)

    assert valid is False
    assert state == ElevatedSessionState.NO_SESSION


def test_verify_valid_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"token": "tok-1"}
        return httpx.Response(200, json={"verified": True})

    async def scenario(manager: ElevatedSessionManager) -> tuple[bool, ElevatedSessionState, str | None]:
        valid = await manager.verify("root", "tok-1")
        return valid, manager.state("root"), manager.stored_token("root")

    valid, state, stored = _run(handler, scenario)

    assert valid is True
    assert state == ElevatedSessionState.VALID
    assert stored == "tok-1"


@pytest.mark.parametrize(
    "responder",
    [
        lambda request: httpx.Response(200, json={"verified": False}),
        lambda request: httpx.Response(500, json={"verified": True}),
        lambda request: httpx.Response(200, text="not json"),
    ],
)
def test_verify_failure_clears_cached_token(responder: Callable[[httpx.Request], httpx.Response]) -> None:
    async def scenario(manager: ElevatedSessionManager) -> tuple[bool, ElevatedSessionState, str | None]:
        manager.store.set(manager.token_key("root"), "tok-stale")
        valid = await manager.verify("root")
        return valid, manager.state("root"), manager.stored_token("root")

    valid, state, stored = _run(responder, scenario)

    assert valid is False
    assert state == ElevatedSessionState.NO_SESSION
    assert stored is None
    assert len(audit.entries_for("elevated.verification_failed")) == 1


def test_network_error_during_verification_degrades_scope() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("network down", request=request)

    async def scenario(manager: ElevatedSessionManager) -> tuple[bool, str | None]:
        manager.store.set(manager.token_key("root"), "tok-1")
        valid = await manager.verify("root")
        return valid, manager.stored_token("root")

    valid, stored = _run(handler, scenario)

    assert valid is False
    assert stored is None
    entries = audit.entries_for("elevated.verification_failed")
    assert entries[-1]["details"] == {"reason": "unreachable"}

    session = SessionSnapshot(identity=Identity(id="root", role=Role.SUPER_ADMIN, organization_id="org-home"))
    ctx = build_security_context(session, elevated_session_valid=valid)
    assert ctx.scope == TenantScope("org-home")
    assert ctx.scope is not UNSCOPED


def test_timeout_is_a_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    async def scenario(manager: ElevatedSessionManager) -> bool:
        return await manager.verify("root", "tok-1")

    assert _run(handler, scenario) is False
    assert audit.entries_for("elevated.verification_failed")[-1]["details"] == {"reason": "timeout"}


def test_concurrent_verifications_share_one_call() -> None:
    calls: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content)["token"])
        await asyncio.sleep(0.01)
        return httpx.Response(200, json={"verified": True})

    async def scenario(manager: ElevatedSessionManager) -> list[bool]:
        return list(await asyncio.gather(manager.verify("root", "tok-1"), manager.verify("root", "tok-1")))

    results = _run(handler, scenario)

    assert results == [True, True]
    assert calls == ["tok-1"]


def test_newer_token_supersedes_inflight_verification() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.01)
        return httpx.Response(200, json={"verified": True})

    async def scenario(manager: ElevatedSessionManager) -> tuple[list[bool], str | None]:
        results = await asyncio.gather(manager.verify("root", "tok-old"), manager.verify("root", "tok-new"))
        return list(results), manager.stored_token("root")

    results, stored = _run(handler, scenario)

    assert results == [False, True]
    assert stored == "tok-new"


def test_revoke_discards_inflight_verification() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.05)
        return httpx.Response(200, json={"verified": True})

    async def scenario(manager: ElevatedSessionManager) -> tuple[bool, ElevatedSessionState, str | None]:
        pending = asyncio.ensure_future(manager.verify("root", "tok-1"))
        await asyncio.sleep(0)
        manager.revoke("root")
        valid = await pending
        return valid, manager.state("root"), manager.stored_token("root")

    valid, state, stored = _run(handler, scenario)

    assert valid is False
    assert state == ElevatedSessionState.NO_SESSION
    assert stored is None
    assert len(audit.entries_for("elevated.revoked")) == 1


def test_acquire_supersedes_inflight_verification() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("superadmin-login"):
            return httpx.Response(200, json={"authenticated": True, "token": "tok-fresh"})
        await asyncio.sleep(0.05)
        return httpx.Response(200, json={"verified": False})

    async def scenario(manager: ElevatedSessionManager) -> tuple[bool, ElevatedSessionState, str | None]:
        pending = asyncio.ensure_future(manager.verify("root", "tok-stale"))
        await asyncio.sleep(0)
        await manager.acquire("root", "root@example.com", "pw")
        valid = await pending
        return valid, manager.state("root"), manager.stored_token("root")

    valid, state, stored = _run(handler, scenario)

    # The stale verification failing must not wipe the freshly acquired token.
    assert valid is False
    assert state == ElevatedSessionState.VALID
    assert stored == "tok-fresh"
    assert audit.entries_for("elevated.verification_failed") == []
