"""Super-administrator session handling.

Tokens are issued and verified by an external identity collaborator over HTTP.
Every failure mode (transport error, timeout, non-2xx, malformed body, explicit
rejection) counts as not verified and clears the cached token.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from threading import Lock
from typing import Any, Protocol

import httpx

from app import audit
from app.core.config import get_settings
from app.metrics import observe_elevated_verification
from app.otel import get_tracer
from app.platform.security.errors import VerificationFailure
from app.platform.security.identity import ELEVATED_ROLES, parse_role


logger = logging.getLogger("app.security.elevated")
tracer = get_tracer("app.security.elevated")


class ElevatedSessionState(StrEnum):
    NO_SESSION = "no_session"
    VERIFYING = "verifying"
    VALID = "valid"
    INVALID = "invalid"


class CredentialStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def clear(self, key: str) -> None: ...


class InMemoryCredentialStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def clear(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


@dataclass
class _SubjectSession:
    state: ElevatedSessionState = ElevatedSessionState.NO_SESSION
    generation: int = 0
    inflight: asyncio.Task[tuple[bool, str]] | None = None
    inflight_token: str | None = None


class ElevatedSessionManager:
    """Owns the elevated token for each subject and its validity state machine.

    Concurrent verifications of the same token share one remote call. Starting a
    verification for a different token, acquiring a new token or revoking bumps the
    subject's generation; results from older generations are discarded as invalid.
    """

    TOKEN_KEY = "elevated_token:{subject_id}"

    def __init__(
        self,
        store: CredentialStore | None = None,
        *,
        verify_url: str | None = None,
        login_url: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._store = store or InMemoryCredentialStore()
        self._verify_url = verify_url
        self._login_url = login_url
        self._timeout_seconds = timeout_seconds
        self._client = client
        self._sessions: dict[str, _SubjectSession] = {}

    @property
    def store(self) -> CredentialStore:
        return self._store

    def token_key(self, subject_id: str) -> str:
        return self.TOKEN_KEY.format(subject_id=subject_id)

    def state(self, subject_id: str) -> ElevatedSessionState:
        entry = self._sessions.get(subject_id)
        return entry.state if entry is not None else ElevatedSessionState.NO_SESSION

    def stored_token(self, subject_id: str) -> str | None:
        return self._store.get(self.token_key(subject_id))

    async def acquire(self, subject_id: str, username: str, password: str) -> str:
        """Exchange elevated-role credentials for a token and persist it for reuse."""

        with tracer.start_as_current_span("elevated.acquire") as span:
            span.set_attribute("subject_id", subject_id)
            try:
                response = await self._post(self._resolve_login_url(), {"username": username, "password_hash": password})
            except httpx.HTTPError as exc:
                self._record_failure(subject_id, "unreachable", action="elevated.acquire_failed", error=str(exc))
                raise VerificationFailure("Elevated identity provider is unreachable", reason="unreachable") from exc

            data = _json_object(response)
            if response.status_code >= 400 or data is None or data.get("authenticated") is not True:
                message = data.get("message") if data is not None and isinstance(data.get("message"), str) else None
                self._record_failure(subject_id, "rejected", action="elevated.acquire_failed")
                raise VerificationFailure(message or "Invalid credentials", reason="rejected")

            token = data.get("token")
            if not isinstance(token, str) or not token:
                self._record_failure(subject_id, "malformed", action="elevated.acquire_failed")
                raise VerificationFailure("Identity provider returned no token", reason="malformed")

            role = _response_role(data)
            if role is not None and parse_role(role) not in ELEVATED_ROLES:
                self._record_failure(subject_id, "not_elevated", action="elevated.acquire_failed")
                raise VerificationFailure("Account does not hold an elevated role", reason="not_elevated")

        entry = self._supersede(subject_id)
        self._store.set(self.token_key(subject_id), token)
        entry.state = ElevatedSessionState.VALID
        logger.info("elevated.acquired", extra={"subject_id": subject_id, "state": entry.state.value})
        audit.record(
            actor_id=subject_id,
            entity_type="security.elevated_session",
            entity_id=subject_id,
            action="elevated.acquired",
        )
        return token

    async def verify(self, subject_id: str, token: str | None = None) -> bool:
        """Return whether the subject's elevated token is currently valid.

        ``token`` defaults to the cached one. A failed verification clears the cache.
        """

        key = self.token_key(subject_id)
        candidate = token or self._store.get(key)
        entry = self._sessions.setdefault(subject_id, _SubjectSession())
        if not candidate:
            entry.state = ElevatedSessionState.NO_SESSION
            observe_elevated_verification("no_session")
            return False

        loop = asyncio.get_running_loop()
        current = entry.inflight
        if (
            current is not None
            and not current.done()
            and entry.inflight_token == candidate
            and current.get_loop() is loop
        ):
            task = current
        else:
            if current is not None and not current.done():
                current.cancel()
            entry.generation += 1
            task = loop.create_task(self._verify_remote(candidate))
            entry.inflight = task
            entry.inflight_token = candidate
            entry.state = ElevatedSessionState.VERIFYING

        generation = entry.generation
        try:
            verified, outcome = await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                observe_elevated_verification("superseded")
                return False
            raise

        if self._sessions.get(subject_id) is not entry or entry.generation != generation:
            observe_elevated_verification("superseded")
            return False

        if entry.inflight is task:
            entry.inflight = None
            entry.inflight_token = None

        observe_elevated_verification(outcome)
        if verified:
            entry.state = ElevatedSessionState.VALID
            self._store.set(key, candidate)
            return True

        entry.state = ElevatedSessionState.INVALID
        self._store.clear(key)
        self._record_failure(subject_id, outcome, action="elevated.verification_failed")
        entry.state = ElevatedSessionState.NO_SESSION
        return False

    def revoke(self, subject_id: str) -> None:
        """Drop the subject's elevated session; in-flight verifications resolve as invalid."""

        entry = self._sessions.pop(subject_id, None)
        if entry is not None and entry.inflight is not None and not entry.inflight.done():
            entry.inflight.cancel()
        self._store.clear(self.token_key(subject_id))
        logger.info("elevated.revoked", extra={"subject_id": subject_id})
        audit.record(
            actor_id=subject_id,
            entity_type="security.elevated_session",
            entity_id=subject_id,
            action="elevated.revoked",
        )

    def reset(self) -> None:
        for subject_id in list(self._sessions):
            entry = self._sessions.pop(subject_id)
            if entry.inflight is not None and not entry.inflight.done():
                entry.inflight.cancel()
        if isinstance(self._store, InMemoryCredentialStore):
            self._store.reset()

    def _supersede(self, subject_id: str) -> _SubjectSession:
        entry = self._sessions.setdefault(subject_id, _SubjectSession())
        if entry.inflight is not None and not entry.inflight.done():
            entry.inflight.cancel()
        entry.inflight = None
        entry.inflight_token = None
        entry.generation += 1
        return entry

    async def _verify_remote(self, token: str) -> tuple[bool, str]:
        with tracer.start_as_current_span("elevated.verify") as span:
            try:
                response = await self._post(self._resolve_verify_url(), {"token": token})
            except httpx.TimeoutException:
                span.set_attribute("elevated.outcome", "timeout")
                return False, "timeout"
            except httpx.HTTPError:
                span.set_attribute("elevated.outcome", "unreachable")
                return False, "unreachable"

            if response.status_code >= 400:
                span.set_attribute("elevated.outcome", "http_error")
                return False, "http_error"

            data = _json_object(response)
            if data is None:
                span.set_attribute("elevated.outcome", "malformed")
                return False, "malformed"

            verified = data.get("verified") is True
            outcome = "valid" if verified else "rejected"
            span.set_attribute("elevated.outcome", outcome)
            return verified, outcome

    async def _post(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        timeout = self._resolve_timeout()
        if self._client is not None:
            return await self._client.post(url, json=payload, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, json=payload)

    def _record_failure(self, subject_id: str, reason: str, *, action: str, error: str | None = None) -> None:
        logger.warning(action, extra={"subject_id": subject_id, "reason": reason, "error": error})
        audit.record(
            actor_id=subject_id,
            entity_type="security.elevated_session",
            entity_id=subject_id,
            action=action,
            details={"reason": reason},
        )

    def _resolve_verify_url(self) -> str:
        return self._verify_url or get_settings().elevated_verify_url

    def _resolve_login_url(self) -> str:
        return self._login_url or get_settings().elevated_login_url

    def _resolve_timeout(self) -> float:
        if self._timeout_seconds is not None:
            return self._timeout_seconds
        return get_settings().elevated_timeout_seconds


def _json_object(response: httpx.Response) -> dict[str, Any] | None:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _response_role(data: dict[str, Any]) -> str | None:
    role = data.get("role")
    if isinstance(role, str):
        return role
    account = data.get("superadmin")
    if isinstance(account, dict) and isinstance(account.get("role"), str):
        return account["role"]
    return None


elevated_sessions = ElevatedSessionManager()
