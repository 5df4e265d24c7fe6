from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class NavigationDecisionRead(BaseModel):
    outcome: str
    location: str | None = None
    reason: str | None = None
    state: dict[str, str] | None = None


class PermissionCheckRequest(BaseModel):
    resource: str = Field(min_length=1)
    action: str = Field(min_length=1)
    show_denied: bool = False


class RenderDecisionRead(BaseModel):
    outcome: str
    message: str | None = None


class CapabilityMatrixRead(BaseModel):
    role: str | None
    capabilities: dict[str, list[str]]


class ElevatedLoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ElevatedSessionRead(BaseModel):
    state: str
    valid: bool
    token: str | None = None


class IdentityRead(BaseModel):
    id: str
    role: str
    organization_id: str | None
    email: str | None
    is_active: bool


class MeRead(BaseModel):
    identity: IdentityRead
    scope: dict[str, Any]
    elevated_session_valid: bool
    capabilities: dict[str, list[str]]
