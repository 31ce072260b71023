"""Request payloads accepted by the admin API."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class ProviderPayload(BaseModel):
    id: Optional[int] = None
    name: str = Field(..., min_length=1)
    config_json: Any = Field(default_factory=dict)
    enabled: bool = True


class CredentialPayload(BaseModel):
    id: Optional[int] = None
    provider_id: Optional[int] = None
    provider_name: Optional[str] = None
    name: Optional[str] = None
    secret: Any
    meta_json: Any = Field(default_factory=dict)
    weight: int = 1
    enabled: bool = True


class DisallowPayload(BaseModel):
    credential_id: int
    scope_kind: str
    scope_value: Optional[str] = None
    level: str
    until_at: Optional[int] = None
    reason: Optional[str] = None


class UserPayload(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None


class KeyPayload(BaseModel):
    id: Optional[int] = None
    user_id: int
    key_value: str = Field(..., min_length=1)
    label: Optional[str] = None
    enabled: bool = True


__all__ = [
    "CredentialPayload",
    "DisallowPayload",
    "KeyPayload",
    "ProviderPayload",
    "UserPayload",
]
