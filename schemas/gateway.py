"""Wire records shared by the gateway services.

Timestamps are exchanged as unix seconds. Rows coming from SQLAlchemy carry
``datetime`` values and are converted through the ``from_row`` helpers.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def to_unix(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def to_unix_opt(value: datetime | None) -> int | None:
    return None if value is None else to_unix(value)


def from_unix(value: int | None) -> datetime | None:
    """Convert unix seconds to an aware datetime; out-of-range values map to ``None``."""

    if value is None:
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


class Provider(BaseModel):
    id: int
    name: str
    config_json: Any = Field(default_factory=dict)
    enabled: bool
    updated_at: int

    @classmethod
    def from_row(cls, row) -> "Provider":
        return cls(
            id=row.id,
            name=row.name,
            config_json=row.config_json,
            enabled=row.enabled,
            updated_at=to_unix(row.updated_at),
        )


class Credential(BaseModel):
    id: int
    provider_id: int
    name: Optional[str] = None
    secret: Any
    meta_json: Any = Field(default_factory=dict)
    weight: int
    enabled: bool
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row) -> "Credential":
        return cls(
            id=row.id,
            provider_id=row.provider_id,
            name=row.name,
            secret=row.secret,
            meta_json=row.meta_json,
            weight=row.weight,
            enabled=row.enabled,
            created_at=to_unix(row.created_at),
            updated_at=to_unix(row.updated_at),
        )


class DisallowRecord(BaseModel):
    id: int
    credential_id: int
    scope_kind: str
    scope_value: Optional[str] = None
    level: str
    until_at: Optional[int] = None
    reason: Optional[str] = None
    updated_at: int

    @classmethod
    def from_row(cls, row) -> "DisallowRecord":
        return cls(
            id=row.id,
            credential_id=row.credential_id,
            scope_kind=row.scope_kind,
            scope_value=row.scope_value,
            level=row.level,
            until_at=to_unix_opt(row.until_at),
            reason=row.reason,
            updated_at=to_unix(row.updated_at),
        )


class User(BaseModel):
    id: int
    name: Optional[str] = None
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row) -> "User":
        return cls(
            id=row.id,
            name=row.name,
            created_at=to_unix(row.created_at),
            updated_at=to_unix(row.updated_at),
        )


class ApiKey(BaseModel):
    id: int
    user_id: int
    key_value: str
    label: Optional[str] = None
    enabled: bool
    created_at: int
    last_used_at: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "ApiKey":
        return cls(
            id=row.id,
            user_id=row.user_id,
            key_value=row.key_value,
            label=row.label,
            enabled=row.enabled,
            created_at=to_unix(row.created_at),
            last_used_at=to_unix_opt(row.last_used_at),
        )


class ProviderStats(BaseModel):
    name: str
    credentials_total: int
    credentials_enabled: int
    disallow: int


class GlobalConfig(BaseModel):
    host: str
    port: int = Field(..., ge=0, le=65535)
    admin_key: str
    dsn: str = ""
    proxy: Optional[str] = None
    data_dir: Optional[str] = None


class GlobalConfigRow(BaseModel):
    id: int
    config_json: Any
    updated_at: int

    @classmethod
    def from_row(cls, row) -> "GlobalConfigRow":
        return cls(id=row.id, config_json=row.config_json, updated_at=to_unix(row.updated_at))


class UpstreamUsage(BaseModel):
    credential_id: int
    model: Optional[str] = None
    start: int
    end: int
    count: int
    tokens: Dict[str, int] = Field(default_factory=dict)


class TokenCounts(BaseModel):
    """Per-protocol token counters attached to a traffic event."""

    model_config = ConfigDict(extra="forbid")

    claude_input_tokens: Optional[int] = None
    claude_output_tokens: Optional[int] = None
    claude_total_tokens: Optional[int] = None
    claude_cache_creation_input_tokens: Optional[int] = None
    claude_cache_read_input_tokens: Optional[int] = None
    gemini_prompt_tokens: Optional[int] = None
    gemini_candidates_tokens: Optional[int] = None
    gemini_total_tokens: Optional[int] = None
    gemini_cached_tokens: Optional[int] = None
    openai_chat_prompt_tokens: Optional[int] = None
    openai_chat_completion_tokens: Optional[int] = None
    openai_chat_total_tokens: Optional[int] = None
    openai_responses_input_tokens: Optional[int] = None
    openai_responses_output_tokens: Optional[int] = None
    openai_responses_total_tokens: Optional[int] = None
    openai_responses_input_cached_tokens: Optional[int] = None
    openai_responses_output_reasoning_tokens: Optional[int] = None


class _TrafficEvent(BaseModel):
    provider: str
    provider_id: Optional[int] = None
    operation: str
    model: Optional[str] = None
    request_id: Optional[str] = None
    request_method: str
    request_path: str
    request_query: Optional[str] = None
    request_headers: str = "{}"
    request_body: str = ""
    response_status: int
    response_headers: str = "{}"
    response_body: str = ""
    usage: TokenCounts = Field(default_factory=TokenCounts)

    def to_columns(self) -> dict[str, Any]:
        values = self.model_dump(exclude={"usage"})
        values.update(self.usage.model_dump())
        return values


class UpstreamTrafficEvent(_TrafficEvent):
    credential_id: Optional[int] = None


class DownstreamTrafficEvent(_TrafficEvent):
    user_id: Optional[int] = None
    key_id: Optional[int] = None


__all__ = [
    "ApiKey",
    "Credential",
    "DisallowRecord",
    "DownstreamTrafficEvent",
    "GlobalConfig",
    "GlobalConfigRow",
    "Provider",
    "ProviderStats",
    "TokenCounts",
    "UpstreamTrafficEvent",
    "UpstreamUsage",
    "User",
    "from_unix",
    "to_unix",
    "to_unix_opt",
]
