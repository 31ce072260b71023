"""SQLAlchemy models for the credential gateway store."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

SQLITE_BIGINT = BigInteger().with_variant(Integer, "sqlite")

TOKEN_COLUMNS: tuple[str, ...] = (
    "claude_input_tokens",
    "claude_output_tokens",
    "claude_total_tokens",
    "claude_cache_creation_input_tokens",
    "claude_cache_read_input_tokens",
    "gemini_prompt_tokens",
    "gemini_candidates_tokens",
    "gemini_total_tokens",
    "gemini_cached_tokens",
    "openai_chat_prompt_tokens",
    "openai_chat_completion_tokens",
    "openai_chat_total_tokens",
    "openai_responses_input_tokens",
    "openai_responses_output_tokens",
    "openai_responses_total_tokens",
    "openai_responses_input_cached_tokens",
    "openai_responses_output_reasoning_tokens",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GatewayBase(DeclarativeBase):
    pass


class Provider(GatewayBase):
    """Upstream vendor with its JSON configuration."""

    __tablename__ = "providers"

    id: Mapped[int] = mapped_column(SQLITE_BIGINT, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    config_json: Mapped[Any] = mapped_column(JSON, nullable=False, default=dict)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    credentials: Mapped[list["Credential"]] = relationship(
        "Credential", back_populates="provider", cascade="all, delete-orphan"
    )


class Credential(GatewayBase):
    """Weighted upstream secret belonging to a provider."""

    __tablename__ = "credentials"

    id: Mapped[int] = mapped_column(SQLITE_BIGINT, primary_key=True, autoincrement=True)
    provider_id: Mapped[int] = mapped_column(
        ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    secret: Mapped[Any] = mapped_column(JSON, nullable=False)
    meta_json: Mapped[Any] = mapped_column(JSON, nullable=False, default=dict)
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    provider: Mapped[Provider] = relationship("Provider", back_populates="credentials")
    disallow: Mapped[list["CredentialDisallow"]] = relationship(
        "CredentialDisallow", back_populates="credential", cascade="all, delete-orphan"
    )


class CredentialDisallow(GatewayBase):
    """A ban on a credential, for every model or for one model."""

    __tablename__ = "credential_disallow"

    id: Mapped[int] = mapped_column(SQLITE_BIGINT, primary_key=True, autoincrement=True)
    credential_id: Mapped[int] = mapped_column(
        ForeignKey("credentials.id", ondelete="CASCADE"), nullable=False
    )
    scope_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    scope_value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    level: Mapped[str] = mapped_column(String(16), nullable=False)
    until_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    credential: Mapped[Credential] = relationship("Credential", back_populates="disallow")

    __table_args__ = (
        Index("ix_credential_disallow_scope", "credential_id", "scope_kind", "scope_value"),
    )


class User(GatewayBase):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(SQLITE_BIGINT, primary_key=True, autoincrement=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    api_keys: Mapped[list["ApiKey"]] = relationship(
        "ApiKey", back_populates="user", cascade="all, delete-orphan"
    )


class ApiKey(GatewayBase):
    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(SQLITE_BIGINT, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    key_value: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped[User] = relationship("User", back_populates="api_keys")


class GlobalConfigRecord(GatewayBase):
    """Single-row table holding the serialized ``GlobalConfig``."""

    __tablename__ = "global_config"

    id: Mapped[int] = mapped_column(SQLITE_BIGINT, primary_key=True)
    config_json: Mapped[Any] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class _TrafficColumns:
    id: Mapped[int] = mapped_column(SQLITE_BIGINT, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_id: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    operation: Mapped[str] = mapped_column(String(64), nullable=False)
    model: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    request_method: Mapped[str] = mapped_column(String(16), nullable=False)
    request_path: Mapped[str] = mapped_column(Text, nullable=False)
    request_query: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    request_headers: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    request_body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    response_status: Mapped[int] = mapped_column(Integer, nullable=False)
    response_headers: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    response_body: Mapped[str] = mapped_column(Text, nullable=False, default="")

    claude_input_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    claude_output_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    claude_total_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    claude_cache_creation_input_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    claude_cache_read_input_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    gemini_prompt_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    gemini_candidates_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    gemini_total_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    gemini_cached_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    openai_chat_prompt_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    openai_chat_completion_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    openai_chat_total_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    openai_responses_input_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    openai_responses_output_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    openai_responses_total_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    openai_responses_input_cached_tokens: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    openai_responses_output_reasoning_tokens: Mapped[Optional[int]] = mapped_column(
        SQLITE_BIGINT, nullable=True
    )


class UpstreamTraffic(_TrafficColumns, GatewayBase):
    """One call from the gateway to a provider, attributed to a credential."""

    __tablename__ = "upstream_traffic"

    credential_id: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)

    __table_args__ = (
        Index("ix_upstream_traffic_credential_created_at", "credential_id", "created_at"),
    )


class DownstreamTraffic(_TrafficColumns, GatewayBase):
    """One call from a client to the gateway, attributed to a user key."""

    __tablename__ = "downstream_traffic"

    user_id: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)
    key_id: Mapped[Optional[int]] = mapped_column(SQLITE_BIGINT, nullable=True)


def _ensure_timezone(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalise_datetimes(target: GatewayBase) -> None:
    for column in target.__table__.columns:
        if isinstance(column.type, DateTime):
            value = target.__dict__.get(column.key)
            if isinstance(value, datetime):
                target.__dict__[column.key] = _ensure_timezone(value)


@event.listens_for(GatewayBase, "load", propagate=True)
def _load_timezone(target: GatewayBase, context) -> None:  # pragma: no cover - SQLAlchemy hook
    _normalise_datetimes(target)


@event.listens_for(GatewayBase, "refresh", propagate=True)
def _refresh_timezone(target: GatewayBase, context, attrs) -> None:  # pragma: no cover - SQLAlchemy hook
    _normalise_datetimes(target)


__all__ = [
    "ApiKey",
    "Credential",
    "CredentialDisallow",
    "DownstreamTraffic",
    "GatewayBase",
    "GlobalConfigRecord",
    "Provider",
    "TOKEN_COLUMNS",
    "UpstreamTraffic",
    "User",
    "utcnow",
]
