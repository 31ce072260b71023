"""Persistence for providers, credentials, disallow rules, users, keys and traffic."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from infra.gateway_models import (
    TOKEN_COLUMNS,
    ApiKey,
    Credential,
    CredentialDisallow,
    DownstreamTraffic,
    GatewayBase,
    GlobalConfigRecord,
    Provider,
    UpstreamTraffic,
    User,
    utcnow,
)
from libs.db.db import create_engine_for, create_session_factory, session_scope
from providers import KNOWN_PROVIDERS, ProviderDefault
from schemas import gateway as records

from .disallow import DisallowMark

logger = logging.getLogger(__name__)

GLOBAL_CONFIG_ID = 1
ADMIN_USER_ID = 0
ADMIN_KEY_ID = 0


class NotFoundError(LookupError):
    """Raised when a referenced row does not exist."""


class StorageError(RuntimeError):
    """Raised when a write violates a storage constraint."""


@dataclass
class ProviderInput:
    name: str
    config_json: Any = field(default_factory=dict)
    enabled: bool = True
    id: int | None = None


@dataclass
class CredentialInput:
    provider_id: int
    secret: Any
    meta_json: Any = field(default_factory=dict)
    weight: int = 1
    enabled: bool = True
    name: str | None = None
    id: int | None = None


@dataclass
class DisallowInput:
    credential_id: int
    scope_kind: str
    level: str
    scope_value: str | None = None
    until_at: datetime | None = None
    reason: str | None = None


@dataclass
class UserInput:
    name: str | None = None
    id: int | None = None


@dataclass
class KeyInput:
    user_id: int
    key_value: str
    label: str | None = None
    enabled: bool = True
    id: int | None = None


@dataclass(frozen=True)
class StorageSnapshot:
    """Everything the runtime needs, read in a single session."""

    global_config: records.GlobalConfigRow | None
    providers: tuple[records.Provider, ...]
    credentials: tuple[records.Credential, ...]
    disallow: tuple[records.DisallowRecord, ...]
    users: tuple[records.User, ...]
    api_keys: tuple[records.ApiKey, ...]


class GatewayStorage:
    """Repository over the gateway tables."""

    def __init__(self, engine: Engine, session_factory: sessionmaker[Session] | None = None) -> None:
        self._engine = engine
        self._session_factory = session_factory or create_session_factory(engine)

    @classmethod
    def connect(cls, dsn: str) -> "GatewayStorage":
        return cls(create_engine_for(dsn))

    @property
    def engine(self) -> Engine:
        return self._engine

    def sync(self) -> None:
        GatewayBase.metadata.create_all(self._engine)

    def dispose(self) -> None:
        self._engine.dispose()

    @contextmanager
    def _scope(self) -> Iterator[Session]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except IntegrityError as exc:
            raise StorageError(str(exc.orig)) from exc

    def health(self) -> None:
        with self._scope() as session:
            session.execute(text("SELECT 1"))

    # Global config

    def get_global_config(self) -> records.GlobalConfigRow | None:
        with self._scope() as session:
            row = session.get(GlobalConfigRecord, GLOBAL_CONFIG_ID)
            return records.GlobalConfigRow.from_row(row) if row else None

    def upsert_global_config(self, config_json: Any, updated_at: datetime | None = None) -> None:
        updated_at = updated_at or utcnow()
        with self._scope() as session:
            row = session.get(GlobalConfigRecord, GLOBAL_CONFIG_ID)
            if row is None:
                session.add(
                    GlobalConfigRecord(
                        id=GLOBAL_CONFIG_ID, config_json=config_json, updated_at=updated_at
                    )
                )
            else:
                row.config_json = config_json
                row.updated_at = updated_at

    def ensure_admin_user(self, admin_key: str) -> None:
        now = utcnow()
        with self._scope() as session:
            user = session.get(User, ADMIN_USER_ID)
            if user is None:
                session.add(User(id=ADMIN_USER_ID, name="admin", created_at=now, updated_at=now))
            else:
                user.name = "admin"
                user.updated_at = now

            clash = session.execute(
                select(ApiKey).where(ApiKey.key_value == admin_key, ApiKey.id != ADMIN_KEY_ID)
            ).scalar_one_or_none()
            if clash is not None:
                logger.warning(
                    "removing api key that collides with the admin key",
                    extra={"key_id": clash.id, "user_id": clash.user_id},
                )
                session.delete(clash)
                session.flush()

            key = session.get(ApiKey, ADMIN_KEY_ID)
            if key is None:
                session.add(
                    ApiKey(
                        id=ADMIN_KEY_ID,
                        user_id=ADMIN_USER_ID,
                        key_value=admin_key,
                        label="admin",
                        enabled=True,
                        created_at=now,
                        last_used_at=None,
                    )
                )
            else:
                key.user_id = ADMIN_USER_ID
                key.key_value = admin_key
                key.label = "admin"
                key.enabled = True
                key.last_used_at = None

    def ensure_default_providers(
        self, defaults: Iterable[ProviderDefault] = KNOWN_PROVIDERS
    ) -> list[str]:
        """Insert missing known providers and return the names that were added."""

        inserted: list[str] = []
        with self._scope() as session:
            existing = set(session.execute(select(Provider.name)).scalars())
            for item in defaults:
                if item.name in existing:
                    continue
                session.add(
                    Provider(
                        name=item.name,
                        config_json=item.config_json(),
                        enabled=item.enabled,
                        updated_at=utcnow(),
                    )
                )
                inserted.append(item.name)
        return inserted

    # Providers

    def list_providers(self) -> list[records.Provider]:
        with self._scope() as session:
            rows = session.execute(select(Provider).order_by(Provider.id)).scalars().all()
            return [records.Provider.from_row(row) for row in rows]

    def get_provider(self, provider_id: int) -> records.Provider | None:
        with self._scope() as session:
            row = session.get(Provider, provider_id)
            return records.Provider.from_row(row) if row else None

    def upsert_provider(self, data: ProviderInput) -> int:
        now = utcnow()
        with self._scope() as session:
            row: Provider | None = None
            if data.id is not None:
                row = session.get(Provider, data.id)
            else:
                row = session.execute(
                    select(Provider).where(Provider.name == data.name)
                ).scalar_one_or_none()
            if row is None:
                row = Provider(id=data.id, name=data.name)
                session.add(row)
            row.name = data.name
            row.config_json = data.config_json
            row.enabled = data.enabled
            row.updated_at = now
            session.flush()
            return row.id

    def delete_provider(self, provider_id: int) -> records.Provider:
        with self._scope() as session:
            row = session.get(Provider, provider_id)
            if row is None:
                raise NotFoundError("provider not found")
            deleted = records.Provider.from_row(row)
            session.delete(row)
            return deleted

    # Credentials

    def list_credentials(self, provider_id: int | None = None) -> list[records.Credential]:
        with self._scope() as session:
            stmt = select(Credential).order_by(Credential.id)
            if provider_id is not None:
                stmt = stmt.where(Credential.provider_id == provider_id)
            rows = session.execute(stmt).scalars().all()
            return [records.Credential.from_row(row) for row in rows]

    def get_credential(self, credential_id: int) -> records.Credential | None:
        with self._scope() as session:
            row = session.get(Credential, credential_id)
            return records.Credential.from_row(row) if row else None

    def upsert_credential(self, data: CredentialInput) -> int:
        now = utcnow()
        with self._scope() as session:
            if session.get(Provider, data.provider_id) is None:
                raise NotFoundError("provider not found")
            row = session.get(Credential, data.id) if data.id is not None else None
            if row is None:
                row = Credential(id=data.id, created_at=now)
                session.add(row)
            row.provider_id = data.provider_id
            row.name = data.name
            row.secret = data.secret
            row.meta_json = data.meta_json
            row.weight = data.weight
            row.enabled = data.enabled
            row.updated_at = now
            session.flush()
            return row.id

    def delete_credential(self, credential_id: int) -> records.Credential:
        with self._scope() as session:
            row = session.get(Credential, credential_id)
            if row is None:
                raise NotFoundError("credential not found")
            deleted = records.Credential.from_row(row)
            session.delete(row)
            return deleted

    def provider_id_for_credential(self, credential_id: int) -> int:
        with self._scope() as session:
            provider_id = session.execute(
                select(Credential.provider_id).where(Credential.id == credential_id)
            ).scalar_one_or_none()
        if provider_id is None:
            raise NotFoundError("credential not found")
        return provider_id

    # Disallow

    def list_disallow(self, credential_ids: Iterable[int] | None = None) -> list[records.DisallowRecord]:
        with self._scope() as session:
            stmt = select(CredentialDisallow).order_by(CredentialDisallow.id)
            if credential_ids is not None:
                stmt = stmt.where(CredentialDisallow.credential_id.in_(list(credential_ids)))
            rows = session.execute(stmt).scalars().all()
            return [records.DisallowRecord.from_row(row) for row in rows]

    def upsert_disallow(self, data: DisallowInput) -> int:
        """Insert or update the rule keyed by credential, scope kind and scope value."""

        with self._scope() as session:
            if session.get(Credential, data.credential_id) is None:
                raise NotFoundError("credential not found")
            stmt = select(CredentialDisallow).where(
                CredentialDisallow.credential_id == data.credential_id,
                CredentialDisallow.scope_kind == data.scope_kind,
            )
            if data.scope_value is None:
                stmt = stmt.where(CredentialDisallow.scope_value.is_(None))
            else:
                stmt = stmt.where(CredentialDisallow.scope_value == data.scope_value)
            row = session.execute(stmt).scalars().first()
            if row is None:
                row = CredentialDisallow(
                    credential_id=data.credential_id,
                    scope_kind=data.scope_kind,
                    scope_value=data.scope_value,
                )
                session.add(row)
            row.level = data.level
            row.until_at = data.until_at
            row.reason = data.reason
            row.updated_at = utcnow()
            session.flush()
            return row.id

    def delete_disallow(self, disallow_id: int) -> records.DisallowRecord:
        with self._scope() as session:
            row = session.get(CredentialDisallow, disallow_id)
            if row is None:
                raise NotFoundError("disallow not found")
            deleted = records.DisallowRecord.from_row(row)
            session.delete(row)
            return deleted

    def mark_credential(
        self, credential_id: int, mark: DisallowMark, now: datetime | None = None
    ) -> int:
        now = now or utcnow()
        kind, value = mark.scope.as_record()
        return self.upsert_disallow(
            DisallowInput(
                credential_id=credential_id,
                scope_kind=kind,
                scope_value=value,
                level=mark.level.value,
                until_at=mark.until(now),
                reason=mark.reason,
            )
        )

    # Users and keys

    def list_users(self) -> list[records.User]:
        with self._scope() as session:
            rows = session.execute(select(User).order_by(User.id)).scalars().all()
            return [records.User.from_row(row) for row in rows]

    def upsert_user(self, data: UserInput) -> int:
        now = utcnow()
        with self._scope() as session:
            row = session.get(User, data.id) if data.id is not None else None
            if row is None:
                row = User(id=data.id, created_at=now)
                session.add(row)
            row.name = data.name
            row.updated_at = now
            session.flush()
            return row.id

    def delete_user(self, user_id: int) -> None:
        with self._scope() as session:
            row = session.get(User, user_id)
            if row is None:
                raise NotFoundError("user not found")
            session.delete(row)

    def list_keys(self) -> list[records.ApiKey]:
        with self._scope() as session:
            rows = session.execute(select(ApiKey).order_by(ApiKey.id)).scalars().all()
            return [records.ApiKey.from_row(row) for row in rows]

    def upsert_key(self, data: KeyInput) -> int:
        with self._scope() as session:
            if session.get(User, data.user_id) is None:
                raise NotFoundError("user not found")
            row: ApiKey | None = None
            if data.id is not None:
                row = session.get(ApiKey, data.id)
            else:
                row = session.execute(
                    select(ApiKey).where(ApiKey.key_value == data.key_value)
                ).scalar_one_or_none()
            if row is None:
                row = ApiKey(id=data.id, created_at=utcnow())
                session.add(row)
            row.user_id = data.user_id
            row.key_value = data.key_value
            row.label = data.label
            row.enabled = data.enabled
            session.flush()
            return row.id

    def delete_key(self, key_id: int) -> None:
        with self._scope() as session:
            row = session.get(ApiKey, key_id)
            if row is None:
                raise NotFoundError("api key not found")
            session.delete(row)

    def set_key_enabled(self, key_id: int, enabled: bool) -> None:
        with self._scope() as session:
            row = session.get(ApiKey, key_id)
            if row is None:
                raise NotFoundError("api key not found")
            row.enabled = enabled

    def touch_key(self, key_id: int, when: datetime | None = None) -> None:
        with self._scope() as session:
            row = session.get(ApiKey, key_id)
            if row is None:
                raise NotFoundError("api key not found")
            row.last_used_at = when or utcnow()

    # Traffic

    def record_upstream(
        self, event: records.UpstreamTrafficEvent, *, created_at: datetime | None = None
    ) -> int:
        with self._scope() as session:
            row = UpstreamTraffic(created_at=created_at or utcnow(), **event.to_columns())
            session.add(row)
            session.flush()
            return row.id

    def record_downstream(
        self, event: records.DownstreamTrafficEvent, *, created_at: datetime | None = None
    ) -> int:
        with self._scope() as session:
            row = DownstreamTraffic(created_at=created_at or utcnow(), **event.to_columns())
            session.add(row)
            session.flush()
            return row.id

    def upstream_usage(
        self,
        credential_id: int,
        start: datetime,
        end: datetime,
        model: str | None = None,
    ) -> records.UpstreamUsage:
        """Aggregate upstream calls for a credential over ``[start, end)``."""

        sums = [func.sum(getattr(UpstreamTraffic, column)) for column in TOKEN_COLUMNS]
        stmt = select(func.count(UpstreamTraffic.id), *sums).where(
            UpstreamTraffic.credential_id == credential_id,
            UpstreamTraffic.created_at >= start,
            UpstreamTraffic.created_at < end,
        )
        if model is not None:
            stmt = stmt.where(UpstreamTraffic.model == model)
        with self._scope() as session:
            row = session.execute(stmt).one()
        tokens = {
            column: int(value)
            for column, value in zip(TOKEN_COLUMNS, row[1:])
            if value is not None
        }
        return records.UpstreamUsage(
            credential_id=credential_id,
            model=model,
            start=records.to_unix(start),
            end=records.to_unix(end),
            count=int(row[0] or 0),
            tokens=tokens,
        )

    # Snapshot

    def load_snapshot(self) -> StorageSnapshot:
        with self._scope() as session:
            config_row = session.get(GlobalConfigRecord, GLOBAL_CONFIG_ID)
            return StorageSnapshot(
                global_config=records.GlobalConfigRow.from_row(config_row) if config_row else None,
                providers=_convert(session, Provider, records.Provider),
                credentials=_convert(session, Credential, records.Credential),
                disallow=_convert(session, CredentialDisallow, records.DisallowRecord),
                users=_convert(session, User, records.User),
                api_keys=_convert(session, ApiKey, records.ApiKey),
            )


def _convert(session: Session, model, record_type) -> tuple:
    rows: Sequence = session.execute(select(model).order_by(model.id)).scalars().all()
    return tuple(record_type.from_row(row) for row in rows)


__all__ = [
    "ADMIN_KEY_ID",
    "ADMIN_USER_ID",
    "CredentialInput",
    "DisallowInput",
    "GatewayStorage",
    "KeyInput",
    "NotFoundError",
    "ProviderInput",
    "StorageError",
    "StorageSnapshot",
    "UserInput",
]
