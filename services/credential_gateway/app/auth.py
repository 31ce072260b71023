"""Downstream API key authentication and the admin key check."""

from __future__ import annotations

import hmac
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from schemas.gateway import ApiKey, User


class AuthError(Exception):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


@dataclass(frozen=True)
class AuthKeyEntry:
    id: int
    user_id: int
    enabled: bool


@dataclass(frozen=True)
class UserEntry:
    id: int
    name: str | None


@dataclass(frozen=True)
class AuthSnapshot:
    keys_by_value: Mapping[str, AuthKeyEntry] = field(
        default_factory=lambda: MappingProxyType({})
    )
    users_by_id: Mapping[int, UserEntry] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    key_id: int


def build_auth_snapshot(users: Iterable[User], keys: Iterable[ApiKey]) -> AuthSnapshot:
    return AuthSnapshot(
        keys_by_value=MappingProxyType(
            {
                key.key_value: AuthKeyEntry(id=key.id, user_id=key.user_id, enabled=key.enabled)
                for key in keys
            }
        ),
        users_by_id=MappingProxyType({user.id: UserEntry(id=user.id, name=user.name) for user in users}),
    )


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    for key, candidate in headers.items():
        if key.lower() == name:
            return candidate
    return None


def _bearer(headers: Mapping[str, str]) -> str | None:
    raw = _header(headers, "authorization")
    if raw is None:
        return None
    scheme, _, token = raw.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def extract_api_key(headers: Mapping[str, str]) -> str | None:
    for name in ("x-api-key", "x-goog-api-key"):
        value = _header(headers, name)
        if value and value.strip():
            return value.strip()
    return _bearer(headers)


class MemoryAuth:
    """Authenticates requests against the last loaded key snapshot."""

    def __init__(self, snapshot: AuthSnapshot | None = None) -> None:
        self._lock = threading.Lock()
        self._snapshot = snapshot or AuthSnapshot()

    @property
    def snapshot(self) -> AuthSnapshot:
        with self._lock:
            return self._snapshot

    def replace_snapshot(self, snapshot: AuthSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot

    def authenticate(self, headers: Mapping[str, str]) -> AuthContext:
        key = extract_api_key(headers)
        if key is None:
            raise AuthError(401, "missing api key")
        entry = self.snapshot.keys_by_value.get(key)
        if entry is None:
            raise AuthError(401, "invalid api key")
        if not entry.enabled:
            raise AuthError(403, "api key disabled")
        return AuthContext(user_id=entry.user_id, key_id=entry.id)


def is_admin(headers: Mapping[str, str], admin_key: str) -> bool:
    """Check ``x-admin-key`` first, then a bearer token."""

    provided = _header(headers, "x-admin-key")
    if provided is None:
        provided = _bearer(headers)
    if provided is None:
        return False
    return hmac.compare_digest(provided.strip().encode(), admin_key.encode())


__all__ = [
    "AuthContext",
    "AuthError",
    "AuthKeyEntry",
    "AuthSnapshot",
    "MemoryAuth",
    "UserEntry",
    "build_auth_snapshot",
    "extract_api_key",
    "is_admin",
]
