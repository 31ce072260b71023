from __future__ import annotations

import pytest

from schemas.gateway import ApiKey, User
from services.credential_gateway.app.auth import (
    AuthError,
    MemoryAuth,
    build_auth_snapshot,
    extract_api_key,
    is_admin,
)


@pytest.fixture()
def auth() -> MemoryAuth:
    users = [User(id=7, name="alice", created_at=0, updated_at=0)]
    keys = [
        ApiKey(id=1, user_id=7, key_value="live-key", label=None, enabled=True, created_at=0),
        ApiKey(id=2, user_id=7, key_value="old-key", label="rotated", enabled=False, created_at=0),
    ]
    memory = MemoryAuth()
    memory.replace_snapshot(build_auth_snapshot(users, keys))
    return memory


@pytest.mark.parametrize(
    "headers",
    [
        {"x-api-key": "live-key"},
        {"x-goog-api-key": "live-key"},
        {"Authorization": "Bearer live-key"},
    ],
)
def test_authenticate_accepts_supported_headers(auth: MemoryAuth, headers: dict[str, str]) -> None:
    context = auth.authenticate(headers)

    assert context.user_id == 7
    assert context.key_id == 1


def test_x_api_key_takes_precedence() -> None:
    headers = {"x-api-key": "first", "x-goog-api-key": "second", "authorization": "Bearer third"}

    assert extract_api_key(headers) == "first"
    assert extract_api_key({"authorization": "Basic abc"}) is None


def test_authenticate_missing_key(auth: MemoryAuth) -> None:
    with pytest.raises(AuthError) as excinfo:
        auth.authenticate({})

    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "missing api key"


def test_authenticate_unknown_key(auth: MemoryAuth) -> None:
    with pytest.raises(AuthError) as excinfo:
        auth.authenticate({"x-api-key": "nope"})

    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "invalid api key"


def test_authenticate_disabled_key(auth: MemoryAuth) -> None:
    with pytest.raises(AuthError) as excinfo:
        auth.authenticate({"x-api-key": "old-key"})

    assert excinfo.value.status_code == 403
    assert excinfo.value.detail == "api key disabled"


def test_replace_snapshot_drops_removed_keys(auth: MemoryAuth) -> None:
    auth.replace_snapshot(build_auth_snapshot([], []))

    with pytest.raises(AuthError):
        auth.authenticate({"x-api-key": "live-key"})


def test_is_admin_header_variants() -> None:
    assert is_admin({"x-admin-key": "pwd"}, "pwd")
    assert is_admin({"authorization": "Bearer pwd"}, "pwd")
    assert is_admin({"authorization": "bearer  pwd "}, "pwd")
    assert not is_admin({"x-admin-key": "wrong", "authorization": "Bearer pwd"}, "pwd")
    assert not is_admin({"authorization": "Basic pwd"}, "pwd")
    assert not is_admin({}, "pwd")
