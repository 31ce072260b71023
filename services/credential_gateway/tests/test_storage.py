from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from providers import KNOWN_PROVIDER_NAMES
from schemas.gateway import TokenCounts, UpstreamTrafficEvent, DownstreamTrafficEvent, to_unix
from services.credential_gateway.app.disallow import DisallowScope, classify_status
from services.credential_gateway.app.storage import (
    CredentialInput,
    DisallowInput,
    GatewayStorage,
    KeyInput,
    NotFoundError,
    ProviderInput,
    StorageError,
    UserInput,
)

NOW = datetime(2026, 5, 4, 10, 0, tzinfo=timezone.utc)


def add_provider(storage: GatewayStorage, name: str = "openai") -> int:
    return storage.upsert_provider(ProviderInput(name=name, config_json={"base_url": "https://x"}))


def add_credential(storage: GatewayStorage, provider_id: int, **overrides) -> int:
    values = {"provider_id": provider_id, "secret": {"api_key": "sk-1"}, "name": "primary"}
    values.update(overrides)
    return storage.upsert_credential(CredentialInput(**values))


def upstream_event(credential_id: int, model: str = "gpt-4o", **usage) -> UpstreamTrafficEvent:
    return UpstreamTrafficEvent(
        credential_id=credential_id,
        provider="openai",
        operation="chat",
        model=model,
        request_method="POST",
        request_path="/v1/chat/completions",
        response_status=200,
        usage=TokenCounts(**usage),
    )


def test_health_and_empty_config(storage: GatewayStorage) -> None:
    storage.health()

    assert storage.get_global_config() is None


def test_global_config_is_a_single_row(storage: GatewayStorage) -> None:
    storage.upsert_global_config({"host": "0.0.0.0"}, NOW)
    storage.upsert_global_config({"host": "127.0.0.1"}, NOW + timedelta(seconds=5))

    row = storage.get_global_config()
    assert row is not None
    assert row.id == 1
    assert row.config_json == {"host": "127.0.0.1"}
    assert row.updated_at == to_unix(NOW) + 5


def test_ensure_admin_user_is_idempotent_and_rotates_key(storage: GatewayStorage) -> None:
    storage.ensure_admin_user("first")
    storage.ensure_admin_user("second")

    users = storage.list_users()
    keys = storage.list_keys()
    assert [(user.id, user.name) for user in users] == [(0, "admin")]
    assert len(keys) == 1
    assert keys[0].id == 0
    assert keys[0].user_id == 0
    assert keys[0].key_value == "second"
    assert keys[0].label == "admin"
    assert keys[0].enabled is True
    assert keys[0].last_used_at is None


def test_ensure_admin_user_replaces_colliding_key(storage: GatewayStorage) -> None:
    user_id = storage.upsert_user(UserInput(name="bob"))
    storage.upsert_key(KeyInput(user_id=user_id, key_value="shared"))

    storage.ensure_admin_user("shared")

    keys = storage.list_keys()
    assert [(key.id, key.key_value) for key in keys] == [(0, "shared")]


def test_ensure_default_providers_only_inserts_missing(storage: GatewayStorage) -> None:
    storage.upsert_provider(ProviderInput(name="openai", config_json={"base_url": "custom"}))

    inserted = storage.ensure_default_providers()

    assert "openai" not in inserted
    assert len(inserted) == len(KNOWN_PROVIDER_NAMES) - 1
    openai = next(item for item in storage.list_providers() if item.name == "openai")
    assert openai.config_json == {"base_url": "custom"}
    assert storage.ensure_default_providers() == []


def test_upsert_provider_by_name_keeps_id(storage: GatewayStorage) -> None:
    first = add_provider(storage, "claude")
    second = storage.upsert_provider(ProviderInput(name="claude", enabled=False))

    assert first == second
    assert storage.get_provider(first).enabled is False


def test_upsert_credential_requires_provider(storage: GatewayStorage) -> None:
    with pytest.raises(NotFoundError):
        add_credential(storage, 999)


def test_upsert_credential_by_id_updates_in_place(storage: GatewayStorage) -> None:
    provider_id = add_provider(storage)
    credential_id = add_credential(storage, provider_id)

    storage.upsert_credential(
        CredentialInput(id=credential_id, provider_id=provider_id, secret="new", weight=5)
    )

    credentials = storage.list_credentials()
    assert len(credentials) == 1
    assert credentials[0].secret == "new"
    assert credentials[0].weight == 5
    assert credentials[0].name is None


def test_delete_provider_cascades(storage: GatewayStorage) -> None:
    provider_id = add_provider(storage)
    credential_id = add_credential(storage, provider_id)
    storage.upsert_disallow(
        DisallowInput(credential_id=credential_id, scope_kind="all_models", level="dead")
    )

    deleted = storage.delete_provider(provider_id)

    assert deleted.name == "openai"
    assert storage.list_credentials() == []
    assert storage.list_disallow() == []
    with pytest.raises(NotFoundError):
        storage.delete_provider(provider_id)


def test_upsert_disallow_uses_logical_key(storage: GatewayStorage) -> None:
    provider_id = add_provider(storage)
    credential_id = add_credential(storage, provider_id)

    first = storage.upsert_disallow(
        DisallowInput(credential_id, "model", "cooldown", scope_value="gpt-4o", reason="a")
    )
    second = storage.upsert_disallow(
        DisallowInput(credential_id, "model", "dead", scope_value="gpt-4o", reason="b")
    )
    other = storage.upsert_disallow(DisallowInput(credential_id, "all_models", "transient"))

    assert first == second
    assert other != first
    records = {record.id: record for record in storage.list_disallow()}
    assert records[first].level == "dead"
    assert records[first].reason == "b"
    assert storage.list_disallow([credential_id + 1]) == []


def test_upsert_disallow_requires_credential(storage: GatewayStorage) -> None:
    with pytest.raises(NotFoundError):
        storage.upsert_disallow(DisallowInput(42, "all_models", "dead"))


def test_mark_credential_persists_expiry(storage: GatewayStorage) -> None:
    provider_id = add_provider(storage)
    credential_id = add_credential(storage, provider_id)
    mark = classify_status(429, {"Retry-After": "90"}, DisallowScope.for_model("o3"), NOW)

    storage.mark_credential(credential_id, mark, NOW)

    (record,) = storage.list_disallow()
    assert record.scope_kind == "model"
    assert record.scope_value == "o3"
    assert record.level == "cooldown"
    assert record.until_at == to_unix(NOW) + 90
    assert record.reason == "rate_limit"


def test_delete_user_removes_keys(storage: GatewayStorage) -> None:
    user_id = storage.upsert_user(UserInput(name="carol"))
    storage.upsert_key(KeyInput(user_id=user_id, key_value="k-1"))
    storage.upsert_key(KeyInput(user_id=user_id, key_value="k-2", label="ci"))

    storage.delete_user(user_id)

    assert storage.list_users() == []
    assert storage.list_keys() == []


def test_upsert_key_by_value_and_conflicts(storage: GatewayStorage) -> None:
    user_id = storage.upsert_user(UserInput(name="dave"))
    key_id = storage.upsert_key(KeyInput(user_id=user_id, key_value="k-1"))

    assert storage.upsert_key(KeyInput(user_id=user_id, key_value="k-1", label="x")) == key_id
    other_id = storage.upsert_key(KeyInput(user_id=user_id, key_value="k-2"))

    with pytest.raises(StorageError):
        storage.upsert_key(KeyInput(id=other_id, user_id=user_id, key_value="k-1"))
    with pytest.raises(NotFoundError):
        storage.upsert_key(KeyInput(user_id=999, key_value="k-3"))


def test_set_key_enabled_and_touch(storage: GatewayStorage) -> None:
    user_id = storage.upsert_user(UserInput())
    key_id = storage.upsert_key(KeyInput(user_id=user_id, key_value="k-1"))

    storage.set_key_enabled(key_id, False)
    storage.touch_key(key_id, NOW)

    (key,) = storage.list_keys()
    assert key.enabled is False
    assert key.last_used_at == to_unix(NOW)
    with pytest.raises(NotFoundError):
        storage.set_key_enabled(key_id + 100, True)


def test_upstream_usage_aggregates_window_and_model(storage: GatewayStorage) -> None:
    storage.record_upstream(
        upstream_event(1, openai_chat_prompt_tokens=10, openai_chat_total_tokens=15),
        created_at=NOW - timedelta(hours=1),
    )
    storage.record_upstream(
        upstream_event(1, openai_chat_prompt_tokens=5),
        created_at=NOW - timedelta(minutes=5),
    )
    storage.record_upstream(
        upstream_event(1, model="o3", openai_chat_prompt_tokens=100),
        created_at=NOW - timedelta(minutes=1),
    )
    storage.record_upstream(upstream_event(1), created_at=NOW)
    storage.record_upstream(upstream_event(2, openai_chat_prompt_tokens=7), created_at=NOW - timedelta(minutes=1))

    usage = storage.upstream_usage(1, NOW - timedelta(hours=2), NOW)
    assert usage.count == 3
    assert usage.tokens == {"openai_chat_prompt_tokens": 115, "openai_chat_total_tokens": 15}
    assert usage.start == to_unix(NOW - timedelta(hours=2))
    assert usage.end == to_unix(NOW)

    filtered = storage.upstream_usage(1, NOW - timedelta(hours=2), NOW, model="gpt-4o")
    assert filtered.model == "gpt-4o"
    assert filtered.count == 2
    assert filtered.tokens == {"openai_chat_prompt_tokens": 15, "openai_chat_total_tokens": 15}

    empty = storage.upstream_usage(3, NOW - timedelta(hours=2), NOW)
    assert empty.count == 0
    assert empty.tokens == {}


def test_record_downstream(storage: GatewayStorage) -> None:
    row_id = storage.record_downstream(
        DownstreamTrafficEvent(
            user_id=0,
            key_id=0,
            provider="claude",
            operation="messages",
            request_method="POST",
            request_path="/v1/messages",
            response_status=200,
            usage=TokenCounts(claude_input_tokens=3, claude_output_tokens=4),
        )
    )

    assert row_id > 0


def test_load_snapshot_reads_every_table(storage: GatewayStorage) -> None:
    storage.upsert_global_config({"host": "h"})
    storage.ensure_admin_user("pwd")
    provider_id = add_provider(storage)
    credential_id = add_credential(storage, provider_id)
    storage.upsert_disallow(DisallowInput(credential_id, "all", "transient"))

    snapshot = storage.load_snapshot()

    assert snapshot.global_config.config_json == {"host": "h"}
    assert [item.name for item in snapshot.providers] == ["openai"]
    assert [item.id for item in snapshot.credentials] == [credential_id]
    assert len(snapshot.disallow) == 1
    assert [item.id for item in snapshot.users] == [0]
    assert [item.key_value for item in snapshot.api_keys] == ["pwd"]
