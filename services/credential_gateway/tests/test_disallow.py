from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from services.credential_gateway.app.disallow import (
    DEFAULT_RATE_LIMIT_COOLDOWN,
    TRANSIENT_BACKOFF,
    DisallowEntry,
    DisallowLevel,
    DisallowScope,
    classify_status,
    network_failure_mark,
    parse_disallow_level,
    parse_disallow_scope,
    retry_after_seconds,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)
SCOPE = DisallowScope.for_model("gpt-4o")


@pytest.mark.parametrize("kind", ["all_models", "all"])
def test_parse_scope_all_models(kind: str) -> None:
    assert parse_disallow_scope(kind, None) == DisallowScope.all_models()
    assert parse_disallow_scope(kind, "ignored").model is None


def test_parse_scope_model_requires_value() -> None:
    assert parse_disallow_scope("model", "claude-3") == DisallowScope.for_model("claude-3")
    assert parse_disallow_scope("model", None) is None
    assert parse_disallow_scope("model", "") is None
    assert parse_disallow_scope("region", "eu") is None


def test_scope_round_trips_to_record_columns() -> None:
    assert DisallowScope.all_models().as_record() == ("all_models", None)
    assert SCOPE.as_record() == ("model", "gpt-4o")


def test_parse_level() -> None:
    assert parse_disallow_level("cooldown") is DisallowLevel.COOLDOWN
    assert parse_disallow_level("transient") is DisallowLevel.TRANSIENT
    assert parse_disallow_level("dead") is DisallowLevel.DEAD
    assert parse_disallow_level("banned") is None


def test_entry_activity_window() -> None:
    permanent = DisallowEntry(DisallowLevel.DEAD, None, "auth_error", NOW)
    expiring = DisallowEntry(DisallowLevel.DEAD, NOW + timedelta(seconds=5), None, NOW)

    assert permanent.is_active(NOW + timedelta(days=365))
    assert expiring.is_active(NOW)
    assert not expiring.is_active(NOW + timedelta(seconds=5))


@pytest.mark.parametrize("status_code", [401, 403])
def test_auth_failures_are_dead_without_expiry(status_code: int) -> None:
    mark = classify_status(status_code, {}, SCOPE, NOW)

    assert mark is not None
    assert mark.level is DisallowLevel.DEAD
    assert mark.duration is None
    assert mark.until(NOW) is None
    assert mark.reason == "auth_error"


def test_rate_limit_uses_retry_after_seconds() -> None:
    mark = classify_status(429, {"Retry-After": "120"}, SCOPE, NOW)

    assert mark is not None
    assert mark.level is DisallowLevel.COOLDOWN
    assert mark.until(NOW) == NOW + timedelta(seconds=120)
    assert mark.reason == "rate_limit"


def test_rate_limit_accepts_http_date() -> None:
    headers = {"retry-after": "Thu, 01 Jan 2026 00:02:00 GMT"}

    assert retry_after_seconds(headers, NOW) == 120
    mark = classify_status(429, headers, SCOPE, NOW)
    assert mark is not None
    assert mark.duration == timedelta(seconds=120)


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Retry-After": "soon"},
        {"Retry-After": "\u00b2"},
        {"Retry-After": "Wed, 31 Dec 2025 23:00:00 GMT"},
    ],
)
def test_rate_limit_falls_back_to_default_cooldown(headers: dict[str, str]) -> None:
    mark = classify_status(429, headers, SCOPE, NOW)

    assert mark is not None
    assert mark.duration == DEFAULT_RATE_LIMIT_COOLDOWN


@pytest.mark.parametrize("status_code", [502, 503, 504])
def test_gateway_errors_are_transient(status_code: int) -> None:
    mark = classify_status(status_code, {}, DisallowScope.all_models(), NOW)

    assert mark is not None
    assert mark.level is DisallowLevel.TRANSIENT
    assert mark.duration == TRANSIENT_BACKOFF
    assert mark.reason == "upstream_unavailable"


@pytest.mark.parametrize("status_code", [200, 400, 404, 500])
def test_other_statuses_produce_no_mark(status_code: int) -> None:
    assert classify_status(status_code, {}, SCOPE, NOW) is None


def test_network_failure_mark() -> None:
    mark = network_failure_mark(SCOPE)

    assert mark.scope == SCOPE
    assert mark.level is DisallowLevel.TRANSIENT
    assert mark.until(NOW) == NOW + timedelta(seconds=30)
    assert mark.reason == "network_error"
