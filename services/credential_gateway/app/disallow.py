"""Disallow rules: scopes, levels and marks derived from upstream outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Mapping

SCOPE_ALL_MODELS = "all_models"
SCOPE_MODEL = "model"

DEFAULT_RATE_LIMIT_COOLDOWN = timedelta(seconds=60)
TRANSIENT_BACKOFF = timedelta(seconds=30)


class DisallowLevel(str, Enum):
    COOLDOWN = "cooldown"
    TRANSIENT = "transient"
    DEAD = "dead"


@dataclass(frozen=True)
class DisallowScope:
    """Either every model (``model is None``) or a single model."""

    model: str | None = None

    @classmethod
    def all_models(cls) -> "DisallowScope":
        return cls(None)

    @classmethod
    def for_model(cls, model: str) -> "DisallowScope":
        return cls(model)

    @property
    def kind(self) -> str:
        return SCOPE_ALL_MODELS if self.model is None else SCOPE_MODEL

    def as_record(self) -> tuple[str, str | None]:
        return self.kind, self.model


@dataclass(frozen=True)
class DisallowEntry:
    level: DisallowLevel
    until: datetime | None
    reason: str | None
    updated_at: datetime

    def is_active(self, now: datetime) -> bool:
        return self.until is None or self.until > now


@dataclass(frozen=True)
class DisallowMark:
    """A ban to apply to the credential that produced an upstream outcome."""

    scope: DisallowScope
    level: DisallowLevel
    duration: timedelta | None
    reason: str | None

    def until(self, now: datetime) -> datetime | None:
        if self.duration is None:
            return None
        return now + self.duration


def parse_disallow_scope(kind: str, value: str | None) -> DisallowScope | None:
    if kind in (SCOPE_ALL_MODELS, "all"):
        return DisallowScope.all_models()
    if kind == SCOPE_MODEL and value:
        return DisallowScope.for_model(value)
    return None


def parse_disallow_level(level: str) -> DisallowLevel | None:
    try:
        return DisallowLevel(level)
    except ValueError:
        return None


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def retry_after_seconds(headers: Mapping[str, str], now: datetime | None = None) -> int | None:
    """Parse ``Retry-After`` as delta seconds or an HTTP date.

    Dates in the past yield ``None``.
    """

    raw = _header(headers, "retry-after")
    if raw is None:
        return None
    raw = raw.strip()
    if raw.isascii() and raw.isdigit():
        return int(raw)
    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    delta = (when - now).total_seconds()
    if delta < 0:
        return None
    return int(delta)


def classify_status(
    status: int,
    headers: Mapping[str, str],
    scope: DisallowScope,
    now: datetime | None = None,
) -> DisallowMark | None:
    """Translate a failed upstream status into a disallow mark, if any."""

    if status in (401, 403):
        return DisallowMark(scope, DisallowLevel.DEAD, None, "auth_error")
    if status == 429:
        seconds = retry_after_seconds(headers, now)
        duration = (
            DEFAULT_RATE_LIMIT_COOLDOWN if seconds is None else timedelta(seconds=seconds)
        )
        return DisallowMark(scope, DisallowLevel.COOLDOWN, duration, "rate_limit")
    if status in (502, 503, 504):
        return DisallowMark(scope, DisallowLevel.TRANSIENT, TRANSIENT_BACKOFF, "upstream_unavailable")
    return None


def network_failure_mark(scope: DisallowScope) -> DisallowMark:
    return DisallowMark(scope, DisallowLevel.TRANSIENT, TRANSIENT_BACKOFF, "network_error")


__all__ = [
    "DEFAULT_RATE_LIMIT_COOLDOWN",
    "DisallowEntry",
    "DisallowLevel",
    "DisallowMark",
    "DisallowScope",
    "SCOPE_ALL_MODELS",
    "SCOPE_MODEL",
    "TRANSIENT_BACKOFF",
    "classify_status",
    "network_failure_mark",
    "parse_disallow_level",
    "parse_disallow_scope",
    "retry_after_seconds",
]
