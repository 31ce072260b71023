"""In-memory credential pools built from the storage snapshot."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType

from providers import KNOWN_PROVIDER_NAMES
from schemas.gateway import Credential, DisallowRecord, ProviderStats, from_unix

from .disallow import DisallowEntry, DisallowScope, parse_disallow_level, parse_disallow_scope

logger = logging.getLogger(__name__)

DisallowKey = tuple[int, DisallowScope]


@dataclass(frozen=True)
class CredentialEntry:
    id: int
    enabled: bool
    weight: int
    credential: Credential

    @classmethod
    def from_record(cls, credential: Credential) -> "CredentialEntry":
        return cls(
            id=credential.id,
            enabled=credential.enabled,
            weight=max(credential.weight, 0),
            credential=credential,
        )


@dataclass(frozen=True)
class PoolSnapshot:
    """Immutable view of one provider's credentials and their disallow rules."""

    credentials: tuple[CredentialEntry, ...] = ()
    disallow: Mapping[DisallowKey, DisallowEntry] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def empty(cls) -> "PoolSnapshot":
        return cls()

    def active_disallow(
        self, credential_id: int, scope: DisallowScope, now: datetime
    ) -> DisallowEntry | None:
        entry = self.disallow.get((credential_id, scope))
        if entry is not None and entry.is_active(now):
            return entry
        return None

    def eligible(
        self, model: str | None = None, now: datetime | None = None
    ) -> list[CredentialEntry]:
        """Return enabled, positively weighted credentials that are not banned.

        A credential is banned when it has an active rule for every model or,
        when ``model`` is given, an active rule for that model.
        """

        now = now or datetime.now(timezone.utc)
        result: list[CredentialEntry] = []
        for entry in self.credentials:
            if not entry.enabled or entry.weight <= 0:
                continue
            if self.active_disallow(entry.id, DisallowScope.all_models(), now):
                continue
            if model is not None and self.active_disallow(
                entry.id, DisallowScope.for_model(model), now
            ):
                continue
            result.append(entry)
        return result

    def stats(self, name: str) -> ProviderStats:
        return ProviderStats(
            name=name,
            credentials_total=len(self.credentials),
            credentials_enabled=sum(1 for entry in self.credentials if entry.enabled),
            disallow=len(self.disallow),
        )


class ProviderRegistry:
    """Thread-safe map of provider name to its current pool snapshot."""

    def __init__(self, names: Iterable[str] = KNOWN_PROVIDER_NAMES) -> None:
        self._lock = threading.RLock()
        self._pools: dict[str, PoolSnapshot] = {name: PoolSnapshot.empty() for name in names}

    def apply_pools(self, pools: Mapping[str, PoolSnapshot]) -> None:
        with self._lock:
            self._pools.update(pools)

    def set_pool(self, name: str, pool: PoolSnapshot) -> None:
        with self._lock:
            self._pools[name] = pool

    def clear(self, name: str) -> None:
        with self._lock:
            self._pools[name] = PoolSnapshot.empty()

    def get(self, name: str) -> PoolSnapshot | None:
        with self._lock:
            return self._pools.get(name)

    def names(self) -> list[str]:
        with self._lock:
            known = [name for name in KNOWN_PROVIDER_NAMES if name in self._pools]
            extras = sorted(name for name in self._pools if name not in KNOWN_PROVIDER_NAMES)
        return known + extras

    def stats(self) -> list[ProviderStats]:
        with self._lock:
            pools = dict(self._pools)
        return [pools[name].stats(name) for name in self.names()]


def build_pool(
    credentials: Iterable[Credential], disallow: Iterable[DisallowRecord]
) -> PoolSnapshot:
    entries = tuple(CredentialEntry.from_record(credential) for credential in credentials)
    known_ids = {entry.id for entry in entries}
    rules: dict[DisallowKey, DisallowEntry] = {}
    for record in disallow:
        if record.credential_id not in known_ids:
            continue
        scope = parse_disallow_scope(record.scope_kind, record.scope_value)
        level = parse_disallow_level(record.level)
        if scope is None or level is None:
            logger.warning(
                "skipping unparseable disallow rule",
                extra={
                    "disallow_id": record.id,
                    "scope_kind": record.scope_kind,
                    "level": record.level,
                },
            )
            continue
        rules[(record.credential_id, scope)] = DisallowEntry(
            level=level,
            until=from_unix(record.until_at),
            reason=record.reason,
            updated_at=from_unix(record.updated_at) or datetime.now(timezone.utc),
        )
    return PoolSnapshot(credentials=entries, disallow=MappingProxyType(rules))


def build_provider_pools(snapshot) -> dict[str, PoolSnapshot]:
    """Group a storage snapshot into one pool per provider name."""

    by_provider: dict[int, list[Credential]] = {}
    for credential in snapshot.credentials:
        by_provider.setdefault(credential.provider_id, []).append(credential)
    pools: dict[str, PoolSnapshot] = {}
    for provider in snapshot.providers:
        credentials = by_provider.get(provider.id, [])
        ids = {credential.id for credential in credentials}
        rules = [record for record in snapshot.disallow if record.credential_id in ids]
        pools[provider.name] = build_pool(credentials, rules)
    return pools


def build_provider_pool(snapshot, provider_id: int) -> PoolSnapshot:
    own = [credential for credential in snapshot.credentials if credential.provider_id == provider_id]
    ids = {credential.id for credential in own}
    return build_pool(own, [record for record in snapshot.disallow if record.credential_id in ids])


__all__ = [
    "CredentialEntry",
    "PoolSnapshot",
    "ProviderRegistry",
    "build_pool",
    "build_provider_pool",
    "build_provider_pools",
]
