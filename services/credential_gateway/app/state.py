"""Runtime state shared by the admin API: storage, config, pools and auth."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from libs.observability.logging import mask_secret
from libs.observability.metrics import record_pool_stats
from schemas.gateway import GlobalConfig, ProviderStats

from .auth import MemoryAuth, build_auth_snapshot
from .config import GatewaySettings, ensure_sqlite_dsn, resolve_dsn
from .pools import ProviderRegistry, build_provider_pool, build_provider_pools
from .storage import GatewayStorage, StorageError, StorageSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigUpdate:
    dsn_changed: bool
    bind_changed: bool
    proxy_changed: bool

    def as_response(self) -> dict[str, object]:
        return {
            "status": "ok",
            "dsn_changed": self.dsn_changed,
            "bind_changed": self.bind_changed,
            "proxy_changed": self.proxy_changed,
        }


class GatewayState:
    """Holds the active store and config and keeps the in-memory views in sync."""

    def __init__(
        self,
        storage: GatewayStorage,
        config: GlobalConfig,
        registry: ProviderRegistry | None = None,
        auth: MemoryAuth | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._storage = storage
        self._config = config
        self.registry = registry or ProviderRegistry()
        self.auth = auth or MemoryAuth()
        self._provider_ids: dict[str, int] = {}
        self._provider_names: dict[int, str] = {}

    @property
    def storage(self) -> GatewayStorage:
        with self._lock:
            return self._storage

    @property
    def config(self) -> GlobalConfig:
        with self._lock:
            return self._config

    def apply_snapshot(self, snapshot: StorageSnapshot) -> None:
        pools = build_provider_pools(snapshot)
        with self._lock:
            self._provider_ids = {provider.name: provider.id for provider in snapshot.providers}
            self._provider_names = {provider.id: provider.name for provider in snapshot.providers}
            self.registry.apply_pools(pools)
            self.auth.replace_snapshot(build_auth_snapshot(snapshot.users, snapshot.api_keys))

    def reload(self) -> StorageSnapshot:
        with self._lock:
            snapshot = self._storage.load_snapshot()
            self.apply_snapshot(snapshot)
        logger.info(
            "snapshot reloaded",
            extra={
                "providers": len(snapshot.providers),
                "credentials": len(snapshot.credentials),
                "disallow": len(snapshot.disallow),
            },
        )
        return snapshot

    def refresh_provider_pool(self, provider_id: int) -> None:
        with self._lock:
            snapshot = self._storage.load_snapshot()
            provider = next((item for item in snapshot.providers if item.id == provider_id), None)
            previous = self._provider_names.pop(provider_id, None)
            if previous is not None:
                self._provider_ids.pop(previous, None)
                if provider is None or previous != provider.name:
                    self.registry.clear(previous)
            if provider is None:
                return
            self._provider_ids[provider.name] = provider.id
            self._provider_names[provider.id] = provider.name
            self.registry.set_pool(provider.name, build_provider_pool(snapshot, provider.id))

    def clear_provider_pool(self, name: str) -> None:
        with self._lock:
            provider_id = self._provider_ids.pop(name, None)
            if provider_id is not None:
                self._provider_names.pop(provider_id, None)
            self.registry.clear(name)

    def refresh_auth(self) -> None:
        with self._lock:
            storage = self._storage
            self.auth.replace_snapshot(build_auth_snapshot(storage.list_users(), storage.list_keys()))

    def resolve_provider_id(self, name: str) -> int | None:
        with self._lock:
            return self._provider_ids.get(name)

    def provider_name(self, provider_id: int) -> str | None:
        with self._lock:
            return self._provider_names.get(provider_id)

    def stats(self) -> list[ProviderStats]:
        stats = self.registry.stats()
        record_pool_stats(stats)
        return stats

    def update_config(self, incoming: GlobalConfig) -> ConfigUpdate:
        """Persist a new global config, moving to a new store when the dsn changes."""

        with self._lock:
            current = self._config
            previous_storage = self._storage
            dsn = incoming.dsn.strip() or current.dsn
            data_dir = (
                incoming.data_dir
                if incoming.data_dir is not None and incoming.data_dir.strip()
                else current.data_dir
            )
            effective = incoming.model_copy(update={"dsn": dsn, "data_dir": data_dir})
            dsn_changed = dsn != current.dsn

            if dsn_changed:
                target = _open_storage(dsn)
            else:
                target = previous_storage

            target.upsert_global_config(effective.model_dump())
            target.ensure_admin_user(effective.admin_key)
            if dsn_changed:
                target.ensure_default_providers()
            snapshot = target.load_snapshot()

            self._storage = target
            self._config = effective
            self.apply_snapshot(snapshot)

        if dsn_changed:
            previous_storage.dispose()

        update = ConfigUpdate(
            dsn_changed=dsn_changed,
            bind_changed=(effective.host, effective.port) != (current.host, current.port),
            proxy_changed=effective.proxy != current.proxy,
        )
        logger.info(
            "config updated",
            extra={
                "dsn_changed": update.dsn_changed,
                "bind_changed": update.bind_changed,
                "proxy_changed": update.proxy_changed,
            },
        )
        return update


def _open_storage(dsn: str) -> GatewayStorage:
    try:
        ensure_sqlite_dsn(dsn)
        target = GatewayStorage.connect(dsn)
    except (ValueError, SQLAlchemyError, OSError, ImportError) as exc:
        raise StorageError(f"failed to open storage: {exc}") from exc
    try:
        target.sync()
    except (SQLAlchemyError, OSError, ImportError) as exc:
        target.dispose()
        raise StorageError(f"failed to open storage: {exc}") from exc
    return target


def bootstrap_storage(settings: GatewaySettings) -> tuple[GatewayStorage, GlobalConfig, StorageSnapshot]:
    """Open the store and reconcile the persisted config with ``settings``.

    A config already stored in the database wins over flags and environment.
    """

    dsn = resolve_dsn(settings.dsn, settings.data_dir)
    ensure_sqlite_dsn(dsn)
    storage = GatewayStorage.connect(dsn)
    storage.sync()

    stored = storage.get_global_config()
    config: GlobalConfig | None = None
    if stored is not None:
        try:
            config = GlobalConfig.model_validate(stored.config_json).model_copy(update={"dsn": dsn})
        except ValueError:
            logger.warning("ignoring invalid stored config", extra={"config_id": stored.id})
    if config is None:
        config = settings.to_global_config().model_copy(update={"dsn": dsn})
        storage.upsert_global_config(config.model_dump())

    logger.info(
        "config loaded",
        extra={
            "host": config.host,
            "port": config.port,
            "admin_key": mask_secret(config.admin_key),
            "dsn": storage.engine.url.render_as_string(hide_password=True),
            "proxy": config.proxy,
            "data_dir": config.data_dir,
            "from_storage": stored is not None,
        },
    )

    storage.ensure_admin_user(config.admin_key)
    logger.info("admin user ensured", extra={"user_id": 0})
    inserted = storage.ensure_default_providers()
    if inserted:
        logger.info("default providers inserted", extra={"providers": inserted})

    snapshot = storage.load_snapshot()
    logger.info(
        "snapshot loaded",
        extra={
            "providers": len(snapshot.providers),
            "credentials": len(snapshot.credentials),
            "disallow": len(snapshot.disallow),
            "users": len(snapshot.users),
            "keys": len(snapshot.api_keys),
        },
    )
    return storage, config, snapshot


def bootstrap_state(settings: GatewaySettings) -> GatewayState:
    storage, config, snapshot = bootstrap_storage(settings)
    state = GatewayState(storage, config)
    state.apply_snapshot(snapshot)
    for item in state.stats():
        logger.info(
            "pool ready",
            extra={
                "provider": item.name,
                "credentials_total": item.credentials_total,
                "credentials_enabled": item.credentials_enabled,
                "disallow": item.disallow,
            },
        )
    return state


__all__ = ["ConfigUpdate", "GatewayState", "bootstrap_state", "bootstrap_storage"]
