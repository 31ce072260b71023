"""Settings and DSN helpers for the credential gateway."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Mapping

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from libs.env import get_database_url, sqlite_path_from_url
from schemas.gateway import GlobalConfig

SERVICE_NAME = "credential-gateway"


class GatewaySettings(BaseSettings):
    """Process level settings loaded from ``GATEWAY_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    host: str = "0.0.0.0"
    port: int = Field(8787, ge=0, le=65535)
    admin_key: str = Field("pwd", repr=False)
    dsn: str = ""
    proxy: str | None = None
    data_dir: str | None = None

    def with_overrides(self, overrides: Mapping[str, Any]) -> "GatewaySettings":
        """Return a copy with every non-``None`` override applied."""

        values = {key: value for key, value in overrides.items() if value is not None}
        return self.model_copy(update=values)

    def to_global_config(self) -> GlobalConfig:
        return GlobalConfig(
            host=self.host,
            port=self.port,
            admin_key=self.admin_key,
            dsn=self.dsn,
            proxy=self.proxy,
            data_dir=self.data_dir,
        )


@lru_cache()
def get_settings() -> GatewaySettings:
    return GatewaySettings()


def resolve_dsn(dsn: str | None, data_dir: str | None = None) -> str:
    """Return ``dsn`` when set, else the environment URL or the default SQLite file."""

    if dsn and dsn.strip():
        return dsn.strip()
    return get_database_url(env_var="GATEWAY_DATABASE_URL", data_dir=data_dir)


def ensure_sqlite_dsn(dsn: str) -> None:
    """Validate ``dsn`` and create the parent directory of a SQLite file."""

    if not dsn or not dsn.strip():
        raise ValueError("dsn cannot be empty")
    path = sqlite_path_from_url(dsn.strip())
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)


__all__ = [
    "GatewaySettings",
    "SERVICE_NAME",
    "ensure_sqlite_dsn",
    "get_settings",
    "resolve_dsn",
]
