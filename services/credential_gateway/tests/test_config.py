from __future__ import annotations

from pathlib import Path

import pytest

from services.credential_gateway.app import cli
from services.credential_gateway.app.config import (
    GatewaySettings,
    ensure_sqlite_dsn,
    get_settings,
    resolve_dsn,
)
from services.credential_gateway.app.state import bootstrap_state


def test_settings_defaults() -> None:
    settings = GatewaySettings()

    assert settings.host == "0.0.0.0"
    assert settings.port == 8787
    assert settings.admin_key == "pwd"
    assert settings.dsn == ""
    assert settings.proxy is None
    assert settings.data_dir is None


def test_settings_read_gateway_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GATEWAY_PORT", "9100")
    monkeypatch.setenv("GATEWAY_ADMIN_KEY", "from-env")

    settings = get_settings()

    assert settings.port == 9100
    assert settings.admin_key == "from-env"
    assert "from-env" not in repr(settings)


def test_with_overrides_ignores_none() -> None:
    settings = GatewaySettings(host="127.0.0.1").with_overrides({"host": None, "port": 9000})

    assert settings.host == "127.0.0.1"
    assert settings.port == 9000


def test_resolve_dsn(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    assert resolve_dsn(" postgresql://db/gateway ") == "postgresql://db/gateway"
    assert resolve_dsn("", str(tmp_path / "data")) == f"sqlite:///{(tmp_path / 'data' / 'gateway.db').resolve().as_posix()}"
    assert resolve_dsn(None) == f"sqlite:///{(tmp_path / 'gateway.db').resolve().as_posix()}"

    monkeypatch.setenv("DATABASE_URL", "postgresql://shared/db")
    assert resolve_dsn("") == "postgresql://shared/db"

    monkeypatch.setenv("GATEWAY_DATABASE_URL", "sqlite:///from-env.db")
    assert resolve_dsn("  ") == "sqlite:///from-env.db"


def test_ensure_sqlite_dsn(tmp_path: Path) -> None:
    target = tmp_path / "a" / "b" / "gateway.db"

    ensure_sqlite_dsn(f"sqlite:///{target.as_posix()}")
    ensure_sqlite_dsn("sqlite://")
    ensure_sqlite_dsn("postgresql://db/gateway")

    assert target.parent.is_dir()
    with pytest.raises(ValueError):
        ensure_sqlite_dsn("   ")


def test_stored_config_wins_over_settings(tmp_path: Path) -> None:
    dsn = f"sqlite:///{(tmp_path / 'gateway.db').as_posix()}"

    first = bootstrap_state(GatewaySettings(dsn=dsn, admin_key="persisted", port=8000))
    first.storage.dispose()
    second = bootstrap_state(GatewaySettings(dsn=dsn, admin_key="ignored", port=9000))

    assert second.config.admin_key == "persisted"
    assert second.config.port == 8000
    assert second.config.dsn == dsn
    assert second.auth.authenticate({"x-api-key": "persisted"}).key_id == 0
    second.storage.dispose()


def test_bootstrap_uses_data_dir(tmp_path: Path) -> None:
    state = bootstrap_state(GatewaySettings(data_dir=str(tmp_path / "store")))

    assert (tmp_path / "store" / "gateway.db").exists()
    assert state.config.data_dir == str(tmp_path / "store")
    state.storage.dispose()


def test_cli_flags_override_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GATEWAY_HOST", "10.0.0.1")
    monkeypatch.setenv("GATEWAY_PROXY", "http://env-proxy")

    settings = cli.load_settings(["--port", "9999", "--admin-key", "flag-key", "--data-dir", "/srv/gw"])

    assert settings.host == "10.0.0.1"
    assert settings.port == 9999
    assert settings.admin_key == "flag-key"
    assert settings.proxy == "http://env-proxy"
    assert settings.data_dir == "/srv/gw"


def test_cli_main_serves_bootstrapped_app(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: dict[str, object] = {}

    def fake_run(app, host: str, port: int, **kwargs) -> None:
        calls.update(app=app, host=host, port=port)

    monkeypatch.setattr(cli.uvicorn, "run", fake_run)

    cli.main(["--dsn", "sqlite://", "--host", "127.0.0.1", "--port", "8123"])

    assert calls["host"] == "127.0.0.1"
    assert calls["port"] == 8123
    assert calls["app"].state.gateway.config.dsn == "sqlite://"
