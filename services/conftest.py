import pytest

from services.credential_gateway.app.config import get_settings


@pytest.fixture(autouse=True)
def _isolated_gateway_env(monkeypatch):
    for variable in ("DATABASE_URL", "GATEWAY_DATABASE_URL", "GATEWAY_DSN", "GATEWAY_ADMIN_KEY"):
        monkeypatch.delenv(variable, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
