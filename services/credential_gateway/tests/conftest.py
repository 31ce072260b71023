from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from services.credential_gateway.app.config import GatewaySettings
from services.credential_gateway.app.main import create_app
from services.credential_gateway.app.state import GatewayState, bootstrap_state
from services.credential_gateway.app.storage import GatewayStorage

ADMIN_KEY = "admin-secret"


@pytest.fixture()
def storage() -> Iterator[GatewayStorage]:
    store = GatewayStorage.connect("sqlite://")
    store.sync()
    yield store
    store.dispose()


@pytest.fixture()
def settings() -> GatewaySettings:
    return GatewaySettings(dsn="sqlite://", admin_key=ADMIN_KEY, port=8787)


@pytest.fixture()
def state(settings: GatewaySettings) -> Iterator[GatewayState]:
    gateway_state = bootstrap_state(settings)
    yield gateway_state
    gateway_state.storage.dispose()


@pytest.fixture()
def client(state: GatewayState) -> Iterator[TestClient]:
    with TestClient(create_app(state=state)) as test_client:
        yield test_client


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return {"x-admin-key": ADMIN_KEY}
