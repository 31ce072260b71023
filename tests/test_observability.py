from __future__ import annotations

import json
import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from libs.observability.logging import JsonLogFormatter, RequestContextMiddleware, mask_secret


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("gateway", logging.INFO, __file__, 1, "config loaded", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_mask_secret() -> None:
    assert mask_secret("sk-abcdef") == "sk***ef"
    assert mask_secret("abc") == "***"
    assert mask_secret(None) == ""


def test_json_formatter_masks_sensitive_fields() -> None:
    formatter = JsonLogFormatter("credential-gateway")

    payload = json.loads(formatter.format(_record(admin_key="super-secret", port=8787)))

    assert payload["service"] == "credential-gateway"
    assert payload["message"] == "config loaded"
    assert payload["admin_key"] == "su***et"
    assert payload["port"] == 8787


def test_request_context_middleware_echoes_ids() -> None:
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware, service_name="credential-gateway")

    @app.get("/ping")
    def ping() -> dict[str, str]:
        return {"status": "ok"}

    response = TestClient(app).get("/ping", headers={"X-Correlation-ID": "corr-1"})

    assert response.headers["X-Correlation-ID"] == "corr-1"
    assert response.headers["X-Request-ID"]
