"""FastAPI application exposing the credential gateway admin API."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from libs.observability.logging import RequestContextMiddleware, configure_logging
from libs.observability.metrics import setup_metrics
from schemas.gateway import (
    ApiKey,
    Credential,
    DisallowRecord,
    GlobalConfig,
    GlobalConfigRow,
    Provider,
    UpstreamUsage,
    User,
    from_unix,
)

from .config import SERVICE_NAME, GatewaySettings, get_settings
from .deps import get_state, require_admin
from .schemas import CredentialPayload, DisallowPayload, KeyPayload, ProviderPayload, UserPayload
from .state import GatewayState, bootstrap_state
from .storage import (
    CredentialInput,
    DisallowInput,
    KeyInput,
    NotFoundError,
    ProviderInput,
    StorageError,
    UserInput,
)

configure_logging(SERVICE_NAME)

USAGE_WINDOW = timedelta(hours=24)
OK = {"status": "ok"}

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@router.get("/health")
def admin_health(state: GatewayState = Depends(get_state)) -> dict[str, str]:
    try:
        state.storage.health()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"db error: {exc}"
        ) from exc
    return OK


@router.get("/config", response_model=GlobalConfigRow)
def get_config(state: GatewayState = Depends(get_state)) -> GlobalConfigRow:
    row = state.storage.get_global_config()
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="config not found")
    return row


@router.put("/config")
def put_config(payload: GlobalConfig, state: GatewayState = Depends(get_state)) -> dict[str, Any]:
    return state.update_config(payload).as_response()


@router.get("/providers", response_model=list[Provider])
def list_providers(state: GatewayState = Depends(get_state)) -> list[Provider]:
    return state.storage.list_providers()


def _save_provider(state: GatewayState, payload: ProviderPayload, provider_id: Optional[int]) -> None:
    saved_id = state.storage.upsert_provider(
        ProviderInput(
            id=provider_id,
            name=payload.name,
            config_json=payload.config_json,
            enabled=payload.enabled,
        )
    )
    state.refresh_provider_pool(saved_id)


@router.post("/providers")
def upsert_provider(payload: ProviderPayload, state: GatewayState = Depends(get_state)) -> dict[str, str]:
    _save_provider(state, payload, payload.id)
    return OK


@router.put("/providers/{provider_id}")
def update_provider(
    provider_id: int, payload: ProviderPayload, state: GatewayState = Depends(get_state)
) -> dict[str, str]:
    _save_provider(state, payload, provider_id)
    return OK


@router.delete("/providers/{provider_id}")
def delete_provider(provider_id: int, state: GatewayState = Depends(get_state)) -> dict[str, str]:
    deleted = state.storage.delete_provider(provider_id)
    state.clear_provider_pool(deleted.name)
    return OK


@router.get("/credentials", response_model=list[Credential])
def list_credentials(
    provider_id: Optional[int] = None, state: GatewayState = Depends(get_state)
) -> list[Credential]:
    return state.storage.list_credentials(provider_id)


def _resolve_provider(state: GatewayState, payload: CredentialPayload) -> int:
    if payload.provider_id is not None:
        return payload.provider_id
    if payload.provider_name:
        provider_id = state.resolve_provider_id(payload.provider_name)
        if provider_id is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="provider not found")
        return provider_id
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST, detail="provider_id or provider_name is required"
    )


def _save_credential(
    state: GatewayState, payload: CredentialPayload, credential_id: Optional[int]
) -> None:
    provider_id = _resolve_provider(state, payload)
    previous = state.storage.get_credential(credential_id) if credential_id is not None else None
    state.storage.upsert_credential(
        CredentialInput(
            id=credential_id,
            provider_id=provider_id,
            name=payload.name,
            secret=payload.secret,
            meta_json=payload.meta_json,
            weight=payload.weight,
            enabled=payload.enabled,
        )
    )
    state.refresh_provider_pool(provider_id)
    if previous is not None and previous.provider_id != provider_id:
        state.refresh_provider_pool(previous.provider_id)


@router.post("/credentials")
def upsert_credential(
    payload: CredentialPayload, state: GatewayState = Depends(get_state)
) -> dict[str, str]:
    _save_credential(state, payload, payload.id)
    return OK


@router.put("/credentials/{credential_id}")
def update_credential(
    credential_id: int, payload: CredentialPayload, state: GatewayState = Depends(get_state)
) -> dict[str, str]:
    _save_credential(state, payload, credential_id)
    return OK


@router.delete("/credentials/{credential_id}")
def delete_credential(credential_id: int, state: GatewayState = Depends(get_state)) -> dict[str, str]:
    deleted = state.storage.delete_credential(credential_id)
    state.refresh_provider_pool(deleted.provider_id)
    return OK


@router.get("/disallow", response_model=list[DisallowRecord])
def list_disallow(state: GatewayState = Depends(get_state)) -> list[DisallowRecord]:
    return state.storage.list_disallow()


@router.post("/disallow")
def upsert_disallow(payload: DisallowPayload, state: GatewayState = Depends(get_state)) -> dict[str, str]:
    until_at = from_unix(payload.until_at)
    if payload.until_at is not None and until_at is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid until_at")
    state.storage.upsert_disallow(
        DisallowInput(
            credential_id=payload.credential_id,
            scope_kind=payload.scope_kind,
            scope_value=payload.scope_value,
            level=payload.level,
            until_at=until_at,
            reason=payload.reason,
        )
    )
    state.refresh_provider_pool(state.storage.provider_id_for_credential(payload.credential_id))
    return OK


@router.delete("/disallow/{disallow_id}")
def delete_disallow(disallow_id: int, state: GatewayState = Depends(get_state)) -> dict[str, str]:
    deleted = state.storage.delete_disallow(disallow_id)
    state.refresh_provider_pool(state.storage.provider_id_for_credential(deleted.credential_id))
    return OK


@router.get("/users", response_model=list[User])
def list_users(state: GatewayState = Depends(get_state)) -> list[User]:
    return state.storage.list_users()


@router.post("/users")
def upsert_user(payload: UserPayload, state: GatewayState = Depends(get_state)) -> dict[str, str]:
    state.storage.upsert_user(UserInput(id=payload.id, name=payload.name))
    state.refresh_auth()
    return OK


@router.delete("/users/{user_id}")
def delete_user(user_id: int, state: GatewayState = Depends(get_state)) -> dict[str, str]:
    state.storage.delete_user(user_id)
    state.refresh_auth()
    return OK


@router.get("/keys", response_model=list[ApiKey])
def list_keys(state: GatewayState = Depends(get_state)) -> list[ApiKey]:
    return state.storage.list_keys()


@router.post("/keys")
def upsert_key(payload: KeyPayload, state: GatewayState = Depends(get_state)) -> dict[str, str]:
    state.storage.upsert_key(
        KeyInput(
            id=payload.id,
            user_id=payload.user_id,
            key_value=payload.key_value,
            label=payload.label,
            enabled=payload.enabled,
        )
    )
    state.refresh_auth()
    return OK


@router.delete("/keys/{key_id}")
def delete_key(key_id: int, state: GatewayState = Depends(get_state)) -> dict[str, str]:
    state.storage.delete_key(key_id)
    state.refresh_auth()
    return OK


@router.put("/keys/{key_id}/disable")
def disable_key(key_id: int, state: GatewayState = Depends(get_state)) -> dict[str, str]:
    state.storage.set_key_enabled(key_id, False)
    state.refresh_auth()
    return OK


@router.post("/reload")
def reload_state(state: GatewayState = Depends(get_state)) -> dict[str, str]:
    state.reload()
    return OK


@router.get("/stats")
def provider_stats(state: GatewayState = Depends(get_state)) -> dict[str, Any]:
    return {"providers": [item.model_dump() for item in state.stats()]}


@router.get("/usage", response_model=UpstreamUsage)
def upstream_usage(
    credential_id: int = Query(...),
    model: Optional[str] = None,
    start: Optional[int] = None,
    end: Optional[int] = None,
    state: GatewayState = Depends(get_state),
) -> UpstreamUsage:
    end_at = from_unix(end) if end is not None else datetime.now(timezone.utc)
    if end_at is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid end")
    start_at = from_unix(start) if start is not None else end_at - USAGE_WINDOW
    if start_at is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid start")
    return state.storage.upstream_usage(credential_id, start_at, end_at, model)


def create_app(
    state: GatewayState | None = None,
    settings: GatewaySettings | None = None,
) -> FastAPI:
    state = state or bootstrap_state(settings or get_settings())

    app = FastAPI(title="Credential Gateway", version="0.1.0")
    app.state.gateway = state
    app.add_middleware(RequestContextMiddleware, service_name=SERVICE_NAME)
    setup_metrics(app, service_name=SERVICE_NAME)

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def _storage_error(request: Request, exc: StorageError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    @app.get("/health", tags=["system"])
    def health() -> dict[str, str]:
        return OK

    app.include_router(router)
    return app


__all__ = ["create_app", "router"]
