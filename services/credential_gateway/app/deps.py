"""Dependency wiring for the credential gateway admin API."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from .auth import is_admin
from .state import GatewayState


def get_state(request: Request) -> GatewayState:
    return request.app.state.gateway


def require_admin(request: Request, state: GatewayState = Depends(get_state)) -> None:
    """Reject requests that do not carry the configured admin key."""

    if not is_admin(request.headers, state.config.admin_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
