"""SQLAlchemy models backing the credential gateway."""

from .gateway_models import (
    TOKEN_COLUMNS,
    ApiKey,
    Credential,
    CredentialDisallow,
    DownstreamTraffic,
    GatewayBase,
    GlobalConfigRecord,
    Provider,
    UpstreamTraffic,
    User,
)

__all__ = [
    "TOKEN_COLUMNS",
    "ApiKey",
    "Credential",
    "CredentialDisallow",
    "DownstreamTraffic",
    "GatewayBase",
    "GlobalConfigRecord",
    "Provider",
    "UpstreamTraffic",
    "User",
]
