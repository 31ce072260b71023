"""Utilities shared across services to standardise observability."""

from .logging import (
    RequestContextMiddleware,
    configure_logging,
    mask_secret,
)
from .metrics import record_pool_stats, setup_metrics

__all__ = [
    "RequestContextMiddleware",
    "configure_logging",
    "mask_secret",
    "record_pool_stats",
    "setup_metrics",
]
