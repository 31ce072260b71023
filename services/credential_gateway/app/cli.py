"""Command line entrypoint serving the credential gateway admin API."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence

import uvicorn

from libs.observability.logging import configure_logging

from .config import SERVICE_NAME, GatewaySettings, get_settings
from .main import create_app
from .state import bootstrap_state

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gateway-admin", description="Serve the credential gateway admin API"
    )
    parser.add_argument("--host", help="Bind address (GATEWAY_HOST)")
    parser.add_argument("--port", type=int, help="Bind port (GATEWAY_PORT)")
    parser.add_argument("--admin-key", dest="admin_key", help="Admin key (GATEWAY_ADMIN_KEY)")
    parser.add_argument("--dsn", help="SQLAlchemy database URL (GATEWAY_DSN)")
    parser.add_argument("--proxy", help="Upstream HTTP proxy (GATEWAY_PROXY)")
    parser.add_argument("--data-dir", dest="data_dir", help="Directory for the default SQLite file")
    return parser


def load_settings(argv: Sequence[str] | None = None) -> GatewaySettings:
    args = build_parser().parse_args(argv)
    return get_settings().with_overrides(vars(args))


def main(argv: Sequence[str] | None = None) -> None:
    configure_logging(SERVICE_NAME)
    settings = load_settings(argv)
    state = bootstrap_state(settings)
    config = state.config
    logger.info("starting admin api", extra={"host": config.host, "port": config.port})
    uvicorn.run(create_app(state=state), host=config.host, port=config.port, log_config=None)


if __name__ == "__main__":  # pragma: no cover - CLI
    main()
