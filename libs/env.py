"""Environment helpers for resolving connection URLs.

These utilities centralize how the gateway derives its database connection
string. Explicit settings always win; otherwise the helpers look at specific
environment variables and finally fall back to a SQLite file stored next to
the gateway data directory.
"""
from __future__ import annotations

import os
from pathlib import Path

DEFAULT_SQLITE_FILENAME = "gateway.db"


def sqlite_url_for(path: Path) -> str:
    """Return an absolute SQLAlchemy SQLite URL for ``path``."""

    resolved = path.expanduser().resolve()
    return f"sqlite:///{resolved.as_posix()}"


def default_sqlite_url(data_dir: str | None = None) -> str:
    """Return the fallback SQLite URL inside ``data_dir`` (or the cwd)."""

    base = Path(data_dir) if data_dir and data_dir.strip() else Path.cwd()
    return sqlite_url_for(base / DEFAULT_SQLITE_FILENAME)


def get_database_url(*, env_var: str | None = None, data_dir: str | None = None) -> str:
    """Return the database URL for the current environment.

    ``env_var`` allows callers to prioritise a service specific variable while
    still falling back to ``DATABASE_URL`` when available. When none of these
    variables are defined a SQLite file inside ``data_dir`` is used.
    """

    env_vars: list[str | None] = []
    if env_var:
        env_vars.append(env_var)
    env_vars.append("DATABASE_URL")
    for variable in env_vars:
        if not variable:
            continue
        value = os.getenv(variable)
        if value:
            return value
    return default_sqlite_url(data_dir)


def sqlite_path_from_url(url: str) -> Path | None:
    """Return the filesystem path of a file-backed SQLite URL, if any."""

    if not url.startswith("sqlite"):
        return None
    _, _, remainder = url.partition(":///")
    if not remainder or remainder.startswith(":memory:"):
        return None
    path = remainder.split("?", 1)[0]
    if not path:
        return None
    return Path(path)


__all__ = [
    "DEFAULT_SQLITE_FILENAME",
    "default_sqlite_url",
    "get_database_url",
    "sqlite_path_from_url",
    "sqlite_url_for",
]
