"""Verify the Alembic migrations match the ORM schema."""

from __future__ import annotations

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from infra.gateway_models import GatewayBase

ALEMBIC_CONFIG_PATH = Path(__file__).resolve().parents[2] / "infra/migrations/alembic.ini"


@pytest.mark.slow
def test_migrations_upgrade_head_creates_expected_tables(tmp_path, monkeypatch):
    database_url = f"sqlite:///{tmp_path / 'alembic.sqlite'}"
    monkeypatch.setenv("ALEMBIC_DATABASE_URL", database_url)

    config = Config(str(ALEMBIC_CONFIG_PATH))
    command.upgrade(config, "head")

    engine = create_engine(database_url, future=True)
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    assert set(GatewayBase.metadata.tables) <= tables

    for name, table in GatewayBase.metadata.tables.items():
        columns = {column["name"] for column in inspector.get_columns(name)}
        assert columns == {column.name for column in table.columns}, name

    command.downgrade(config, "base")
    assert set(inspect(engine).get_table_names()) <= {"alembic_version"}
    engine.dispose()
