"""Utilities to run Alembic migrations programmatically."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy.engine import Engine

from call_recap.storage.common import sqlite_url

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def build_alembic_config(db_path: Path) -> Config:
    """Alembic config pointing at the packaged migration scripts."""

    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", sqlite_url(db_path))
    return config


def upgrade_head(db_path: Path) -> None:
    """Apply Alembic migrations up to head for the given SQLite database."""

    db_path.parent.mkdir(parents=True, exist_ok=True)
    command.upgrade(build_alembic_config(db_path), "head")


def head_revision(db_path: Path) -> str | None:
    """Newest revision shipped with the package."""

    return ScriptDirectory.from_config(build_alembic_config(db_path)).get_current_head()


def current_revision(engine: Engine) -> str | None:
    """Revision recorded in `alembic_version`, or None for an unmigrated database."""

    with engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()
