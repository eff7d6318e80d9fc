"""Programmatic Alembic entry points for the studio database."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import create_engine, pool

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def alembic_config(db_path: Path, *, project_root: Path = PROJECT_ROOT) -> Config:
    """Alembic config bound to one SQLite file, independent of the working directory."""

    config = Config(str(project_root / "alembic.ini"))
    config.set_main_option("script_location", str(project_root / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path) -> None:
    logger.debug("Upgrading %s to head", db_path)
    command.upgrade(alembic_config(db_path), "head")


def current_revision(db_path: Path) -> str | None:
    """Revision stamped in the database, or None before the first upgrade."""

    engine = create_engine(f"sqlite:///{db_path}", poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            return MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()
