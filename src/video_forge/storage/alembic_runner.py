"""Programmatic Alembic entry points for the SQLite queue database."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext

from video_forge.storage.common import build_sqlite_engine

_PROJECT_ROOT = Path(__file__).resolve().parents[3]


def upgrade_head(db_path: Path) -> None:
    """Bring the database at ``db_path`` to the latest schema revision."""

    command.upgrade(_alembic_config(db_path), "head")


def current_revision(db_path: Path) -> str | None:
    """Return the applied schema revision, or None for an unmigrated database."""

    engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=5_000)
    try:
        with engine.connect() as connection:
            return MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()


def _alembic_config(db_path: Path) -> Config:
    config = Config(str(_PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(_PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config
