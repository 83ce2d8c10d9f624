from __future__ import annotations

import logging
import os
from pathlib import Path

from sqlalchemy import inspect as sa_inspect
from sqlalchemy import text
from sqlmodel import SQLModel

import settlement_node.db.tables  # noqa: F401  registers every table on SQLModel.metadata
from settlement_node.db.session import engine

logger = logging.getLogger(__name__)


def tables_to_reset() -> list[str]:
    return [
        "prize_payouts",
        "settlement_attempts",
        "distributions",
        "score_entries",
        "claim_events",
        "alembic_version",
    ]


def _find_alembic_dir() -> Path | None:
    """Locate the migrations directory: ALEMBIC_DIR, then the repo root.

    Returns None when the package was installed without `alembic/`; callers
    fall back to SQLModel.metadata.create_all().
    """
    def _is_valid(p: Path) -> bool:
        return p.is_dir() and (p / "env.py").exists() and (p / "versions").is_dir()

    env_dir = os.getenv("ALEMBIC_DIR")
    if env_dir and _is_valid(Path(env_dir)):
        return Path(env_dir)

    repo_dir = Path(__file__).resolve().parent.parent.parent / "alembic"
    if _is_valid(repo_dir):
        return repo_dir

    return None


def _run_alembic_upgrade(alembic_dir: Path | None = None) -> None:
    alembic_dir = alembic_dir or _find_alembic_dir()
    if alembic_dir is None:
        raise FileNotFoundError(
            "Alembic migrations directory not found. "
            "Set ALEMBIC_DIR or keep alembic/ alongside the package."
        )

    from alembic import command
    from alembic.config import Config

    if engine.dialect.name == "postgresql":
        # DDL must not wait forever behind a long read
        with engine.connect() as conn:
            conn.execute(text("SET lock_timeout = '30s'"))
            conn.commit()

    alembic_cfg = Config()
    alembic_cfg.set_main_option("script_location", str(alembic_dir))
    alembic_cfg.set_main_option("sqlalchemy.url", engine.url.render_as_string(hide_password=False))
    command.upgrade(alembic_cfg, "head")


def migrate() -> None:
    """Bring the schema to head. Safe on every boot; never drops data."""
    alembic_dir = _find_alembic_dir()
    if alembic_dir is None:
        logger.info("No Alembic migrations directory found, using SQLModel create_all")
        SQLModel.metadata.create_all(engine)
        return

    logger.info("Running Alembic migrations from %s", alembic_dir)
    try:
        _run_alembic_upgrade(alembic_dir)
    except Exception:
        logger.exception("Alembic migration failed, falling back to create_all")
        SQLModel.metadata.create_all(engine)
    logger.info("Database migration complete")


def reset_db() -> None:
    """Drop all tables and recreate them. Destroys all data."""
    logger.warning("Dropping all settlement tables")
    cascade = " CASCADE" if engine.dialect.name == "postgresql" else ""
    with engine.begin() as conn:
        for table in tables_to_reset():
            conn.execute(text(f"DROP TABLE IF EXISTS {table}{cascade}"))
    migrate()


def auto_migrate() -> None:
    """Create or upgrade the schema on first session use."""
    if not sa_inspect(engine).has_table("claim_events"):
        migrate()
        return
    if _find_alembic_dir() is not None:
        _run_alembic_upgrade()


if __name__ == "__main__":
    import sys

    from settlement_node.utils.logging_config import setup_logging

    setup_logging()
    if "--reset" in sys.argv:
        reset_db()
    else:
        migrate()
    sys.exit(0)
