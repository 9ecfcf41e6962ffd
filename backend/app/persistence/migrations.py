from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config

from app.config.settings import get_settings

BACKEND_ROOT = Path(__file__).resolve().parents[2]


def alembic_config(database_url: str | None = None) -> Config:
    alembic_ini = BACKEND_ROOT / "alembic.ini"
    script_location = BACKEND_ROOT / "alembic"
    if not alembic_ini.exists():
        raise RuntimeError(f"Alembic config not found: {alembic_ini}")
    if not script_location.exists():
        raise RuntimeError(f"Alembic script location not found: {script_location}")

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(script_location))
    config.set_main_option("sqlalchemy.url", database_url or get_settings().database_url)
    # Keep env.py from replacing the JSON log handler with alembic.ini's.
    config.config_file_name = None
    return config


def run_migrations(database_url: str | None = None) -> None:
    """Apply the agent core schema up to head."""
    command.upgrade(alembic_config(database_url), "head")
