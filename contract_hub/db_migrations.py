from __future__ import annotations

from pathlib import Path

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from flask import Flask

_ROOT = Path(__file__).resolve().parents[1]
_SQLALCHEMY_PREFIXES = ("postgresql://", "postgresql+", "sqlite://", "sqlite+pysqlite://")


def to_sqlalchemy_url(raw_db_path: str) -> str:
    """Turn the app's ``DB_PATH`` (file path or URL) into a SQLAlchemy URL for Alembic."""
    raw = (raw_db_path or "").strip()
    if not raw:
        raise RuntimeError("DB_PATH is not set; cannot run migrations.")
    if raw.startswith("postgres://"):
        raw = "postgresql://" + raw[len("postgres://") :]
    if raw.startswith(_SQLALCHEMY_PREFIXES):
        return raw
    return "sqlite:///" + Path(raw).expanduser().resolve().as_posix()


def _alembic_config(app: Flask) -> AlembicConfig:
    ini_path = _ROOT / "alembic.ini"
    if not ini_path.exists():
        raise RuntimeError(f"Missing Alembic config at {ini_path}.")
    cfg = AlembicConfig(str(ini_path))
    cfg.set_main_option("script_location", (_ROOT / "migrations").as_posix())
    cfg.set_main_option("sqlalchemy.url", to_sqlalchemy_url(app.config["DB_PATH"]))
    return cfg


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Schema migrations (Alembic)."""

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        command.upgrade(_alembic_config(app), revision)
        click.echo(f"Upgraded to {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        command.downgrade(_alembic_config(app), revision)
        click.echo(f"Downgraded to {revision}.")

    @db_group.command("current")
    def db_current() -> None:
        command.current(_alembic_config(app), verbose=True)

    @app.cli.command("seed-users")
    def seed_users() -> None:
        """Create one demo user per role."""
        from contract_hub.application.user_service import UserService
        from contract_hub.db import get_db

        created = UserService().seed_demo_users(get_db())
        if not created:
            click.echo("Demo users already present.")
            return
        for email in created:
            click.echo(f"Created {email}")
