"""
Alembic environment for the Auditorium Event Store
===================================================

Migrations target the engagement schema declared in
:mod:`auditorium.database.models`: webinars and registrations, the chat,
Q&A, poll, reaction and watch-session rows, and the append-only
engagement ledger with its per-company weights.

``DATABASE_URL`` (from the environment or ``.env``) overrides the ini URL.
Autogenerate compares column types and server defaults as well as names,
so a JSONB default or a widened ``String`` shows up as a revision, and
an autogenerate run that finds no changes writes no file.
"""

from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

from alembic import context

load_dotenv()

config = context.config

database_url = os.getenv("DATABASE_URL")
if database_url:
    config.set_main_option("sqlalchemy.url", database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

from auditorium.database.models import Base  # noqa: E402

target_metadata = Base.metadata


def _skip_empty_autogenerate(migration_context, revision, directives) -> None:
    if getattr(config.cmd_opts, "autogenerate", False) and directives[0].upgrade_ops.is_empty():
        directives[:] = []
        logger.info("No schema changes detected; no revision written")


# Shared by offline and online runs
CONFIGURE_OPTS = {
    "target_metadata": target_metadata,
    "compare_type": True,
    "compare_server_default": True,
    "process_revision_directives": _skip_empty_autogenerate,
}


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout without a live connection."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **CONFIGURE_OPTS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **CONFIGURE_OPTS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
