"""
Alembic environment for the properties, scrape_jobs and scrape_runs tables.

SQLite targets run in batch mode so column changes work despite SQLite's
limited ALTER TABLE.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from db.base import Base
from db.config import ensure_supported, load_env_files, normalize_database_url, resolve_database_url
from db.models import PropertyListing, ScrapeJob, ScrapeRun  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _migration_url() -> str:
    """
    First match wins: `-x db_url=...`, ALEMBIC_DATABASE_URL, sqlalchemy.url in
    alembic.ini, then the app's own DATABASE_URL / LOCAL_DATABASE_URL.
    """

    load_env_files()

    x_args = context.get_x_argument(as_dictionary=True)
    candidates = (
        ("-x db_url", x_args.get("db_url") or ""),
        ("ALEMBIC_DATABASE_URL", os.getenv("ALEMBIC_DATABASE_URL", "")),
        ("alembic.ini sqlalchemy.url", config.get_main_option("sqlalchemy.url") or ""),
    )
    for source, raw in candidates:
        if raw.strip():
            return ensure_supported(normalize_database_url(raw), source=source)
    return resolve_database_url()


def run_migrations_offline() -> None:
    url = _migration_url()

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = _migration_url()
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = url

    connectable = engine_from_config(configuration, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=url.startswith("sqlite"),
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
