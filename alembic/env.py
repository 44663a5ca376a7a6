from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from alembic import context  # type: ignore[attr-defined]
from sqlalchemy import create_engine, pool

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from autoevaluacion.infrastructure.config import StorageConfig, get_settings  # noqa
from autoevaluacion.infrastructure.models import Base  # noqa

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def database_url() -> str:
    """The ini's ``sqlalchemy.url`` if set, else the SQLite file named by ``STORAGE_SQLITE_PATH``."""
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    storage = get_settings().storage
    return StorageConfig(backend="sqlite", sqlite_path=storage.sqlite_path).get_connection_url()


def run_migrations_offline() -> None:
    context.configure(
        url=database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    # no create_all here: the schema comes from the revisions
    engine = create_engine(database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
