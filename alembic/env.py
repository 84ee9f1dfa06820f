"""Alembic migrations for the sharing tables, run against Settings.database_url."""

from logging.config import fileConfig

from sqlalchemy import create_engine, pool
from alembic import context

import consentlink.models  # noqa: F401  registers every table on Base.metadata
from consentlink.core.config import get_settings
from consentlink.models.base import Base

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)


def _configure(**kwargs) -> None:
    context.configure(target_metadata=Base.metadata, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


def main() -> None:
    database_url = get_settings().database_url
    if context.is_offline_mode():
        # Emit SQL to stdout instead of touching a database
        _configure(url=database_url, literal_binds=True, dialect_opts={"paramstyle": "named"})
        return

    engine = create_engine(database_url, future=True, poolclass=pool.NullPool)
    with engine.connect() as connection:
        _configure(
            connection=connection,
            compare_type=True,
            # SQLite cannot ALTER most constraints in place
            render_as_batch=connection.dialect.name == "sqlite",
        )


main()
