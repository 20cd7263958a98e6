from __future__ import annotations

from logging.config import fileConfig

from alembic import context

from guestpass import database
from guestpass.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure(**options) -> None:
    context.configure(target_metadata=target_metadata, compare_type=True, **options)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    """Emit SQL for the configured URL without connecting."""
    url = config.get_main_option("sqlalchemy.url") or str(database.engine.url)
    _configure(url=url, literal_binds=True, render_as_batch=url.startswith("sqlite"))


def run_migrations_online() -> None:
    # SQLite cannot ALTER most columns in place, so batch mode rebuilds tables.
    with database.engine.connect() as connection:
        _configure(
            connection=connection,
            render_as_batch=connection.dialect.name == "sqlite",
        )


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
