from logging.config import fileConfig

from alembic import context

from config import get_settings
from database import Base, create_db_engine
import models  # noqa: F401  registers the expenses table

config = context.config
target_metadata = Base.metadata

# A caller may hand over an open connection (tests, embedded upgrades).
shared_connection = config.attributes.get("connection")

if shared_connection is None and config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _database_url() -> str:
    return config.attributes.get("database_url") or get_settings().database_url


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_with(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    if shared_connection is not None:
        _run_with(shared_connection)
        return

    engine = create_db_engine(_database_url())
    with engine.connect() as connection:
        _run_with(connection)
    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
