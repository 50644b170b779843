"""Alembic environment: picks up the engine's SQLModel tables.

Reads DATABASE_URL from memory_timeline.config.settings (same as the app),
so migrations use the same DB that the server uses. Only the tables the
engine owns (event_embeddings, cross_references) are migrated here; events
and eras belong to the event store.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlmodel import SQLModel, create_engine

# Alembic Config object
config = context.config

# Set up Python logging from .ini
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# --- Import the owned SQLModel table classes so metadata includes them ---
from memory_timeline.models.cross_reference import CrossReference  # noqa: F401, E402
from memory_timeline.models.embedding import EventEmbedding  # noqa: F401, E402

OWNED_TABLES = {"event_embeddings", "cross_references"}

target_metadata = SQLModel.metadata

# --- Get DB URL from settings (same source of truth as the app) ---
from memory_timeline.config import settings  # noqa: E402

DATABASE_URL = settings.database_url


def include_object(obj, name, type_, reflected, compare_to):
    """Autogenerate only diffs the owned tables."""
    if type_ == "table":
        return name in OWNED_TABLES
    return True


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (generates SQL without DB connection)."""
    context.configure(
        url=DATABASE_URL,
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,  # Required for SQLite ALTER TABLE support
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (applies directly to DB)."""
    connectable = create_engine(
        DATABASE_URL,
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=include_object,
            render_as_batch=True,  # Required for SQLite ALTER TABLE support
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
