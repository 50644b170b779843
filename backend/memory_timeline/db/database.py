"""Database setup: SQLite with WAL mode via SQLModel/SQLAlchemy.

What lives here:
- events, eras: written by the external event store, read-only for the engine
- event_embeddings: one vector per event (JSON float list)
- cross_references: canonical, typed relationships between event pairs

Vectors stay in SQLite next to the events; similarity search scans them
in memory (see engines/similarity.py).
"""

from __future__ import annotations

import os

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from memory_timeline.config import settings


def get_database_url() -> str:
    """Get database URL, ensuring the data directory exists."""
    url = settings.database_url
    if url.startswith("sqlite:///"):
        db_path = url.replace("sqlite:///", "")
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
    return url


# Enable WAL mode for all SQLite connections
@event.listens_for(Engine, "connect")
def set_sqlite_wal(dbapi_connection, connection_record):
    """Enable WAL mode so reads continue while batch analysis writes."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
    cursor.execute("PRAGMA busy_timeout=5000")    # 5s wait on lock
    cursor.close()


engine = create_engine(
    get_database_url(),
    echo=False,
    connect_args={"check_same_thread": False},  # Required for SQLite + async
)


def create_db_and_tables(bind: Engine | None = None) -> None:
    """Create all tables defined by SQLModel metadata."""
    # Register table classes on the metadata before create_all
    from memory_timeline.models import cross_reference, embedding, event as _event  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)
