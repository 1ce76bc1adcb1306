"""
Engine and session factory.

Sightings, cached OpenSky responses and role assignments share one
database: SQLite in development, PostgreSQL in production. Request
handlers and enrichment threads each open their own short-lived
sessions from ``SessionLocal``.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from spotterlog.config import config


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


engine_kwargs = {
    'echo': config.debug,  # Log SQL in debug mode
}

if config.database.is_sqlite:
    # Enrichment workers share the engine across threads
    engine_kwargs['connect_args'] = {'check_same_thread': False}
    if config.database.is_memory:
        # A single connection, otherwise every thread sees its own empty database
        engine_kwargs['poolclass'] = StaticPool

engine = create_engine(config.database.url, **engine_kwargs)


if config.database.is_sqlite:
    @event.listens_for(engine, 'connect')
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """
        Configure SQLite for concurrent access.

        WAL mode allows reads from request handlers while an enrichment
        worker is writing a status update.
        """
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA journal_mode=WAL')
        cursor.execute('PRAGMA synchronous=NORMAL')
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


# Session factory
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,  # Sightings are handed to worker threads after commit
)


def init_db(bind=None) -> None:
    """
    Initialize database schema.

    Creates all tables if they don't exist. For production,
    use Alembic migrations instead.
    """
    Base.metadata.create_all(bind=bind or engine)
