"""Database engine and transactional session management.

SQLite is used by default (file `restaurant.db`); set DATABASE_URL to a
PostgreSQL URL for production. Every unit of work runs inside
`Database.session_scope()`, which commits on success and rolls back on any
exception so partial writes are never observable.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from configurator.db.tables import Base
from configurator.utils.config import config
from configurator.utils.logger import logger


IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def create_db_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create a SQLAlchemy engine for the configured database.

    Args:
        url: Database URL, defaults to config.DATABASE_URL.
        echo: Log every SQL statement, defaults to config.SQL_ECHO.

    Returns:
        Engine with foreign keys enforced and a busy timeout on SQLite.
    """
    url = url or config.DATABASE_URL
    echo = config.SQL_ECHO if echo is None else echo
    is_sqlite = url.startswith("sqlite")

    kwargs = {}
    if is_sqlite:
        # Writers wait on a locked database instead of failing immediately
        kwargs["connect_args"] = {"timeout": config.SQLITE_BUSY_TIMEOUT, "check_same_thread": False}
        if url in IN_MEMORY_URLS:
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, echo=echo, **kwargs)

    if is_sqlite:

        @event.listens_for(engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys = ON")
            cursor.close()

    logger.debug(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


class Database:
    """Owns the engine and hands out transactional sessions."""

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None) -> None:
        self.engine = engine or create_db_engine(url)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        """Create every table that does not exist yet."""
        Base.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def init_db(url: Optional[str] = None, seed: Optional[bool] = None) -> Database:
    """Create the schema and, when enabled, load the demo data into an empty database.

    Args:
        url: Database URL, defaults to config.DATABASE_URL.
        seed: Seed an empty database, defaults to config.SEED_ON_STARTUP.

    Returns:
        Ready-to-use Database.
    """
    from configurator.db.seed import seed_database

    database = Database(url)
    database.create_all()

    if config.SEED_ON_STARTUP if seed is None else seed:
        seed_database(database)

    return database
