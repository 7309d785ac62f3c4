"""Engine and session handling for the usage counter and generation record tables."""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from sqlalchemy import Engine, create_engine, event, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tripweaver.db.base import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str, busy_timeout_ms: int = 5000) -> Engine:
    """
    Create the engine for ``database_url``.

    SQLite connections are shared with worker threads (the SQL usage
    store and the result store run there), so the same-thread check is
    off and writers wait ``busy_timeout_ms`` for the lock. A file
    database runs in WAL mode; an in-memory one is pinned to a single
    connection so every thread sees the same tables.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True)

    in_memory = url.database in (None, "", ":memory:")
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if in_memory:
        options["poolclass"] = StaticPool
    else:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, **options)

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_connection, connection_record) -> None:  # type: ignore
        cursor = dbapi_connection.cursor()
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
        cursor.close()

    return engine


class DatabaseManager:
    """
    Owns the engine shared by the usage store, result store and pruner.

    The engine is created on first use and dropped by ``close``; a
    closed manager builds a fresh engine if used again.
    """

    def __init__(
        self,
        database_url: str = "sqlite:///data/tripweaver.db",
        busy_timeout_ms: int = 5000,
    ) -> None:
        self._database_url = database_url
        self._busy_timeout_ms = busy_timeout_ms
        self._engine: Engine | None = None
        self._sessions: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = build_engine(self._database_url, self._busy_timeout_ms)
        return self._engine

    def _session_factory(self) -> sessionmaker[Session]:
        if self._sessions is None:
            self._sessions = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        return self._sessions

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Session scoped to one unit of work.

        Commits when the block exits cleanly and rolls back on error.
        """
        session = self._session_factory()()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_db(self) -> None:
        """Create the usage counter and generation record tables if missing."""
        Base.metadata.create_all(bind=self.engine)
        tables = sorted(inspect(self.engine).get_table_names())
        logger.info(f"Database ready: {', '.join(tables)}")

    def health_check(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Database connection closed")
