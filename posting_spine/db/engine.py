"""
Module: posting_spine.db.engine
Responsibility: Explicitly constructed database handle -- engine, session
    factory and transactional scope -- passed to whoever needs storage.
    There is no process-wide engine: tests build an isolated Database (or a
    bare Session bound to an outer transaction) per run.
Architecture position: Spine > DB.  May import from db/base.py and
    db/immutability.py.  create_tables/drop_tables import models lazily so
    Base.metadata is complete.

Invariants enforced:
    - PostgreSQL is the production backend (NUMERIC(19,4), SELECT ... FOR
      UPDATE row locks, READ COMMITTED isolation).
    - SQLite is supported for tests and local tooling.  Connections get
      foreign keys enabled and the pysqlite SAVEPOINT recipe so nested
      transactions behave as on PostgreSQL.  SQLite ignores FOR UPDATE; its
      database-level write lock serializes writers instead.
    - ORM immutability listeners are registered whenever a Database is built.

Failure modes:
    - sqlalchemy.exc.ArgumentError on a malformed URL.
    - OperationalError on connection failure (surfaced on first use).

Audit relevance:
    session_scope() gives commit-or-rollback semantics for a whole unit of
    work; services flush inside it and never commit themselves.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from posting_spine.config import SpineSettings
from posting_spine.db.immutability import register_immutability_listeners
from posting_spine.logging_config import get_logger

logger = get_logger("db.engine")


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Apply the pysqlite transaction recipe to ``engine``.

    pysqlite's own BEGIN handling breaks SAVEPOINT; disable it and emit BEGIN
    ourselves.  Also turns on foreign key enforcement per connection.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """
    Engine plus session factory for one database.

    Contract:
        Construct once per process (or per test session) and pass it, or the
        sessions it creates, to services and selectors.

    Guarantees:
        - Sessions are created with expire_on_commit=False.
        - session_scope() commits on success and rolls back on any exception,
          re-raising it unchanged.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        register_immutability_listeners()

    @classmethod
    def from_url(
        cls,
        database_url: str,
        echo: bool = False,
        pool_size: int = 20,
        max_overflow: int = 10,
        pool_pre_ping: bool = True,
    ) -> "Database":
        """Build a Database for ``database_url``.

        In-memory SQLite URLs share one connection (StaticPool) so every
        session sees the same database.
        """
        url = make_url(database_url)
        backend = url.get_backend_name()

        if backend == "sqlite":
            kwargs: dict = {"echo": echo}
            if url.database in (None, "", ":memory:"):
                kwargs["poolclass"] = StaticPool
                kwargs["connect_args"] = {"check_same_thread": False}
            engine = create_engine(url, **kwargs)
            _enable_sqlite_savepoints(engine)
        else:
            engine = create_engine(
                url,
                echo=echo,
                poolclass=QueuePool,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=pool_pre_ping,
                isolation_level="READ COMMITTED",
            )

        logger.info(
            "engine_initialized",
            extra={
                "dialect": backend,
                "pool_size": pool_size if backend != "sqlite" else None,
                "echo": echo,
            },
        )
        return cls(engine)

    @classmethod
    def from_settings(cls, settings: SpineSettings) -> "Database":
        """Build a Database from loaded settings."""
        return cls.from_url(
            settings.database_url,
            echo=settings.echo_sql,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
        )

    def session(self) -> Session:
        """Return a new, unscoped session.  Caller closes it."""
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Postconditions: On normal exit the session is committed and closed.
            On exception it is rolled back and closed, and the exception is
            re-raised to the caller.
        """
        session = self.session()
        logger.debug("transaction_started")
        try:
            yield session
            session.commit()
            logger.debug("transaction_committed")
        except Exception:
            session.rollback()
            logger.warning("transaction_rolled_back", exc_info=True)
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create all posting spine tables (idempotent)."""
        from posting_spine.db.base import Base
        import posting_spine.models  # noqa: F401

        Base.metadata.create_all(self.engine)
        logger.info(
            "tables_created",
            extra={"tables": sorted(Base.metadata.tables)},
        )

    def drop_tables(self) -> None:
        """Drop all posting spine tables."""
        from posting_spine.db.base import Base
        import posting_spine.models  # noqa: F401

        Base.metadata.drop_all(self.engine)
        logger.info("tables_dropped")

    def dispose(self) -> None:
        """Close all pooled connections."""
        self.engine.dispose()
        logger.info("engine_disposed")
