"""
SQLAlchemy engine and session handling for the ledger store.

PostgreSQL backs production; SQLite is accepted for local runs and tests.
Pool checkin/invalidate events are logged for connection observability.
"""
import time
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional
from urllib.parse import urlparse

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import Pool, StaticPool

from tradesync.exceptions import ConfigurationError
from tradesync.monitoring.logger import get_logger

logger = get_logger(__name__)
_pool_logger = get_logger("tradesync.db.pool")

Base = declarative_base()

SUPPORTED_SCHEMES = ("postgresql", "sqlite")
MEMORY_SQLITE_URLS = ("sqlite://", "sqlite:///:memory:")


def _engine_kwargs(database_url: str) -> Dict[str, Any]:
    if database_url.startswith("postgresql"):
        return {
            "pool_pre_ping": True,
            "pool_size": 10,
            "max_overflow": 20,
            "pool_recycle": 3600,
            "pool_timeout": 30,
        }
    kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if database_url in MEMORY_SQLITE_URLS:
        # A single shared connection; separate checkouts would each see an empty database
        kwargs["poolclass"] = StaticPool
    return kwargs


class Database:
    """Owns the engine and hands out transactional sessions."""

    def __init__(self, database_url: str):
        if not database_url.startswith(SUPPORTED_SCHEMES):
            raise ConfigurationError(
                f"Unsupported database URL scheme '{urlparse(database_url).scheme}'. "
                "Use postgresql:// (or sqlite:// for local runs)."
            )
        self.database_url = database_url
        self.engine = create_engine(database_url, echo=False, **_engine_kwargs(database_url))
        if not self.is_postgres:
            _enable_sqlite_savepoints(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        _register_pool_events(self.engine.pool)

    @property
    def is_postgres(self) -> bool:
        return self.database_url.startswith("postgresql")

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        One unit of work: commit on clean exit, roll back on any exception.

            with db.get_session() as session:
                session.add(row)
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


_db_instance: Optional[Database] = None


def _open(database_url: str) -> Database:
    # Registers the ORM tables on Base.metadata
    import tradesync.storage.repository  # noqa: F401

    db = Database(database_url)
    db.create_all()
    return db


def get_db() -> Database:
    """Process-wide Database, created from ``data.database_url`` on first use."""
    global _db_instance
    if _db_instance is None:
        from tradesync.config.config import get_config

        database_url = get_config().data.database_url
        if not database_url:
            raise ConfigurationError("DATABASE_URL is not configured")

        parsed = urlparse(database_url)
        logger.info(
            "DATABASE_CONNECTION_INIT",
            scheme=parsed.scheme,
            host=parsed.hostname or "local",
            database=parsed.path.lstrip("/") or "memory",
            has_credentials=bool(parsed.password),
        )
        _db_instance = _open(database_url)
    return _db_instance


def init_db(database_url: str) -> Database:
    """Replace the process-wide Database with one bound to ``database_url`` (CLI, tests)."""
    global _db_instance
    if _db_instance is not None:
        _db_instance.dispose()
    _db_instance = _open(database_url)
    return _db_instance


def close_db() -> None:
    global _db_instance
    if _db_instance is not None:
        _db_instance.dispose()
    _db_instance = None


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Make pysqlite honour SAVEPOINT.

    The driver's own implicit BEGIN handling breaks begin_nested(); disable it
    and emit BEGIN ourselves so per-row savepoints work as on PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _register_pool_events(pool: Pool) -> None:
    """Log POOL_CHECKIN (with hold time) and POOL_INVALIDATE."""

    @event.listens_for(pool, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy):
        connection_record.info["checked_out_at"] = time.monotonic()

    @event.listens_for(pool, "checkin")
    def _on_checkin(dbapi_connection, connection_record):
        started = connection_record.info.pop("checked_out_at", None)
        held_ms = round((time.monotonic() - started) * 1000, 1) if started is not None else None
        _pool_logger.debug("POOL_CHECKIN", held_ms=held_ms)

    @event.listens_for(pool, "invalidate")
    def _on_invalidate(dbapi_connection, connection_record, exception):
        _pool_logger.warning("POOL_INVALIDATE", error=str(exception) if exception else None)
