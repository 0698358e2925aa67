import logging
from collections.abc import Generator
from typing import Optional

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from profit_iq.core.storage import BlobStorage

logger = logging.getLogger(__name__)


class Database:
    """Explicitly owned engine + session factory.

    Opened once at application startup and disposed at shutdown; request
    handlers receive sessions through ``get_db``.
    """

    def __init__(self, url: str, *, engine: Optional[Engine] = None) -> None:
        self.url = url
        self.engine = engine or self._create_engine(url)
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    @staticmethod
    def _create_engine(url: str) -> Engine:
        if not url.startswith("sqlite"):
            return create_engine(url, pool_pre_ping=True)

        # FastAPI runs sync handlers in a threadpool, so the SQLite connection must be
        # shareable across threads. In-memory databases need a single static connection.
        kwargs: dict[str, object] = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        if url in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:  # type: ignore[no-untyped-def]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

        return engine

    def session(self) -> Session:
        return self.session_factory()

    def create_all(self) -> None:
        from profit_iq.models.project import Base

        Base.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Database engine disposed")


def get_database(request: Request) -> Database:
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("DATABASE_URL is not configured")
    return database


def get_db(request: Request) -> Generator[Session, None, None]:
    db = get_database(request).session()
    try:
        yield db
    finally:
        db.close()


def get_blob_storage() -> BlobStorage:
    return BlobStorage.from_settings()
