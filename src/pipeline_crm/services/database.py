"""Database handle, session management, and migrations."""

from __future__ import annotations

import logging
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")

_SQLITE_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")

_MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    """Turn on SQLite foreign key enforcement for each new connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Storage handle owned by the top-level command dispatcher.

    Components never open their own engine; they receive ``session_factory``
    from this handle and the dispatcher disposes it when the command exits.
    """

    def __init__(self, url: str, *, echo: bool = False) -> None:
        """Create the engine and session factory for the given SQLAlchemy URL."""
        self.url = url
        engine_kwargs: dict[str, object] = {}
        if url.startswith("sqlite"):
            # Tool handlers may run on a different thread than the one that opened the connection.
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url in _SQLITE_MEMORY_URLS:
                engine_kwargs["poolclass"] = StaticPool
            else:
                Path(url[len("sqlite:///") :]).parent.mkdir(parents=True, exist_ok=True)
        self.engine: Engine = create_engine(url, echo=echo, **engine_kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.session_factory: sessionmaker[Session] = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
        )

    def migrate(self) -> None:
        """Apply all pending Alembic migrations."""
        alembic_cfg = Config()
        alembic_cfg.set_main_option("script_location", str(_MIGRATIONS_DIR))
        alembic_cfg.set_main_option("sqlalchemy.url", self.url)
        with self.engine.begin() as connection:
            alembic_cfg.attributes["connection"] = connection
            command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations applied: %s", self.url)

    def check_connection(self) -> bool:
        """Check if database connection is working."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as exc:
            logger.error("Database connection check failed: %s", exc)
            return False

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()


@contextmanager
def session_scope(session_factory: Callable[[], Session]) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on error."""
    with closing(session_factory()) as session:
        session.expire_on_commit = False
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


def run_in_session(
    session_factory: Callable[[], Session],
    handler: Callable[[Session], ResultT],
) -> ResultT:
    """Execute repository work inside a managed session."""
    with session_scope(session_factory) as session:
        return handler(session)
