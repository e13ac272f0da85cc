"""Engine, session and transaction management."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from calendar_engine.repos import tables  # noqa: F401  (registers the tables)
from calendar_engine.services.locking import KeyedLock, advisory_key

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the engine and hands out transactional sessions."""

    def __init__(self, url: str, echo: bool = False) -> None:
        kwargs: dict = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every session sees its own empty db.
                kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(url, **kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self._locks = KeyedLock()

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def create_all(self) -> None:
        SQLModel.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        SQLModel.metadata.drop_all(self.engine)

    def reset(self) -> None:
        self.drop_all()
        self.create_all()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Open a session inside one transaction: commit on exit, rollback on error."""
        with Session(self.engine, expire_on_commit=False) as session:
            with session.begin():
                yield session

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        with Session(self.engine, expire_on_commit=False) as session:
            yield session

    @contextmanager
    def booking_transaction(self, lock_keys: Iterable[str]) -> Iterator[Session]:
        """A transaction that holds every booking key for its whole lifetime.

        Keys are held in-process for all dialects; on PostgreSQL they are also
        taken as transaction-scoped advisory locks so separate processes
        serialize on the same footprint.
        """
        keys = sorted(set(lock_keys))
        with self._locks.hold(keys):
            with self.transaction() as session:
                if self.dialect == "postgresql":
                    connection = session.connection()
                    for key in keys:
                        connection.execute(
                            text("SELECT pg_advisory_xact_lock(:key)"),
                            {"key": advisory_key(key)},
                        )
                logger.debug("Holding booking locks %s", keys)
                yield session
