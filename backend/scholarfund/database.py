"""Database engine, session helpers and the key-value store adapter.

This module configures the SQLModel/SQLAlchemy engine (a local SQLite file
unless `DATABASE_URL` says otherwise) and exposes `KeyValueStore`, the only
storage interface the domain services use. The store deliberately offers
nothing beyond `get`, `set` and `get_by_prefix`: no transactions and no
compare-and-swap, so every caller must treat a read followed by a write as
a non-atomic sequence.
"""

import logging
from typing import Any, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import SQLModel, create_engine, Session, select, col

from .config import settings
from .errors import StorageFailure
from . import models

logger = logging.getLogger("scholarfund.database")

_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(settings.DATABASE_URL, echo=False, connect_args=_connect_args)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    Idempotent; called once at application import and by the tests.
    """
    SQLModel.metadata.create_all(engine)


class KeyValueStore:
    """Key-value adapter over the `kv_store` table.

    Each call runs in its own short-lived session, so two calls never
    share a transaction. Driver errors are logged and re-raised as
    `StorageFailure`.
    """
    def __init__(self, bind=None):
        self.bind = bind if bind is not None else engine

    def get(self, key: str) -> Optional[Any]:
        """Return the stored value for `key` or `None` if absent."""
        try:
            with Session(self.bind) as session:
                entry = session.get(models.KVEntry, key)
                return entry.value if entry is not None else None
        except SQLAlchemyError as exc:
            logger.exception("kv get failed for %s", key)
            raise StorageFailure(f"get {key!r} failed") from exc

    def set(self, key: str, value: Any) -> None:
        """Insert or overwrite `key`.

        A concurrent `set` may create the row between our read and insert;
        the insert then fails on the primary key and is replayed as an update.
        """
        try:
            try:
                self._put(key, value)
            except IntegrityError:
                self._put(key, value)
        except SQLAlchemyError as exc:
            logger.exception("kv set failed for %s", key)
            raise StorageFailure(f"set {key!r} failed") from exc

    def _put(self, key: str, value: Any) -> None:
        with Session(self.bind) as session:
            entry = session.get(models.KVEntry, key)
            if entry is None:
                entry = models.KVEntry(key=key, value=value)
            else:
                entry.value = value
            session.add(entry)
            session.commit()

    def get_by_prefix(self, prefix: str) -> List[Any]:
        """Return the values of every key starting with `prefix`, in key order."""
        stmt = (
            select(models.KVEntry)
            .where(col(models.KVEntry.key).startswith(prefix, autoescape=True))
            .order_by(models.KVEntry.key)
        )
        try:
            with Session(self.bind) as session:
                return [entry.value for entry in session.exec(stmt).all()]
        except SQLAlchemyError as exc:
            logger.exception("kv prefix scan failed for %s", prefix)
            raise StorageFailure(f"scan {prefix!r} failed") from exc


def get_store() -> KeyValueStore:
    """FastAPI dependency returning the process-wide key-value store."""
    return KeyValueStore()
