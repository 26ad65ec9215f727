"""
services/store.py

Record store boundary consumed by the engine:

    get(scope)            -> records matching every field in scope
    upsert(key, fields)   -> (record, created)
    delete_many(keys)     -> number of deleted records

The engine assumes last-write-wins per field. Concurrent upserts of the same
natural key inside this process are serialised by a keyed lock; across
processes the unique constraint on the table turns a lost race into an
IdentityConflictError, which callers retry once as an update.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Tuple

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from services.errors import IdentityConflictError, RecordRejected, StoreUnavailableError
from utils.locks import KeyedLocks

logger = logging.getLogger(__name__)

# process wide: every store instance shares the same per-key locks
_upsert_locks = KeyedLocks()


class RecordStore(ABC):
    @abstractmethod
    def get(self, scope: Dict[str, Any]) -> List[Any]: ...
    @abstractmethod
    def upsert(self, key: Dict[str, Any], fields: Dict[str, Any]) -> Tuple[Any, bool]: ...
    @abstractmethod
    def delete_many(self, keys: Iterable[Dict[str, Any]]) -> int: ...


@contextmanager
def store_errors(session: Session = None, key: Any = None):
    """Translate SQLAlchemy failures into engine errors (rolls the session back first)."""
    try:
        yield
    except IntegrityError as e:
        if session is not None:
            session.rollback()
        raise IdentityConflictError(key, f"Concurrent write on key {key!r}: {e.orig}") from e
    except (OperationalError, InterfaceError) as e:
        if session is not None:
            session.rollback()
        logger.error(f"Record store unavailable: {e}")
        raise StoreUnavailableError(f"Record store unavailable: {e.orig}") from e
    except DBAPIError as e:
        if session is not None:
            session.rollback()
        if e.connection_invalidated:
            raise StoreUnavailableError(f"Record store connection lost: {e.orig}") from e
        raise RecordRejected(f"Record {key!r} rejected by the record store: {e.orig}", key=key) from e


class SQLAlchemyRecordStore(RecordStore):
    """RecordStore over one mapped model. Writes are flushed, committing is left to the caller."""

    def __init__(self, session: Session, model, key_fields: Iterable[str]):
        self.session = session
        self.model = model
        self.key_fields = tuple(key_fields)

    def _key_tuple(self, key: Dict[str, Any]) -> tuple:
        missing = [f for f in self.key_fields if f not in key]
        if missing:
            raise ValueError(f"{self.model.__name__} key is missing {missing}")
        return (self.model.__tablename__,) + tuple(key[f] for f in self.key_fields)

    def get(self, scope: Dict[str, Any]) -> List[Any]:
        with store_errors(self.session):
            return (
                self.session.query(self.model)
                .filter_by(**scope)
                .order_by(self.model.id)
                .all()
            )

    def find(self, key: Dict[str, Any]):
        with store_errors(self.session, key):
            return self.session.query(self.model).filter_by(**key).one_or_none()

    def upsert(self, key: Dict[str, Any], fields: Dict[str, Any]) -> Tuple[Any, bool]:
        lock_key = self._key_tuple(key)
        with _upsert_locks.hold(lock_key), store_errors(self.session, key):
            record = self.session.query(self.model).filter_by(**key).one_or_none()
            created = record is None
            if created:
                record = self.model(**key, **fields)
                self.session.add(record)
            else:
                for name, value in fields.items():
                    setattr(record, name, value)
            self.session.flush()
            return record, created

    def delete_many(self, keys: Iterable[Dict[str, Any]]) -> int:
        deleted = 0
        with store_errors(self.session):
            for key in keys:
                for record in self.session.query(self.model).filter_by(**key).all():
                    self.session.delete(record)
                    deleted += 1
            self.session.flush()
        return deleted
