"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Row-level locking helpers
- Per-book and per-customer serialization of rental writes and deletes
"""

import logging
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator, Optional, TypeVar, Type
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

T = TypeVar('T')


def is_postgres(db: Session) -> bool:
    """Check if the database is PostgreSQL"""
    try:
        return db.bind.dialect.name == 'postgresql'
    except AttributeError:
        return False


def acquire_row_lock(
    db: Session,
    model: Type[T],
    filter_condition,
    nowait: bool = False,
    skip_locked: bool = False,
    read: bool = False
) -> Optional[T]:
    """
    Acquire a row-level lock on a database record.

    Args:
        db: Database session
        model: SQLAlchemy model class
        filter_condition: Filter to find the row
        nowait: If True, raise error immediately if lock unavailable (PostgreSQL only)
        skip_locked: If True, skip locked rows (PostgreSQL only)
        read: Take a shared lock (FOR SHARE) instead of FOR UPDATE (PostgreSQL only)

    Returns:
        The locked model instance, or None if not found

    Raises:
        OperationalError: If nowait=True and row is locked by another transaction

    Example:
        book = acquire_row_lock(db, Book, Book.id == book_id, nowait=True)
    """
    query = db.query(model).filter(filter_condition)

    # Only apply locking on PostgreSQL
    if is_postgres(db):
        if skip_locked:
            query = query.with_for_update(skip_locked=True, read=read)
        elif nowait:
            query = query.with_for_update(nowait=True, read=read)
        elif read:
            query = query.with_for_update(read=True)
        else:
            query = query.with_for_update()

    return query.first()


class KeyedLockRegistry:
    """
    Process-local mutex per key (book or customer id).

    Used where the database offers no row locks (SQLite) so that two requests
    touching the same row cannot interleave their check and write. Only
    effective within one process, which is how SQLite deployments run.
    An entry lives only while someone holds or waits for it.
    """

    def __init__(self):
        self._guard = Lock()
        self._locks: Dict[str, Lock] = {}
        self._users: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]

    def is_held(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
            return lock is not None and lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


book_locks = KeyedLockRegistry()
customer_locks = KeyedLockRegistry()


@contextmanager
def _critical_section(db: Session, registry: KeyedLockRegistry, key: str) -> Iterator[None]:
    if is_postgres(db):
        yield
        return

    with registry.hold(key):
        yield


def book_critical_section(db: Session, book_id: str):
    """
    Serialize rental writes and deletion for one book.

    On PostgreSQL the caller's SELECT ... FOR UPDATE on the book row (plus the
    exclusion constraint) does the job, so this is a no-op there. Elsewhere
    the per-book process lock is held for the duration of the block.
    """
    return _critical_section(db, book_locks, book_id)


def customer_critical_section(db: Session, customer_id: str):
    """Serialize new rentals for a customer against that customer's deletion"""
    return _critical_section(db, customer_locks, customer_id)
