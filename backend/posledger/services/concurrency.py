# Overview: Locking, write-transaction and retry primitives shared by the ledger services.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class KeyedLocks:
    """
    One mutex per key, created on demand and dropped when unused.

    Keys are hashable tuples such as ("variant", 7) or ("sale", 12).
    hold() acquires several keys in sorted order so two callers that need
    overlapping key sets can never deadlock each other. Work on disjoint keys
    never contends.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict = {}  # key -> [lock, refcount]

    def _checkout(self, key) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, keys):
        ordered = sorted(set(keys), key=repr)
        acquired = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() takes the
    database write lock there instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Start the current session's transaction as a write transaction.

    On SQLite this issues BEGIN IMMEDIATE so every read inside the unit of
    work sees the state it will write against. The lock it takes covers the
    whole database: writers for different variants queue here even though
    their keyed locks do not contend. Other databases rely on the
    row locks taken with lock_for_update().
    """
    if db.engine.dialect.name != "sqlite":
        return
    conn = db.session.connection()
    raw = conn.connection.driver_connection
    if not raw.in_transaction:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@contextmanager
def unit_of_work():
    """
    All writes inside the block commit together or not at all.

    Any exception rolls the session back and propagates unchanged.
    """
    begin_write()
    try:
        yield db.session
        db.session.commit()
    except BaseException:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (database locked, deadlocks) and
    StaleDataError (optimistic version conflicts). Ledger errors are never
    retried.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
