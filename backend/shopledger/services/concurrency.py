# Overview: Service-layer concurrency primitives; row locks, keyed in-process locks and bounded retry.

from __future__ import annotations

import threading
import time
from contextlib import ExitStack, contextmanager
from typing import Iterable, Iterator

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


_registry_guard = threading.Lock()
# key -> [lock, number of holders and waiters]; entries go away when unused
_keyed_locks: dict[tuple[str, object], list] = {}


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    keyed_lock() covers the single-process SQLite case.
    """
    return query.with_for_update()


def _checkout(namespace: str, key: object) -> threading.RLock:
    with _registry_guard:
        slot = _keyed_locks.get((namespace, key))
        if slot is None:
            slot = [threading.RLock(), 0]
            _keyed_locks[(namespace, key)] = slot
        slot[1] += 1
        return slot[0]


def _checkin(namespace: str, key: object) -> None:
    with _registry_guard:
        slot = _keyed_locks[(namespace, key)]
        slot[1] -= 1
        if slot[1] == 0:
            del _keyed_locks[(namespace, key)]


@contextmanager
def keyed_lock(namespace: str, key: object) -> Iterator[None]:
    """
    Serialize work on one logical key (a bill variant, a product id) within
    this process. Re-entrant, so a caller holding the lock may call services
    that take it again.
    """
    lock = _checkout(namespace, key)
    try:
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
    finally:
        _checkin(namespace, key)


@contextmanager
def keyed_locks(namespace: str, keys: Iterable[object]) -> Iterator[None]:
    """Acquire several keyed locks in ascending key order (deadlock-free)."""
    with ExitStack() as stack:
        for key in sorted(set(keys)):
            stack.enter_context(keyed_lock(namespace, key))
        yield


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.05,
    retry_on: tuple[type[BaseException], ...] = (),
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts), plus any extra exception types in retry_on.
    The session is rolled back before each retry.
    """
    retryable = (OperationalError, StaleDataError) + tuple(retry_on)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retryable as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
