# Overview: Row-locking and retry helpers shared by the sequence allocator and the stock ledger.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; use begin_write() there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Take the database write lock up front on SQLite.

    SQLite has no row locks, so a deferred transaction that reads and then
    writes can deadlock against another writer. BEGIN IMMEDIATE serializes
    writers instead. No-op on other dialects.

    Must open a unit of work: a still-open read transaction (request auth,
    validation queries) is rolled back first. Never call it after writes.
    """
    if db.engine.dialect.name != "sqlite":
        return
    if db.session().in_transaction():
        db.session.rollback()
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError (optimistic locking conflicts). The session is rolled
    back before each retry so func always starts from a clean transaction.
    """
    config = current_app.config
    if attempts is None:
        attempts = config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("DB_RETRY_BACKOFF", 0.1)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after concurrency failure (attempt %s/%s): %s",
                attempt + 1, attempts, exc,
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
