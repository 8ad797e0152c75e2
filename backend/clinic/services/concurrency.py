# Overview: Transaction helpers shared by the write paths (sales, stock, bookings).

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the current unit of work as a write transaction.

    On SQLite this takes the database write lock up front (BEGIN IMMEDIATE)
    so two requests cannot both read stock and then both decrement it.
    Other engines rely on row locks and conditional updates.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, busy database) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates unchanged.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after concurrency conflict (attempt %s): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
