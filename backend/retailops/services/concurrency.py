# Overview: Retry and locking helpers shared by the lifecycle services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, DependencyError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id check on Sale/Repair still catches concurrent writers there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). func must re-read everything it writes,
    since each attempt starts from a rolled-back session.

    Raises ConflictError when the version check keeps failing and
    DependencyError when the database stays unavailable.
    """
    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConflictError(
                    "Record was modified by another request; please retry"
                ) from exc
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise DependencyError("Database is unavailable") from exc
        time.sleep(backoff_base * (2 ** attempt))
