# Overview: Unit-of-work helpers: row locks, commit/rollback and retry on conflicts.

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflictError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns on Order and InventoryRecord catch what SQLite lets through.
    """
    return query.with_for_update()


def _default_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("UNIT_OF_WORK_ATTEMPTS", 3))
    return 3


def run_in_unit_of_work(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute func and commit, as one all-or-nothing unit of work.

    - Any exception rolls the session back in full before it propagates, so
      no partial Order/InventoryRecord change is ever left visible.
    - OperationalError (deadlocks, lock timeouts) and StaleDataError
      (version mismatch) are retried with exponential backoff; func must
      therefore re-read everything it needs on each call.
    - Once attempts are exhausted a StaleDataError surfaces as
      ConcurrencyConflictError; an OperationalError propagates unchanged.
    """
    if attempts is None:
        attempts = _default_attempts()

    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, StaleDataError):
                    raise ConcurrencyConflictError(
                        "The record was modified concurrently; reload and retry"
                    ) from exc
                raise
            if has_app_context():
                current_app.logger.warning(
                    "unit of work conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
                )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
