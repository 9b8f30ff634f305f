# Overview: Row locking and retry helpers that serialize writes per bill, session and device.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the rows the query loads.

    NOTE: SQLite ignores FOR UPDATE; there the version_id columns on Bill and
    DeviceSession turn a lost race into a StaleDataError instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Run one unit of work (a closure that reads, writes and commits).

    A lock timeout or an optimistic-lock conflict rolls back and re-runs the
    closure against fresh state, so a losing "end session" re-reads the
    winner's result and fails its own state guard. Any other exception rolls
    back and propagates unchanged.

    attempts / backoff_base default to WRITE_RETRY_ATTEMPTS and
    WRITE_RETRY_BACKOFF_SECONDS from the app config.
    """
    config = current_app.config
    if attempts is None:
        attempts = config.get("WRITE_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("WRITE_RETRY_BACKOFF_SECONDS", 0.1)

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts:
                current_app.logger.warning(
                    "Write %s gave up after %d attempts: %s",
                    getattr(func, "__qualname__", func), attempts, type(exc).__name__,
                )
                raise
            current_app.logger.debug("Retrying write after %s (attempt %d)", type(exc).__name__, attempt)
            time.sleep(backoff_base * (2 ** (attempt - 1)))
        except Exception:
            db.session.rollback()
            raise
