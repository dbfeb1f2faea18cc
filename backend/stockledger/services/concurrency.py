# Overview: Transaction helpers for ledger mutations: row locks and retry on store-level conflicts.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import LedgerError, PersistenceFailure
from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id column on InventoryRecord still catches lost updates there.
    """
    return query.with_for_update()


def run_with_retry(
    func,
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
    retry: bool = True,
):
    """
    Execute a DB operation as one unit of work.

    - Lock and version conflicts (OperationalError, StaleDataError) and
      racing inserts (IntegrityError) roll back and retry with backoff.
    - When retries run out, or on any other SQLAlchemyError, the session is
      rolled back and PersistenceFailure is raised.
    - Engine errors (validation and friends) roll back and propagate as-is,
      so a rejected request leaves no partial mutation behind.
    - retry=False (commit=False callers) makes one attempt. The rollback has
      already discarded the caller's pending work, so a conflict surfaces as
      PersistenceFailure instead of being retried.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF", 0.1)
    if not retry:
        attempts = 1

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.error(
                    "Ledger transaction failed after %s attempts: %s", attempts, exc
                )
                raise PersistenceFailure(
                    "Transaction aborted by the data store; retry the request",
                    details={"attempts": attempts},
                ) from exc
            current_app.logger.warning(
                "Ledger transaction conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Ledger transaction aborted")
            raise PersistenceFailure("Transaction aborted by the data store") from exc
        except LedgerError:
            db.session.rollback()
            raise


def finish(commit: bool) -> None:
    """Commit, or flush when the caller owns the surrounding transaction."""
    if commit:
        db.session.commit()
    else:
        db.session.flush()
