# Overview: Unit-of-work and locking helpers shared by every mutating ledger operation.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import AtomicityFailure, LedgerError
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (its writers are serialized
    by the database lock instead), but other DBs will honor it.
    """
    return query.with_for_update()


def run_in_transaction(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute func as one all-or-nothing unit of work and commit it.

    - Any exception rolls the session back; nothing written by func survives.
    - OperationalError (locks, deadlocks) and StaleDataError (optimistic
      version conflicts) are retried with exponential backoff.
    - LedgerError subclasses propagate unchanged.
    - Exhausted retries and any other SQLAlchemyError surface as
      AtomicityFailure.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Unit of work failed after %d attempts: %s", attempts, exc)
                raise AtomicityFailure("storage rejected the transaction; nothing was applied") from exc
            logger.warning("Retrying unit of work (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except LedgerError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Unit of work rejected by storage: %s", exc)
            raise AtomicityFailure("storage rejected the transaction; nothing was applied") from exc
        except Exception:
            db.session.rollback()
            raise
    raise AtomicityFailure("transaction was not attempted")
