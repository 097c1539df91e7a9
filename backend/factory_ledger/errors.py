# Overview: Ledger error taxonomy and the Flask handlers that render it.

"""
Every failure leaving the ledger tells the caller which of three things
happened:

- nothing was written, fix the input (ValidationError, InsufficientDataError,
  InvalidStateError)
- nothing was written, re-fetch and retry (ConcurrencyConflict)
- the store refused the unit of work, retry the whole operation
  (AtomicityFailure)

LowStockWarning is not an error; it travels inside successful results.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException


class LedgerError(Exception):
    code = "ledger_error"
    http_status = 500
    retryable = False

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "retryable": self.retryable}


class ValidationError(LedgerError, ValueError):
    """400-level input problem; rejected before any write."""
    code = "validation_error"
    http_status = 400


class InsufficientStockError(ValidationError):
    """Manual OUT refused because negative manual stock is disabled."""
    code = "insufficient_stock"


class InsufficientDataError(LedgerError, LookupError):
    """A referenced worker, rate, item, log or run does not exist."""
    code = "not_found"
    http_status = 404


class InvalidStateError(LedgerError):
    """Operation not allowed in the record's current status."""
    code = "invalid_state"
    http_status = 409


class ConcurrencyConflict(LedgerError):
    """Lost a race against another writer; re-fetch and retry."""
    code = "concurrency_conflict"
    http_status = 409
    retryable = True


class AlreadyFinalized(ConcurrencyConflict):
    """The payroll run was finalized before; finalizing again would double-pay."""
    code = "already_finalized"
    retryable = False


class AtomicityFailure(LedgerError):
    """The backing store rejected the transactional batch; nothing was applied."""
    code = "atomicity_failure"
    http_status = 503
    retryable = True


@dataclass(frozen=True)
class LowStockWarning:
    item_id: int
    item_name: str
    required: Decimal
    available: Decimal
    projected: Decimal
    kind: str = "INSUFFICIENT"  # or BELOW_MINIMUM

    @property
    def message(self) -> str:
        if self.kind == "BELOW_MINIMUM":
            return f"{self.item_name}: stock {self.projected:.2f} is below minimum level"
        return f"{self.item_name}: need {self.required:.2f}, only {self.available:.2f} available"

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_name": self.item_name,
            "kind": self.kind,
            "required": str(self.required),
            "available": str(self.available),
            "projected": str(self.projected),
            "message": self.message,
        }


def register_error_handlers(app) -> None:
    from .extensions import db

    @app.errorhandler(LedgerError)
    def _handle_ledger_error(exc: LedgerError):
        db.session.rollback()
        if isinstance(exc, (ConcurrencyConflict, AtomicityFailure)):
            current_app.logger.warning("Ledger operation aborted: %s", exc)
        return jsonify(exc.to_dict()), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        db.session.rollback()
        current_app.logger.exception("Unhandled ledger failure")
        return jsonify({"error": "Internal error", "code": "internal_error", "retryable": False}), 500
