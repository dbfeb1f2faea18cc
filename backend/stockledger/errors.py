# Overview: Error kinds raised by the cost-layer engine and their HTTP mapping.

from __future__ import annotations


VALIDATION_ERROR = "VALIDATION_ERROR"
NOT_FOUND = "NOT_FOUND"
PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
BACKFILL_FAILED = "BACKFILL_FAILED"

# Not raised; attached to consumption results and audit events.
LEDGER_SHORTFALL = "LEDGER_SHORTFALL"


class LedgerError(Exception):
    """Base class for engine errors."""

    code = "LEDGER_ERROR"
    http_status = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "ok": False,
            "error": str(self),
            "code": self.code,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """400-level input problem. Raised before any ledger mutation."""

    code = VALIDATION_ERROR
    http_status = 400


class NotFoundError(LedgerError):
    code = NOT_FOUND
    http_status = 404


class PersistenceFailure(LedgerError):
    """
    Transaction aborted at the data-store level.

    The session has been rolled back; callers may resubmit the same request.
    """

    code = PERSISTENCE_FAILURE
    http_status = 503

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retryable"] = True
        return body


class BackfillError(LedgerError):
    """Backfill batch aborted; no layer from the batch survives."""

    code = BACKFILL_FAILED

    def __init__(self, message: str, *, inspected: int, created: int, skipped: int):
        super().__init__(
            message,
            details={"inspected": inspected, "created": created, "skipped": skipped},
        )
        self.inspected = inspected
        self.created = created
        self.skipped = skipped
