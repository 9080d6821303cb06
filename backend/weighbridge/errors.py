# Overview: Domain error kinds raised by the weighing engine and rendered by the API.

"""
Weighing engine error hierarchy.

Every error carries a stable machine-readable ``code``, the HTTP status the
API layer renders it with, and optional structured ``details``. Services
raise these; routes catch ``WeighingError`` and turn it into JSON.

"Already applied" is deliberately absent: replaying a reconciled offline
transaction is an idempotent no-op reported as an outcome, not an error.
"""

from __future__ import annotations


class WeighingError(Exception):
    """Base class for weighing engine errors."""

    code = "WEIGHING_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(WeighingError):
    """Malformed input (bad weight, missing field)."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFound(WeighingError):
    """Unknown (or deactivated) vehicle, session, job or other reference."""

    code = "NOT_FOUND"
    http_status = 404


class InvalidJob(WeighingError):
    """Job exists but is not in an active status."""

    code = "INVALID_JOB"
    http_status = 409


class DuplicateDeck(WeighingError):
    """Deck number already recorded for this session."""

    code = "DUPLICATE_DECK"
    http_status = 409


class SessionClosed(WeighingError):
    """Session is finalized or cancelled and no longer accepts changes."""

    code = "SESSION_CLOSED"
    http_status = 409


class NoWeightData(WeighingError):
    """Finalize attempted without any deck weights and without manual override."""

    code = "NO_WEIGHT_DATA"
    http_status = 422


class ConfigConflict(WeighingError):
    """Axle configuration violates the profile invariants."""

    code = "CONFIG_CONFLICT"
    http_status = 409


class ReconcileConflict(WeighingError):
    """A reconcile report would give a weighing a docket number another weighing already holds."""

    code = "CONFLICT"
    http_status = 409


class NumberingUnavailable(WeighingError):
    """Docket authority exhausted or unreachable. Safe to retry."""

    code = "NUMBERING_UNAVAILABLE"
    http_status = 503
    retryable = True
