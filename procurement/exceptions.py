"""Typed failures raised by the procurement services.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer answers with. Services raise these and never retry; callers decide
whether to re-read and try again (``ConcurrencyConflict``).
"""
from __future__ import annotations

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ProcurementError(Exception):
    code = "PROCUREMENT_ERROR"
    http_status = 400
    default_message = "Procurement operation failed"

    def __init__(self, message: str | None = None, **detail):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def as_dict(self) -> dict:
        data = {"error": self.code, "message": self.message}
        data.update(self.detail)
        return data


class ValidationError(ProcurementError):
    """Malformed or out-of-range input."""

    code = "VALIDATION_ERROR"
    default_message = "Invalid input"


class InvalidWeight(ProcurementError):
    code = "INVALID_WEIGHT"
    default_message = "Gross weight must be greater than tare weight"


class EntryNotFound(ProcurementError):
    code = "ENTRY_NOT_FOUND"
    http_status = 404
    default_message = "Truck entry not found"


class ReadingNotFound(ProcurementError):
    code = "READING_NOT_FOUND"
    http_status = 404
    default_message = "Weighbridge reading not found"


class TraderNotFound(ProcurementError):
    code = "TRADER_NOT_FOUND"
    http_status = 404
    default_message = "Trader not found"


class NoteNotFound(ProcurementError):
    code = "NOTE_NOT_FOUND"
    http_status = 404
    default_message = "Buying weight note not found"


class EntryAlreadyWeighed(ProcurementError):
    code = "ENTRY_ALREADY_WEIGHED"
    http_status = 409
    default_message = "Weighbridge reading already exists for this truck entry"


class ReadingAlreadyConverted(ProcurementError):
    code = "READING_ALREADY_CONVERTED"
    http_status = 409
    default_message = "A BWN already exists for this weighbridge reading"


class TraderNotEligible(ProcurementError):
    code = "TRADER_NOT_ELIGIBLE"
    http_status = 422
    default_message = "Trader is not active"


class IllegalTransition(ProcurementError):
    code = "ILLEGAL_TRANSITION"
    http_status = 409

    def __init__(self, from_status, to_status, message: str | None = None, **detail):
        self.from_status = str(from_status)
        self.to_status = str(to_status)
        super().__init__(
            message or f"Cannot move note from {self.from_status} to {self.to_status}",
            **{"from": self.from_status, "to": self.to_status},
            **detail,
        )


class ConcurrencyConflict(IllegalTransition):
    """The note changed under the caller; re-read and retry."""

    code = "CONCURRENCY_CONFLICT"


class NoteLocked(ProcurementError):
    code = "NOTE_LOCKED"
    http_status = 409
    default_message = "Moisture and price can only be edited while the note is WEIGHED"


def api_exception_handler(exc, context):
    """DRF exception handler that renders ProcurementError as typed JSON."""
    if isinstance(exc, ProcurementError):
        view = context.get("view")
        logger.info(
            "%s rejected by %s: %s",
            exc.code,
            type(view).__name__ if view else "api",
            exc.message,
        )
        return Response(exc.as_dict(), status=exc.http_status)
    return exception_handler(exc, context)
