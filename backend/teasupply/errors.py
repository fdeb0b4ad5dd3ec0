# Overview: Typed domain errors shared by services and routes.

"""
Error taxonomy for the supply ledger, stock pool and payment reconciler.

Every service failure is a LedgerError subclass carrying the HTTP status the
route layer should answer with. Infrastructure failures (storage timeouts,
exhausted retries, unexpected errors) carry a generic public message so no
internal detail reaches the client; the original exception is logged instead.
"""

from __future__ import annotations

from flask import current_app, jsonify


class LedgerError(Exception):
    """Base class for all domain errors."""
    status_code = 500
    code = "error"
    # When set, replaces str(exc) in client responses
    public_message: str | None = None
    logged_by_caller = False

    def __init__(self, message: str | None = None, **details):
        super().__init__(message or self.__class__.__name__)
        self.details = details

    def to_dict(self) -> dict:
        payload = {
            "error": self.public_message or str(self),
            "code": self.code,
        }
        if self.details and not self.public_message:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError, ValueError):
    """400-level input problem."""
    status_code = 400
    code = "validation_error"


class ConflictError(LedgerError, ValueError):
    """409-level business rule conflict (e.g., duplicate email)."""
    status_code = 409
    code = "conflict"


class NotFound(LedgerError):
    status_code = 404
    code = "not_found"


class EditWindowExpired(LedgerError):
    status_code = 403
    code = "edit_window_expired"


class InvalidSupplier(LedgerError):
    status_code = 400
    code = "invalid_supplier"


class InvalidSupplyRecord(LedgerError):
    status_code = 400
    code = "invalid_supply_record"


class InsufficientSupply(LedgerError):
    status_code = 400
    code = "insufficient_supply"


class InsufficientInventory(LedgerError):
    status_code = 400
    code = "insufficient_inventory"


class InsufficientQuantity(LedgerError):
    status_code = 400
    code = "insufficient_quantity"


class ConcurrentModification(LedgerError):
    """A row changed underneath an operation; safe for the caller to retry."""
    status_code = 409
    code = "concurrent_modification"
    public_message = "The record was modified concurrently, please retry"


class GenerationExhausted(LedgerError):
    status_code = 503
    code = "generation_exhausted"
    public_message = "Could not allocate a unique identifier, please retry"


class StorageTimeout(LedgerError):
    status_code = 503
    code = "storage_timeout"
    public_message = "The database is busy, please retry"


class StorageUnavailable(LedgerError):
    status_code = 503
    code = "storage_unavailable"
    public_message = "The database is unavailable, please retry later"


class Unexpected(LedgerError):
    """Catch-all for non-domain failures. The route has already logged the cause."""
    status_code = 500
    code = "unexpected"
    public_message = "Internal server error"
    logged_by_caller = True


def error_response(exc: LedgerError):
    """(json, status) tuple for a domain error. Infrastructure errors are logged with context."""
    if exc.public_message and not exc.logged_by_caller:
        current_app.logger.error("%s: %s", exc.code, exc, exc_info=exc)
    return jsonify(exc.to_dict()), exc.status_code
