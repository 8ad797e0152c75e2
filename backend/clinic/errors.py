# Overview: Error taxonomy shared by services and routes.

"""
Clinic error taxonomy.

Every failure a caller can branch on is a ClinicError subclass with a stable
`kind` string and an HTTP status. Routes turn them into
{"error": kind, "message": ..., "details": {...}} bodies via error_response().
"""

from __future__ import annotations

from flask import jsonify


class ClinicError(Exception):
    """Base class for structured, caller-visible errors."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(ClinicError):
    kind = "not_found"
    status_code = 404


class ItemNotFoundError(NotFoundError):
    kind = "item_not_found"

    def __init__(self, item_id):
        super().__init__(f"Inventory item {item_id} not found", {"item_id": item_id})
        self.item_id = item_id


class ConflictError(ClinicError):
    """Double booking, duplicate account, illegal state transition."""

    kind = "conflict"
    status_code = 409


class InvalidInputError(ClinicError):
    kind = "invalid_input"
    status_code = 400


class InvalidPaymentMethodError(InvalidInputError):
    kind = "invalid_payment_method"

    def __init__(self, method, allowed):
        super().__init__(
            f"Invalid payment method {method!r}. Must be one of {sorted(allowed)}",
            {"payment_method": method, "allowed": sorted(allowed)},
        )


class InsufficientStockError(ClinicError):
    kind = "insufficient_stock"
    status_code = 409

    def __init__(self, item_id, available: int, requested: int, name: str | None = None):
        label = name or f"item {item_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}",
            {"item_id": item_id, "available": available, "requested": requested},
        )
        self.item_id = item_id
        self.available = available
        self.requested = requested


class PayoutNotConfiguredError(ClinicError):
    kind = "payout_not_configured"
    status_code = 409


class UnauthorizedError(ClinicError):
    kind = "unauthorized"
    status_code = 401


class ForbiddenError(ClinicError):
    kind = "forbidden"
    status_code = 403


class ExternalServiceError(ClinicError):
    """An outbound call to the payment processor failed; safe to retry."""

    kind = "external_service_failure"
    status_code = 502


class SignatureInvalidError(ClinicError):
    """Processor callback failed authenticity checks; nothing was changed."""

    kind = "signature_invalid"
    status_code = 400


def error_response(exc: ClinicError):
    return jsonify(exc.to_dict()), exc.status_code
