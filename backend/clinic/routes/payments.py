# backend/clinic/routes/payments.py
"""
Payment processor callback endpoint.

Stripe signs each callback (header "Stripe-Signature"). The raw body
is verified before anything is parsed or written.

Responses:
- 400 signature_invalid: not authentic, nothing changed; the processor may retry
- 200 with {"outcome": "applied" | "ignored" | "duplicate"} otherwise, so
  replays and callbacks for unknown charges are acknowledged and not retried
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import ClinicError, SignatureInvalidError, error_response
from ..services import payment_service
from ..services.processor import get_payment_processor

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

SIGNATURE_HEADER = "Stripe-Signature"


@payments_bp.post("/webhook")
def webhook_route():
    raw_payload = request.get_data(cache=False)

    try:
        outcome = payment_service.handle_callback(
            raw_payload,
            request.headers.get(SIGNATURE_HEADER),
            get_payment_processor(),
        )
        return jsonify({"received": True, "outcome": outcome.value}), 200

    except SignatureInvalidError as e:
        current_app.logger.warning("Rejected payment callback: %s", e.message)
        return error_response(e)
    except ClinicError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process payment callback")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500
