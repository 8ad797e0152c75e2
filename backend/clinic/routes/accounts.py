# Overview: Flask API routes for accounts and sessions; parses input and returns JSON responses.

# backend/clinic/routes/accounts.py
"""
Account routes: registration, login/logout, profile, password change and reset, and
doctor payout onboarding.

Login returns an opaque bearer token; send it as
    Authorization: Bearer <token>
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_subject_type
from ..errors import ClinicError, error_response
from ..models.accounts import ACCOUNT_ADMIN, ACCOUNT_DOCTOR
from ..services import account_service, payment_service, session_service
from ..services.notifications import get_notification_sink
from ..services.processor import get_payment_processor

accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/accounts")


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@accounts_bp.post("/register")
def register_route():
    """
    Create an account.

    Request body:
    {
        "account_type": "user" | "doctor" | "pharmacist",
        "name": "...", "email": "...", "password": "...", "phone": "...",
        "doctor": {"specialization": "...", "fee_cents": 5000, ...}   # doctors only
    }

    Admin accounts are created with `flask clinic create-admin`.
    """
    data = request.get_json(silent=True) or {}
    account_type = data.get("account_type", "user")

    try:
        if account_type == ACCOUNT_ADMIN:
            return jsonify({"error": "forbidden", "message": "Admin accounts cannot self-register"}), 403

        account = account_service.register_account(
            account_type=account_type,
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            phone=data.get("phone"),
            doctor=data.get("doctor"),
            sink=get_notification_sink(),
        )
        return jsonify({"account": account.to_dict()}), 201

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to register account")


@accounts_bp.post("/login")
def login_route():
    """
    Returns:
    {
        "account": {...},
        "token": "64-char-hex-string"
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        account, token = account_service.authenticate(data.get("email"), data.get("password"))
        return jsonify({"account": account.to_dict(), "token": token}), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to log in")


@accounts_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.token, "User logout")
    return jsonify({"message": "Logged out"}), 200


@accounts_bp.get("/me")
@require_auth
def me_route():
    try:
        account = account_service.get_account(g.auth.subject_id)
        return jsonify({"account": account.to_dict()}), 200
    except ClinicError as e:
        return error_response(e)


@accounts_bp.put("/me")
@require_auth
def update_me_route():
    data = request.get_json(silent=True) or {}

    try:
        account = account_service.update_profile(g.auth.subject_id, data)
        return jsonify({"account": account.to_dict()}), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to update profile")


@accounts_bp.post("/me/password")
@require_auth
def change_password_route():
    """
    Request body:
    {
        "old_password": "...",
        "new_password": "..."
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        account_service.change_password(
            g.auth.subject_id,
            data.get("old_password"),
            data.get("new_password"),
            current_token=g.token,
            sink=get_notification_sink(),
        )
        return jsonify({"message": "Password changed"}), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to change password")


@accounts_bp.post("/otp")
def send_otp_route():
    """Always 200 for a well-formed email so registered addresses are not revealed."""
    data = request.get_json(silent=True) or {}

    try:
        account_service.send_password_otp(data.get("email"), get_notification_sink())
        return jsonify({"message": "If the account exists, a code has been sent"}), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to send password reset code")


@accounts_bp.post("/reset-password")
def reset_password_route():
    data = request.get_json(silent=True) or {}

    try:
        account_service.reset_password_with_otp(
            data.get("email"),
            data.get("otp"),
            data.get("new_password"),
            get_notification_sink(),
        )
        return jsonify({"message": "Password has been reset"}), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to reset password")


@accounts_bp.get("/doctors")
def list_doctors_route():
    """Public doctor directory (fees and availability)."""
    doctors = account_service.list_doctors()
    return jsonify({"doctors": [d.to_dict() for d in doctors]}), 200


# =============================================================================
# DOCTOR PAYOUTS
# =============================================================================

@accounts_bp.post("/me/payout")
@require_auth
@require_subject_type(ACCOUNT_DOCTOR)
def setup_payout_route():
    """Create (once) the doctor's payout account and return an onboarding link."""
    try:
        result = payment_service.setup_payout_account(g.auth.subject_id, get_payment_processor())
        return jsonify(result), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to set up payout account")


@accounts_bp.get("/me/payout")
@require_auth
@require_subject_type(ACCOUNT_DOCTOR)
def payout_status_route():
    try:
        result = payment_service.refresh_payout_status(g.auth.subject_id, get_payment_processor())
        return jsonify(result), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to refresh payout status")
