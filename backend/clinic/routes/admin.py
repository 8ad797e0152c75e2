# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

# backend/clinic/routes/admin.py
"""
Admin routes.

Provides endpoints for:
- Dashboard counters and recent activity
- Account listing and access toggling
- Financial report (pharmacy sales and appointment payments)

All endpoints require an admin session.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_subject_type
from ..errors import ClinicError, error_response
from ..models.accounts import ACCOUNT_ADMIN
from ..services import account_service, reporting_service

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/dashboard")
@require_auth
@require_subject_type(ACCOUNT_ADMIN)
def dashboard_route():
    return jsonify(reporting_service.dashboard_stats()), 200


# =============================================================================
# ACCOUNT MANAGEMENT
# =============================================================================

@admin_bp.get("/accounts")
@require_auth
@require_subject_type(ACCOUNT_ADMIN)
def list_accounts_route():
    """
    Query params:
    - account_type: user | doctor | pharmacist | admin (optional)
    """
    try:
        accounts = account_service.list_accounts(request.args.get("account_type"))
        return jsonify({"accounts": [a.to_dict() for a in accounts]}), 200
    except ClinicError as e:
        return error_response(e)


@admin_bp.put("/accounts/<int:account_id>/access")
@require_auth
@require_subject_type(ACCOUNT_ADMIN)
def set_access_route(account_id: int):
    """
    Request body: {"is_active": false}

    Deactivating an account revokes its sessions. Admins cannot deactivate
    themselves.
    """
    data = request.get_json(silent=True) or {}

    if account_id == g.auth.subject_id and data.get("is_active") is False:
        return jsonify({"error": "conflict", "message": "Cannot deactivate your own account"}), 409

    try:
        account = account_service.set_account_active(account_id, data.get("is_active"))
        return jsonify({"account": account.to_dict()}), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update account access")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


# =============================================================================
# REPORTS
# =============================================================================

@admin_bp.get("/financial-report")
@require_auth
@require_subject_type(ACCOUNT_ADMIN)
def financial_report_route():
    """Query params: start, end (ISO dates, inclusive)."""
    try:
        report = reporting_service.financial_report(request.args.get("start"), request.args.get("end"))
        return jsonify(report), 200
    except ClinicError as e:
        return error_response(e)
