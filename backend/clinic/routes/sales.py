# Overview: Flask API routes for pharmacy sales; parses input and returns JSON responses.

# backend/clinic/routes/sales.py
"""Pharmacy point-of-sale routes (pharmacist or admin)."""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_subject_type
from ..errors import ClinicError, InvalidInputError, error_response
from ..models.accounts import ACCOUNT_PHARMACIST
from ..services import reporting_service, sales_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@sales_bp.post("/")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def create_sale_route():
    """
    Sell a cart in one transaction.

    Request body:
    {
        "buyer_name": "...", "buyer_phone": "...",
        "payment_method": "cash" | "card",
        "lines": [{"item_id": 1, "quantity": 2}, ...]
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        sale = sales_service.create_sale(
            lines=data.get("lines"),
            payment_method=data.get("payment_method"),
            sold_by_account_id=g.auth.subject_id,
            buyer_name=data.get("buyer_name"),
            buyer_phone=data.get("buyer_phone"),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to create sale")


@sales_bp.get("/")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def list_sales_route():
    """
    Query params:
    - start, end: ISO-8601 dates or datetimes (inclusive; a date-only end
      covers that whole day, as in /stats)
    """
    try:
        start, end = reporting_service.parse_range(request.args.get("start"), request.args.get("end"))
    except ClinicError as e:
        return error_response(e)

    sales = sales_service.list_sales(start, end)
    return jsonify({"sales": [sale.to_dict(include_lines=False) for sale in sales]}), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except ClinicError as e:
        return error_response(e)


@sales_bp.get("/stats")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def sale_stats_route():
    try:
        stats = reporting_service.sale_stats(request.args.get("start"), request.args.get("end"))
        return jsonify(stats), 200
    except ClinicError as e:
        return error_response(e)


@sales_bp.get("/top-items")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def top_items_route():
    limit = request.args.get("limit", 10, type=int)
    if limit < 1 or limit > 100:
        return error_response(InvalidInputError("limit must be between 1 and 100"))

    try:
        report = reporting_service.top_selling_items(
            request.args.get("start"),
            request.args.get("end"),
            limit=limit,
        )
        return jsonify(report), 200
    except ClinicError as e:
        return error_response(e)
