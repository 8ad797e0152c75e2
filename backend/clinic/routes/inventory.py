# backend/clinic/routes/inventory.py
"""
Pharmacy inventory routes.

SECURITY: All routes require authentication as a pharmacist (or admin).

Stock quantity is only changed through POST /<id>/stock (manual restock or
write-off) and through sales; PUT /<id> edits catalog fields only.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_subject_type
from ..errors import ClinicError, error_response
from ..models.accounts import ACCOUNT_PHARMACIST
from ..services import inventory_service


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@inventory_bp.get("/items")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def list_items_route():
    items = inventory_service.list_items()
    return jsonify({"items": [item.to_dict() for item in items]}), 200


@inventory_bp.post("/items")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def create_item_route():
    """
    Request body:
    {
        "name": "Amoxicillin", "distributor": "...", "strength": "500mg",
        "unit_price_cents": 1000, "unit_cost_cents": 600,
        "quantity_on_hand": 20, "low_stock_threshold": 5
    }
    """
    payload = request.get_json(silent=True) or {}

    try:
        item = inventory_service.create_item(payload, actor_id=g.auth.subject_id)
        return jsonify({"item": item.to_dict()}), 201

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to create inventory item")


@inventory_bp.get("/items/<int:item_id>")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def get_item_route(item_id: int):
    try:
        item = inventory_service.get_item(item_id)
        return jsonify({"item": item.to_dict(include_notifications=True)}), 200
    except ClinicError as e:
        return error_response(e)


@inventory_bp.put("/items/<int:item_id>")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def update_item_route(item_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        item = inventory_service.update_item(item_id, payload, actor_id=g.auth.subject_id)
        return jsonify({"item": item.to_dict()}), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to update inventory item")


@inventory_bp.delete("/items/<int:item_id>")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def delete_item_route(item_id: int):
    try:
        inventory_service.delete_item(item_id)
        return jsonify({"message": "Inventory item deleted"}), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to delete inventory item")


@inventory_bp.post("/items/<int:item_id>/stock")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def adjust_stock_route(item_id: int):
    """
    Request body:
    {
        "quantity": 10,
        "operation": "add" | "subtract"
    }
    """
    payload = request.get_json(silent=True) or {}

    try:
        item = inventory_service.adjust_stock(
            item_id,
            payload.get("quantity"),
            payload.get("operation"),
            actor_id=g.auth.subject_id,
        )
        return jsonify({"item": item.to_dict()}), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to adjust stock")


@inventory_bp.get("/low-stock")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def low_stock_route():
    items = inventory_service.list_low_stock_items()
    return jsonify({"items": [item.to_dict() for item in items]}), 200


@inventory_bp.get("/notifications")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def unread_notifications_route():
    notifications = inventory_service.list_unread_notifications()
    return jsonify({"notifications": notifications}), 200


@inventory_bp.post("/notifications/<int:item_id>/<int:notification_id>/read")
@require_auth
@require_subject_type(ACCOUNT_PHARMACIST)
def mark_notification_read_route(item_id: int, notification_id: int):
    try:
        notification = inventory_service.mark_notification_read(item_id, notification_id)
        return jsonify({"notification": notification.to_dict()}), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to mark notification as read")
