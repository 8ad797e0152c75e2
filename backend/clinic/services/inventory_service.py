# Overview: Service-layer operations for pharmacy inventory; encapsulates business logic and database work.

# backend/clinic/services/inventory_service.py
"""
Clinic Inventory Invariants (authoritative)

Stock model:
- quantity_on_hand is a stored counter on InventoryItem.
- It never goes negative. Every decrement is a conditional UPDATE
  (quantity_on_hand >= requested) and a zero rowcount is reported as
  InsufficientStockError with the row left untouched.
- Quantity changes only through create_item, adjust_stock and the sale engine.

Low-stock flag:
- is_low_stock = quantity_on_hand <= low_stock_threshold, recomputed by
  check_and_flag() inside the same transaction as every quantity/threshold
  change.
- Notifications are edge-triggered: one StockNotification on the
  false -> true transition, none while the item stays low. The transition is
  itself a conditional UPDATE, so two concurrent writers cannot both append.
- Notifications are append-only; only is_read changes.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import update

from ..errors import ConflictError, InsufficientStockError, InvalidInputError, ItemNotFoundError, NotFoundError
from ..extensions import db
from ..models import InventoryItem, SaleLine, StockNotification
from ..validation import (
    INVENTORY_ITEM_POLICY,
    INVENTORY_ITEM_UPDATE_POLICY,
    MAX_QUANTITY,
    coerce_positive_int,
    enforce_rules_inventory_item,
    validate_payload,
)
from .concurrency import begin_write, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

STOCK_OPERATION_ADD = "add"
STOCK_OPERATION_SUBTRACT = "subtract"
STOCK_OPERATIONS = (STOCK_OPERATION_ADD, STOCK_OPERATION_SUBTRACT)


def _load_item(item_id: int, *, lock: bool = False) -> InventoryItem:
    query = db.session.query(InventoryItem).filter_by(id=item_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    item = query.first()
    if item is None:
        raise ItemNotFoundError(item_id)
    return item


def low_stock_message(item: InventoryItem) -> str:
    return f"Low stock alert: {item.name} has only {item.quantity_on_hand} units remaining"


def debit_stock(item_id: int, quantity: int, *, actor_id: int | None = None) -> bool:
    """
    Atomically subtract quantity if enough stock remains.

    Returns False (and changes nothing) when quantity_on_hand < quantity.
    Callers must refresh any loaded InventoryItem afterwards.
    """
    values = {
        "quantity_on_hand": InventoryItem.quantity_on_hand - quantity,
        "version_id": InventoryItem.version_id + 1,
    }
    if actor_id is not None:
        values["updated_by_account_id"] = actor_id

    result = db.session.execute(
        update(InventoryItem)
        .where(InventoryItem.id == item_id, InventoryItem.quantity_on_hand >= quantity)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def credit_stock(item_id: int, quantity: int, *, actor_id: int | None = None) -> None:
    values = {
        "quantity_on_hand": InventoryItem.quantity_on_hand + quantity,
        "version_id": InventoryItem.version_id + 1,
    }
    if actor_id is not None:
        values["updated_by_account_id"] = actor_id

    db.session.execute(
        update(InventoryItem)
        .where(InventoryItem.id == item_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def check_and_flag(item_id: int) -> StockNotification | None:
    """
    Recompute is_low_stock for an item and fire the edge-triggered alert.

    Must run inside the caller's transaction, after the quantity or threshold
    change. Returns the appended notification, or None when no alert fired.
    """
    flagged = db.session.execute(
        update(InventoryItem)
        .where(
            InventoryItem.id == item_id,
            InventoryItem.is_low_stock.is_(False),
            InventoryItem.quantity_on_hand <= InventoryItem.low_stock_threshold,
        )
        .values(is_low_stock=True, version_id=InventoryItem.version_id + 1)
        .execution_options(synchronize_session=False)
    ).rowcount

    if not flagged:
        db.session.execute(
            update(InventoryItem)
            .where(
                InventoryItem.id == item_id,
                InventoryItem.is_low_stock.is_(True),
                InventoryItem.quantity_on_hand > InventoryItem.low_stock_threshold,
            )
            .values(is_low_stock=False, version_id=InventoryItem.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        item = db.session.get(InventoryItem, item_id)
        if item is not None:
            db.session.refresh(item)
        return None

    item = db.session.get(InventoryItem, item_id)
    db.session.refresh(item)

    notification = StockNotification(item_id=item.id, message=low_stock_message(item))
    db.session.add(notification)
    db.session.flush()
    logger.info("Inventory item %s crossed low-stock threshold (qty=%s)", item.id, item.quantity_on_hand)
    return notification


# =============================================================================
# CATALOG
# =============================================================================

def create_item(payload: dict, actor_id: int | None = None) -> InventoryItem:
    patch = validate_payload(model=InventoryItem, payload=payload, policy=INVENTORY_ITEM_POLICY, partial=False)
    if patch.get("low_stock_threshold") is None:
        patch["low_stock_threshold"] = current_app.config["DEFAULT_LOW_STOCK_THRESHOLD"]
    enforce_rules_inventory_item(patch)

    def _op():
        item = InventoryItem(
            added_by_account_id=actor_id,
            updated_by_account_id=actor_id,
            is_low_stock=False,
            **patch,
        )
        db.session.add(item)
        db.session.flush()
        check_and_flag(item.id)
        db.session.commit()
        return item

    return run_with_retry(_op)


def update_item(item_id: int, payload: dict, actor_id: int | None = None) -> InventoryItem:
    patch = validate_payload(
        model=InventoryItem,
        payload=payload,
        policy=INVENTORY_ITEM_UPDATE_POLICY,
        partial=True,
    )
    enforce_rules_inventory_item(patch)

    def _op():
        item = _load_item(item_id, lock=True)
        for key, value in patch.items():
            setattr(item, key, value)
        item.updated_by_account_id = actor_id
        db.session.flush()
        check_and_flag(item.id)
        db.session.commit()
        return item

    return run_with_retry(_op)


def adjust_stock(item_id: int, quantity, operation: str, actor_id: int | None = None) -> InventoryItem:
    """
    Manual restock or write-off.

    operation="add" increases stock; operation="subtract" fails with
    InsufficientStockError (row unchanged) if it would go negative.
    """
    if operation not in STOCK_OPERATIONS:
        raise InvalidInputError(f"operation must be one of {list(STOCK_OPERATIONS)}")
    quantity = coerce_positive_int(quantity, "quantity")

    def _op():
        begin_write()
        item = _load_item(item_id, lock=True)

        if operation == STOCK_OPERATION_ADD:
            if item.quantity_on_hand + quantity > MAX_QUANTITY:
                raise InvalidInputError(
                    f"quantity_on_hand cannot exceed {MAX_QUANTITY}",
                    {"item_id": item.id, "quantity_on_hand": item.quantity_on_hand},
                )
            credit_stock(item.id, quantity, actor_id=actor_id)
        elif not debit_stock(item.id, quantity, actor_id=actor_id):
            db.session.refresh(item)
            raise InsufficientStockError(item.id, item.quantity_on_hand, quantity, name=item.name)

        check_and_flag(item.id)
        db.session.commit()
        return item

    return run_with_retry(_op)


def delete_item(item_id: int) -> None:
    """Remove an item that no sale references."""
    def _op():
        item = _load_item(item_id, lock=True)
        referenced = db.session.query(SaleLine.id).filter_by(item_id=item.id).first()
        if referenced:
            raise ConflictError(
                "Inventory item is referenced by sales and cannot be deleted",
                {"item_id": item.id},
            )
        db.session.delete(item)
        db.session.commit()

    run_with_retry(_op)


def get_item(item_id: int) -> InventoryItem:
    return _load_item(item_id)


def list_items() -> list[InventoryItem]:
    return db.session.query(InventoryItem).order_by(InventoryItem.name.asc(), InventoryItem.id.asc()).all()


def list_low_stock_items() -> list[InventoryItem]:
    return (
        db.session.query(InventoryItem)
        .filter(InventoryItem.is_low_stock.is_(True))
        .order_by(InventoryItem.quantity_on_hand.asc(), InventoryItem.name.asc())
        .all()
    )


# =============================================================================
# NOTIFICATIONS
# =============================================================================

def list_unread_notifications() -> list[dict]:
    rows = (
        db.session.query(StockNotification, InventoryItem.name)
        .join(InventoryItem, InventoryItem.id == StockNotification.item_id)
        .filter(StockNotification.is_read.is_(False))
        .order_by(StockNotification.created_at.desc(), StockNotification.id.desc())
        .all()
    )
    return [
        {**notification.to_dict(), "item_name": item_name}
        for notification, item_name in rows
    ]


def mark_notification_read(item_id: int, notification_id: int) -> StockNotification:
    _load_item(item_id)
    notification = (
        db.session.query(StockNotification)
        .filter_by(id=notification_id, item_id=item_id)
        .first()
    )
    if notification is None:
        raise NotFoundError(
            "Notification not found",
            {"item_id": item_id, "notification_id": notification_id},
        )

    if not notification.is_read:
        notification.is_read = True
        db.session.commit()
    return notification
