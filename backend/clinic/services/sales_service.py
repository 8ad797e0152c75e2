"""
Pharmacy Sale Service - atomic point-of-sale transaction

WHY: A sale reads several inventory rows, debits each of them and writes one
immutable receipt. Either all of that commits or none of it does.

TRANSACTION SHAPE:
1. Validate payment method and cart shape (no database access).
2. begin_write(), then load and lock every referenced item.
3. Check requested quantity per item (lines for the same item are summed)
   and snapshot unit price and cost.
4. Conditionally decrement each line (guards against a concurrent writer that
   slipped past the check on engines without serializable isolation).
5. Insert Sale + SaleLines, run the low-stock edge check, commit.
Any exception rolls the whole unit back.
"""

from __future__ import annotations

from datetime import datetime

from ..errors import (
    InsufficientStockError,
    InvalidInputError,
    InvalidPaymentMethodError,
    ItemNotFoundError,
    NotFoundError,
)
from ..extensions import db
from ..models import InventoryItem, Sale, SaleLine
from ..models.sales import SALE_PAYMENT_METHODS
from ..validation import coerce_positive_int
from .concurrency import begin_write, lock_for_update, run_with_retry
from .inventory_service import check_and_flag, debit_stock


def _normalize_payment_method(payment_method) -> str:
    if not isinstance(payment_method, str) or payment_method.strip().lower() not in SALE_PAYMENT_METHODS:
        raise InvalidPaymentMethodError(payment_method, SALE_PAYMENT_METHODS)
    return payment_method.strip().lower()


def _normalize_lines(lines) -> list[tuple[int, int]]:
    """Validate cart shape and return [(item_id, quantity), ...] in input order."""
    if not isinstance(lines, list) or not lines:
        raise InvalidInputError("At least one line item is required")

    normalized = []
    for index, line in enumerate(lines):
        if not isinstance(line, dict):
            raise InvalidInputError(f"Line {index + 1} must be an object")
        if line.get("item_id") is None:
            raise InvalidInputError(f"Line {index + 1} is missing item_id")
        item_id = coerce_positive_int(line.get("item_id"), "item_id")
        quantity = coerce_positive_int(line.get("quantity"), "quantity")
        normalized.append((item_id, quantity))
    return normalized


def create_sale(
    *,
    lines,
    payment_method,
    sold_by_account_id: int,
    buyer_name: str | None = None,
    buyer_phone: str | None = None,
) -> Sale:
    """
    Sell a cart of inventory items in one transaction.

    Args:
        lines: [{"item_id": int, "quantity": int}, ...]
        payment_method: "cash" or "card"
        sold_by_account_id: staff member making the sale
        buyer_name / buyer_phone: optional customer details

    Returns:
        The persisted Sale with its lines

    Raises:
        InvalidPaymentMethodError, InvalidInputError: before any database work
        ItemNotFoundError: an item_id does not exist
        InsufficientStockError: a requested quantity exceeds quantity_on_hand
    """
    method = _normalize_payment_method(payment_method)
    cart = _normalize_lines(lines)

    requested: dict[int, int] = {}
    for item_id, quantity in cart:
        requested[item_id] = requested.get(item_id, 0) + quantity

    def _op():
        begin_write()

        snapshots: dict[int, InventoryItem] = {}
        for item_id, quantity in requested.items():
            item = lock_for_update(
                db.session.query(InventoryItem).filter_by(id=item_id)
            ).populate_existing().first()
            if item is None:
                raise ItemNotFoundError(item_id)
            if item.quantity_on_hand < quantity:
                raise InsufficientStockError(item.id, item.quantity_on_hand, quantity, name=item.name)
            snapshots[item_id] = item

        sale = Sale(
            buyer_name=(buyer_name or "").strip() or None,
            buyer_phone=(buyer_phone or "").strip() or None,
            payment_method=method,
            sold_by_account_id=sold_by_account_id,
            total_amount_cents=0,
            profit_cents=0,
        )

        total_cents = 0
        profit_cents = 0
        for item_id, quantity in cart:
            item = snapshots[item_id]
            price = item.unit_price_cents
            cost = item.unit_cost_cents

            if not debit_stock(item_id, quantity, actor_id=sold_by_account_id):
                db.session.refresh(item)
                raise InsufficientStockError(item.id, item.quantity_on_hand, requested[item_id], name=item.name)

            sale.lines.append(SaleLine(
                item_id=item_id,
                quantity=quantity,
                unit_price_cents_at_sale=price,
                unit_cost_cents_at_sale=cost,
            ))
            total_cents += quantity * price
            profit_cents += quantity * (price - cost)

        sale.total_amount_cents = total_cents
        sale.profit_cents = profit_cents

        db.session.add(sale)
        db.session.flush()

        for item_id in requested:
            check_and_flag(item_id)

        db.session.commit()
        return sale

    return run_with_retry(_op)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found", {"sale_id": sale_id})
    return sale


def list_sales(start: datetime | None = None, end: datetime | None = None) -> list[Sale]:
    """Sales newest first, optionally limited to start <= created_at <= end."""
    query = db.session.query(Sale)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()
