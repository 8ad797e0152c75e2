from __future__ import annotations

from ..extensions import db
from clinic.time_utils import to_utc_z, utcnow

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_CARD = "card"

SALE_PAYMENT_METHODS = frozenset({PAYMENT_METHOD_CASH, PAYMENT_METHOD_CARD})


class Sale(db.Model):
    """
    Point-of-sale receipt.

    IMMUTABLE: there is no update path. total_amount_cents and profit_cents are
    computed from the lines inside the transaction that writes them and are
    never edited independently.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    buyer_name = db.Column(db.String(255), nullable=True)
    buyer_phone = db.Column(db.String(32), nullable=True)

    payment_method = db.Column(db.String(16), nullable=False, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)

    sold_by_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.id",
        lazy=True,
    )
    sold_by = db.relationship("Account")

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "buyer_name": self.buyer_name,
            "buyer_phone": self.buyer_phone,
            "payment_method": self.payment_method,
            "total_amount_cents": self.total_amount_cents,
            "profit_cents": self.profit_cents,
            "sold_by_account_id": self.sold_by_account_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Line snapshot: price and cost frozen at the moment of sale."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents_at_sale = db.Column(db.Integer, nullable=False)
    unit_cost_cents_at_sale = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="lines")
    item = db.relationship("InventoryItem")

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents_at_sale

    @property
    def line_profit_cents(self) -> int:
        return self.quantity * (self.unit_price_cents_at_sale - self.unit_cost_cents_at_sale)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item is not None else None,
            "quantity": self.quantity,
            "unit_price_cents_at_sale": self.unit_price_cents_at_sale,
            "unit_cost_cents_at_sale": self.unit_cost_cents_at_sale,
            "line_total_cents": self.line_total_cents,
        }
