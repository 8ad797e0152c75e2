from __future__ import annotations

from ..extensions import db
from clinic.time_utils import to_utc_z, utcnow


class InventoryItem(db.Model):
    """
    Pharmacy stock-keeping row.

    quantity_on_hand is a stored counter (not ledger-derived). Every debit goes
    through a conditional UPDATE so it can never go below zero; the CHECK
    constraint is the storage-level backstop.

    is_low_stock is derived (quantity_on_hand <= low_stock_threshold) and is
    recomputed by inventory_service.check_and_flag after every quantity or
    threshold change.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_items_qty_non_negative"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_inventory_items_price_non_negative"),
        db.CheckConstraint("unit_cost_cents >= 0", name="ck_inventory_items_cost_non_negative"),
        db.CheckConstraint("low_stock_threshold >= 0", name="ck_inventory_items_threshold_non_negative"),
        db.Index("ix_inventory_items_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    distributor = db.Column(db.String(255), nullable=True)
    strength = db.Column(db.String(64), nullable=True)  # e.g. "500mg"

    # Authoritative storage in cents
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)
    is_low_stock = db.Column(db.Boolean, nullable=False, default=False, index=True)

    added_by_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)
    updated_by_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    notifications = db.relationship(
        "StockNotification",
        back_populates="item",
        order_by="StockNotification.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} name={self.name!r} qty={self.quantity_on_hand}>"

    def to_dict(self, include_notifications: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "distributor": self.distributor,
            "strength": self.strength,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "quantity_on_hand": self.quantity_on_hand,
            "low_stock_threshold": self.low_stock_threshold,
            "is_low_stock": self.is_low_stock,
            "added_by_account_id": self.added_by_account_id,
            "updated_by_account_id": self.updated_by_account_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_notifications:
            data["notifications"] = [n.to_dict() for n in self.notifications]
        return data


class StockNotification(db.Model):
    """Append-only low-stock alert. Only is_read may change after insert."""
    __tablename__ = "stock_notifications"
    __table_args__ = (
        db.Index("ix_stock_notifications_unread", "is_read", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    message = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    is_read = db.Column(db.Boolean, nullable=False, default=False)

    item = db.relationship("InventoryItem", back_populates="notifications")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "message": self.message,
            "created_at": to_utc_z(self.created_at),
            "is_read": self.is_read,
        }
