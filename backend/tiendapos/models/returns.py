from __future__ import annotations

from ..extensions import db
from tiendapos.time_utils import to_utc_z


class Return(db.Model):
    """
    Customer return against a previous sale.

    LIFECYCLE: PENDING -> APPROVED / REJECTED -> COMPLETED.
    Stock is restored and the cash refund recorded only on the first
    transition to COMPLETED (stock_restored_at marks it). Only PENDING
    returns may be deleted.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.Index("ix_returns_org_created", "org_id", "created_at"),
        db.Index("ix_returns_org_sale", "org_id", "original_sale_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    original_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    reason = db.Column(db.Text, nullable=False)
    refund_method = db.Column(db.String(16), nullable=False, default="CASH")  # CASH, CARD, TRANSFER, OTHER
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    stock_restored_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    original_sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    items = db.relationship(
        "ReturnItem", backref="return_doc", lazy=True, cascade="all, delete-orphan", order_by="ReturnItem.id"
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "original_sale_id": self.original_sale_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "reason": self.reason,
            "refund_method": self.refund_method,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReturnItem(db.Model):
    """Returned quantity of one original sale line."""
    __tablename__ = "return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    original_sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(500), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "original_sale_item_id": self.original_sale_item_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "reason": self.reason,
        }
