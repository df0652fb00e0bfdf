from __future__ import annotations

from ..extensions import db
from tiendapos.time_utils import to_utc_z


class Promotion(db.Model):
    """
    Time-boxed discount applied to linked products.

    MULTI-TENANT: Promotions are scoped to organizations via org_id.

    VALUE: whole percent (1-100) for PERCENTAGE, cents for FIXED_AMOUNT.
    A promotion is "active" when is_active and start_date <= now <= end_date.

    APPROVAL: approval_status is pending/approved/rejected. approved_by and
    approved_at are only populated while the status is approved.
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.Index("ix_promotions_org_dates", "org_id", "start_date", "end_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    promo_type = db.Column(db.String(32), nullable=False)  # PERCENTAGE, FIXED_AMOUNT
    value = db.Column(db.Integer, nullable=False)
    stacking = db.Column(db.Boolean, nullable=False, default=False)

    min_purchase_cents = db.Column(db.Integer, nullable=True)
    max_discount_cents = db.Column(db.Integer, nullable=True)

    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    approval_status = db.Column(db.String(16), nullable=False, default="pending")
    approval_comment = db.Column(db.Text, nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    product_links = db.relationship(
        "PromotionProduct", backref="promotion", lazy=True, cascade="all, delete-orphan"
    )

    @property
    def applicable_products(self) -> list:
        return [link.product for link in self.product_links if link.product is not None]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "description": self.description,
            "type": self.promo_type,
            "value": self.value,
            "stacking": self.stacking,
            "min_purchase_cents": self.min_purchase_cents,
            "max_discount_cents": self.max_discount_cents,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "is_active": self.is_active,
            "approval_status": self.approval_status,
            "approval_comment": self.approval_comment,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "applicable_products": [p.to_summary() for p in self.applicable_products],
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PromotionProduct(db.Model):
    """Promotion-Product association."""
    __tablename__ = "promotions_products"
    __table_args__ = (
        db.UniqueConstraint("promotion_id", "product_id", name="uq_promotions_products"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")


class Coupon(db.Model):
    """
    Checkout coupon identified by a normalized (trimmed, upper-case) code.

    MULTI-TENANT: Codes are unique within an organization.

    VALUE: whole percent for PERCENTAGE, cents for FIXED_AMOUNT.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.UniqueConstraint("org_id", "code", name="uq_coupons_org_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    code = db.Column(db.String(32), nullable=False)
    coupon_type = db.Column(db.String(16), nullable=False)  # PERCENTAGE, FIXED_AMOUNT
    value = db.Column(db.Integer, nullable=False)

    min_purchase_cents = db.Column(db.Integer, nullable=True)
    max_discount_cents = db.Column(db.Integer, nullable=True)

    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    usage_limit = db.Column(db.Integer, nullable=True)
    times_used = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "code": self.code,
            "type": self.coupon_type,
            "value": self.value,
            "min_purchase_cents": self.min_purchase_cents,
            "max_discount_cents": self.max_discount_cents,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "is_active": self.is_active,
            "usage_limit": self.usage_limit,
            "times_used": self.times_used,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
