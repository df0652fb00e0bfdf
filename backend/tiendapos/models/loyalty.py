from __future__ import annotations

from ..extensions import db
from tiendapos.time_utils import to_utc_z


class LoyaltyProgram(db.Model):
    """
    Points program configuration.

    MULTI-TENANT: Programs are scoped to organizations via org_id.

    EARNING: floor(purchase_cents * points_per_purchase), then multiplied by
    the customer's tier multiplier. Purchases below minimum_purchase_cents
    earn nothing. Earned points expire after points_expiration_days when set.
    """
    __tablename__ = "loyalty_programs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    points_per_purchase = db.Column(db.Float, nullable=False, default=1.0)
    minimum_purchase_cents = db.Column(db.Integer, nullable=False, default=0)
    points_expiration_days = db.Column(db.Integer, nullable=True)

    welcome_bonus = db.Column(db.Integer, nullable=False, default=0)
    birthday_bonus = db.Column(db.Integer, nullable=False, default=0)
    referral_bonus = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    tiers = db.relationship("LoyaltyTier", backref="program", lazy=True, order_by="LoyaltyTier.min_points")

    def to_dict(self, include_tiers: bool = False) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "description": self.description,
            "points_per_purchase": self.points_per_purchase,
            "minimum_purchase_cents": self.minimum_purchase_cents,
            "points_expiration_days": self.points_expiration_days,
            "welcome_bonus": self.welcome_bonus,
            "birthday_bonus": self.birthday_bonus,
            "referral_bonus": self.referral_bonus,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_tiers:
            data["tiers"] = [t.to_dict() for t in self.tiers]
        return data


class LoyaltyTier(db.Model):
    """
    Points band within a program. Ranges are closed intervals and must not
    intersect other tiers of the same program; max_points NULL is unbounded.
    """
    __tablename__ = "loyalty_tiers"
    __table_args__ = (
        db.UniqueConstraint("program_id", "name", name="uq_loyalty_tiers_program_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(db.Integer, db.ForeignKey("loyalty_programs.id"), nullable=False, index=True)

    name = db.Column(db.String(64), nullable=False)
    min_points = db.Column(db.Integer, nullable=False, default=0)
    max_points = db.Column(db.Integer, nullable=True)
    multiplier = db.Column(db.Float, nullable=False, default=1.0)
    benefits = db.Column(db.Text, nullable=True)
    color = db.Column(db.String(16), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "program_id": self.program_id,
            "name": self.name,
            "min_points": self.min_points,
            "max_points": self.max_points,
            "multiplier": self.multiplier,
            "benefits": self.benefits,
            "color": self.color,
        }


class CustomerLoyalty(db.Model):
    """
    A customer's enrollment in a program with its running balances.

    current_points = total_points_earned - total_points_used - expired points.
    Mutations take a row lock and bump version_id.
    """
    __tablename__ = "customer_loyalties"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "program_id", name="uq_customer_loyalties_customer_program"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    program_id = db.Column(db.Integer, db.ForeignKey("loyalty_programs.id"), nullable=False, index=True)
    tier_id = db.Column(db.Integer, db.ForeignKey("loyalty_tiers.id"), nullable=True, index=True)

    current_points = db.Column(db.Integer, nullable=False, default=0)
    total_points_earned = db.Column(db.Integer, nullable=False, default=0)
    total_points_used = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    enrolled_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    customer = db.relationship("Customer", backref=db.backref("loyalties", lazy=True))
    program = db.relationship("LoyaltyProgram", backref=db.backref("enrollments", lazy=True))
    tier = db.relationship("LoyaltyTier", backref=db.backref("members", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "program_id": self.program_id,
            "tier_id": self.tier_id,
            "tier": self.tier.to_dict() if self.tier else None,
            "current_points": self.current_points,
            "total_points_earned": self.total_points_earned,
            "total_points_used": self.total_points_used,
            "is_active": self.is_active,
            "enrolled_at": to_utc_z(self.enrolled_at),
            "last_activity_at": to_utc_z(self.last_activity_at) if self.last_activity_at else None,
            "version_id": self.version_id,
        }


class PointsTransaction(db.Model):
    """
    Append-only points ledger.

    TRANSACTION TYPES:
    - EARNED: purchase points (reference SALE), may carry expires_at
    - BONUS: welcome / birthday bonus (reference WELCOME / BIRTHDAY)
    - REDEEMED: reward redemption, negative (reference REWARD)
    - ADJUSTED: manual correction, signed
    - EXPIRED: expiry of an EARNED/BONUS row, negative
      (reference EXPIRATION, reference_id = source transaction id)
    """
    __tablename__ = "points_transactions"
    __table_args__ = (
        db.UniqueConstraint("org_id", "idempotency_key", name="uq_points_transactions_idempotency"),
        db.Index("ix_points_transactions_loyalty_created", "customer_loyalty_id", "created_at"),
        db.Index("ix_points_transactions_program_type", "program_id", "transaction_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_loyalty_id = db.Column(db.Integer, db.ForeignKey("customer_loyalties.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    program_id = db.Column(db.Integer, db.ForeignKey("loyalty_programs.id"), nullable=False)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(500), nullable=True)

    reference_type = db.Column(db.String(16), nullable=True, index=True)
    reference_id = db.Column(db.String(64), nullable=True)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    idempotency_key = db.Column(db.String(128), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer_loyalty = db.relationship("CustomerLoyalty", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_loyalty_id": self.customer_loyalty_id,
            "customer_id": self.customer_id,
            "program_id": self.program_id,
            "type": self.transaction_type,
            "points": self.points,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Reward(db.Model):
    """
    Catalog item customers can buy with points.

    VALUE: whole percent for DISCOUNT_PERCENTAGE, cents for DISCOUNT_FIXED,
    unused for the other types. Deleting a reward only deactivates it.
    """
    __tablename__ = "rewards"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    program_id = db.Column(db.Integer, db.ForeignKey("loyalty_programs.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    reward_type = db.Column(db.String(32), nullable=False)
    value = db.Column(db.Integer, nullable=False, default=0)
    points_cost = db.Column(db.Integer, nullable=False)

    max_redemptions = db.Column(db.Integer, nullable=True)
    current_redemptions = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)
    terms = db.Column(db.Text, nullable=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    min_purchase_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    program = db.relationship("LoyaltyProgram", backref=db.backref("rewards", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "program_id": self.program_id,
            "name": self.name,
            "description": self.description,
            "type": self.reward_type,
            "value": self.value,
            "points_cost": self.points_cost,
            "max_redemptions": self.max_redemptions,
            "current_redemptions": self.current_redemptions,
            "valid_from": to_utc_z(self.valid_from) if self.valid_from else None,
            "valid_until": to_utc_z(self.valid_until) if self.valid_until else None,
            "terms": self.terms,
            "product_id": self.product_id,
            "min_purchase_cents": self.min_purchase_cents,
            "is_active": self.is_active,
        }


class CustomerReward(db.Model):
    """
    A redeemed reward held by a customer: AVAILABLE -> USED, or EXPIRED once
    expires_at has passed.
    """
    __tablename__ = "customer_rewards"
    __table_args__ = (
        db.UniqueConstraint("org_id", "idempotency_key", name="uq_customer_rewards_idempotency"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    customer_loyalty_id = db.Column(db.Integer, db.ForeignKey("customer_loyalties.id"), nullable=False)
    reward_id = db.Column(db.Integer, db.ForeignKey("rewards.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="AVAILABLE", index=True)
    points_spent = db.Column(db.Integer, nullable=False)

    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    used_in_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)

    idempotency_key = db.Column(db.String(128), nullable=True)

    reward = db.relationship("Reward")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_loyalty_id": self.customer_loyalty_id,
            "reward_id": self.reward_id,
            "reward": self.reward.to_dict() if self.reward else None,
            "status": self.status,
            "points_spent": self.points_spent,
            "redeemed_at": to_utc_z(self.redeemed_at),
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "used_at": to_utc_z(self.used_at) if self.used_at else None,
            "used_in_sale_id": self.used_in_sale_id,
        }
