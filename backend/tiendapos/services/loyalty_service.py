"""
Loyalty Service: programs, tiers, points ledger and rewards

MULTI-TENANT: every program, enrollment, transaction and reward carries
org_id; lookups go through require_in_org.

CONCURRENCY:
- Balance mutations (purchase points, redemption, adjustment) lock the
  CustomerLoyalty row (and the Reward row for redemption) with
  SELECT ... FOR UPDATE; version_id columns catch lost updates on SQLite.
- redeem_reward / adjust_points accept an idempotency_key. A replayed key
  returns the first result without side effects. The key is unique per
  org at the database level, so two racing requests cannot both apply.

POINTS LEDGER (PointsTransaction.transaction_type):
- EARNED   purchase points, reference SALE, may expire
- BONUS    welcome / birthday, reference WELCOME / BIRTHDAY
- REDEEMED reward purchase, negative, reference REWARD
- ADJUSTED manual correction, signed
- EXPIRED  expiry of one EARNED/BONUS row, reference EXPIRATION
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    LoyaltyProgram, LoyaltyTier, CustomerLoyalty, PointsTransaction,
    Reward, CustomerReward, Customer, Product,
)
from .concurrency import lock_for_update, run_with_retry
from .errors import ServiceError, not_found
from .tenant_service import require_in_org
from tiendapos.time_utils import utcnow, month_key


class LoyaltyError(ServiceError):
    """Raised for loyalty operation errors."""
    pass


# =============================================================================
# CONSTANTS
# =============================================================================

TRANSACTION_TYPES = ("EARNED", "BONUS", "REDEEMED", "ADJUSTED", "EXPIRED")
REWARD_TYPES = ("DISCOUNT_PERCENTAGE", "DISCOUNT_FIXED", "FREE_PRODUCT", "FREE_SHIPPING", "CUSTOM")

REWARD_STATUS_AVAILABLE = "AVAILABLE"
REWARD_STATUS_USED = "USED"
REWARD_STATUS_EXPIRED = "EXPIRED"

PROGRAM_FIELDS = (
    "name", "description", "points_per_purchase", "minimum_purchase_cents",
    "points_expiration_days", "welcome_bonus", "birthday_bonus", "referral_bonus", "is_active",
)
TIER_FIELDS = ("name", "min_points", "max_points", "multiplier", "benefits", "color")
REWARD_FIELDS = (
    "name", "description", "reward_type", "value", "points_cost", "max_redemptions",
    "valid_from", "valid_until", "terms", "product_id", "min_purchase_cents", "is_active",
)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_non_negative_int(data: dict, field: str, *, nullable: bool = False) -> None:
    if field not in data:
        return
    value = data[field]
    if value is None and nullable:
        return
    if not _is_int(value) or value < 0:
        raise LoyaltyError(f"{field} must be an integer >= 0")


# =============================================================================
# PROGRAMS
# =============================================================================

def get_program(program_id: int, org_id: int) -> LoyaltyProgram:
    return require_in_org(LoyaltyProgram, program_id, org_id, LoyaltyError, "Loyalty program")


def list_programs(org_id: int) -> list[LoyaltyProgram]:
    return db.session.query(LoyaltyProgram).filter_by(org_id=org_id).order_by(LoyaltyProgram.id).all()


def _validate_program(data: dict) -> None:
    if "name" in data and not (data["name"] or "").strip():
        raise LoyaltyError("name is required")
    if "points_per_purchase" in data:
        ppp = data["points_per_purchase"]
        if isinstance(ppp, bool) or not isinstance(ppp, (int, float)) or ppp < 0:
            raise LoyaltyError("points_per_purchase must be a number >= 0")
    for field in ("minimum_purchase_cents", "welcome_bonus", "birthday_bonus", "referral_bonus"):
        _require_non_negative_int(data, field)
    _require_non_negative_int(data, "points_expiration_days", nullable=True)


def create_program(org_id: int, data: dict) -> LoyaltyProgram:
    if not (data.get("name") or "").strip():
        raise LoyaltyError("name is required")
    _validate_program(data)

    program = LoyaltyProgram(org_id=org_id)
    for field in PROGRAM_FIELDS:
        if field in data:
            setattr(program, field, data[field])
    program.name = program.name.strip()

    db.session.add(program)
    db.session.commit()
    return program


def update_program(program_id: int, org_id: int, data: dict) -> LoyaltyProgram:
    program = get_program(program_id, org_id)
    _validate_program(data)
    for field in PROGRAM_FIELDS:
        if field in data:
            setattr(program, field, data[field])
    program.updated_at = utcnow()
    db.session.commit()
    return program


# =============================================================================
# TIERS
# =============================================================================

def _get_tier(tier_id: int, org_id: int) -> LoyaltyTier:
    tier = db.session.query(LoyaltyTier).filter_by(id=tier_id).first()
    if not tier or tier.program.org_id != org_id:
        raise not_found(LoyaltyError, "Loyalty tier")
    return tier


def ranges_overlap(min_a: int, max_a: int | None, min_b: int, max_b: int | None) -> bool:
    """Closed intervals; None max is unbounded."""
    a_upper = float("inf") if max_a is None else max_a
    b_upper = float("inf") if max_b is None else max_b
    return min_a <= b_upper and min_b <= a_upper


def _validate_tier_range(program_id: int, min_points, max_points, multiplier, exclude_id: int | None = None) -> None:
    if not _is_int(min_points) or min_points < 0:
        raise LoyaltyError("min_points must be an integer >= 0")
    if max_points is not None and (not _is_int(max_points) or max_points < min_points):
        raise LoyaltyError("max_points must be an integer >= min_points")
    if isinstance(multiplier, bool) or not isinstance(multiplier, (int, float)) or multiplier <= 0:
        raise LoyaltyError("multiplier must be a number > 0")

    query = db.session.query(LoyaltyTier).filter_by(program_id=program_id)
    if exclude_id is not None:
        query = query.filter(LoyaltyTier.id != exclude_id)
    for other in query.all():
        if ranges_overlap(min_points, max_points, other.min_points, other.max_points):
            raise LoyaltyError(f"Points range overlaps tier '{other.name}'")


def _ensure_unique_tier_name(program_id: int, name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(LoyaltyTier.id).filter_by(program_id=program_id, name=name)
    if exclude_id is not None:
        query = query.filter(LoyaltyTier.id != exclude_id)
    if query.first():
        raise LoyaltyError("A tier with this name already exists in the program", status_code=409)


def list_tiers(program_id: int, org_id: int) -> list[LoyaltyTier]:
    program = get_program(program_id, org_id)
    return list(program.tiers)


def create_tier(program_id: int, org_id: int, data: dict) -> LoyaltyTier:
    program = get_program(program_id, org_id)

    name = (data.get("name") or "").strip()
    if not name:
        raise LoyaltyError("name is required")
    _ensure_unique_tier_name(program.id, name)

    min_points = data.get("min_points", 0)
    max_points = data.get("max_points")
    multiplier = data.get("multiplier", 1.0)
    _validate_tier_range(program.id, min_points, max_points, multiplier)

    tier = LoyaltyTier(
        program_id=program.id,
        name=name,
        min_points=min_points,
        max_points=max_points,
        multiplier=multiplier,
        benefits=data.get("benefits"),
        color=data.get("color"),
    )
    db.session.add(tier)
    db.session.commit()
    return tier


def update_tier(tier_id: int, org_id: int, data: dict) -> LoyaltyTier:
    tier = _get_tier(tier_id, org_id)

    if "name" in data:
        name = (data["name"] or "").strip()
        if not name:
            raise LoyaltyError("name cannot be blank")
        _ensure_unique_tier_name(tier.program_id, name, exclude_id=tier.id)
        data = {**data, "name": name}

    if any(field in data for field in ("min_points", "max_points", "multiplier")):
        _validate_tier_range(
            tier.program_id,
            data.get("min_points", tier.min_points),
            data.get("max_points", tier.max_points),
            data.get("multiplier", tier.multiplier),
            exclude_id=tier.id,
        )

    for field in TIER_FIELDS:
        if field in data:
            setattr(tier, field, data[field])
    db.session.commit()
    return tier


def delete_tier(tier_id: int, org_id: int) -> None:
    tier = _get_tier(tier_id, org_id)
    assigned = db.session.query(CustomerLoyalty.id).filter_by(tier_id=tier.id).count()
    if assigned:
        raise LoyaltyError(f"Cannot delete tier: assigned to {assigned} customer(s)")
    db.session.delete(tier)
    db.session.commit()


def find_tier_for_points(program: LoyaltyProgram, points: int) -> LoyaltyTier | None:
    """Highest tier (by min_points) whose closed range contains points."""
    for tier in sorted(program.tiers, key=lambda t: t.min_points, reverse=True):
        if tier.min_points <= points and (tier.max_points is None or points <= tier.max_points):
            return tier
    return None


def update_customer_tier(loyalty: CustomerLoyalty) -> LoyaltyTier | None:
    """Reassign the tier from current_points; the tier only changes when one matches. No commit."""
    tier = find_tier_for_points(loyalty.program, loyalty.current_points)
    if tier is not None and tier.id != loyalty.tier_id:
        loyalty.tier_id = tier.id
        loyalty.tier = tier
    return tier


# =============================================================================
# ENROLLMENT & POINTS
# =============================================================================

def _add_transaction(
    loyalty: CustomerLoyalty,
    transaction_type: str,
    points: int,
    description: str,
    *,
    reference_type: str | None = None,
    reference_id=None,
    expires_at: datetime | None = None,
    idempotency_key: str | None = None,
    user_id: int | None = None,
) -> PointsTransaction:
    transaction = PointsTransaction(
        org_id=loyalty.org_id,
        customer_loyalty_id=loyalty.id,
        customer_id=loyalty.customer_id,
        program_id=loyalty.program_id,
        transaction_type=transaction_type,
        points=points,
        description=description,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        expires_at=expires_at,
        idempotency_key=idempotency_key,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(transaction)
    return transaction


def get_enrollment(org_id: int, customer_id: int, program_id: int) -> CustomerLoyalty | None:
    return db.session.query(CustomerLoyalty).filter_by(
        org_id=org_id,
        customer_id=customer_id,
        program_id=program_id,
    ).first()


def get_customer_loyalty(org_id: int, customer_id: int, program_id: int | None = None) -> list[CustomerLoyalty]:
    require_in_org(Customer, customer_id, org_id, LoyaltyError, "Customer")
    query = db.session.query(CustomerLoyalty).filter_by(org_id=org_id, customer_id=customer_id)
    if program_id is not None:
        query = query.filter_by(program_id=program_id)
    return query.order_by(CustomerLoyalty.id).all()


def enroll_customer(org_id: int, customer_id: int, program_id: int, user_id: int | None = None) -> CustomerLoyalty:
    """
    Enroll a customer, crediting the program's welcome bonus.

    Raises LoyaltyError 404 (program/customer), 409 (already enrolled).
    """
    program = get_program(program_id, org_id)
    customer = require_in_org(Customer, customer_id, org_id, LoyaltyError, "Customer")

    if get_enrollment(org_id, customer.id, program.id):
        raise LoyaltyError("Customer is already enrolled in this program", status_code=409)

    now = utcnow()
    loyalty = CustomerLoyalty(
        org_id=org_id,
        customer_id=customer.id,
        program_id=program.id,
        current_points=program.welcome_bonus,
        total_points_earned=program.welcome_bonus,
        total_points_used=0,
        is_active=True,
        enrolled_at=now,
        last_activity_at=now,
    )
    db.session.add(loyalty)
    db.session.flush()
    loyalty.program = program

    if program.welcome_bonus > 0:
        _add_transaction(
            loyalty, "BONUS", program.welcome_bonus, "Welcome bonus",
            reference_type="WELCOME", user_id=user_id,
        )

    update_customer_tier(loyalty)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise LoyaltyError("Customer is already enrolled in this program", status_code=409)
    return loyalty


def unenroll_customer(org_id: int, customer_loyalty_id: int) -> CustomerLoyalty:
    loyalty = require_in_org(CustomerLoyalty, customer_loyalty_id, org_id, LoyaltyError, "Loyalty enrollment")
    loyalty.is_active = False
    db.session.commit()
    return loyalty


def calculate_points(program: LoyaltyProgram, amount_cents: int, loyalty: CustomerLoyalty | None = None) -> int:
    """
    0 below the program minimum; otherwise floor(amount * points_per_purchase),
    then floor(* tier multiplier) when the enrollment has a tier.
    """
    if amount_cents < program.minimum_purchase_cents:
        return 0
    points = int(amount_cents * program.points_per_purchase)
    if loyalty is not None and loyalty.tier is not None:
        points = int(points * loyalty.tier.multiplier)
    return points


def add_points_for_purchase(
    *,
    org_id: int,
    customer_id: int,
    program_id: int,
    amount_cents: int,
    sale_id,
    user_id: int | None = None,
) -> PointsTransaction | None:
    """
    Credit EARNED points for a sale and recompute the tier.

    Returns None when the purchase earns no points.
    Raises LoyaltyError 400 when the customer is not enrolled.
    """
    program = get_program(program_id, org_id)

    def _op():
        loyalty = lock_for_update(
            db.session.query(CustomerLoyalty).filter_by(
                org_id=org_id, customer_id=customer_id, program_id=program.id
            )
        ).first()
        if loyalty is None:
            raise LoyaltyError("Customer is not enrolled in the loyalty program")

        points = calculate_points(program, amount_cents, loyalty)
        if points <= 0:
            return None

        now = utcnow()
        expires_at = None
        if program.points_expiration_days:
            expires_at = now + timedelta(days=program.points_expiration_days)

        loyalty.current_points += points
        loyalty.total_points_earned += points
        loyalty.last_activity_at = now

        transaction = _add_transaction(
            loyalty, "EARNED", points, f"Points for sale #{sale_id}",
            reference_type="SALE", reference_id=sale_id,
            expires_at=expires_at, user_id=user_id,
        )
        update_customer_tier(loyalty)
        db.session.commit()
        return transaction

    return run_with_retry(_op)


def adjust_points(
    *,
    org_id: int,
    customer_loyalty_id: int,
    points: int,
    description: str | None,
    user_id: int | None = None,
    idempotency_key: str | None = None,
) -> tuple[CustomerLoyalty, bool]:
    """
    Manual signed correction. Returns (loyalty, replayed).

    Positive points add to earned; negative points add to used. The
    balance may not go below zero.
    """
    if not _is_int(points) or points == 0:
        raise LoyaltyError("points must be a non-zero integer")

    require_in_org(CustomerLoyalty, customer_loyalty_id, org_id, LoyaltyError, "Loyalty enrollment")

    if idempotency_key:
        existing = db.session.query(PointsTransaction).filter_by(
            org_id=org_id, idempotency_key=idempotency_key
        ).first()
        if existing:
            return db.session.get(CustomerLoyalty, existing.customer_loyalty_id), True

    def _op():
        loyalty = lock_for_update(
            db.session.query(CustomerLoyalty).filter_by(id=customer_loyalty_id, org_id=org_id)
        ).first()

        if loyalty.current_points + points < 0:
            raise LoyaltyError("Adjustment would make the points balance negative")

        loyalty.current_points += points
        if points > 0:
            loyalty.total_points_earned += points
        else:
            loyalty.total_points_used += abs(points)
        loyalty.last_activity_at = utcnow()

        _add_transaction(
            loyalty, "ADJUSTED", points, (description or "").strip() or "Manual adjustment",
            reference_type="ADJUSTMENT", idempotency_key=idempotency_key, user_id=user_id,
        )
        update_customer_tier(loyalty)
        db.session.commit()
        return loyalty

    try:
        return run_with_retry(_op), False
    except IntegrityError:
        db.session.rollback()
        existing = db.session.query(PointsTransaction).filter_by(
            org_id=org_id, idempotency_key=idempotency_key
        ).first()
        if idempotency_key and existing:
            return db.session.get(CustomerLoyalty, existing.customer_loyalty_id), True
        raise


# =============================================================================
# REWARDS
# =============================================================================

def get_reward(reward_id: int, org_id: int) -> Reward:
    return require_in_org(Reward, reward_id, org_id, LoyaltyError, "Reward")


def _validate_reward(org_id: int, data: dict) -> None:
    if "reward_type" in data and data["reward_type"] not in REWARD_TYPES:
        raise LoyaltyError(f"type must be one of: {', '.join(REWARD_TYPES)}")
    if "points_cost" in data and (not _is_int(data["points_cost"]) or data["points_cost"] <= 0):
        raise LoyaltyError("points_cost must be a positive integer")
    _require_non_negative_int(data, "value")
    _require_non_negative_int(data, "max_redemptions", nullable=True)
    _require_non_negative_int(data, "min_purchase_cents", nullable=True)
    if data.get("reward_type") == "DISCOUNT_PERCENTAGE" and data.get("value", 0) > 100:
        raise LoyaltyError("Percentage value cannot exceed 100")
    if data.get("product_id") is not None:
        require_in_org(Product, data["product_id"], org_id, LoyaltyError, "Product")


def create_reward(program_id: int, org_id: int, data: dict) -> Reward:
    program = get_program(program_id, org_id)

    if not (data.get("name") or "").strip():
        raise LoyaltyError("name is required")
    if "reward_type" not in data or "points_cost" not in data:
        raise LoyaltyError("type and points_cost are required")
    _validate_reward(org_id, data)

    valid_from, valid_until = data.get("valid_from"), data.get("valid_until")
    if valid_from and valid_until and valid_until <= valid_from:
        raise LoyaltyError("valid_until must be after valid_from")

    reward = Reward(org_id=org_id, program_id=program.id)
    for field in REWARD_FIELDS:
        if field in data:
            setattr(reward, field, data[field])
    reward.name = reward.name.strip()

    db.session.add(reward)
    db.session.commit()
    return reward


def update_reward(reward_id: int, org_id: int, data: dict) -> Reward:
    reward = get_reward(reward_id, org_id)
    _validate_reward(org_id, data)

    valid_from = data.get("valid_from", reward.valid_from)
    valid_until = data.get("valid_until", reward.valid_until)
    if valid_from and valid_until and valid_until <= valid_from:
        raise LoyaltyError("valid_until must be after valid_from")

    for field in REWARD_FIELDS:
        if field in data:
            setattr(reward, field, data[field])
    reward.updated_at = utcnow()
    db.session.commit()
    return reward


def delete_reward(reward_id: int, org_id: int) -> Reward:
    reward = get_reward(reward_id, org_id)
    reward.is_active = False
    db.session.commit()
    return reward


def list_rewards(program_id: int, org_id: int, *, is_active: bool | None = None, reward_type: str | None = None) -> list[Reward]:
    program = get_program(program_id, org_id)
    query = db.session.query(Reward).filter_by(org_id=org_id, program_id=program.id)
    if is_active is not None:
        query = query.filter(Reward.is_active.is_(is_active))
    if reward_type:
        query = query.filter(Reward.reward_type == reward_type)
    return query.order_by(Reward.points_cost.asc(), Reward.id.asc()).all()


def get_available_rewards(program_id: int, org_id: int, customer_id: int | None = None) -> list[Reward]:
    """
    Active rewards inside their validity window and under their redemption
    limit, cheapest first. With customer_id, only those the customer can afford.
    """
    program = get_program(program_id, org_id)
    now = utcnow()

    rewards = db.session.query(Reward).filter(
        Reward.org_id == org_id,
        Reward.program_id == program.id,
        Reward.is_active.is_(True),
        db.or_(Reward.valid_from.is_(None), Reward.valid_from <= now),
        db.or_(Reward.valid_until.is_(None), Reward.valid_until >= now),
        db.or_(Reward.max_redemptions.is_(None), Reward.current_redemptions < Reward.max_redemptions),
    ).order_by(Reward.points_cost.asc(), Reward.id.asc()).all()

    if customer_id is not None:
        loyalty = get_enrollment(org_id, customer_id, program.id)
        if loyalty is not None:
            rewards = [r for r in rewards if r.points_cost <= loyalty.current_points]

    return rewards


def redeem_reward(
    *,
    org_id: int,
    customer_id: int,
    program_id: int,
    reward_id: int,
    user_id: int | None = None,
    idempotency_key: str | None = None,
) -> tuple[CustomerReward, bool]:
    """
    Spend points on a reward. Returns (customer_reward, replayed).

    Locks the enrollment, then the reward. All rule failures are 400.
    """
    if idempotency_key:
        existing = db.session.query(CustomerReward).filter_by(
            org_id=org_id, idempotency_key=idempotency_key
        ).first()
        if existing:
            return existing, True

    def _op():
        loyalty = lock_for_update(
            db.session.query(CustomerLoyalty).filter_by(
                org_id=org_id, customer_id=customer_id, program_id=program_id
            )
        ).first()
        if loyalty is None:
            raise LoyaltyError("Customer is not enrolled in the loyalty program")

        reward = lock_for_update(
            db.session.query(Reward).filter_by(id=reward_id, org_id=org_id)
        ).first()
        if reward is None or not reward.is_active or reward.program_id != program_id:
            raise LoyaltyError("Reward not available")

        if loyalty.current_points < reward.points_cost:
            raise LoyaltyError("Insufficient points to redeem this reward")

        if reward.max_redemptions is not None and reward.current_redemptions >= reward.max_redemptions:
            raise LoyaltyError("Redemption limit reached for this reward")

        now = utcnow()
        if reward.valid_from and reward.valid_from > now:
            raise LoyaltyError("This reward is not available yet")
        if reward.valid_until and reward.valid_until < now:
            raise LoyaltyError("This reward has expired")

        customer_reward = CustomerReward(
            org_id=org_id,
            customer_id=customer_id,
            customer_loyalty_id=loyalty.id,
            reward_id=reward.id,
            status=REWARD_STATUS_AVAILABLE,
            points_spent=reward.points_cost,
            redeemed_at=now,
            expires_at=reward.valid_until,
            idempotency_key=idempotency_key,
        )
        db.session.add(customer_reward)

        loyalty.current_points -= reward.points_cost
        loyalty.total_points_used += reward.points_cost
        loyalty.last_activity_at = now

        _add_transaction(
            loyalty, "REDEEMED", -reward.points_cost, f"Redeemed reward: {reward.name}",
            reference_type="REWARD", reference_id=reward.id, user_id=user_id,
        )
        reward.current_redemptions += 1

        update_customer_tier(loyalty)
        db.session.commit()
        return customer_reward

    try:
        return run_with_retry(_op), False
    except IntegrityError:
        db.session.rollback()
        if idempotency_key:
            existing = db.session.query(CustomerReward).filter_by(
                org_id=org_id, idempotency_key=idempotency_key
            ).first()
            if existing:
                return existing, True
        raise


def list_customer_rewards(org_id: int, customer_id: int, program_id: int, status: str | None = None) -> list[CustomerReward]:
    loyalty = get_enrollment(org_id, customer_id, program_id)
    if loyalty is None:
        raise LoyaltyError("Customer is not enrolled in the loyalty program")
    query = db.session.query(CustomerReward).filter_by(org_id=org_id, customer_loyalty_id=loyalty.id)
    if status:
        query = query.filter(CustomerReward.status == status)
    return query.order_by(CustomerReward.redeemed_at.desc(), CustomerReward.id.desc()).all()


def use_customer_reward(org_id: int, customer_reward_id: int, sale_id: int | None = None) -> CustomerReward:
    """
    Mark an AVAILABLE reward as USED. An expired reward is marked EXPIRED
    (and committed) before the error is raised.
    """
    customer_reward = require_in_org(CustomerReward, customer_reward_id, org_id, LoyaltyError, "Customer reward")

    if customer_reward.status != REWARD_STATUS_AVAILABLE:
        raise LoyaltyError("This reward is no longer available")

    now = utcnow()
    if customer_reward.expires_at and customer_reward.expires_at < now:
        customer_reward.status = REWARD_STATUS_EXPIRED
        db.session.commit()
        raise LoyaltyError("This reward has expired")

    customer_reward.status = REWARD_STATUS_USED
    customer_reward.used_at = now
    customer_reward.used_in_sale_id = sale_id
    db.session.commit()
    return customer_reward


# =============================================================================
# SCHEDULED JOBS
# =============================================================================

def expire_points(now: datetime | None = None, org_id: int | None = None) -> int:
    """
    Write an EXPIRED transaction for every EARNED/BONUS row past expires_at
    that has not been expired yet. current_points never drops below zero.

    Returns the number of transactions expired.
    """
    now = now or utcnow()

    already_expired = db.session.query(PointsTransaction.reference_id).filter(
        PointsTransaction.transaction_type == "EXPIRED",
        PointsTransaction.reference_type == "EXPIRATION",
    )

    query = db.session.query(PointsTransaction).filter(
        PointsTransaction.transaction_type.in_(("EARNED", "BONUS")),
        PointsTransaction.expires_at.isnot(None),
        PointsTransaction.expires_at <= now,
    )
    if org_id is not None:
        query = query.filter(PointsTransaction.org_id == org_id)

    done = {ref for (ref,) in already_expired.all()}
    count = 0

    for source in query.order_by(PointsTransaction.id).all():
        if str(source.id) in done:
            continue

        loyalty = lock_for_update(
            db.session.query(CustomerLoyalty).filter_by(id=source.customer_loyalty_id)
        ).first()

        _add_transaction(
            loyalty, "EXPIRED", -source.points,
            f"Expired points from transaction #{source.id}",
            reference_type="EXPIRATION", reference_id=source.id,
        )
        loyalty.current_points = max(0, loyalty.current_points - source.points)
        done.add(str(source.id))
        count += 1

    db.session.commit()
    return count


def _birthday_in(birth_date: date, year: int) -> date:
    """Feb 29 birthdays fall on Feb 28 in non-leap years."""
    if (birth_date.month, birth_date.day) == (2, 29) and not calendar.isleap(year):
        return date(year, 2, 28)
    return birth_date.replace(year=year)


def process_birthday_bonuses(today: date | None = None) -> int:
    """
    Credit birthday_bonus to active customers whose birthday is today, once
    per calendar year per enrollment. Returns the number of bonuses given.
    """
    today = today or utcnow().date()
    year_start = datetime(today.year, 1, 1)
    next_year_start = datetime(today.year + 1, 1, 1)

    customers = db.session.query(Customer).filter(
        Customer.is_active.is_(True),
        Customer.birth_date.isnot(None),
    ).all()

    count = 0
    for customer in customers:
        if _birthday_in(customer.birth_date, today.year) != today:
            continue

        for loyalty in customer.loyalties:
            program = loyalty.program
            if not loyalty.is_active or not program.is_active or program.birthday_bonus <= 0:
                continue

            already_given = db.session.query(PointsTransaction.id).filter(
                PointsTransaction.customer_loyalty_id == loyalty.id,
                PointsTransaction.transaction_type == "BONUS",
                PointsTransaction.reference_type == "BIRTHDAY",
                PointsTransaction.created_at >= year_start,
                PointsTransaction.created_at < next_year_start,
            ).first()
            if already_given:
                continue

            loyalty.current_points += program.birthday_bonus
            loyalty.total_points_earned += program.birthday_bonus
            loyalty.last_activity_at = utcnow()

            _add_transaction(
                loyalty, "BONUS", program.birthday_bonus, "Birthday bonus",
                reference_type="BIRTHDAY", reference_id=customer.id,
            )
            update_customer_tier(loyalty)
            count += 1

    db.session.commit()
    return count


# =============================================================================
# LISTINGS & ANALYTICS
# =============================================================================

def list_transactions(
    org_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    program_id: int | None = None,
    customer_id: int | None = None,
    transaction_type: str | None = None,
    reference_type: str | None = None,
    start_date=None,
    end_date=None,
) -> tuple[list[PointsTransaction], int]:
    query = db.session.query(PointsTransaction).filter(PointsTransaction.org_id == org_id)
    if program_id is not None:
        query = query.filter(PointsTransaction.program_id == program_id)
    if customer_id is not None:
        query = query.filter(PointsTransaction.customer_id == customer_id)
    if transaction_type:
        if transaction_type not in TRANSACTION_TYPES:
            raise LoyaltyError(f"type must be one of: {', '.join(TRANSACTION_TYPES)}")
        query = query.filter(PointsTransaction.transaction_type == transaction_type)
    if reference_type:
        query = query.filter(PointsTransaction.reference_type == reference_type)
    if start_date is not None:
        query = query.filter(PointsTransaction.created_at >= start_date)
    if end_date is not None:
        query = query.filter(PointsTransaction.created_at <= end_date)

    total = query.count()
    rows = (
        query.order_by(PointsTransaction.created_at.desc(), PointsTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def list_program_customers(
    program_id: int,
    org_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    is_active: bool | None = None,
    tier_id: int | None = None,
    min_points: int | None = None,
    max_points: int | None = None,
) -> tuple[list[CustomerLoyalty], int]:
    program = get_program(program_id, org_id)
    query = db.session.query(CustomerLoyalty).filter_by(org_id=org_id, program_id=program.id)
    if is_active is not None:
        query = query.filter(CustomerLoyalty.is_active.is_(is_active))
    if tier_id is not None:
        query = query.filter(CustomerLoyalty.tier_id == tier_id)
    if min_points is not None:
        query = query.filter(CustomerLoyalty.current_points >= min_points)
    if max_points is not None:
        query = query.filter(CustomerLoyalty.current_points <= max_points)

    total = query.count()
    rows = (
        query.order_by(CustomerLoyalty.current_points.desc(), CustomerLoyalty.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def _in_range(dt: datetime | None, start, end) -> bool:
    if dt is None:
        return False
    if start is not None and dt < start:
        return False
    if end is not None and dt > end:
        return False
    return True


def get_analytics(program_id: int, org_id: int, start_date=None, end_date=None) -> dict:
    """
    Program KPIs for an optional date range. Monthly buckets are computed
    in Python so the same code runs on SQLite and Postgres.
    """
    program = get_program(program_id, org_id)

    enrollments = db.session.query(CustomerLoyalty).filter_by(org_id=org_id, program_id=program.id).all()
    transactions = db.session.query(PointsTransaction).filter_by(org_id=org_id, program_id=program.id).all()
    used_rewards = (
        db.session.query(CustomerReward)
        .join(CustomerLoyalty, CustomerLoyalty.id == CustomerReward.customer_loyalty_id)
        .filter(
            CustomerReward.org_id == org_id,
            CustomerLoyalty.program_id == program.id,
            CustomerReward.status == REWARD_STATUS_USED,
        ).all()
    )

    ranged = start_date is not None or end_date is not None
    in_period = [t for t in transactions if not ranged or _in_range(t.created_at, start_date, end_date)]
    rewards_in_period = [r for r in used_rewards if not ranged or _in_range(r.used_at, start_date, end_date)]

    total_customers = len(enrollments)
    if ranged:
        active_customers = sum(1 for e in enrollments if _in_range(e.last_activity_at, start_date, end_date))
    else:
        active_customers = sum(1 for e in enrollments if e.last_activity_at is not None)

    issued = sum(t.points for t in in_period if t.transaction_type in ("EARNED", "BONUS"))
    redeemed = abs(sum(t.points for t in in_period if t.transaction_type == "REDEEMED"))

    tier_counts: dict = {}
    for e in enrollments:
        key = e.tier_id
        entry = tier_counts.setdefault(key, {"tier": e.tier.to_dict() if e.tier else None, "count": 0})
        entry["count"] += 1
    customers_by_tier = sorted(tier_counts.values(), key=lambda item: item["count"], reverse=True)

    points_by_month: dict[str, int] = {}
    for t in in_period:
        if t.transaction_type in ("EARNED", "BONUS"):
            key = month_key(t.created_at)
            points_by_month[key] = points_by_month.get(key, 0) + t.points

    rewards_by_month: dict[str, int] = {}
    for r in rewards_in_period:
        key = month_key(r.used_at)
        rewards_by_month[key] = rewards_by_month.get(key, 0) + 1

    top_customers = sorted(enrollments, key=lambda e: (-e.total_points_earned, e.id))[:10]
    recent = sorted(in_period, key=lambda t: (t.created_at, t.id), reverse=True)[:50]

    return {
        "total_customers": total_customers,
        "active_customers": active_customers,
        "total_points_issued": issued,
        "total_points_redeemed": redeemed,
        "total_rewards_used": len(rewards_in_period),
        "average_points_per_customer": issued // total_customers if total_customers else 0,
        "top_tier": customers_by_tier[0]["tier"] if customers_by_tier else None,
        "customers_by_tier": customers_by_tier,
        "points_issued_by_month": [
            {"month": month, "points": points} for month, points in sorted(points_by_month.items())
        ],
        "rewards_used_by_month": [
            {"month": month, "count": n} for month, n in sorted(rewards_by_month.items())
        ],
        "top_customers": [e.to_dict() for e in top_customers],
        "recent_transactions": [t.to_dict() for t in recent],
    }
