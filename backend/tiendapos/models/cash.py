from __future__ import annotations

from ..extensions import db
from tiendapos.time_utils import to_utc_z


class CashSession(db.Model):
    """
    Cash register session (opening float to closing count).

    MULTI-TENANT: At most one OPEN session per organization, backed by the
    partial unique index uq_cash_sessions_one_open.

    EXPECTED BALANCE: opening_amount_cents + sum(movements.amount_cents).
    discrepancy_cents = closing_amount_cents - system_expected_cents, only
    when the operator supplies the expected amount at close.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index("ix_cash_sessions_org_status", "org_id", "status"),
        db.Index("ix_cash_sessions_org_opened", "org_id", "opened_at"),
        db.Index(
            "uq_cash_sessions_one_open",
            "org_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)

    status = db.Column(db.String(8), nullable=False, default="OPEN")  # OPEN, CLOSED

    opening_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_amount_cents = db.Column(db.Integer, nullable=True)
    system_expected_cents = db.Column(db.Integer, nullable=True)
    computed_expected_cents = db.Column(db.Integer, nullable=True)
    discrepancy_cents = db.Column(db.Integer, nullable=True)

    opened_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    opened_by = db.relationship("User", foreign_keys=[opened_by_user_id])
    closed_by = db.relationship("User", foreign_keys=[closed_by_user_id])
    movements = db.relationship("CashMovement", backref="session", lazy=True)
    counts = db.relationship("CashCount", backref="session", lazy=True, order_by="CashCount.denomination_cents.desc()")

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_movements: bool = False, include_counts: bool = False) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "status": self.status,
            "opening_amount_cents": self.opening_amount_cents,
            "closing_amount_cents": self.closing_amount_cents,
            "system_expected_cents": self.system_expected_cents,
            "computed_expected_cents": self.computed_expected_cents,
            "discrepancy_cents": self.discrepancy_cents,
            "opened_by_user_id": self.opened_by_user_id,
            "opened_at": to_utc_z(self.opened_at),
            "closed_by_user_id": self.closed_by_user_id,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "notes": self.notes,
            "version_id": self.version_id,
        }
        if include_movements:
            ordered = sorted(self.movements, key=lambda m: (m.created_at, m.id), reverse=True)
            data["movements"] = [m.to_dict() for m in ordered]
        if include_counts:
            data["counts"] = [c.to_dict() for c in self.counts]
        return data


class CashMovement(db.Model):
    """
    Signed cash flow within a session.

    TYPES AND SIGNS:
    - IN, SALE, OUT: amount_cents >= 0
    - RETURN: amount_cents <= 0
    - ADJUSTMENT: amount_cents != 0
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.Index("ix_cash_movements_session_created", "session_id", "created_at"),
        db.Index("ix_cash_movements_org_created", "org_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(500), nullable=True)

    reference_type = db.Column(db.String(16), nullable=True, index=True)  # SALE, RETURN, ...
    reference_id = db.Column(db.String(64), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    created_by = db.relationship("User")

    def to_dict(self, include_user: bool = False) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "session_id": self.session_id,
            "type": self.movement_type,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_user:
            data["user"] = self.created_by.to_summary() if self.created_by else None
        return data


class CashCount(db.Model):
    """Denomination tally recorded at close. total_cents = denomination_cents * quantity."""
    __tablename__ = "cash_counts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    denomination_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "denomination_cents": self.denomination_cents,
            "quantity": self.quantity,
            "total_cents": self.total_cents,
        }


class CashDiscrepancy(db.Model):
    """Shortage or overage reported against a session."""
    __tablename__ = "cash_discrepancies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    discrepancy_type = db.Column(db.String(16), nullable=False)  # SHORTAGE, OVERAGE
    amount_cents = db.Column(db.Integer, nullable=False)
    explanation = db.Column(db.Text, nullable=True)

    reported_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "type": self.discrepancy_type,
            "amount_cents": self.amount_cents,
            "explanation": self.explanation,
            "reported_by_user_id": self.reported_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
