from __future__ import annotations

from ..extensions import db
from tiendapos.time_utils import to_utc_z


PLANS = ("basic", "pro", "enterprise")


class Organization(db.Model):
    """
    A business using the POS. Owns its stores, staff, catalog, customers,
    cash sessions and loyalty programs.

    subdomain and custom_domain identify the storefront host; each is
    unique across the platform when set.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    subdomain = db.Column(db.String(63), nullable=True, unique=True, index=True)
    custom_domain = db.Column(db.String(253), nullable=True, unique=True, index=True)

    contact_email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)
    logo_url = db.Column(db.String(512), nullable=True)
    plan = db.Column(db.String(32), nullable=False, default="basic")

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now()
    )

    def __repr__(self) -> str:
        return f"<Organization {self.code or self.id}>"

    def to_dict(self) -> dict:
        data = {
            column: getattr(self, column)
            for column in (
                "id", "name", "code", "subdomain", "custom_domain", "contact_email",
                "phone", "address", "logo_url", "plan", "is_active",
            )
        }
        data["created_at"] = to_utc_z(self.created_at)
        data["updated_at"] = to_utc_z(self.updated_at)
        return data


class Store(db.Model):
    """Branch (till location) of an organization. Name and code are unique per organization."""
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_stores_org_name"),
        db.UniqueConstraint("org_id", "code", name="uq_stores_org_code"),
        db.Index("ix_stores_org_id", "org_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("stores", lazy=True, order_by="Store.id"))

    def __repr__(self) -> str:
        return f"<Store {self.name!r} org={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "code": self.code,
            "created_at": to_utc_z(self.created_at),
        }
