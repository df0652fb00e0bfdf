from __future__ import annotations

from ..extensions import db
from tiendapos.time_utils import to_utc_z


class Product(db.Model):
    """
    Sellable catalog item.

    MULTI-TENANT: Products are scoped to organizations via org_id.
    SKU and barcode are unique within an organization.

    PRICING: price_cents is the list price. offer_price_cents, when > 0 and
    below the list price, is the standing offer shown in the storefront.
    stock_quantity is decremented by sales and incremented by completed
    returns; every change writes an InventoryMovement.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_products_org_sku"),
        db.UniqueConstraint("org_id", "barcode", name="uq_products_org_barcode"),
        db.Index("ix_products_org_active", "org_id", "is_active"),
        db.Index("ix_products_org_updated", "org_id", "updated_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    barcode = db.Column(db.String(14), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(128), nullable=True, index=True)
    brand = db.Column(db.String(128), nullable=True)

    price_cents = db.Column(db.Integer, nullable=False, default=0)
    offer_price_cents = db.Column(db.Integer, nullable=True)
    cost_cents = db.Column(db.Integer, nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    organization = db.relationship("Organization", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def effective_price_cents(self) -> int:
        offer = self.offer_price_cents
        if offer and 0 < offer < self.price_cents:
            return offer
        return self.price_cents

    def to_summary(self) -> dict:
        return {"id": self.id, "name": self.name, "category": self.category}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "brand": self.brand,
            "price_cents": self.price_cents,
            "offer_price_cents": self.offer_price_cents,
            "cost_cents": self.cost_cents,
            "stock_quantity": self.stock_quantity,
            "min_stock": self.min_stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class InventoryMovement(db.Model):
    """
    Append-only stock ledger.

    MOVEMENT TYPES:
    - OUT: stock leaving through a sale (quantity_delta < 0)
    - RETURN: stock restored by a completed return (quantity_delta > 0)
    - ADJUSTMENT: manual correction (quantity_delta != 0)
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inventory_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    reference_type = db.Column(db.String(16), nullable=True)  # SALE, RETURN
    reference_id = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("inventory_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    """Vendor of catalog products. Names are unique within an organization."""
    __tablename__ = "suppliers"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_suppliers_org_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    contact_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    tax_id = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "contact_name": self.contact_name,
            "email": self.email,
            "phone": self.phone,
            "tax_id": self.tax_id,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SupplierPriceHistory(db.Model):
    """
    Price points quoted by a supplier for a product, newest first.

    IMMUTABLE: corrections are recorded as a new price point.
    """
    __tablename__ = "supplier_price_history"
    __table_args__ = (
        db.Index("ix_supplier_price_history_supplier_effective", "supplier_id", "effective_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    price_cents = db.Column(db.Integer, nullable=False)
    previous_price_cents = db.Column(db.Integer, nullable=True)
    effective_date = db.Column(db.DateTime(timezone=True), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    supplier = db.relationship("Supplier", backref=db.backref("price_history", lazy=True))
    product = db.relationship("Product")

    @property
    def change_pct(self) -> float | None:
        if not self.previous_price_cents:
            return None
        return round((self.price_cents - self.previous_price_cents) * 100.0 / self.previous_price_cents, 2)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "price_cents": self.price_cents,
            "previous_price_cents": self.previous_price_cents,
            "change_pct": self.change_pct,
            "effective_date": to_utc_z(self.effective_date),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
