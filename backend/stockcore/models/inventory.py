from __future__ import annotations

from sqlalchemy import event

from ..errors import ImmutableRecordError
from ..extensions import db
from stockcore.time_utils import to_utc_z


product_categories = db.Table(
    "product_categories",
    db.Column("product_id", db.Integer, db.ForeignKey("products.id"), primary_key=True),
    db.Column("category_id", db.Integer, db.ForeignKey("categories.id"), primary_key=True),
)


class Category(db.Model):
    """
    Flat category label.

    Category-tree management lives outside this core; the only category this
    package creates itself is the synthesized "Restored" bucket.
    """
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_categories_org_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {"id": self.id, "org_id": self.org_id, "name": self.name}


class Product(db.Model):
    """
    Product master data with authoritative current stock.

    MULTI-TENANT: Products are scoped to organizations via org_id.
    SKUs are unique within an organization.

    STOCK INVARIANT:
    - Without variants, `stock` is the product's own on-hand quantity.
    - With variants, `stock` is derived: always SUM(variant.stock), recomputed
      on every mutation that touches a variant (never set independently).
    - Stock only moves through inventory_service.adjust_stock, which writes a
      StockAdjustment ledger row in the same transaction.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_products_org_sku"),
        db.Index("ix_products_org_name", "org_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    retail_price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    variants = db.relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.id",
        lazy=True,
    )
    categories = db.relationship("Category", secondary=product_categories, lazy=True)
    price_history = db.relationship(
        "PriceHistoryEntry",
        primaryjoin="and_(Product.id == foreign(PriceHistoryEntry.product_id), "
                    "PriceHistoryEntry.variant_id.is_(None))",
        order_by="PriceHistoryEntry.id",
        viewonly=True,
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} org_id={self.org_id}>"

    @property
    def has_variants(self) -> bool:
        return bool(self.variants)

    def total_stock(self) -> int:
        """Own stock, or the variant sum when variants exist."""
        if self.variants:
            return sum(v.stock for v in self.variants)
        return self.stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "retail_price_cents": self.retail_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "stock": self.stock,
            "low_stock_threshold": self.low_stock_threshold,
            "category_ids": [c.id for c in self.categories],
            "variants": [v.to_dict() for v in self.variants],
            "price_history": [e.to_dict() for e in self.price_history],
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """
    Sellable variant of a product (e.g. Size=M / Color=Red).

    Variants carry their own stock and prices. The low-stock threshold is the
    parent product's.
    """
    __tablename__ = "product_variants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # {"Size": "M", "Color": "Red"}
    options = db.Column(db.JSON, nullable=False, default=dict)
    sku = db.Column(db.String(64), nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    retail_price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="variants")
    price_history = db.relationship(
        "PriceHistoryEntry",
        primaryjoin="ProductVariant.id == foreign(PriceHistoryEntry.variant_id)",
        order_by="PriceHistoryEntry.id",
        viewonly=True,
        lazy=True,
    )

    @property
    def label(self) -> str:
        return " / ".join(str(v) for v in (self.options or {}).values())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "options": dict(self.options or {}),
            "sku": self.sku,
            "stock": self.stock,
            "retail_price_cents": self.retail_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "price_history": [e.to_dict() for e in self.price_history],
        }


class PriceHistoryEntry(db.Model):
    """
    Append-only price change log for products (variant_id NULL) and variants.

    Entries are only ever inserted by products_service.update_product; they
    are removed only together with their product or variant.
    """
    __tablename__ = "price_history_entries"
    __table_args__ = (
        db.Index("ix_price_history_product_variant", "product_id", "variant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False)
    variant_id = db.Column(db.Integer, nullable=True)

    price_type = db.Column(db.String(16), nullable=False)  # RETAIL, COST
    old_value = db.Column(db.Integer, nullable=True)
    new_value = db.Column(db.Integer, nullable=True)

    actor_id = db.Column(db.Integer, nullable=True)
    actor_name = db.Column(db.String(128), nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "price_type": self.price_type,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "changed_at": to_utc_z(self.changed_at),
        }


class StockAdjustment(db.Model):
    """
    Stock ledger entry: one signed quantity delta with its reason.

    APPEND-ONLY:
    - Rows are never updated (ORM guard below raises ImmutableRecordError).
    - Rows are deleted only as referential cleanup when the owning product,
      variant or transaction (sale, return) is deleted or pruned.

    SOURCE REFERENCE:
    - source_type/source_id identify the transaction that produced the row
      (SALE, PURCHASE_ORDER). Manual adjustments leave both NULL.
    - Older rows carry only the reason text; sales_service still matches
      those by reason string when cleaning up.

    product_id/variant_id carry no FK: rows from a prior life of a restored
    product id are purged explicitly by the deletion service.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        db.Index("ix_stock_adj_org_product_occurred", "org_id", "product_id", "occurred_at"),
        db.Index("ix_stock_adj_source", "org_id", "source_type", "source_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    variant_id = db.Column(db.Integer, nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    source_type = db.Column(db.String(32), nullable=True)
    source_id = db.Column(db.Integer, nullable=True)

    actor_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


def _refuse_ledger_update(mapper, connection, target):
    raise ImmutableRecordError(
        f"StockAdjustment {target.id} is append-only and cannot be modified"
    )


def install_ledger_immutability() -> None:
    """Register the before_update guard on StockAdjustment (idempotent)."""
    if not event.contains(StockAdjustment, "before_update", _refuse_ledger_update):
        event.listen(StockAdjustment, "before_update", _refuse_ledger_update)
