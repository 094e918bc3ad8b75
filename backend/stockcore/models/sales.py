from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z

class Sale(db.Model):
    """
    Finalized POS transaction (sale or return).

    TYPE:
    - SALE: net total >= 0 (may still contain negative return lines in an exchange)
    - RETURN: net total < 0

    STATUS (derived, monotonic):
    - COMPLETED -> PARTIALLY_REFUNDED -> REFUNDED
    - Only later transactions move it, by returning lines against it.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("org_id", "document_number", name="uq_sales_org_docnum"),
        db.Index("ix_sales_org_type_created", "org_id", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    # Human-readable document number (e.g., "TRX-000123", "RET-000007")
    document_number = db.Column(db.String(64), nullable=False)

    type = db.Column(db.String(16), nullable=False, default="SALE", index=True)
    status = db.Column(db.String(24), nullable=False, default="COMPLETED", index=True)

    # Header-level link for returns processed against one original sale
    original_sale_id = db.Column(db.Integer, nullable=True, index=True)

    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    cogs_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_id = db.Column(db.Integer, nullable=True)
    created_by_name = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleLine.id",
        lazy=True,
    )
    payments = db.relationship(
        "Payment",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="Payment.id",
        lazy=True,
    )

    @property
    def profit_cents(self) -> int:
        return self.total_cents - self.cogs_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "document_number": self.document_number,
            "type": self.type,
            "status": self.status,
            "original_sale_id": self.original_sale_id,
            "shift_id": self.shift_id,
            "total_cents": self.total_cents,
            "cogs_cents": self.cogs_cents,
            "profit_cents": self.profit_cents,
            "created_by_id": self.created_by_id,
            "created_by_name": self.created_by_name,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
            "payments": [p.to_dict() for p in self.payments],
        }

class SaleLine(db.Model):
    """
    Line item snapshot.

    product_id/variant_id are plain references (no FK): the product may be
    deleted later while the sale history keeps its name/sku/price snapshot,
    which deletion_service.restore_deleted_products can rebuild from.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.Index("ix_sale_lines_original_sale", "original_sale_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, nullable=False, index=True)
    variant_id = db.Column(db.Integer, nullable=True)

    # Snapshot at time of sale
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    variant_options = db.Column(db.JSON, nullable=True)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)

    # Signed: negative quantities are items coming back
    quantity = db.Column(db.Integer, nullable=False)
    returned_quantity = db.Column(db.Integer, nullable=False, default=0)

    original_sale_id = db.Column(db.Integer, nullable=True)

    sale = db.relationship("Sale", back_populates="lines")

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "name": self.name,
            "sku": self.sku,
            "variant_options": self.variant_options,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "quantity": self.quantity,
            "returned_quantity": self.returned_quantity,
            "line_total_cents": self.line_total_cents,
            "original_sale_id": self.original_sale_id,
        }

class Payment(db.Model):
    """
    Tender applied to a sale. Amount is signed: refunds are negative.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    # CASH, CARD, OTHER
    type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
        }


class HeldOrder(db.Model):
    """
    Parked cart a cashier can recall later (HLD-000001).

    Holding never moves stock or cash: `lines` keeps the cart in the shape
    process_sale accepts, plus a name/sku snapshot for display. Recalling a
    held order means processing its lines and deleting the hold.
    """
    __tablename__ = "held_orders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "document_number", name="uq_held_orders_org_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    document_number = db.Column(db.String(64), nullable=False)

    # [{product_id, variant_id, quantity, unit_price_cents, original_sale_id, name, sku}]
    lines = db.Column(db.JSON, nullable=False, default=list)
    note = db.Column(db.String(255), nullable=True)

    created_by_id = db.Column(db.Integer, nullable=True)
    created_by_name = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    @property
    def cart(self) -> list[dict]:
        """Lines without the display snapshot, ready for process_sale."""
        return [
            {key: value for key, value in line.items() if key not in ("name", "sku")}
            for line in self.lines or []
        ]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "document_number": self.document_number,
            "lines": list(self.lines or []),
            "note": self.note,
            "created_by_id": self.created_by_id,
            "created_by_name": self.created_by_name,
            "created_at": to_utc_z(self.created_at),
        }
