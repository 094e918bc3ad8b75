from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z

class PurchaseOrder(db.Model):
    """
    Purchase order sent to a supplier.

    LIFECYCLE (derived from lines, monotonic):
    - PENDING: nothing received yet (only state in which the PO may be deleted)
    - PARTIAL: at least one unit received, not every line complete
    - RECEIVED: every line has quantity_received >= quantity_ordered
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "document_number", name="uq_purchase_orders_org_docnum"),
        db.Index("ix_purchase_orders_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    # Human-readable document number (e.g., "PO-000042")
    document_number = db.Column(db.String(64), nullable=False)

    supplier_name = db.Column(db.String(255), nullable=False)
    supplier_ref = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    expected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    lines = db.relationship(
        "PurchaseOrderLine",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "document_number": self.document_number,
            "supplier_name": self.supplier_name,
            "supplier_ref": self.supplier_ref,
            "status": self.status,
            "total_cost_cents": self.total_cost_cents,
            "notes": self.notes,
            "expected_at": to_utc_z(self.expected_at) if self.expected_at else None,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "lines": [line.to_dict() for line in self.lines],
        }

class PurchaseOrderLine(db.Model):
    """Ordered vs. received quantities for one product/variant."""
    __tablename__ = "purchase_order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, nullable=False, index=True)
    variant_id = db.Column(db.Integer, nullable=True)

    quantity_ordered = db.Column(db.Integer, nullable=False)
    quantity_received = db.Column(db.Integer, nullable=False, default=0)

    # Cost snapshot at order time
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    purchase_order = db.relationship("PurchaseOrder", back_populates="lines")

    @property
    def quantity_remaining(self) -> int:
        return max(self.quantity_ordered - self.quantity_received, 0)

    @property
    def is_fully_received(self) -> bool:
        return self.quantity_received >= self.quantity_ordered

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity_ordered": self.quantity_ordered,
            "quantity_received": self.quantity_received,
            "quantity_remaining": self.quantity_remaining,
            "cost_price_cents": self.cost_price_cents,
        }
