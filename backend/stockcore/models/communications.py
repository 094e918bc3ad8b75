from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z

class Notification(db.Model):
    """
    Operator notification raised at a defined transition point.

    CATEGORIES:
    - STOCK: product/variant crossed its low-stock threshold or hit zero
    - PO: purchase order created or changed status
    - SHIFT: shift opened or closed

    related_type/related_id point at the entity the message is about
    ("product", "variant", "purchase_order", "shift"). Integrity cleanup
    deletes notifications by that reference.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_related", "org_id", "related_type", "related_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    category = db.Column(db.String(16), nullable=False, index=True)
    message = db.Column(db.String(500), nullable=False)

    related_type = db.Column(db.String(32), nullable=True)
    related_id = db.Column(db.Integer, nullable=True)

    is_read = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "category": self.category,
            "message": self.message,
            "related_type": self.related_type,
            "related_id": self.related_id,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }
