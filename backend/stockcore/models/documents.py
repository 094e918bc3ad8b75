from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z

class DeletionRecord(db.Model):
    """
    Tombstone for a hard-deleted row, consumed by downstream synchronization.

    APPEND-ONLY: one row per deleted entity row. A tombstone is removed only
    when the entity it describes is restored under the same id.
    """
    __tablename__ = "deletion_records"
    __table_args__ = (
        db.Index("ix_deletion_records_table_record", "org_id", "table_name", "record_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    # Table name of the deleted row (e.g. "products", "stock_adjustments")
    table_name = db.Column(db.String(64), nullable=False)
    record_id = db.Column(db.Integer, nullable=False)

    deleted_by_id = db.Column(db.Integer, nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "deleted_by_id": self.deleted_by_id,
            "deleted_at": to_utc_z(self.deleted_at),
        }
