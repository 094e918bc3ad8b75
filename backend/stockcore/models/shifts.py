from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z

class Shift(db.Model):
    """
    Cash-drawer shift.

    WHY: Cashier accountability. Each shift has an opening float, running cash
    accumulators fed by completed sales, and a closing count with variance.

    LIFECYCLE:
    - OPEN: Shift is active; cash payments on sales accumulate here
    - CLOSED: Cash counted, difference recorded

    SINGLETON: At most one OPEN shift per organization. The service checks
    first; the partial unique index backs it up at the database level.

    IMMUTABLE: Once closed, a shift is never reopened or modified.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index(
            "uq_shifts_one_open_per_org",
            "org_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CLOSED

    opened_by_id = db.Column(db.Integer, nullable=True)
    opened_by_name = db.Column(db.String(128), nullable=True)
    start_time = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    # Cash tracking (all amounts in cents)
    start_float_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_refunds_cents = db.Column(db.Integer, nullable=False, default=0)

    # Set when closing
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)  # float + cash sales - cash refunds
    actual_cash_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)  # actual - expected
    notes = db.Column(db.Text, nullable=True)
    closed_by_id = db.Column(db.Integer, nullable=True)
    closed_by_name = db.Column(db.String(128), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def running_expected_cash_cents(self) -> int:
        return self.start_float_cents + self.cash_sales_cents - self.cash_refunds_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "status": self.status,
            "opened_by_id": self.opened_by_id,
            "opened_by_name": self.opened_by_name,
            "start_time": to_utc_z(self.start_time),
            "start_float_cents": self.start_float_cents,
            "cash_sales_cents": self.cash_sales_cents,
            "cash_refunds_cents": self.cash_refunds_cents,
            "end_time": to_utc_z(self.end_time) if self.end_time else None,
            "expected_cash_cents": self.expected_cash_cents,
            "actual_cash_cents": self.actual_cash_cents,
            "difference_cents": self.difference_cents,
            "notes": self.notes,
            "closed_by_id": self.closed_by_id,
            "closed_by_name": self.closed_by_name,
            "version_id": self.version_id,
        }
