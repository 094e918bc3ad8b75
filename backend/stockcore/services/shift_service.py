"""
Shift Cash Reconciliation

WHY: Cashier accountability. A shift starts with a counted float, accumulates
cash taken and refunded by completed sales, and is closed against the cash
actually counted in the drawer.

DESIGN PRINCIPLES:
- At most one OPEN shift per organization (service check + partial unique index)
- Opening while a shift is open is a no-op that returns the open shift
- Cash totals move only through sales_service (record_cash_payment)
- Shifts are immutable once closed
"""

from __future__ import annotations

from flask import current_app

from ..decorators import returns_result
from ..errors import NoActiveShift, OperationResult
from ..extensions import db
from ..models import Sale, Shift
from ..validation import require_int
from .concurrency import lock_for_update, run_with_retry
from .notification_service import CATEGORY_SHIFT, RELATED_SHIFT, notify
from .tenant_service import get_current_actor, get_current_org_id, get_scoped, scoped_query
from stockcore.time_utils import utcnow

STATUS_OPEN = "OPEN"
STATUS_CLOSED = "CLOSED"


def _format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}{abs(cents) / 100:.2f}"


def _find_open_shift(*, lock: bool = False) -> Shift | None:
    query = scoped_query(Shift).filter(Shift.status == STATUS_OPEN)
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_current_shift() -> Shift | None:
    """The tenant's open shift, if any."""
    return _find_open_shift()


def record_cash_payment(amount_cents: int) -> Shift | None:
    """
    Route a sale's net cash amount to the open shift (flushes, never commits).

    Positive amounts add to cash_sales, negative amounts add their absolute
    value to cash_refunds. Returns the shift touched, or None when no shift
    is open.
    """
    shift = _find_open_shift(lock=True)
    if shift is None:
        return None
    if amount_cents > 0:
        shift.cash_sales_cents += amount_cents
    elif amount_cents < 0:
        shift.cash_refunds_cents += abs(amount_cents)
    db.session.flush()
    return shift


@returns_result("open shift")
def open_shift(start_float_cents: int):
    require_int(start_float_cents, "start_float_cents", minimum=0)

    def _op():
        existing = _find_open_shift(lock=True)
        if existing is not None:
            return OperationResult.ok(existing, message="A shift is already open.")

        actor = get_current_actor()
        shift = Shift(
            org_id=get_current_org_id(),
            status=STATUS_OPEN,
            opened_by_id=actor.id,
            opened_by_name=actor.name,
            start_time=utcnow(),
            start_float_cents=start_float_cents,
            cash_sales_cents=0,
            cash_refunds_cents=0,
        )
        db.session.add(shift)
        db.session.flush()

        notify(
            f"Shift started by {actor.name or 'unknown'} with float {_format_cents(start_float_cents)}",
            CATEGORY_SHIFT,
            related_type=RELATED_SHIFT,
            related_id=shift.id,
        )
        db.session.commit()
        current_app.logger.info("Shift %s opened (float %s)", shift.id, start_float_cents)
        return OperationResult.ok(shift, message="Shift opened.")

    return run_with_retry(_op)


@returns_result("close shift")
def close_shift(actual_cash_cents: int, notes: str | None = None):
    """
    Close the open shift against the counted cash.

    expected = start_float + cash_sales - cash_refunds
    difference = actual - expected
    """
    require_int(actual_cash_cents, "actual_cash_cents", minimum=0)

    def _op():
        shift = _find_open_shift(lock=True)
        if shift is None:
            raise NoActiveShift("No active shift.")

        actor = get_current_actor()
        expected = shift.running_expected_cash_cents
        difference = actual_cash_cents - expected

        shift.status = STATUS_CLOSED
        shift.end_time = utcnow()
        shift.expected_cash_cents = expected
        shift.actual_cash_cents = actual_cash_cents
        shift.difference_cents = difference
        shift.notes = notes
        shift.closed_by_id = actor.id
        shift.closed_by_name = actor.name

        notify(
            f"Shift closed by {actor.name or 'unknown'}. Difference: {_format_cents(difference)}",
            CATEGORY_SHIFT,
            related_type=RELATED_SHIFT,
            related_id=shift.id,
        )
        db.session.commit()
        current_app.logger.info("Shift %s closed (difference %s)", shift.id, difference)
        return OperationResult.ok(shift, message="Shift closed.")

    return run_with_retry(_op)


def list_shifts(*, status: str | None = None) -> list[Shift]:
    q = scoped_query(Shift)
    if status:
        q = q.filter(Shift.status == status)
    return q.order_by(Shift.start_time.desc(), Shift.id.desc()).all()


def get_shift_summary(shift_id: int) -> dict:
    """
    Get shift summary.

    Returns:
        - Shift details
        - Sales/returns count recorded against the shift
        - Expected cash (final when closed, running while open)
        - Difference (None while open)
    """
    shift = get_scoped(Shift, shift_id, "Shift")
    sales = scoped_query(Sale).filter(Sale.shift_id == shift.id).all()

    return {
        "shift": shift.to_dict(),
        "sales_count": sum(1 for s in sales if s.type == "SALE"),
        "returns_count": sum(1 for s in sales if s.type == "RETURN"),
        "expected_cash_cents": (
            shift.expected_cash_cents
            if shift.status == STATUS_CLOSED
            else shift.running_expected_cash_cents
        ),
        "difference_cents": shift.difference_cents,
        "is_closed": shift.status == STATUS_CLOSED,
    }
