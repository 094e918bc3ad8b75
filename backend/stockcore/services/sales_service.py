"""
Sale/Return Processor

WHY: Turns a line-item cart into a finalized transaction in one unit of work:
stock moves, return lines are linked back to the sale they came from, and
cash is routed to the open shift.

LIFECYCLE (per sale, monotonic):
- COMPLETED -> PARTIALLY_REFUNDED -> REFUNDED
- Never regresses from REFUNDED.

CLASSIFICATION:
- SALE when the net total is >= 0 (an exchange with a positive balance stays
  a SALE even while carrying negative return lines)
- RETURN when the net total is < 0

LEDGER TAGGING:
- Rows written for a sale carry source_type="SALE", source_id=<sale id> and
  reason "Sale #<document number>".
- Rows written before structured references existed are matched by reason
  text: "Sale #<document number>", "Sale #<id>" and "Sale <document number>".

HELD ORDERS:
- A parked cart (HLD-000001) has no stock or cash effect until it is
  completed, at which point it is processed like any other cart.
"""

from __future__ import annotations

from collections import defaultdict

from flask import current_app
from sqlalchemy import and_, or_, select

from ..decorators import returns_result
from ..errors import OperationResult, PreconditionFailed, ValidationError
from ..extensions import db
from ..models import HeldOrder, Payment, Sale, SaleLine, StockAdjustment
from ..validation import require_int
from .concurrency import run_with_retry
from .document_service import DOC_HELD_ORDER, DOC_RETURN, DOC_SALE, next_document_number
from .inventory_service import (
    SOURCE_SALE,
    _adjust_stock_inner,
    current_level,
    display_name,
    load_product,
    load_variant,
)
from .shift_service import record_cash_payment
from .tenant_service import get_current_actor, get_current_org_id, get_scoped, scoped_query
from .unit_of_work import UnitOfWork
from stockcore.time_utils import days_ago

TYPE_SALE = "SALE"
TYPE_RETURN = "RETURN"

STATUS_COMPLETED = "COMPLETED"
STATUS_PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
STATUS_REFUNDED = "REFUNDED"
VALID_STATUSES = {STATUS_COMPLETED, STATUS_PARTIALLY_REFUNDED, STATUS_REFUNDED}

PAYMENT_CASH = "CASH"
PAYMENT_CARD = "CARD"
PAYMENT_OTHER = "OTHER"
VALID_PAYMENT_TYPES = {PAYMENT_CASH, PAYMENT_CARD, PAYMENT_OTHER}


def sale_reason(sale: Sale) -> str:
    return f"Sale #{sale.document_number}"


def _legacy_reasons(sale: Sale) -> list[str]:
    return [
        f"Sale #{sale.document_number}",
        f"Sale #{sale.id}",
        f"Sale {sale.document_number}",
    ]


def ledger_criteria(sale: Sale):
    """Match every ledger row written for `sale`, structured or legacy."""
    return or_(
        and_(
            StockAdjustment.source_type == SOURCE_SALE,
            StockAdjustment.source_id == sale.id,
        ),
        and_(
            StockAdjustment.source_type.is_(None),
            StockAdjustment.reason.in_(_legacy_reasons(sale)),
        ),
    )


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _normalize_cart(cart) -> list[dict]:
    if not isinstance(cart, (list, tuple)) or not cart:
        raise ValidationError("Cart must contain at least one line")

    lines = []
    for raw in cart:
        if not isinstance(raw, dict):
            raise ValidationError("Cart lines must be mappings")
        if raw.get("product_id") is None:
            raise ValidationError("product_id is required")
        quantity = require_int(raw.get("quantity"), "quantity")
        if quantity == 0:
            raise ValidationError("quantity cannot be 0")
        unit_price = raw.get("unit_price_cents")
        if unit_price is not None:
            require_int(unit_price, "unit_price_cents", minimum=0)
        lines.append({
            "product_id": raw["product_id"],
            "variant_id": raw.get("variant_id"),
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "original_sale_id": raw.get("original_sale_id"),
        })
    return lines


def _normalize_payments(payments) -> list[dict]:
    if payments is not None and not isinstance(payments, (list, tuple)):
        raise ValidationError("Payments must be a list")
    cleaned = []
    for raw in payments or []:
        if not isinstance(raw, dict):
            raise ValidationError("Payments must be mappings")
        ptype = str(raw.get("type", "")).strip().upper()
        if ptype not in VALID_PAYMENT_TYPES:
            raise ValidationError(f"Invalid payment type: {raw.get('type')}")
        cleaned.append({"type": ptype, "amount_cents": require_int(raw.get("amount_cents"), "amount_cents")})
    return cleaned


# =============================================================================
# RETURN LINKAGE
# =============================================================================

def _apply_returns_to_original(original: Sale, returned: dict[tuple, int]) -> None:
    """
    Add returned quantities to the original sale's positive lines and
    recompute its status.

    `returned` maps (product_id, variant_id) -> units coming back. Units are
    filled line by line in line order; the last matching line takes any
    remainder (no clamp). Keys with no matching line are ignored, and the
    status is left alone when nothing matched.
    """
    applied = False
    for key, units in returned.items():
        matching = [
            line for line in original.lines
            if line.quantity > 0 and (line.product_id, line.variant_id) == key
        ]
        for index, line in enumerate(matching):
            if units <= 0:
                break
            is_last = index == len(matching) - 1
            take = units if is_last else min(units, max(line.quantity - line.returned_quantity, 0))
            line.returned_quantity += take
            units -= take
            applied = applied or take > 0

    if not applied or original.status == STATUS_REFUNDED:
        return

    positive_lines = [line for line in original.lines if line.quantity > 0]
    if positive_lines and all(line.returned_quantity >= line.quantity for line in positive_lines):
        original.status = STATUS_REFUNDED
    else:
        original.status = STATUS_PARTIALLY_REFUNDED


def _link_returns(sale: Sale) -> None:
    grouped: dict[int, dict[tuple, int]] = defaultdict(lambda: defaultdict(int))
    for line in sale.lines:
        if line.quantity < 0 and line.original_sale_id is not None:
            grouped[line.original_sale_id][(line.product_id, line.variant_id)] += abs(line.quantity)

    for original_id, returned in grouped.items():
        original = get_scoped(Sale, original_id, "Original sale", lock=True)
        if original.type != TYPE_SALE:
            raise ValidationError("Items can only be returned against a sale, not a return.")
        _apply_returns_to_original(original, returned)
        current_app.logger.info(
            "Sale %s now %s after %s", original.document_number, original.status, sale.document_number,
        )


# =============================================================================
# PROCESSING
# =============================================================================

def _record_sale(lines_in: list[dict], payments_in: list[dict], original_sale_id: int | None) -> Sale:
    """Write the sale, its stock moves, return linkage and shift cash. Flushes, never commits."""
    org_id = get_current_org_id()
    actor = get_current_actor()

    resolved = []
    for line in lines_in:
        product = load_product(line["product_id"], lock=True)
        variant = load_variant(product, line["variant_id"]) if line["variant_id"] is not None else None
        priced = variant if variant is not None else product
        unit_price = line["unit_price_cents"]
        if unit_price is None:
            unit_price = priced.retail_price_cents
        resolved.append((line, product, variant, unit_price, priced.cost_price_cents))

    total = sum(line["quantity"] * price for line, _, _, price, _ in resolved)
    cogs = sum(line["quantity"] * cost for line, _, _, _, cost in resolved)
    sale_type = TYPE_SALE if total >= 0 else TYPE_RETURN

    if original_sale_id is not None:
        header_target = get_scoped(Sale, original_sale_id, "Original sale")
        if header_target.type != TYPE_SALE:
            raise ValidationError("Items can only be returned against a sale, not a return.")

    header_original = None
    if sale_type == TYPE_RETURN:
        originals = {
            line["original_sale_id"] for line in lines_in
            if line["quantity"] < 0 and line["original_sale_id"] is not None
        }
        header_original = original_sale_id
        if header_original is None and len(originals) == 1:
            header_original = next(iter(originals))

    sale = Sale(
        org_id=org_id,
        document_number=next_document_number(
            org_id=org_id,
            document_type=DOC_SALE if sale_type == TYPE_SALE else DOC_RETURN,
        ),
        type=sale_type,
        status=STATUS_COMPLETED,
        original_sale_id=header_original,
        total_cents=total,
        cogs_cents=cogs,
        created_by_id=actor.id,
        created_by_name=actor.name,
    )
    for line, product, variant, unit_price, unit_cost in resolved:
        sale.lines.append(SaleLine(
            product_id=product.id,
            variant_id=variant.id if variant is not None else None,
            name=product.name,
            sku=(variant.sku if variant is not None and variant.sku else product.sku),
            variant_options=dict(variant.options) if variant is not None else None,
            unit_price_cents=unit_price,
            unit_cost_cents=unit_cost,
            quantity=line["quantity"],
            returned_quantity=0,
            original_sale_id=line["original_sale_id"],
        ))
    for payment in payments_in:
        sale.payments.append(Payment(type=payment["type"], amount_cents=payment["amount_cents"]))
    db.session.add(sale)
    db.session.flush()

    reason = sale_reason(sale)
    for line, product, variant, _, _ in resolved:
        _adjust_stock_inner(
            product,
            current_level(product, variant) - line["quantity"],
            reason,
            variant=variant,
            source_type=SOURCE_SALE,
            source_id=sale.id,
        )

    _link_returns(sale)

    cash = sum(p["amount_cents"] for p in payments_in if p["type"] == PAYMENT_CASH)
    shift = record_cash_payment(cash)
    if shift is not None:
        sale.shift_id = shift.id
    return sale


def _log_recorded(sale: Sale) -> None:
    current_app.logger.info(
        "Recorded %s %s (total %s, %s lines)", sale.type, sale.document_number, sale.total_cents, len(sale.lines),
    )


@returns_result("process sale")
def process_sale(cart, payments=None, *, original_sale_id: int | None = None):
    """
    Finalize a cart as a SALE or RETURN.

    Args:
        cart: list of {product_id, variant_id?, quantity, unit_price_cents?,
            original_sale_id?}. Negative quantities are items coming back.
        payments: list of {type: CASH|CARD|OTHER, amount_cents}; signed.
        original_sale_id: default original for negative lines that do not
            name one. Must be an existing SALE; it is recorded on the header
            only when the transaction nets out as a RETURN.

    Every step (stock moves, ledger rows, return linkage, shift cash) runs in
    one transaction. A line referencing a missing product or variant fails
    the whole sale.
    """
    lines_in = _normalize_cart(cart)
    payments_in = _normalize_payments(payments)
    if original_sale_id is not None:
        for line in lines_in:
            if line["quantity"] < 0 and line["original_sale_id"] is None:
                line["original_sale_id"] = original_sale_id

    def _op():
        sale = _record_sale(lines_in, payments_in, original_sale_id)
        db.session.commit()
        _log_recorded(sale)
        return OperationResult.ok(sale, message=f"{sale.type.title()} {sale.document_number} recorded.")

    return run_with_retry(_op)


# =============================================================================
# HELD ORDERS
# =============================================================================

@returns_result("hold order")
def hold_order(cart, *, note: str | None = None):
    """
    Park a cart under an HLD- number without touching stock or cash.

    Every product and variant must exist in the current tenant; names and
    SKUs are snapshotted so the hold still reads sensibly after edits.
    """
    lines_in = _normalize_cart(cart)
    if note is not None:
        note = str(note).strip()[:255] or None

    def _op():
        org_id = get_current_org_id()
        actor = get_current_actor()

        snapshot = []
        for line in lines_in:
            product = load_product(line["product_id"])
            variant = load_variant(product, line["variant_id"]) if line["variant_id"] is not None else None
            snapshot.append(dict(
                line,
                name=display_name(product, variant),
                sku=(variant.sku if variant is not None and variant.sku else product.sku),
            ))

        held = HeldOrder(
            org_id=org_id,
            document_number=next_document_number(org_id=org_id, document_type=DOC_HELD_ORDER),
            lines=snapshot,
            note=note,
            created_by_id=actor.id,
            created_by_name=actor.name,
        )
        db.session.add(held)
        db.session.commit()
        current_app.logger.info("Held order %s (%s lines)", held.document_number, len(snapshot))
        return OperationResult.ok(held, message=f"Order {held.document_number} held.")

    return run_with_retry(_op)


def get_held_order(held_order_id: int) -> HeldOrder:
    return get_scoped(HeldOrder, held_order_id, "Held order")


def list_held_orders() -> list[HeldOrder]:
    """Newest first."""
    return scoped_query(HeldOrder).order_by(HeldOrder.created_at.desc(), HeldOrder.id.desc()).all()


@returns_result("delete held order")
def delete_held_order(held_order_id: int):
    def _op():
        held = get_scoped(HeldOrder, held_order_id, "Held order")
        document_number = held.document_number
        UnitOfWork().delete(held).commit()
        return OperationResult.ok(None, message=f"Held order {document_number} deleted.")

    return run_with_retry(_op)


@returns_result("complete held order")
def complete_held_order(held_order_id: int, payments=None):
    """Process a held cart as a sale and drop the hold in the same transaction."""
    payments_in = _normalize_payments(payments)

    def _op():
        held = get_scoped(HeldOrder, held_order_id, "Held order", lock=True)
        document_number = held.document_number
        sale = _record_sale(_normalize_cart(held.cart), payments_in, None)
        UnitOfWork().delete(held).commit()
        _log_recorded(sale)
        return OperationResult.ok(
            sale,
            message=f"Held order {document_number} completed as {sale.document_number}.",
        )

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    return get_scoped(Sale, sale_id, "Sale")


def list_sales(*, type: str | None = None, status: str | None = None, limit: int = 200) -> list[Sale]:
    """Newest first."""
    q = scoped_query(Sale)
    if type:
        q = q.filter(Sale.type == type)
    if status:
        q = q.filter(Sale.status == status)
    return q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()


def returns_for(sale_ids: list[int]) -> list[Sale]:
    """RETURN transactions pointing at any of `sale_ids`, header- or line-level."""
    if not sale_ids:
        return []
    line_linked = select(SaleLine.sale_id).where(SaleLine.original_sale_id.in_(sale_ids))
    return (
        scoped_query(Sale)
        .filter(
            Sale.type == TYPE_RETURN,
            or_(Sale.original_sale_id.in_(sale_ids), Sale.id.in_(line_linked)),
        )
        .all()
    )


# =============================================================================
# DELETION
# =============================================================================

def _plan_sales_deletion(uow: UnitOfWork, sales: list[Sale]) -> tuple[int, int]:
    """
    Plan removal of `sales`, every RETURN referencing them and all of their
    ledger rows. Returns (sales planned, returns planned).
    """
    sale_ids = {s.id for s in sales}
    returns = [r for r in returns_for(list(sale_ids)) if r.id not in sale_ids]

    for sale in list(sales) + returns:
        uow.delete_where(StockAdjustment, ledger_criteria(sale))
        for line in sale.lines:
            uow.tombstone(SaleLine.__tablename__, line.id)
        for payment in sale.payments:
            uow.tombstone(Payment.__tablename__, payment.id)
        uow.delete(sale)

    return len(sales), len(returns)


@returns_result("delete sale")
def delete_sale(sale_id: int):
    """
    Delete a sale, every return referencing it, and all their ledger rows.

    Returns cannot be deleted on their own: delete the original sale.
    """
    def _op():
        sale = get_scoped(Sale, sale_id, "Sale")
        if sale.type == TYPE_RETURN:
            raise PreconditionFailed("Delete the original sale transaction, not the return.")

        uow = UnitOfWork()
        _, returns_count = _plan_sales_deletion(uow, [sale])
        document_number = sale.document_number
        removed = uow.commit()

        return OperationResult.ok(
            {"sales": 1, "returns": returns_count, "removed": dict(removed)},
            message=f"Sale {document_number} and associated returns deleted.",
        )

    return run_with_retry(_op)


def _validate_statuses(statuses) -> list[str] | None:
    if statuses is None:
        return None
    statuses = list(statuses)
    unknown = [s for s in statuses if s not in VALID_STATUSES]
    if unknown:
        raise ValidationError(f"Unknown sale status: {', '.join(unknown)}")
    return statuses


def _delete_matching_sales(query) -> OperationResult:
    sales = query.all()
    if not sales:
        return OperationResult.ok(
            {"sales": 0, "returns": 0},
            message="No sales records matched the criteria.",
        )

    uow = UnitOfWork()
    sales_count, returns_count = _plan_sales_deletion(uow, sales)
    uow.commit()
    return OperationResult.ok(
        {"sales": sales_count, "returns": returns_count},
        message=f"Removed {sales_count + returns_count} records.",
    )


@returns_result("clear sales")
def clear_sales(statuses=None):
    """
    Delete every SALE (optionally only those in `statuses`) with its returns
    and ledger rows. An empty `statuses` list deletes nothing.
    """
    statuses = _validate_statuses(statuses)

    def _op():
        q = scoped_query(Sale).filter(Sale.type == TYPE_SALE)
        if statuses is not None:
            q = q.filter(Sale.status.in_(statuses))
        return _delete_matching_sales(q)

    return run_with_retry(_op)


@returns_result("prune sales")
def prune_sales(days: int, statuses=None):
    """Like clear_sales, restricted to sales created more than `days` ago."""
    require_int(days, "days", minimum=0)
    statuses = _validate_statuses(statuses)

    def _op():
        q = scoped_query(Sale).filter(Sale.type == TYPE_SALE, Sale.created_at < days_ago(days))
        if statuses:
            q = q.filter(Sale.status.in_(statuses))
        return _delete_matching_sales(q)

    return run_with_retry(_op)
