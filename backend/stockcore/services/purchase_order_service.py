"""
Purchase Order Lifecycle

WHY: Tracks what was ordered from a supplier against what actually arrived,
and moves received units into stock through the ledger.

LIFECYCLE (derived from lines, monotonic):
- PENDING: nothing received
- PARTIAL: some units received, not every line complete
- RECEIVED: every line has quantity_received >= quantity_ordered

RULES:
- quantity_received never decreases
- Receiving does not clamp to the remaining quantity; callers pre-validate
- A notification is emitted on creation and on every status change only
- Only PENDING orders can be deleted
"""

from __future__ import annotations

from flask import current_app

from ..decorators import returns_result
from ..errors import OperationResult, PreconditionFailed, ValidationError
from ..extensions import db
from ..models import Notification, PurchaseOrder, PurchaseOrderLine
from ..validation import enforce_rules_prices, require_int
from .concurrency import run_with_retry
from .document_service import DOC_PURCHASE_ORDER, next_document_number
from .inventory_service import (
    SOURCE_PURCHASE_ORDER,
    _adjust_stock_inner,
    current_level,
    load_product,
    load_variant,
)
from .notification_service import CATEGORY_PO, RELATED_PURCHASE_ORDER, notify
from .tenant_service import get_current_actor, get_current_org_id, get_scoped, scoped_query
from .unit_of_work import UnitOfWork
from stockcore.time_utils import days_ago, normalize_datetime

STATUS_PENDING = "PENDING"
STATUS_PARTIAL = "PARTIAL"
STATUS_RECEIVED = "RECEIVED"

# Statuses only move forward
_STATUS_RANK = {STATUS_PENDING: 0, STATUS_PARTIAL: 1, STATUS_RECEIVED: 2}


def _status_label(status: str) -> str:
    return status.title()


def derive_status(po: PurchaseOrder) -> str:
    """Status implied by the lines alone."""
    if po.lines and all(line.is_fully_received for line in po.lines):
        return STATUS_RECEIVED
    if any(line.quantity_received > 0 for line in po.lines):
        return STATUS_PARTIAL
    return STATUS_PENDING


def _advance_status(po: PurchaseOrder) -> bool:
    """Recompute status without ever moving it backwards. Returns True if it changed."""
    derived = derive_status(po)
    if _STATUS_RANK[derived] <= _STATUS_RANK[po.status]:
        return False
    po.status = derived
    return True


def _find_line(po: PurchaseOrder, product_id: int, variant_id: int | None) -> PurchaseOrderLine:
    matching = [
        line for line in po.lines
        if line.product_id == product_id and line.variant_id == variant_id
    ]
    if not matching:
        raise ValidationError(f"Product {product_id} is not on PO #{po.document_number}.")
    for line in matching:
        if line.quantity_remaining > 0:
            return line
    return matching[-1]


@returns_result("add purchase order")
def add_purchase_order(
    supplier_name: str,
    lines: list[dict],
    *,
    supplier_ref: str | None = None,
    expected_at=None,
    notes: str | None = None,
):
    """
    Create a PENDING purchase order.

    lines: [{product_id, variant_id?, quantity_ordered, cost_price_cents?}]
    cost_price_cents defaults to the product's (or variant's) current cost.
    """
    supplier_name = (supplier_name or "").strip()
    if not supplier_name:
        raise ValidationError("supplier_name is required")
    if not isinstance(lines, (list, tuple)) or not lines:
        raise ValidationError("A purchase order needs at least one line")
    for raw in lines:
        if not isinstance(raw, dict):
            raise ValidationError("Purchase order lines must be mappings")
        if raw.get("product_id") is None:
            raise ValidationError("product_id is required")
        require_int(raw.get("quantity_ordered"), "quantity_ordered", minimum=1)
        if raw.get("cost_price_cents") is not None:
            require_int(raw["cost_price_cents"], "cost_price_cents")
            enforce_rules_prices({"cost_price_cents": raw["cost_price_cents"]})
    try:
        expected_dt = normalize_datetime(expected_at)
    except ValueError:
        raise ValidationError("expected_at must be an ISO-8601 datetime")

    def _op():
        org_id = get_current_org_id()

        po = PurchaseOrder(
            org_id=org_id,
            document_number=next_document_number(org_id=org_id, document_type=DOC_PURCHASE_ORDER),
            supplier_name=supplier_name,
            supplier_ref=supplier_ref,
            status=STATUS_PENDING,
            notes=notes,
            expected_at=expected_dt,
            created_by_id=get_current_actor().id,
        )
        for raw in lines:
            product = load_product(raw["product_id"])
            variant_id = raw.get("variant_id")
            variant = load_variant(product, variant_id) if variant_id is not None else None
            cost = raw.get("cost_price_cents")
            if cost is None:
                cost = (variant or product).cost_price_cents
            po.lines.append(PurchaseOrderLine(
                product_id=product.id,
                variant_id=variant_id,
                quantity_ordered=raw["quantity_ordered"],
                quantity_received=0,
                cost_price_cents=cost,
            ))
        po.total_cost_cents = sum(line.quantity_ordered * line.cost_price_cents for line in po.lines)
        db.session.add(po)
        db.session.flush()

        notify(
            f"New PO #{po.document_number} created for {po.supplier_name}.",
            CATEGORY_PO,
            related_type=RELATED_PURCHASE_ORDER,
            related_id=po.id,
        )
        db.session.commit()
        current_app.logger.info("Created PO %s for %s", po.document_number, po.supplier_name)
        return po

    return run_with_retry(_op)


@returns_result("receive purchase order items")
def receive_po_items(po_id: int, items: list[dict]):
    """
    Receive units against a purchase order.

    items: [{product_id, variant_id?, quantity}]. Zero quantities are skipped;
    negative quantities and entries matching no line are rejected.
    """
    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a list")
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Received items must be mappings")
        if raw.get("product_id") is None:
            raise ValidationError("product_id is required")
        require_int(raw.get("quantity"), "quantity", minimum=0)

    def _op():
        po = get_scoped(PurchaseOrder, po_id, "Purchase order", lock=True)
        reason = f"Received from PO #{po.document_number}"

        for raw in items:
            quantity = raw["quantity"]
            if quantity == 0:
                continue
            variant_id = raw.get("variant_id")
            line = _find_line(po, raw.get("product_id"), variant_id)

            product = load_product(line.product_id, lock=True)
            variant = load_variant(product, variant_id) if variant_id is not None else None
            _adjust_stock_inner(
                product,
                current_level(product, variant) + quantity,
                reason,
                variant=variant,
                source_type=SOURCE_PURCHASE_ORDER,
                source_id=po.id,
            )
            line.quantity_received += quantity

        changed = _advance_status(po)
        if changed:
            notify(
                f"PO #{po.document_number} is now {_status_label(po.status)}.",
                CATEGORY_PO,
                related_type=RELATED_PURCHASE_ORDER,
                related_id=po.id,
            )
            current_app.logger.info("PO %s is now %s", po.document_number, po.status)

        db.session.commit()
        return po

    return run_with_retry(_op)


def _plan_po_deletion(uow: UnitOfWork, po: PurchaseOrder) -> None:
    uow.delete_where(
        Notification,
        Notification.related_type == RELATED_PURCHASE_ORDER,
        Notification.related_id == po.id,
    )
    for line in po.lines:
        uow.tombstone(PurchaseOrderLine.__tablename__, line.id)
    uow.delete(po)


@returns_result("delete purchase order")
def delete_purchase_order(po_id: int):
    def _op():
        po = get_scoped(PurchaseOrder, po_id, "Purchase order")
        if po.status != STATUS_PENDING:
            raise PreconditionFailed("Only purchase orders with Pending status can be deleted.")

        uow = UnitOfWork()
        _plan_po_deletion(uow, po)
        uow.commit()
        return OperationResult.ok(message="Purchase order deleted.")

    return run_with_retry(_op)


def get_purchase_order(po_id: int) -> PurchaseOrder:
    return get_scoped(PurchaseOrder, po_id, "Purchase order")


def list_purchase_orders(*, status: str | None = None) -> list[PurchaseOrder]:
    """Newest first."""
    q = scoped_query(PurchaseOrder)
    if status:
        q = q.filter(PurchaseOrder.status == status)
    return q.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).all()


@returns_result("prune purchase orders")
def prune_purchase_orders(days: int):
    """Delete purchase orders (any status) created more than `days` ago."""
    require_int(days, "days", minimum=0)

    def _op():
        orders = scoped_query(PurchaseOrder).filter(PurchaseOrder.created_at < days_ago(days)).all()
        if not orders:
            return OperationResult.ok(0, message="Pruned 0 purchase orders.")

        uow = UnitOfWork()
        for po in orders:
            _plan_po_deletion(uow, po)
        uow.commit()
        return OperationResult.ok(len(orders), message=f"Pruned {len(orders)} purchase orders.")

    return run_with_retry(_op)
