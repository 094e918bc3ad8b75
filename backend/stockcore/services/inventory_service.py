# Overview: Stock ledger operations; the only code path that moves stock.

"""
stockcore Stock Invariants (authoritative)

Stock model:
- Product.stock / ProductVariant.stock hold the current on-hand quantity.
- Every change goes through _adjust_stock_inner, which appends one
  StockAdjustment (signed delta) in the same transaction as the stock write.
- A zero delta is a no-op: no ledger row, no write, no notification.

Variant invariant:
- When a product has variants, product.stock == SUM(variant.stock), recomputed
  on every adjustment. The product's own stock cannot be adjusted directly
  while variants exist.

Notifications (edge-triggered only):
- Out of stock: old > 0 and new <= 0
- Low stock: otherwise, old > threshold and new <= threshold
  (threshold is the product's low_stock_threshold, also for variants)

Composition:
- _adjust_stock_inner never commits; sales and purchase orders call it inside
  their own unit of work. adjust_stock/receive_stock are the standalone entry
  points and commit once.
"""

from __future__ import annotations

from flask import current_app

from ..decorators import returns_result
from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Product, ProductVariant, StockAdjustment
from ..validation import require_int
from .concurrency import run_with_retry
from .notification_service import (
    CATEGORY_STOCK,
    RELATED_PRODUCT,
    RELATED_VARIANT,
    notify,
)
from .tenant_service import get_current_actor, get_scoped, scoped_query

REASON_STOCK_RECEIVED = "Stock Received"

SOURCE_SALE = "SALE"
SOURCE_PURCHASE_ORDER = "PURCHASE_ORDER"


def load_product(product_id: int, *, lock: bool = False) -> Product:
    return get_scoped(Product, product_id, "Product", lock=lock)


def load_variant(product: Product, variant_id: int) -> ProductVariant:
    for variant in product.variants:
        if variant.id == variant_id:
            return variant
    raise NotFound("Variant not found.")


def display_name(product: Product, variant: ProductVariant | None = None) -> str:
    if variant is None:
        return product.name
    return f"{product.name} ({variant.label})"


def current_level(product: Product, variant: ProductVariant | None = None) -> int:
    return variant.stock if variant is not None else product.stock


def _notify_on_edge(product: Product, variant: ProductVariant | None, old_level: int, new_level: int) -> None:
    name = display_name(product, variant)
    threshold = product.low_stock_threshold or 0

    if variant is not None:
        related_type, related_id = RELATED_VARIANT, variant.id
    else:
        related_type, related_id = RELATED_PRODUCT, product.id

    if old_level > 0 and new_level <= 0:
        message = f"Out of Stock: {name}"
    elif old_level > threshold and new_level <= threshold:
        message = f"Low Stock Warning: {name} ({new_level} left)"
    else:
        return

    notify(message, CATEGORY_STOCK, related_type=related_type, related_id=related_id)


def _adjust_stock_inner(
    product: Product,
    new_level: int,
    reason: str,
    *,
    variant: ProductVariant | None = None,
    source_type: str | None = None,
    source_id: int | None = None,
) -> StockAdjustment | None:
    """Core adjust logic without locking, retry or commit.

    Returns the ledger entry, or None when the level did not change.
    """
    if variant is None and product.has_variants:
        raise ValidationError("Product has variants; adjust a specific variant.")

    old_level = current_level(product, variant)
    delta = new_level - old_level
    if delta == 0:
        return None

    if variant is not None:
        variant.stock = new_level
        product.stock = product.total_stock()
    else:
        product.stock = new_level

    entry = StockAdjustment(
        org_id=product.org_id,
        product_id=product.id,
        variant_id=variant.id if variant is not None else None,
        quantity=delta,
        reason=reason,
        source_type=source_type,
        source_id=source_id,
        actor_id=get_current_actor().id,
    )
    db.session.add(entry)
    db.session.flush()

    _notify_on_edge(product, variant, old_level, new_level)

    current_app.logger.debug(
        "Stock %s -> %s for product %s variant %s (%s)",
        old_level, new_level, product.id, entry.variant_id, reason,
    )
    return entry


@returns_result("adjust stock")
def adjust_stock(product_id: int, new_level: int, reason: str, variant_id: int | None = None):
    """
    Set a product's (or variant's) stock to `new_level`, recording the delta.

    Returns OperationResult with the StockAdjustment as data (None when the
    level was already `new_level`).
    """
    require_int(new_level, "new_level")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")

    def _op():
        product = load_product(product_id, lock=True)
        variant = load_variant(product, variant_id) if variant_id is not None else None
        entry = _adjust_stock_inner(product, new_level, reason, variant=variant)
        db.session.commit()
        return entry

    return run_with_retry(_op)


@returns_result("receive stock")
def receive_stock(product_id: int, quantity: int, variant_id: int | None = None):
    """adjust_stock(current + quantity, "Stock Received")."""
    require_int(quantity, "quantity", minimum=0)

    def _op():
        product = load_product(product_id, lock=True)
        variant = load_variant(product, variant_id) if variant_id is not None else None
        entry = _adjust_stock_inner(
            product,
            current_level(product, variant) + quantity,
            REASON_STOCK_RECEIVED,
            variant=variant,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def get_stock_level(product_id: int, variant_id: int | None = None) -> int:
    product = load_product(product_id)
    variant = load_variant(product, variant_id) if variant_id is not None else None
    return current_level(product, variant)


def list_stock_adjustments(
    *,
    product_id: int | None = None,
    variant_id: int | None = None,
    limit: int = 200,
) -> list[StockAdjustment]:
    """Ledger rows for the current tenant, newest first."""
    q = scoped_query(StockAdjustment)
    if product_id is not None:
        q = q.filter(StockAdjustment.product_id == product_id)
    if variant_id is not None:
        q = q.filter(StockAdjustment.variant_id == variant_id)

    return q.order_by(
        StockAdjustment.occurred_at.desc(),
        StockAdjustment.id.desc(),
    ).limit(limit).all()
