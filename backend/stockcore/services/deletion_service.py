"""
Deletion & Integrity Guard

WHY: Destructive operations must check preconditions against current stock
and then remove everything that hangs off the deleted entity (ledger rows,
price history, notifications, variants) in one transaction, leaving a
tombstone per removed row for downstream synchronization.

RULES:
- delete_product without force: rejected while the product has variants or
  any stock
- delete_variant without force: rejected while the variant has stock
- bulk_delete_products: products with stock > 0 are skipped, never forced
- Sales history is NOT checked here; callers forbid deleting products that
  appear on sale lines

RESTORE:
- restore_deleted_products rebuilds products from sale line snapshots,
  reusing the original id when free and purging anything a prior life of that
  id left behind (ledger rows, notifications, price history, tombstone)
"""

from __future__ import annotations

from collections import OrderedDict

from flask import current_app
from sqlalchemy import and_, or_

from ..decorators import returns_result
from ..errors import OperationResult, PreconditionFailed, ValidationError
from ..extensions import db
from ..models import (
    DeletionRecord,
    Notification,
    PriceHistoryEntry,
    Product,
    ProductVariant,
    StockAdjustment,
)
from .concurrency import run_with_retry
from .inventory_service import load_product, load_variant
from .notification_service import RELATED_PRODUCT, RELATED_VARIANT
from .products_service import ensure_category
from .tenant_service import get_current_org_id, scoped_query
from .unit_of_work import UnitOfWork


def _notification_criteria(product_id: int, variant_ids: list[int]):
    clauses = [and_(
        Notification.related_type == RELATED_PRODUCT,
        Notification.related_id == product_id,
    )]
    if variant_ids:
        clauses.append(and_(
            Notification.related_type == RELATED_VARIANT,
            Notification.related_id.in_(variant_ids),
        ))
    return or_(*clauses)


def _plan_product_deletion(uow: UnitOfWork, product: Product) -> None:
    variant_ids = [v.id for v in product.variants]

    uow.delete_where(StockAdjustment, StockAdjustment.product_id == product.id)
    uow.delete_where(PriceHistoryEntry, PriceHistoryEntry.product_id == product.id)
    uow.delete_where(Notification, _notification_criteria(product.id, variant_ids))
    for variant in product.variants:
        uow.delete(variant)
    uow.delete(product)


@returns_result("delete product")
def delete_product(product_id: int, force: bool = False):
    """
    Delete a product with its variants, ledger rows, price history and
    notifications. All-or-nothing.
    """
    def _op():
        product = load_product(product_id, lock=True)

        if not force:
            if product.has_variants:
                raise PreconditionFailed(
                    "Cannot delete product because it has variants. "
                    "Delete variants first or use force delete."
                )
            if product.total_stock() > 0:
                raise PreconditionFailed("Cannot delete product with active stock.")

        uow = UnitOfWork()
        _plan_product_deletion(uow, product)
        removed = uow.commit()

        current_app.logger.info("Deleted product %s (force=%s): %s", product_id, force, dict(removed))
        return OperationResult.ok(
            dict(removed),
            message="Product and related records deleted successfully.",
        )

    return run_with_retry(_op)


@returns_result("delete variant")
def delete_variant(product_id: int, variant_id: int, force: bool = False):
    """Delete one variant and its records; the parent's stock is recomputed."""
    def _op():
        product = load_product(product_id, lock=True)
        variant = load_variant(product, variant_id)

        if not force and variant.stock > 0:
            raise PreconditionFailed("Cannot delete variant with active stock.")

        remaining = [v for v in product.variants if v is not variant]
        product.stock = sum(v.stock for v in remaining)

        uow = UnitOfWork()
        uow.delete_where(StockAdjustment, StockAdjustment.variant_id == variant.id)
        uow.delete_where(PriceHistoryEntry, PriceHistoryEntry.variant_id == variant.id)
        uow.delete_where(
            Notification,
            Notification.related_type == RELATED_VARIANT,
            Notification.related_id == variant.id,
        )
        uow.delete(variant)
        removed = uow.commit()

        return OperationResult.ok(
            dict(removed),
            message="Variant and related records deleted successfully.",
        )

    return run_with_retry(_op)


@returns_result("bulk delete products")
def bulk_delete_products(product_ids: list[int]):
    """
    Delete every product in `product_ids` that has no stock; skip the rest.

    Ids that are unknown to the current tenant are ignored.
    """
    ids = list(dict.fromkeys(product_ids or []))

    def _op():
        products = scoped_query(Product).filter(Product.id.in_(ids)).all() if ids else []
        deletable = [p for p in products if p.total_stock() <= 0]
        skipped = len(products) - len(deletable)

        if deletable:
            uow = UnitOfWork()
            for product in deletable:
                _plan_product_deletion(uow, product)
            uow.commit()

        message = f"Deleted {len(deletable)} products."
        if skipped:
            message += f" {skipped} skipped (active stock)."
        return OperationResult.ok({"deleted": len(deletable), "skipped": skipped}, message=message)

    return run_with_retry(_op)


# =============================================================================
# RESTORE
# =============================================================================

def _snapshot(item) -> dict:
    if hasattr(item, "to_dict"):
        item = item.to_dict()
    if not isinstance(item, dict) or item.get("product_id") is None:
        raise ValidationError("Each item needs a product_id")
    return item


def _plan_orphan_purge(uow: UnitOfWork, *, product_id: int | None = None, variant_id: int | None = None) -> None:
    """Purge rows a previous life of a reused id left behind."""
    if product_id is not None:
        uow.delete_where(StockAdjustment, StockAdjustment.product_id == product_id, tombstone=False)
        uow.delete_where(PriceHistoryEntry, PriceHistoryEntry.product_id == product_id, tombstone=False)
        uow.delete_where(Notification, _notification_criteria(product_id, []), tombstone=False)
        uow.delete_where(
            DeletionRecord,
            DeletionRecord.table_name == Product.__tablename__,
            DeletionRecord.record_id == product_id,
            tombstone=False,
        )
    if variant_id is not None:
        uow.delete_where(StockAdjustment, StockAdjustment.variant_id == variant_id, tombstone=False)
        uow.delete_where(PriceHistoryEntry, PriceHistoryEntry.variant_id == variant_id, tombstone=False)
        uow.delete_where(
            Notification,
            Notification.related_type == RELATED_VARIANT,
            Notification.related_id == variant_id,
            tombstone=False,
        )
        uow.delete_where(
            DeletionRecord,
            DeletionRecord.table_name == ProductVariant.__tablename__,
            DeletionRecord.record_id == variant_id,
            tombstone=False,
        )


def _restore_variant(uow: UnitOfWork, product: Product, item: dict) -> bool:
    variant_id = item["variant_id"]
    options = item.get("variant_options") or {"Option": f"Restored {variant_id}"}
    if any(v.id == variant_id or v.options == options for v in product.variants):
        return False

    variant = ProductVariant(
        options=dict(options),
        stock=0,
        retail_price_cents=item.get("unit_price_cents") or 0,
        cost_price_cents=item.get("unit_cost_cents") or 0,
    )
    if db.session.get(ProductVariant, variant_id) is None:
        variant.id = variant_id
        _plan_orphan_purge(uow, variant_id=variant_id)
    product.variants.append(variant)
    return True


@returns_result("restore deleted products")
def restore_deleted_products(cart_items):
    """
    Recreate products (and variants) referenced by historical sale lines.

    cart_items: sale line snapshots (SaleLine instances or their to_dict()
    output) with product_id, variant_id, name, sku, variant_options,
    unit_price_cents and unit_cost_cents.

    Restored products start at stock 0 under the configured "Restored"
    category; stock is added separately through the ledger.
    """
    items = [_snapshot(item) for item in cart_items or []]
    if not items:
        raise ValidationError("Nothing to restore")

    grouped: "OrderedDict[int, list[dict]]" = OrderedDict()
    for item in items:
        grouped.setdefault(item["product_id"], []).append(item)

    def _op():
        org_id = get_current_org_id()
        category = ensure_category(current_app.config.get("RESTORED_CATEGORY_NAME", "Restored"))
        uow = UnitOfWork()
        products_restored = variants_restored = skipped = 0

        for product_id, product_items in grouped.items():
            product = db.session.get(Product, product_id)
            reuse_id = product is None

            if product is not None and product.org_id != org_id:
                product = None

            if product is None:
                first = product_items[0]
                sku = (first.get("sku") or f"RESTORED-{product_id}").strip()
                if scoped_query(Product).filter(Product.sku == sku).first() is not None:
                    skipped += 1
                    continue

                product = Product(
                    org_id=org_id,
                    sku=sku,
                    name=(first.get("name") or f"Restored product {product_id}").strip(),
                    retail_price_cents=first.get("unit_price_cents") or 0,
                    cost_price_cents=first.get("unit_cost_cents") or 0,
                    stock=0,
                    low_stock_threshold=current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 0),
                )
                if reuse_id:
                    product.id = product_id
                    _plan_orphan_purge(uow, product_id=product_id)
                product.categories = [category]
                db.session.add(product)
                products_restored += 1
            elif not any(item.get("variant_id") is not None for item in product_items):
                skipped += 1
                continue
            elif not product.has_variants and product.stock != 0:
                skipped += 1
                continue

            for item in product_items:
                if item.get("variant_id") is not None and _restore_variant(uow, product, item):
                    variants_restored += 1

            product.stock = product.total_stock()

        uow.commit()
        current_app.logger.info(
            "Restored %s products, %s variants (%s skipped)", products_restored, variants_restored, skipped,
        )
        return OperationResult.ok(
            {"restored": products_restored, "variants_restored": variants_restored, "skipped": skipped},
            message=f"Restored {products_restored} products.",
        )

    return run_with_retry(_op)
