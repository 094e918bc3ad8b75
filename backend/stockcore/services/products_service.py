"""
Product Store

MULTI-TENANT: All product operations are tenant-scoped via g.org_id.

PRICE HISTORY:
- update_product appends one PriceHistoryEntry per changed price field, for
  the product and, independently, for every patched variant.
- History is never rewritten; entries are only inserted.

STOCK:
- Not patchable here. Initial stock supplied at creation goes through the
  ledger ("Initial Stock") like any other movement.
"""
from __future__ import annotations

from flask import current_app

from ..decorators import returns_result
from ..errors import ValidationError
from ..extensions import db
from ..models import Category, PriceHistoryEntry, Product, ProductVariant
from ..validation import (
    PRICE_FIELDS,
    PRODUCT_POLICY,
    VARIANT_POLICY,
    enforce_rules_prices,
    enforce_rules_product,
    require_int,
    validate_options,
    validate_payload,
)
from .concurrency import run_with_retry
from .inventory_service import _adjust_stock_inner, load_product, load_variant
from .tenant_service import get_current_actor, get_current_org_id, scoped_query

REASON_INITIAL_STOCK = "Initial Stock"

PRICE_TYPE_RETAIL = "RETAIL"
PRICE_TYPE_COST = "COST"
PRICE_TYPES = {
    "retail_price_cents": PRICE_TYPE_RETAIL,
    "cost_price_cents": PRICE_TYPE_COST,
}


def apply_patch(target, patch: dict) -> None:
    for k, v in patch.items():
        setattr(target, k, v)


def _ensure_sku_available(sku: str, *, exclude_product_id: int | None = None) -> None:
    q = scoped_query(Product).filter(Product.sku == sku)
    if exclude_product_id is not None:
        q = q.filter(Product.id != exclude_product_id)
    if q.first() is not None:
        raise ValidationError(f"SKU '{sku}' already exists.")


def _record_price_changes(target, patch: dict, *, product_id: int, variant_id: int | None) -> list[PriceHistoryEntry]:
    """Append a history entry for every price field whose value actually changes."""
    actor = get_current_actor()
    entries = []
    for field in PRICE_FIELDS:
        if field not in patch:
            continue
        old_value = getattr(target, field)
        new_value = patch[field]
        if old_value == new_value:
            continue
        entry = PriceHistoryEntry(
            org_id=get_current_org_id(),
            product_id=product_id,
            variant_id=variant_id,
            price_type=PRICE_TYPES[field],
            old_value=old_value,
            new_value=new_value,
            actor_id=actor.id,
            actor_name=actor.name,
        )
        db.session.add(entry)
        entries.append(entry)
    return entries


def ensure_category(name: str) -> Category:
    """Find or create a flat category by name (flushes, never commits)."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    category = scoped_query(Category).filter(Category.name == name).first()
    if category is None:
        category = Category(org_id=get_current_org_id(), name=name)
        db.session.add(category)
        db.session.flush()
    return category


def _build_variant(product: Product, spec: dict) -> ProductVariant:
    spec = dict(spec or {})
    options = validate_options(spec.pop("options", None))
    stock = require_int(spec.pop("stock", 0), "stock", minimum=0)

    patch = validate_payload(model=ProductVariant, payload=spec, policy=VARIANT_POLICY, partial=True)
    enforce_rules_prices(patch)

    for existing in product.variants:
        if existing.options == options:
            raise ValidationError(f"Variant '{' / '.join(options.values())}' already exists.")

    variant = ProductVariant(
        options=options,
        sku=patch.get("sku"),
        stock=0,
        retail_price_cents=patch.get("retail_price_cents", product.retail_price_cents),
        cost_price_cents=patch.get("cost_price_cents", product.cost_price_cents),
    )
    product.variants.append(variant)
    db.session.flush()

    if stock:
        _adjust_stock_inner(product, stock, REASON_INITIAL_STOCK, variant=variant)
    return variant


@returns_result("create product")
def create_product(
    *,
    patch: dict,
    variants: list[dict] | None = None,
    initial_stock: int = 0,
    category_names: list[str] | None = None,
) -> Product:
    """
    Create a product.

    Args:
        patch: sku, name, description, prices, low_stock_threshold
        variants: optional list of {options, sku, prices, stock}
        initial_stock: opening stock for a product without variants
        category_names: flat category labels to file the product under

    Stock starts at 0 and any opening quantity is recorded in the ledger.
    """
    cleaned = validate_payload(model=Product, payload=patch, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(cleaned)
    require_int(initial_stock, "initial_stock", minimum=0)
    if variants and initial_stock:
        raise ValidationError("initial_stock applies only to products without variants")

    def _op():
        _ensure_sku_available(cleaned["sku"])

        product = Product(
            org_id=get_current_org_id(),
            stock=0,
            low_stock_threshold=current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 0),
        )
        apply_patch(product, cleaned)
        if category_names:
            product.categories = [ensure_category(name) for name in category_names]
        db.session.add(product)
        db.session.flush()

        for spec in variants or []:
            _build_variant(product, spec)
        if initial_stock:
            _adjust_stock_inner(product, initial_stock, REASON_INITIAL_STOCK)

        db.session.commit()
        current_app.logger.info("Created product %s (%s)", product.id, product.sku)
        return product

    return run_with_retry(_op)


@returns_result("add variant")
def add_variant(product_id: int, options: dict, **fields) -> ProductVariant:
    """
    Attach a new variant to an existing product.

    Rejected while the product still holds base stock and has no variants:
    the variant-sum invariant would otherwise drop that stock silently.
    """
    def _op():
        product = load_product(product_id, lock=True)
        if not product.has_variants and product.stock != 0:
            raise ValidationError("Product has base stock; adjust it to 0 before adding variants.")

        variant = _build_variant(product, {"options": options, **fields})
        product.stock = product.total_stock()
        db.session.commit()
        return variant

    return run_with_retry(_op)


@returns_result("update product")
def update_product(
    product_id: int,
    patch: dict | None = None,
    *,
    variants: list[dict] | None = None,
    category_names: list[str] | None = None,
) -> Product:
    """
    Patch product fields, variant fields and categories.

    variants: list of {"id": <variant id>, ...fields} patches.
    """
    cleaned = validate_payload(model=Product, payload=patch or {}, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(cleaned)

    variant_patches = []
    for raw in variants or []:
        raw = dict(raw)
        variant_id = raw.pop("id", None)
        if variant_id is None:
            raise ValidationError("Variant patch requires an id")
        variant_patch = validate_payload(model=ProductVariant, payload=raw, policy=VARIANT_POLICY, partial=True)
        enforce_rules_prices(variant_patch)
        variant_patches.append((variant_id, variant_patch))

    def _op():
        product = load_product(product_id, lock=True)

        if "sku" in cleaned and cleaned["sku"] != product.sku:
            _ensure_sku_available(cleaned["sku"], exclude_product_id=product.id)

        _record_price_changes(product, cleaned, product_id=product.id, variant_id=None)
        apply_patch(product, cleaned)

        for variant_id, variant_patch in variant_patches:
            variant = load_variant(product, variant_id)
            _record_price_changes(variant, variant_patch, product_id=product.id, variant_id=variant.id)
            apply_patch(variant, variant_patch)

        if category_names is not None:
            product.categories = [ensure_category(name) for name in category_names]

        db.session.commit()
        return product

    return run_with_retry(_op)


def get_product(product_id: int) -> Product:
    return load_product(product_id)


def list_products(*, search: str | None = None, category: str | None = None) -> list[Product]:
    q = scoped_query(Product)
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(db.or_(Product.name.ilike(term), Product.sku.ilike(term)))
    if category:
        q = q.filter(Product.categories.any(Category.name == category))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def list_low_stock_products() -> list[Product]:
    """Products at or below their threshold (including out of stock)."""
    return (
        scoped_query(Product)
        .filter(Product.stock <= Product.low_stock_threshold)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )


def get_price_history(product_id: int, variant_id: int | None = None) -> list[PriceHistoryEntry]:
    """Append-order price history for a product (variant_id None) or one variant."""
    product = load_product(product_id)
    q = scoped_query(PriceHistoryEntry).filter(PriceHistoryEntry.product_id == product.id)
    if variant_id is None:
        q = q.filter(PriceHistoryEntry.variant_id.is_(None))
    else:
        variant = load_variant(product, variant_id)
        q = q.filter(PriceHistoryEntry.variant_id == variant.id)
    return q.order_by(PriceHistoryEntry.id.asc()).all()
