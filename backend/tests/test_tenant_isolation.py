# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for core resources.

These tests create products, sales, purchase orders and shifts in
Organization A and then act as Organization B, verifying that:
1. Reads of A's entities by id raise AccessDenied (not NotFound)
2. Mutations of A's entities fail with ACCESS_DENIED and change nothing
3. Listings only ever show the current tenant's rows
4. Services refuse to run without an established tenant
"""

import pytest

from stockcore.errors import AccessDenied
from stockcore.extensions import db
from stockcore.models import Product, Sale
from stockcore.services import (
    deletion_service,
    inventory_service,
    notification_service,
    products_service,
    purchase_order_service,
    sales_service,
    shift_service,
)
from stockcore.services.tenant_service import TenantScopeMissing, get_current_org_id, tenant_context


@pytest.fixture
def seeded_a(org_a, make_product):
    """Products, a sale and a purchase order owned by Organization A."""
    with tenant_context(org_a.id, actor_id=1, actor_name="alice"):
        product = make_product(sku="A-1", stock=10, threshold=0)
        sale = sales_service.process_sale([{"product_id": product.id, "quantity": 1}]).data
        po = purchase_order_service.add_purchase_order(
            "Acme Supply", [{"product_id": product.id, "quantity_ordered": 2}],
        ).data
        return {"product_id": product.id, "sale_id": sale.id, "po_id": po.id}


class TestTenantServiceHelpers:

    def test_scope_required(self, db_session):
        with pytest.raises(TenantScopeMissing):
            get_current_org_id()

    def test_nested_scope_restored(self, org_a, org_b):
        with tenant_context(org_a.id):
            with tenant_context(org_b.id):
                assert get_current_org_id() == org_b.id
            assert get_current_org_id() == org_a.id

    def test_operation_without_scope_fails(self, db_session):
        result = inventory_service.adjust_stock(1, 5, "Count")

        assert not result.success
        assert result.error_code == "ACCESS_DENIED"

    def test_lookup_without_scope_fails_before_not_found(self, db_session):
        with pytest.raises(TenantScopeMissing):
            products_service.get_product(99999)
        with pytest.raises(TenantScopeMissing):
            sales_service.get_held_order(None)


class TestCrossTenantReads:

    def test_product_read_denied(self, seeded_a, org_b):
        with tenant_context(org_b.id):
            with pytest.raises(AccessDenied):
                products_service.get_product(seeded_a["product_id"])

    def test_sale_read_denied(self, seeded_a, org_b):
        with tenant_context(org_b.id):
            with pytest.raises(AccessDenied):
                sales_service.get_sale(seeded_a["sale_id"])

    def test_purchase_order_read_denied(self, seeded_a, org_b):
        with tenant_context(org_b.id):
            with pytest.raises(AccessDenied):
                purchase_order_service.get_purchase_order(seeded_a["po_id"])

    def test_listings_are_scoped(self, seeded_a, org_b):
        with tenant_context(org_b.id):
            assert products_service.list_products() == []
            assert sales_service.list_sales() == []
            assert purchase_order_service.list_purchase_orders() == []
            assert inventory_service.list_stock_adjustments() == []
            assert notification_service.list_notifications() == []


class TestCrossTenantWrites:

    def test_adjust_stock_denied(self, seeded_a, org_b):
        with tenant_context(org_b.id):
            result = inventory_service.adjust_stock(seeded_a["product_id"], 0, "Steal")

        assert not result.success
        assert result.error_code == "ACCESS_DENIED"
        assert db.session.get(Product, seeded_a["product_id"]).stock == 9

    def test_sale_with_foreign_product_denied(self, seeded_a, org_b):
        with tenant_context(org_b.id):
            result = sales_service.process_sale([{"product_id": seeded_a["product_id"], "quantity": 1}])

        assert result.error_code == "ACCESS_DENIED"
        assert db.session.query(Sale).count() == 1

    def test_return_against_foreign_sale_denied(self, seeded_a, org_b, make_product):
        with tenant_context(org_b.id):
            own = make_product(sku="B-1", stock=5)
            result = sales_service.process_sale(
                [{"product_id": own.id, "quantity": -1, "original_sale_id": seeded_a["sale_id"]}],
            )

        assert result.error_code == "ACCESS_DENIED"

    def test_delete_sale_denied(self, seeded_a, org_b):
        with tenant_context(org_b.id):
            result = sales_service.delete_sale(seeded_a["sale_id"])

        assert result.error_code == "ACCESS_DENIED"
        assert db.session.get(Sale, seeded_a["sale_id"]) is not None

    def test_delete_product_denied(self, seeded_a, org_b):
        with tenant_context(org_b.id):
            result = deletion_service.delete_product(seeded_a["product_id"], force=True)

        assert result.error_code == "ACCESS_DENIED"
        assert db.session.get(Product, seeded_a["product_id"]) is not None

    def test_bulk_delete_ignores_foreign_ids(self, seeded_a, org_b):
        with tenant_context(org_b.id):
            result = deletion_service.bulk_delete_products([seeded_a["product_id"]])

        assert result.data == {"deleted": 0, "skipped": 0}

    def test_receive_on_foreign_po_denied(self, seeded_a, org_b):
        with tenant_context(org_b.id):
            result = purchase_order_service.receive_po_items(
                seeded_a["po_id"], [{"product_id": seeded_a["product_id"], "quantity": 1}],
            )

        assert result.error_code == "ACCESS_DENIED"

    def test_shifts_are_per_tenant(self, org_a, org_b):
        with tenant_context(org_a.id, actor_name="alice"):
            shift_service.open_shift(100)
        with tenant_context(org_b.id, actor_name="bob"):
            result = shift_service.open_shift(200)
            assert result.message == "Shift opened."
            assert shift_service.get_current_shift().start_float_cents == 200

    def test_held_orders_are_per_tenant(self, seeded_a, org_a, org_b):
        with tenant_context(org_a.id):
            held_id = sales_service.hold_order([{"product_id": seeded_a["product_id"], "quantity": 1}]).data.id
        with tenant_context(org_b.id):
            assert sales_service.list_held_orders() == []
            with pytest.raises(AccessDenied):
                sales_service.get_held_order(held_id)
            result = sales_service.delete_held_order(held_id)
            completed = sales_service.complete_held_order(held_id)

        assert result.error_code == "ACCESS_DENIED"
        assert completed.error_code == "ACCESS_DENIED"
        assert db.session.get(Product, seeded_a["product_id"]).stock == 9
        with tenant_context(org_a.id):
            assert [h.id for h in sales_service.list_held_orders()] == [held_id]
