# Overview: Pytest coverage for the product store.

import pytest

from stockcore.errors import NotFound
from stockcore.extensions import db
from stockcore.models import PriceHistoryEntry, Product, StockAdjustment
from stockcore.services import products_service
from stockcore.services.tenant_service import tenant_context


class TestCreateProduct:

    def test_initial_stock_goes_through_ledger(self, tenant_a, make_product):
        product = make_product(stock=7)

        rows = db.session.query(StockAdjustment).filter_by(product_id=product.id).all()
        assert product.stock == 7
        assert [(r.quantity, r.reason) for r in rows] == [(7, "Initial Stock")]

    def test_duplicate_sku_rejected(self, tenant_a, make_product):
        make_product(sku="DUP")

        result = products_service.create_product(patch={"sku": "DUP", "name": "Again"})

        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"
        assert "DUP" in result.message

    def test_same_sku_in_other_tenant_allowed(self, tenant_a, org_b, make_product):
        make_product(sku="SHARED")
        with tenant_context(org_b.id):
            result = products_service.create_product(patch={"sku": "SHARED", "name": "Theirs"})
        assert result.success

    def test_default_threshold_from_config(self, app, tenant_a):
        result = products_service.create_product(patch={"sku": "T1", "name": "Thing"})

        assert result.data.low_stock_threshold == app.config["DEFAULT_LOW_STOCK_THRESHOLD"]

    def test_stock_not_writable(self, tenant_a):
        result = products_service.create_product(patch={"sku": "T1", "name": "Thing", "stock": 5})

        assert not result.success
        assert result.message == "Field not allowed: stock"

    def test_negative_price_rejected(self, tenant_a):
        result = products_service.create_product(
            patch={"sku": "T1", "name": "Thing", "retail_price_cents": -1},
        )

        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"

    def test_decimal_string_price_rejected(self, tenant_a):
        result = products_service.create_product(
            patch={"sku": "T1", "name": "Thing", "retail_price_cents": "12.5"},
        )

        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"
        assert result.message == "retail_price_cents must be an integer (no decimals)"

    def test_digit_strings_coerced(self, tenant_a):
        result = products_service.create_product(
            patch={"sku": " T1 ", "name": "Thing", "low_stock_threshold": "3"},
        )

        assert result.success, result.message
        assert result.data.low_stock_threshold == 3
        assert result.data.sku == "T1"


class TestVariants:

    def test_add_variant_rejected_while_base_stock(self, tenant_a, make_product):
        product = make_product(stock=3)

        result = products_service.add_variant(product.id, {"Size": "L"})

        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"
        assert db.session.get(Product, product.id).stock == 3

    def test_add_variant_inherits_prices(self, tenant_a, make_product):
        product = make_product(retail=2500, cost=900)

        result = products_service.add_variant(product.id, {"Size": "L"}, stock=4)

        assert result.success
        variant = result.data
        assert variant.retail_price_cents == 2500
        assert variant.cost_price_cents == 900
        assert db.session.get(Product, product.id).stock == 4

    def test_duplicate_options_rejected(self, tenant_a, make_product):
        product = make_product(variants=[{"options": {"Size": "L"}}])

        result = products_service.add_variant(product.id, {"Size": "L"})

        assert not result.success


class TestPriceHistory:

    def test_product_price_change_appends_history(self, tenant_a, make_product):
        product = make_product(retail=1000, cost=400)

        products_service.update_product(product.id, {"retail_price_cents": 1200})
        products_service.update_product(product.id, {"retail_price_cents": 1500, "cost_price_cents": 400})

        history = products_service.get_price_history(product.id)
        assert [(h.price_type, h.old_value, h.new_value) for h in history] == [
            ("RETAIL", 1000, 1200),
            ("RETAIL", 1200, 1500),
        ]
        assert history[0].actor_name == "alice"

    def test_unchanged_price_writes_nothing(self, tenant_a, make_product):
        product = make_product(retail=1000)

        products_service.update_product(product.id, {"retail_price_cents": 1000, "name": "Renamed"})

        assert products_service.get_price_history(product.id) == []
        assert db.session.get(Product, product.id).name == "Renamed"

    def test_variant_history_independent(self, tenant_a, make_product):
        product = make_product(retail=1000, variants=[
            {"options": {"Size": "S"}, "retail_price_cents": 1000},
            {"options": {"Size": "M"}, "retail_price_cents": 1100},
        ])
        small_id, medium_id = [v.id for v in product.variants]

        result = products_service.update_product(
            product.id,
            {"retail_price_cents": 1050},
            variants=[{"id": medium_id, "retail_price_cents": 1300}],
        )

        assert result.success
        assert len(products_service.get_price_history(product.id)) == 1
        assert products_service.get_price_history(product.id, variant_id=small_id) == []
        medium_history = products_service.get_price_history(product.id, variant_id=medium_id)
        assert [(h.old_value, h.new_value) for h in medium_history] == [(1100, 1300)]

    def test_history_rows_only_appended(self, tenant_a, make_product):
        product = make_product(retail=100)
        for price in (200, 300, 400):
            products_service.update_product(product.id, {"retail_price_cents": price})

        ids = [h.id for h in db.session.query(PriceHistoryEntry).order_by(PriceHistoryEntry.id)]
        assert len(ids) == 3
        assert ids == sorted(ids)

    def test_failed_update_leaves_no_history(self, tenant_a, make_product):
        product = make_product(retail=100)

        result = products_service.update_product(
            product.id,
            {"retail_price_cents": 200},
            variants=[{"id": 99999, "retail_price_cents": 5}],
        )

        assert not result.success
        assert products_service.get_price_history(product.id) == []
        assert db.session.get(Product, product.id).retail_price_cents == 100


class TestQueries:

    def test_get_missing_product_raises(self, tenant_a):
        with pytest.raises(NotFound):
            products_service.get_product(12345)

    def test_categories_and_search(self, tenant_a):
        products_service.create_product(patch={"sku": "A-1", "name": "Apple"}, category_names=["Fruit"])
        products_service.create_product(patch={"sku": "B-1", "name": "Bread"})

        assert [p.sku for p in products_service.list_products(category="Fruit")] == ["A-1"]
        assert [p.sku for p in products_service.list_products(search="bre")] == ["B-1"]

    def test_low_stock_listing(self, tenant_a, make_product):
        make_product(sku="LOW", stock=1, threshold=2)
        make_product(sku="OK", stock=9, threshold=2)

        assert [p.sku for p in products_service.list_low_stock_products()] == ["LOW"]
