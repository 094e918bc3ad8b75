# Overview: Pytest coverage for sale and return processing.

"""
Sale/Return Processor Tests

Covers:
- stock movement and ledger tagging per line
- SALE vs RETURN classification (including exchanges)
- return linkage: returned_quantity and monotonic status
- cash routing to the open shift
- atomicity when a line references a missing product
- delete_sale cascade (returns + ledger rows under every reason format)
- clear_sales / prune_sales
- held orders: hold, list, delete, complete
"""

from datetime import timedelta

from stockcore.extensions import db
from stockcore.models import DeletionRecord, Product, Sale, SaleLine, Shift, StockAdjustment
from stockcore.services import sales_service, shift_service
from stockcore.time_utils import utcnow


def _sell(product_id, quantity, **extra):
    line = {"product_id": product_id, "quantity": quantity, **extra}
    result = sales_service.process_sale([line], [{"type": "CARD", "amount_cents": 0}])
    assert result.success, result.message
    return result.data


def _sale_rows(product_id):
    return (
        db.session.query(StockAdjustment)
        .filter_by(product_id=product_id, source_type="SALE")
        .all()
    )


class TestProcessSale:

    def test_sale_decrements_stock_with_one_ledger_row(self, tenant_a, make_product):
        product = make_product(stock=10)

        sale = _sell(product.id, 3)

        assert db.session.get(Product, product.id).stock == 7
        rows = _sale_rows(product.id)
        assert len(rows) == 1
        assert rows[0].quantity == -3
        assert rows[0].source_id == sale.id
        assert rows[0].reason == f"Sale #{sale.document_number}"

    def test_totals_and_snapshot(self, tenant_a, make_product):
        product = make_product(sku="TEE", name="Tee", stock=10, retail=1500, cost=600)

        sale = _sell(product.id, 2)

        assert sale.type == "SALE"
        assert sale.status == "COMPLETED"
        assert sale.document_number == "TRX-000001"
        assert sale.total_cents == 3000
        assert sale.cogs_cents == 1200
        line = sale.lines[0]
        assert (line.name, line.sku, line.unit_price_cents, line.unit_cost_cents) == ("Tee", "TEE", 1500, 600)

    def test_price_override(self, tenant_a, make_product):
        product = make_product(stock=10, retail=1500)

        sale = _sell(product.id, 1, unit_price_cents=999)

        assert sale.total_cents == 999

    def test_variant_line(self, tenant_a, make_product):
        product = make_product(variants=[{"options": {"Size": "M"}, "stock": 5, "sku": "TEE-M"}])
        variant_id = product.variants[0].id

        sale = _sell(product.id, 2, variant_id=variant_id)

        product = db.session.get(Product, product.id)
        assert product.variants[0].stock == 3
        assert product.stock == 3
        assert sale.lines[0].sku == "TEE-M"
        assert sale.lines[0].variant_options == {"Size": "M"}

    def test_negative_total_is_return(self, tenant_a, make_product):
        product = make_product(stock=10)

        result = sales_service.process_sale([{"product_id": product.id, "quantity": -1}])

        assert result.data.type == "RETURN"
        assert result.data.document_number == "RET-000001"
        assert db.session.get(Product, product.id).stock == 11

    def test_exchange_with_positive_balance_is_sale(self, tenant_a, make_product):
        cheap = make_product(stock=5, retail=500)
        dear = make_product(stock=5, retail=2000)

        result = sales_service.process_sale([
            {"product_id": cheap.id, "quantity": -1},
            {"product_id": dear.id, "quantity": 1},
        ])

        assert result.data.type == "SALE"
        assert result.data.total_cents == 1500
        assert db.session.get(Product, cheap.id).stock == 6
        assert db.session.get(Product, dear.id).stock == 4

    def test_missing_product_fails_whole_sale(self, tenant_a, make_product):
        product = make_product(stock=10)

        result = sales_service.process_sale([
            {"product_id": product.id, "quantity": 2},
            {"product_id": 99999, "quantity": 1},
        ])

        assert not result.success
        assert result.error_code == "NOT_FOUND"
        assert db.session.get(Product, product.id).stock == 10
        assert db.session.query(Sale).count() == 0
        assert _sale_rows(product.id) == []

    def test_empty_cart_rejected(self, tenant_a):
        result = sales_service.process_sale([])

        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"

    def test_malformed_payments_rejected(self, tenant_a, make_product):
        product = make_product(stock=10)
        line = [{"product_id": product.id, "quantity": 1}]

        for payments in (["CASH"], {"type": "CASH", "amount_cents": 100}):
            result = sales_service.process_sale(line, payments)
            assert not result.success
            assert result.error_code == "VALIDATION_ERROR"
        assert db.session.get(Product, product.id).stock == 10

    def test_listing_newest_first(self, tenant_a, make_product):
        product = make_product(stock=10)
        first = _sell(product.id, 1)
        second = _sell(product.id, 1)

        ids = [s.id for s in sales_service.list_sales()]

        assert ids == [second.id, first.id]


class TestReturns:

    def test_partial_then_full_refund(self, tenant_a, make_product):
        product = make_product(stock=10)
        original = _sell(product.id, 3)
        original_id = original.id

        sales_service.process_sale([{"product_id": product.id, "quantity": -2, "original_sale_id": original_id}])

        original = db.session.get(Sale, original_id)
        assert original.lines[0].returned_quantity == 2
        assert original.status == "PARTIALLY_REFUNDED"

        sales_service.process_sale([{"product_id": product.id, "quantity": -1, "original_sale_id": original_id}])

        original = db.session.get(Sale, original_id)
        assert original.lines[0].returned_quantity == 3
        assert original.status == "REFUNDED"
        assert db.session.get(Product, product.id).stock == 10

    def test_header_original_applies_to_lines(self, tenant_a, make_product):
        product = make_product(stock=10)
        original = _sell(product.id, 2)

        result = sales_service.process_sale(
            [{"product_id": product.id, "quantity": -2}],
            original_sale_id=original.id,
        )

        assert result.data.original_sale_id == original.id
        assert db.session.get(Sale, original.id).status == "REFUNDED"

    def test_status_never_regresses_from_refunded(self, tenant_a, make_product):
        product = make_product(stock=10)
        original = _sell(product.id, 1)
        original_id = original.id

        sales_service.process_sale([{"product_id": product.id, "quantity": -1, "original_sale_id": original_id}])
        sales_service.process_sale([{"product_id": product.id, "quantity": -1, "original_sale_id": original_id}])

        original = db.session.get(Sale, original_id)
        assert original.status == "REFUNDED"
        assert original.lines[0].returned_quantity == 2

    def test_unmatched_return_line_leaves_original_untouched(self, tenant_a, make_product):
        sold = make_product(stock=10)
        other = make_product(stock=10)
        original = _sell(sold.id, 2)

        result = sales_service.process_sale(
            [{"product_id": other.id, "quantity": -1, "original_sale_id": original.id}],
        )

        assert result.success
        original = db.session.get(Sale, original.id)
        assert original.status == "COMPLETED"
        assert original.lines[0].returned_quantity == 0

    def test_return_against_return_rejected(self, tenant_a, make_product):
        product = make_product(stock=10)
        ret = sales_service.process_sale([{"product_id": product.id, "quantity": -1}]).data

        result = sales_service.process_sale(
            [{"product_id": product.id, "quantity": -1, "original_sale_id": ret.id}],
        )

        assert not result.success
        assert db.session.get(Product, product.id).stock == 11

    def test_header_original_ignored_on_sale(self, tenant_a, make_product):
        product = make_product(stock=10)
        original = _sell(product.id, 1)

        result = sales_service.process_sale(
            [{"product_id": product.id, "quantity": 1}],
            original_sale_id=original.id,
        )

        assert result.data.type == "SALE"
        assert result.data.original_sale_id is None

    def test_unknown_header_original_rejected(self, tenant_a, make_product):
        product = make_product(stock=10)

        result = sales_service.process_sale(
            [{"product_id": product.id, "quantity": 1}],
            original_sale_id=99999,
        )

        assert not result.success
        assert result.error_code == "NOT_FOUND"
        assert db.session.query(Sale).count() == 0
        assert db.session.get(Product, product.id).stock == 10

    def test_header_original_must_be_a_sale(self, tenant_a, make_product):
        product = make_product(stock=10)
        ret = sales_service.process_sale([{"product_id": product.id, "quantity": -1}]).data

        result = sales_service.process_sale(
            [{"product_id": product.id, "quantity": 1}],
            original_sale_id=ret.id,
        )

        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"
        assert db.session.query(Sale).count() == 1


class TestHeldOrders:

    def _hold(self, *lines, note=None):
        result = sales_service.hold_order(list(lines), note=note)
        assert result.success, result.message
        return result.data

    def test_hold_moves_no_stock(self, tenant_a, make_product):
        product = make_product(sku="TEE", name="Tee", stock=5)

        held = self._hold({"product_id": product.id, "quantity": 2}, note="Back in 5")

        assert held.document_number == "HLD-000001"
        assert held.note == "Back in 5"
        assert held.lines[0]["name"] == "Tee"
        assert held.lines[0]["sku"] == "TEE"
        assert held.cart == [{
            "product_id": product.id, "variant_id": None, "quantity": 2,
            "unit_price_cents": None, "original_sale_id": None,
        }]
        assert db.session.get(Product, product.id).stock == 5
        assert db.session.query(Sale).count() == 0
        assert _sale_rows(product.id) == []

    def test_variant_name_snapshot(self, tenant_a, make_product):
        product = make_product(name="Tee", variants=[{"options": {"Size": "M"}, "stock": 2, "sku": "TEE-M"}])
        variant_id = product.variants[0].id

        held = self._hold({"product_id": product.id, "variant_id": variant_id, "quantity": 1})

        assert held.lines[0]["name"] == "Tee (M)"
        assert held.lines[0]["sku"] == "TEE-M"

    def test_missing_product_rejected(self, tenant_a):
        result = sales_service.hold_order([{"product_id": 99999, "quantity": 1}])

        assert not result.success
        assert result.error_code == "NOT_FOUND"
        assert sales_service.list_held_orders() == []

    def test_empty_cart_rejected(self, tenant_a):
        result = sales_service.hold_order([])

        assert result.error_code == "VALIDATION_ERROR"

    def test_listing_newest_first(self, tenant_a, make_product):
        product = make_product(stock=5)
        first = self._hold({"product_id": product.id, "quantity": 1})
        second = self._hold({"product_id": product.id, "quantity": 2})

        held = sales_service.list_held_orders()

        assert [h.id for h in held] == [second.id, first.id]
        assert [h.document_number for h in held] == ["HLD-000002", "HLD-000001"]

    def test_delete_leaves_tombstone(self, tenant_a, make_product):
        product = make_product(stock=5)
        held_id = self._hold({"product_id": product.id, "quantity": 1}).id

        result = sales_service.delete_held_order(held_id)

        assert result.success
        assert result.message == "Held order HLD-000001 deleted."
        assert sales_service.list_held_orders() == []
        tombstones = {(t.table_name, t.record_id) for t in db.session.query(DeletionRecord)}
        assert ("held_orders", held_id) in tombstones

    def test_delete_missing(self, tenant_a):
        result = sales_service.delete_held_order(99999)

        assert result.error_code == "NOT_FOUND"

    def test_complete_records_sale_and_drops_hold(self, tenant_a, make_product):
        product = make_product(stock=5, retail=800)
        held_id = self._hold({"product_id": product.id, "quantity": 2}).id

        result = sales_service.complete_held_order(held_id, [{"type": "CARD", "amount_cents": 1600}])

        assert result.success, result.message
        sale = result.data
        assert sale.document_number == "TRX-000001"
        assert sale.total_cents == 1600
        assert result.message == "Held order HLD-000001 completed as TRX-000001."
        assert db.session.get(Product, product.id).stock == 3
        assert sales_service.list_held_orders() == []

    def test_failed_completion_keeps_hold(self, tenant_a, make_product):
        product = make_product(stock=5)
        held_id = self._hold({"product_id": product.id, "quantity": 1}).id

        result = sales_service.complete_held_order(held_id, [{"type": "BARTER", "amount_cents": 1}])

        assert result.error_code == "VALIDATION_ERROR"
        assert [h.id for h in sales_service.list_held_orders()] == [held_id]
        assert db.session.get(Product, product.id).stock == 5


class TestShiftCash:

    def test_cash_routed_to_open_shift(self, tenant_a, make_product):
        product = make_product(stock=10, retail=1000)
        shift_service.open_shift(10000)

        sale = sales_service.process_sale(
            [{"product_id": product.id, "quantity": 2}],
            [{"type": "CASH", "amount_cents": 2000}],
        ).data
        sales_service.process_sale(
            [{"product_id": product.id, "quantity": -1, "original_sale_id": sale.id}],
            [{"type": "CASH", "amount_cents": -1000}],
        )

        shift = shift_service.get_current_shift()
        assert shift.cash_sales_cents == 2000
        assert shift.cash_refunds_cents == 1000
        assert db.session.get(Sale, sale.id).shift_id == shift.id

    def test_card_payment_does_not_touch_cash(self, tenant_a, make_product):
        product = make_product(stock=10, retail=1000)
        shift_service.open_shift(0)

        sales_service.process_sale(
            [{"product_id": product.id, "quantity": 1}],
            [{"type": "CARD", "amount_cents": 1000}],
        )

        shift = shift_service.get_current_shift()
        assert shift.cash_sales_cents == 0

    def test_no_shift_no_error(self, tenant_a, make_product):
        product = make_product(stock=10)

        result = sales_service.process_sale(
            [{"product_id": product.id, "quantity": 1}],
            [{"type": "CASH", "amount_cents": 1000}],
        )

        assert result.success
        assert result.data.shift_id is None
        assert db.session.query(Shift).count() == 0


class TestDeleteSale:

    def test_delete_cascades_returns_and_ledger(self, tenant_a, make_product):
        product = make_product(stock=10)
        original = _sell(product.id, 3)
        original_id = original.id
        ret = sales_service.process_sale(
            [{"product_id": product.id, "quantity": -1, "original_sale_id": original_id}],
        ).data
        return_id = ret.id

        result = sales_service.delete_sale(original_id)

        assert result.success
        assert result.data["returns"] == 1
        assert db.session.get(Sale, original_id) is None
        assert db.session.get(Sale, return_id) is None
        assert db.session.query(SaleLine).count() == 0
        assert _sale_rows(product.id) == []

        tombstones = {(t.table_name, t.record_id) for t in db.session.query(DeletionRecord)}
        assert ("sales", original_id) in tombstones
        assert ("sales", return_id) in tombstones

    def test_legacy_reason_formats_removed(self, tenant_a, make_product):
        product = make_product(stock=10)
        sale = _sell(product.id, 1)
        legacy_reasons = [
            f"Sale #{sale.document_number}",
            f"Sale #{sale.id}",
            f"Sale {sale.document_number}",
        ]
        for reason in legacy_reasons:
            db.session.add(StockAdjustment(
                org_id=tenant_a.id, product_id=product.id, quantity=-1, reason=reason,
            ))
        unrelated = StockAdjustment(
            org_id=tenant_a.id, product_id=product.id, quantity=-1, reason="Sale #TRX-999999",
        )
        db.session.add(unrelated)
        db.session.commit()
        unrelated_id = unrelated.id

        assert sales_service.delete_sale(sale.id).success

        remaining = db.session.query(StockAdjustment).filter(StockAdjustment.reason.like("Sale%")).all()
        assert [r.id for r in remaining] == [unrelated_id]

    def test_return_cannot_be_deleted_directly(self, tenant_a, make_product):
        product = make_product(stock=10)
        ret = sales_service.process_sale([{"product_id": product.id, "quantity": -1}]).data

        result = sales_service.delete_sale(ret.id)

        assert not result.success
        assert result.error_code == "PRECONDITION_FAILED"
        assert result.message == "Delete the original sale transaction, not the return."

    def test_delete_does_not_restore_stock(self, tenant_a, make_product):
        product = make_product(stock=10)
        sale = _sell(product.id, 4)

        sales_service.delete_sale(sale.id)

        assert db.session.get(Product, product.id).stock == 6


class TestClearAndPrune:

    def test_clear_by_status(self, tenant_a, make_product):
        product = make_product(stock=20)
        keep = _sell(product.id, 1)
        refunded = _sell(product.id, 1)
        sales_service.process_sale([{"product_id": product.id, "quantity": -1, "original_sale_id": refunded.id}])
        keep_id = keep.id

        result = sales_service.clear_sales(statuses=["REFUNDED"])

        assert result.success
        assert result.data == {"sales": 1, "returns": 1}
        assert [s.id for s in sales_service.list_sales()] == [keep_id]

    def test_clear_with_empty_statuses_deletes_nothing(self, tenant_a, make_product):
        product = make_product(stock=20)
        _sell(product.id, 1)

        result = sales_service.clear_sales(statuses=[])

        assert result.data["sales"] == 0
        assert db.session.query(Sale).count() == 1

    def test_prune_only_old_sales(self, tenant_a, make_product):
        product = make_product(stock=20)
        old = _sell(product.id, 1)
        recent = _sell(product.id, 1)
        old.created_at = utcnow() - timedelta(days=40)
        db.session.commit()
        recent_id = recent.id

        result = sales_service.prune_sales(30)

        assert result.data["sales"] == 1
        assert [s.id for s in sales_service.list_sales()] == [recent_id]
