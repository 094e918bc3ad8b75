# Overview: Pytest coverage for notifications and tenant retention.

from datetime import timedelta

import pytest

from stockcore.extensions import db
from stockcore.models import Notification, PurchaseOrder, Sale
from stockcore.services import maintenance_service, notification_service, purchase_order_service, sales_service
from stockcore.time_utils import utcnow


def _age(instance, days):
    instance.created_at = utcnow() - timedelta(days=days)
    db.session.commit()


class TestNotifications:

    def test_notify_flushes_without_commit(self, tenant_a):
        notification_id = notification_service.notify("Hello", "STOCK").id
        db.session.rollback()

        assert db.session.query(Notification).filter_by(id=notification_id).count() == 0

    def test_unknown_category_rejected(self, tenant_a):
        with pytest.raises(ValueError):
            notification_service.notify("Hello", "MISC")

    def test_mark_read(self, tenant_a):
        first = notification_service.notify("One", "STOCK")
        notification_service.notify("Two", "PO")
        db.session.commit()

        notification_service.mark_notification_read(first.id)

        unread = notification_service.list_notifications(unread_only=True)
        assert [n.message for n in unread] == ["Two"]

    def test_mark_all_read(self, tenant_a):
        for message in ("One", "Two", "Three"):
            notification_service.notify(message, "SHIFT")
        db.session.commit()

        result = notification_service.mark_all_read()

        assert result.data == 3
        assert result.message == "Marked 3 notifications as read."
        assert notification_service.list_notifications(unread_only=True) == []

    def test_prune_old(self, tenant_a):
        old = notification_service.notify("Old", "STOCK")
        notification_service.notify("New", "STOCK")
        db.session.commit()
        _age(old, 45)

        assert notification_service.prune_notifications(30).data == 1
        assert [n.message for n in notification_service.list_notifications()] == ["New"]

    def test_mark_missing_returns_failure(self, tenant_a):
        result = notification_service.mark_notification_read(99999)

        assert not result.success
        assert result.error_code == "NOT_FOUND"

    def test_prune_negative_window_rejected(self, tenant_a):
        result = notification_service.prune_notifications(-1)

        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"


class TestRetention:

    def test_run_retention_prunes_each_target(self, tenant_a, make_product):
        product = make_product(stock=10, threshold=0)
        sale = sales_service.process_sale([{"product_id": product.id, "quantity": 1}]).data
        po = purchase_order_service.add_purchase_order(
            "Acme Supply", [{"product_id": product.id, "quantity_ordered": 1}],
        ).data
        _age(sale, 400)
        _age(po, 400)

        summary = maintenance_service.run_retention(
            sales_days=365, purchase_order_days=365, notification_days=30,
        )

        assert summary["sales"] == "Removed 1 records."
        assert summary["purchase_orders"] == "Pruned 1 purchase orders."
        assert summary["notifications"] == "Pruned 0 notifications."
        assert db.session.query(Sale).count() == 0
        assert db.session.query(PurchaseOrder).count() == 0

    def test_skipped_targets_absent_from_summary(self, tenant_a):
        summary = maintenance_service.run_retention(notification_days=30)

        assert summary == {"notifications": "Pruned 0 notifications."}

    def test_invalid_status_stops_run(self, tenant_a):
        summary = maintenance_service.run_retention(
            sales_days=30, sale_statuses=["BOGUS"], notification_days=30,
        )

        assert summary == {"sales": "Unknown sale status: BOGUS"}
