# Overview: Data retention; prunes old sales, purchase orders and notifications for one tenant.

from __future__ import annotations

from flask import current_app

from . import notification_service, purchase_order_service, sales_service


def run_retention(
    *,
    sales_days: int | None = None,
    sale_statuses: list[str] | None = None,
    purchase_order_days: int | None = None,
    notification_days: int | None = None,
) -> dict:
    """
    Prune the current tenant's history. Each target is skipped when its
    window is None.

    Sales are removed with their returns and ledger rows (tombstoned);
    notifications are removed outright.

    Returns the OperationResult message per target. The run stops at the
    first target that fails.
    """
    summary: dict = {}

    if sales_days is not None:
        result = sales_service.prune_sales(sales_days, statuses=sale_statuses)
        summary["sales"] = result.message
        if not result:
            return summary

    if purchase_order_days is not None:
        result = purchase_order_service.prune_purchase_orders(purchase_order_days)
        summary["purchase_orders"] = result.message
        if not result:
            return summary

    if notification_days is not None:
        result = notification_service.prune_notifications(notification_days)
        summary["notifications"] = result.message
        if not result:
            return summary

    current_app.logger.info("Retention run: %s", summary)
    return summary
