from __future__ import annotations

from flask import current_app

from ..decorators import returns_result
from ..errors import OperationResult
from ..extensions import db
from ..models import Notification
from ..validation import require_int
from .concurrency import run_with_retry
from .tenant_service import get_current_org_id, get_scoped, scoped_query
from stockcore.time_utils import days_ago


CATEGORY_STOCK = "STOCK"
CATEGORY_PO = "PO"
CATEGORY_SHIFT = "SHIFT"
VALID_CATEGORIES = {CATEGORY_STOCK, CATEGORY_PO, CATEGORY_SHIFT}

RELATED_PRODUCT = "product"
RELATED_VARIANT = "variant"
RELATED_PURCHASE_ORDER = "purchase_order"
RELATED_SHIFT = "shift"


def notify(
    message: str,
    category: str,
    *,
    related_type: str | None = None,
    related_id: int | None = None,
) -> Notification:
    """
    Record a notification inside the caller's transaction.

    Never commits: if the surrounding unit of work rolls back, the
    notification disappears with it.
    """
    if category not in VALID_CATEGORIES:
        raise ValueError(f"Unknown notification category: {category}")

    notification = Notification(
        org_id=get_current_org_id(),
        category=category,
        message=message,
        related_type=related_type,
        related_id=related_id,
    )
    db.session.add(notification)
    db.session.flush()
    current_app.logger.info("Notification [%s] %s", category, message)
    return notification


def list_notifications(*, unread_only: bool = False, limit: int = 200) -> list[Notification]:
    query = scoped_query(Notification)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


@returns_result("mark notification read")
def mark_notification_read(notification_id: int):
    def _op():
        notification = get_scoped(Notification, notification_id, "Notification")
        notification.is_read = True
        db.session.commit()
        return OperationResult.ok(notification, message="Notification marked as read.")

    return run_with_retry(_op)


@returns_result("mark all notifications read")
def mark_all_read():
    """Data is the number of notifications that flipped to read."""
    def _op():
        count = (
            scoped_query(Notification)
            .filter(Notification.is_read.is_(False))
            .update({Notification.is_read: True}, synchronize_session=False)
        )
        db.session.commit()
        return OperationResult.ok(count, message=f"Marked {count} notifications as read.")

    return run_with_retry(_op)


@returns_result("prune notifications")
def prune_notifications(days: int):
    """Delete notifications older than `days`. Data is the number removed."""
    require_int(days, "days", minimum=0)

    def _op():
        count = (
            scoped_query(Notification)
            .filter(Notification.created_at < days_ago(days))
            .delete(synchronize_session=False)
        )
        db.session.commit()
        current_app.logger.info("Pruned %s notifications older than %s days", count, days)
        return OperationResult.ok(count, message=f"Pruned {count} notifications.")

    return run_with_retry(_op)
