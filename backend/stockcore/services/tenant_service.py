"""
Tenant & Identity Scope

WHY: Every read and write is scoped to exactly one tenant (organization) and
attributed to an actor. Authentication happens outside this package; the
caller establishes the scope on Flask's `g` and the services read it here.

INVARIANTS:
1. g.org_id is set before any service call (TenantScopeMissing otherwise)
2. An entity whose org_id differs from g.org_id is never returned or
   mutated: AccessDenied
3. Queries over tenant-owned tables always filter by org_id

USAGE:
    from stockcore.services.tenant_service import tenant_context

    with tenant_context(org_id=1, actor_id=7, actor_name="alice"):
        inventory_service.receive_stock(product_id, 5)
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass

from flask import current_app, g

from ..errors import AccessDenied, NotFound
from ..extensions import db
from .concurrency import lock_for_update

_SCOPE_ATTRS = ("org_id", "actor_id", "actor_name")


class TenantScopeMissing(AccessDenied):
    """Raised when a service is called without an established tenant."""


@dataclass(frozen=True)
class Actor:
    id: int | None
    name: str | None


@contextmanager
def tenant_context(org_id: int, actor_id: int | None = None, actor_name: str | None = None):
    """
    Establish tenant and actor on `g` for the duration of the block.

    Restores whatever scope was active before, so nested scopes are safe.
    """
    saved = {attr: getattr(g, attr, None) for attr in _SCOPE_ATTRS}
    g.org_id = org_id
    g.actor_id = actor_id
    g.actor_name = actor_name
    try:
        yield
    finally:
        for attr, value in saved.items():
            setattr(g, attr, value)


def get_current_org_id() -> int:
    """
    Get current tenant's org_id from Flask g context.

    Raises TenantScopeMissing if no scope was established.
    """
    org_id = getattr(g, "org_id", None)
    if org_id is None:
        raise TenantScopeMissing("Tenant context not established")
    return org_id


def get_current_actor() -> Actor:
    return Actor(id=getattr(g, "actor_id", None), name=getattr(g, "actor_name", None))


def require_same_tenant(entity, label: str):
    """
    Validate that an entity belongs to the current tenant.

    Args:
        entity: Loaded model instance (must have org_id), or None
        label: Human-readable entity name for the message ("Product")

    Returns:
        The entity if it belongs to the current tenant

    Raises:
        NotFound if entity is None
        AccessDenied if it belongs to another tenant
    """
    if entity is None:
        raise NotFound(f"{label} not found.")

    org_id = get_current_org_id()
    if entity.org_id != org_id:
        current_app.logger.warning(
            "Cross-tenant access denied: %s belongs to another organization (current org %s)",
            label, org_id,
        )
        raise AccessDenied("Access denied.")
    return entity


def get_scoped(model, entity_id, label: str, *, lock: bool = False):
    """Load `model` by primary key and enforce tenant ownership."""
    get_current_org_id()
    if entity_id is None:
        raise NotFound(f"{label} not found.")
    query = db.session.query(model).filter_by(id=entity_id)
    if lock:
        query = lock_for_update(query)
    return require_same_tenant(query.first(), label)


def scoped_query(model, org_id: int | None = None):
    """
    Base query over a tenant-owned table, filtered to the current tenant.

    Usage:
        products = scoped_query(Product).order_by(Product.name).all()
    """
    if org_id is None:
        org_id = get_current_org_id()
    return db.session.query(model).filter(model.org_id == org_id)
