"""
Unit of Work for cascading deletes

WHY: Destructive operations touch several tables (ledger rows,
notifications, variants, products, sales) and must leave a tombstone for
every row they remove. Collecting the plan first and executing it in one
session transaction makes the cascade all-or-nothing: either every planned
row is gone and every tombstone exists, or nothing changed.

USAGE:
    uow = UnitOfWork()
    uow.delete_where(StockAdjustment, StockAdjustment.product_id == product.id)
    uow.delete_where(Notification, Notification.related_id == product.id, tombstone=False)
    uow.delete(product)
    removed = uow.commit()   # {"stock_adjustments": 4, "products": 1}

Nothing touches the database until execute()/commit(). Steps run in the
order they were planned.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import DeletionRecord
from .tenant_service import get_current_actor, get_current_org_id


@dataclass
class _RowDeletion:
    model: Any
    criteria: tuple
    tombstone: bool


@dataclass
class _InstanceDeletion:
    instance: Any
    tombstone: bool


@dataclass
class UnitOfWork:
    org_id: int = field(default_factory=get_current_org_id)
    actor_id: int | None = field(default_factory=lambda: get_current_actor().id)
    _steps: list = field(default_factory=list)
    _extra_tombstones: list = field(default_factory=list)
    _executed: bool = False

    def delete_where(self, model, *criteria, tombstone: bool = True) -> "UnitOfWork":
        """Plan deletion of every tenant row of `model` matching `criteria`."""
        self._steps.append(_RowDeletion(model, criteria, tombstone))
        return self

    def delete(self, instance, *, tombstone: bool = True) -> "UnitOfWork":
        """Plan deletion of one loaded instance."""
        self._steps.append(_InstanceDeletion(instance, tombstone))
        return self

    def tombstone(self, table_name: str, record_id: int) -> "UnitOfWork":
        """Record a tombstone for a row removed by an ORM cascade."""
        self._extra_tombstones.append((table_name, record_id))
        return self

    @property
    def planned_steps(self) -> int:
        return len(self._steps)

    def execute(self) -> Counter:
        """
        Run the plan inside the current session transaction (flush, no commit).

        Returns a Counter of removed rows per table name.
        """
        if self._executed:
            raise RuntimeError("UnitOfWork already executed")
        self._executed = True

        removed: Counter = Counter()
        tombstones: list[tuple[str, int]] = []

        for step in self._steps:
            if isinstance(step, _RowDeletion):
                model = step.model
                ids = [
                    row_id for (row_id,) in db.session.query(model.id)
                    .filter(model.org_id == self.org_id, *step.criteria)
                    .all()
                ]
                if not ids:
                    continue
                db.session.query(model).filter(model.id.in_(ids)).delete(synchronize_session=False)
                removed[model.__tablename__] += len(ids)
                if step.tombstone:
                    tombstones.extend((model.__tablename__, row_id) for row_id in ids)
            else:
                instance = step.instance
                table_name = instance.__tablename__
                db.session.delete(instance)
                removed[table_name] += 1
                if step.tombstone:
                    tombstones.append((table_name, instance.id))

        tombstones.extend(self._extra_tombstones)
        for table_name, record_id in tombstones:
            db.session.add(DeletionRecord(
                org_id=self.org_id,
                table_name=table_name,
                record_id=record_id,
                deleted_by_id=self.actor_id,
            ))

        db.session.flush()
        current_app.logger.info(
            "Unit of work removed %s (tombstones: %s)",
            dict(removed) or "nothing", len(tombstones),
        )
        return removed

    def commit(self) -> Counter:
        """Execute the plan and commit; roll back everything on failure."""
        try:
            removed = self.execute()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return removed
