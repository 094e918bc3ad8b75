# Overview: Per-tenant document number allocation (TRX-, RET-, PO-, HLD-).

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence

DOC_SALE = "SALE"
DOC_RETURN = "RETURN"
DOC_PURCHASE_ORDER = "PURCHASE_ORDER"
DOC_HELD_ORDER = "HELD_ORDER"

DOCUMENT_PREFIXES = {
    DOC_SALE: "TRX",
    DOC_RETURN: "RET",
    DOC_PURCHASE_ORDER: "PO",
    DOC_HELD_ORDER: "HLD",
}


def next_document_number(*, org_id: int, document_type: str, pad: int = 6) -> str:
    """
    Allocate the next document number for a tenant/type inside the caller's
    transaction (flushes, never commits).

    Increments with a single UPDATE so two writers cannot read the same value;
    the first allocation for a type inserts the sequence row.
    """
    if document_type not in DOCUMENT_PREFIXES:
        raise ValueError(f"Unknown document type: {document_type}")
    prefix = DOCUMENT_PREFIXES[document_type]

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.org_id == org_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(org_id=org_id, document_type=document_type)
            .scalar()
        )
        number = current - 1
    else:
        # First document of this type; a concurrent first insert fails the
        # unique constraint and the caller's run_with_retry re-runs the unit.
        db.session.add(DocumentSequence(org_id=org_id, document_type=document_type, next_number=2))
        db.session.flush()
        number = 1

    return f"{prefix}-{str(number).zfill(pad)}"
