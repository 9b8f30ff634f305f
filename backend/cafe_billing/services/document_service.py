# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


DOCUMENT_TYPE_BILL = "BILL"
DOCUMENT_TYPE_ORDER = "ORD"


def next_document_number(*, document_type: str, pad: int = 4) -> str:
    """
    Allocate the next document number for a type (e.g. "BILL-0001").

    Runs inside the caller's transaction; the sequence row is bumped with a
    single UPDATE so concurrent callers never receive the same number.
    """
    if not document_type:
        raise ValueError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            return f"{document_type}-{1:0{pad}d}"
        except IntegrityError:
            # Another writer created the row first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return f"{document_type}-{current - 1:0{pad}d}"
