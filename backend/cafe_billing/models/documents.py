from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    One counter row per document type ("BILL", "ORD").

    next_number is the number the next caller will receive; it is only ever
    bumped by a single UPDATE so two writers cannot read the same value.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<DocumentSequence {self.document_type} next={self.next_number}>"
