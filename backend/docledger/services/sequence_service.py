# Overview: Service-layer operations for document numbering; encapsulates the atomic counter.

"""
Sequence Allocator - collision-free human-readable numbers per tenant/type

WHY: Several users of the same tenant create invoices, quotes and visits at
the same time. Numbers must never collide and must never be reused.

INVARIANTS:
- One counter row per (org_id, document_type), created lazily on first use.
- The counter is only ever changed by an in-database increment
  (UPDATE ... SET current_value = current_value + 1), never by a
  read-modify-write from Python. The UPDATE holds the row lock until the
  surrounding transaction ends, so concurrent callers serialize.
- Allocation shares the transaction of the row it numbers: if the insert of
  that row fails, the rollback also un-does the increment.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from docledger.time_utils import utcnow
from .concurrency import begin_write, run_with_retry


SEQUENCE_TYPES = ("invoice", "quote", "visit", "product", "customer")


class SequenceAllocationError(Exception):
    """Raised when a number cannot be allocated."""
    pass


def format_number(prefix: str, value: int, *, year: int | None = None, pad: int = 5) -> str:
    """Pure formatting: ("INV", 7, year=2024) -> "INV-2024-00007"."""
    if year is None:
        year = utcnow().year
    return f"{prefix}-{year}-{value:0{pad}d}"


def _increment(org_id: int, document_type: str) -> int:
    """
    Increment the counter inside the caller's transaction and return the new value.

    Does not commit.
    """
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.org_id == org_id,
            DocumentSequence.document_type == document_type,
        )
        .values(current_value=DocumentSequence.current_value + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        # First use for this tenant/type. A concurrent creator may win the
        # insert; the savepoint keeps our outer transaction usable.
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(org_id=org_id, document_type=document_type, current_value=1))
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise SequenceAllocationError(
                    f"Sequence row for {document_type} could not be created or locked"
                )

    return (
        db.session.query(DocumentSequence.current_value)
        .filter_by(org_id=org_id, document_type=document_type)
        .scalar()
    )


def next_value(org_id: int, document_type: str) -> int:
    """
    Reserve the next integer for (org_id, document_type) in the current transaction.

    The caller owns the transaction and must commit (or roll back) it
    together with the row that carries the number.
    """
    if not org_id:
        raise SequenceAllocationError("org_id is required")
    if document_type not in SEQUENCE_TYPES:
        raise SequenceAllocationError(f"Unknown document type: {document_type}")
    return _increment(org_id, document_type)


def next_number(org_id: int, document_type: str) -> str:
    """next_value() formatted with the configured prefix and padding. Does not commit."""
    value = next_value(org_id, document_type)
    prefixes = current_app.config["SEQUENCE_PREFIXES"]
    pad = current_app.config.get("SEQUENCE_PAD", 5)
    return format_number(prefixes.get(document_type, document_type.upper()[:3]), value, pad=pad)


def allocate_number(org_id: int, document_type: str) -> str:
    """
    Standalone allocation: increment, commit, return the formatted number.

    The number is burned even if the caller never uses it; numbers are
    unique, not gapless across abandoned allocations.
    """
    def _op() -> str:
        begin_write()
        number = next_number(org_id, document_type)
        db.session.commit()
        return number

    return run_with_retry(_op)


def current_value(org_id: int, document_type: str) -> int:
    """Last issued value (0 when the counter has never been used)."""
    value = (
        db.session.query(DocumentSequence.current_value)
        .filter_by(org_id=org_id, document_type=document_type)
        .scalar()
    )
    return value or 0
