# Overview: Pure reservation diff between two persisted states of a document.

"""
Reservation Diff Calculator

A document reserves stock for its product lines while its status is in the
reserving set of its type. Given the last persisted state and the new
persisted state of one document, compute_delta returns the per-product
change in reserved quantity. The stock ledger subtracts that delta from
stock_level.

WHY diff against persisted state: the result depends only on the two
states, never on how many saves happened in between, so repeated saves,
status bounces and item edits cannot accumulate drift.

This module does no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping


RESERVING_STATUSES: dict[str, frozenset[str]] = {
    "invoice": frozenset({"sent", "overdue", "paid"}),
    "quote": frozenset({"sent", "accepted"}),
    "visit": frozenset({"planned", "completed"}),
}


@dataclass(frozen=True)
class StockAdjustment:
    """One entry of a stock adjustment request. delta > 0 reserves more."""
    product_id: int
    delta: Decimal


@dataclass(frozen=True)
class LineItemSnapshot:
    product_id: int | None
    quantity: Decimal

    @classmethod
    def from_row(cls, row) -> "LineItemSnapshot":
        return cls(product_id=row.product_id, quantity=_to_decimal(row.quantity))

    @classmethod
    def from_mapping(cls, data: Mapping) -> "LineItemSnapshot":
        product_id = data.get("product_id")
        return cls(
            product_id=int(product_id) if product_id is not None else None,
            quantity=_to_decimal(data.get("quantity")),
        )


@dataclass(frozen=True)
class DocumentSnapshot:
    """
    Status plus line items of a document at one point in time.

    status None stands for "does not exist": a brand-new document before
    its first save, or a deleted one. It never reserves.
    """
    status: str | None
    items: tuple[LineItemSnapshot, ...] = field(default_factory=tuple)
    version_id: int | None = None

    @classmethod
    def empty(cls) -> "DocumentSnapshot":
        return cls(status=None, items=())

    @classmethod
    def from_document(cls, document) -> "DocumentSnapshot":
        return cls(
            status=document.status,
            items=tuple(LineItemSnapshot.from_row(item) for item in document.items),
            version_id=document.version_id,
        )

    @classmethod
    def from_mapping(cls, data: Mapping) -> "DocumentSnapshot":
        return cls(
            status=data.get("status"),
            items=tuple(LineItemSnapshot.from_mapping(item) for item in data.get("items") or ()),
            version_id=data.get("version_id"),
        )


def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def reserving_statuses(doc_type: str) -> frozenset[str]:
    try:
        return RESERVING_STATUSES[doc_type]
    except KeyError:
        raise ValueError(f"Unknown document type: {doc_type}") from None


def quantities_by_product(items: Iterable[LineItemSnapshot]) -> dict[int, Decimal]:
    """Sum quantities per product; lines without a product are ignored."""
    totals: dict[int, Decimal] = {}
    for item in items:
        if item.product_id is None:
            continue
        totals[item.product_id] = totals.get(item.product_id, Decimal(0)) + _to_decimal(item.quantity)
    return totals


def compute_delta(
    old_status: str | None,
    new_status: str | None,
    old_items: Iterable[LineItemSnapshot],
    new_items: Iterable[LineItemSnapshot],
    reserving: Iterable[str],
) -> list[StockAdjustment]:
    """
    Net reserved-quantity change per product between two document states.

    Only non-zero deltas are returned, ordered by product_id so callers
    lock product rows in a stable order.
    """
    reserving = frozenset(reserving)
    was_reserving = old_status in reserving
    is_reserving = new_status in reserving

    if not was_reserving and not is_reserving:
        return []

    old_qty = quantities_by_product(old_items)
    new_qty = quantities_by_product(new_items)

    adjustments = []
    for product_id in sorted(set(old_qty) | set(new_qty)):
        reserved_old = old_qty.get(product_id, Decimal(0)) if was_reserving else Decimal(0)
        reserved_new = new_qty.get(product_id, Decimal(0)) if is_reserving else Decimal(0)
        delta = reserved_new - reserved_old
        if delta != 0:
            adjustments.append(StockAdjustment(product_id=product_id, delta=delta))
    return adjustments


def diff_snapshots(doc_type: str, before: DocumentSnapshot, after: DocumentSnapshot) -> list[StockAdjustment]:
    """compute_delta for two snapshots of a document of doc_type."""
    return compute_delta(
        before.status,
        after.status,
        before.items,
        after.items,
        reserving_statuses(doc_type),
    )
