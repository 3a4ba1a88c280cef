# Overview: Stock ledger; the only code path allowed to change Product.stock_level.

"""
Stock Ledger

INVARIANTS (authoritative):
- Every change to Product.stock_level goes through apply_adjustments (delta
  batches from document reconciliation) or set_stock_level (operator
  overwrite). Nothing else may read-modify-write the counter.
- A batch is all-or-nothing: one transaction, product rows locked in
  ascending id order, one commit. Any failing row fails the whole batch.
- Untracked products (stock_level NULL) are skipped silently.
- A positive delta means "more is reserved": stock_level -= delta.
- Derived stock_status is recomputed after every change unless pinned to
  available_soon.
- The low-stock notifier fires at most once per product per batch, after
  the batch is committed, and only when the level moved from above the
  minimum to at-or-below it. Notifier failures never reach the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Invoice, InvoiceItem, Product, Quote, QuoteItem, Visit, VisitItem
from ..models.inventory import (
    KIND_SERVICE,
    STOCK_AVAILABLE,
    STOCK_AVAILABLE_SOON,
    STOCK_LOW,
    STOCK_UNAVAILABLE,
)
from .concurrency import begin_write, lock_for_update, run_with_retry
from .reservation_service import StockAdjustment, reserving_statuses
from . import notification_service


class StockLedgerError(Exception):
    """Raised when a stock batch or overwrite cannot be applied. Nothing was committed."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class StockChange:
    product_id: int
    product_name: str
    before: int | None
    after: int | None
    stock_status: str
    crossed_threshold: bool

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "before": self.before,
            "after": self.after,
            "stock_status": self.stock_status,
            "crossed_threshold": self.crossed_threshold,
        }


def derive_stock_status(stock_level: int | None, minimum_stock_level: int | None, current_status: str | None) -> str:
    """
    Pure status derivation.

    available_soon is a manual pin and survives any level change. Untracked
    products keep whatever status they have.
    """
    if current_status == STOCK_AVAILABLE_SOON:
        return STOCK_AVAILABLE_SOON
    if stock_level is None:
        return current_status or STOCK_AVAILABLE
    minimum = minimum_stock_level or 0
    if stock_level <= 0:
        return STOCK_UNAVAILABLE
    if stock_level <= minimum:
        return STOCK_LOW
    return STOCK_AVAILABLE


def refresh_stock_status(product: Product) -> str:
    product.stock_status = derive_stock_status(
        product.stock_level, product.minimum_stock_level, product.stock_status
    )
    return product.stock_status


def crossed_threshold(before: int | None, after: int | None, minimum: int | None) -> bool:
    """True when the level moved from above the minimum to at-or-below it."""
    if before is None or after is None:
        return False
    minimum = minimum or 0
    return before > minimum and after <= minimum


def _aggregate(adjustments: Iterable[StockAdjustment]) -> dict[int, Decimal]:
    totals: dict[int, Decimal] = {}
    for adj in adjustments:
        totals[adj.product_id] = totals.get(adj.product_id, Decimal(0)) + Decimal(str(adj.delta))
    return {pid: delta for pid, delta in totals.items() if delta != 0}


def _whole(delta: Decimal, product: Product) -> int:
    if delta != delta.to_integral_value():
        raise StockLedgerError(
            f"Fractional quantity {delta} for stock-tracked product {product.name!r}",
            details={"product_id": product.id, "delta": str(delta)},
        )
    return int(delta)


def _lock_products(org_id: int, product_ids: list[int]) -> dict[int, Product]:
    query = (
        db.session.query(Product)
        .filter(Product.org_id == org_id, Product.id.in_(product_ids))
        .order_by(Product.id.asc())
        .populate_existing()
    )
    products = {p.id: p for p in lock_for_update(query).all()}

    missing = sorted(set(product_ids) - set(products))
    if missing:
        raise StockLedgerError(
            f"Products not found: {', '.join(str(pid) for pid in missing)}",
            details={"product_ids": missing},
        )
    return products


def notify_crossings(org_id: int, changes: list[StockChange]) -> None:
    """Fire the low-stock notifier for every change that crossed the minimum. Call after commit."""
    for change in changes:
        if change.crossed_threshold:
            notification_service.notify_low_stock(org_id, change.product_id)


def _run_ledger_op(op):
    try:
        return run_with_retry(op)
    except StockLedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Stock ledger write failed")
        raise StockLedgerError(f"Stock ledger write failed: {exc.__class__.__name__}") from exc


def _apply_locked(org_id: int, totals: dict[int, Decimal]) -> list[StockChange]:
    products = _lock_products(org_id, sorted(totals))

    changes = []
    for product_id in sorted(totals):
        product = products[product_id]
        if not product.is_tracked:
            continue
        delta = _whole(totals[product_id], product)
        before = product.stock_level
        product.stock_level = before - delta
        refresh_stock_status(product)
        changes.append(StockChange(
            product_id=product.id,
            product_name=product.name,
            before=before,
            after=product.stock_level,
            stock_status=product.stock_status,
            crossed_threshold=crossed_threshold(before, product.stock_level, product.minimum_stock_level),
        ))
    db.session.flush()
    return changes


def apply_adjustments(
    org_id: int,
    adjustments: Iterable[StockAdjustment],
    *,
    commit: bool = True,
    notify: bool = True,
) -> list[StockChange]:
    """
    Apply one batch of reservation deltas atomically.

    Requests for the same product are summed first, so each product is
    updated, re-derived and (possibly) notified once. Returns one
    StockChange per tracked product actually changed.

    commit=False joins the caller's open write transaction instead: no
    retry, no commit, no notification. The caller commits, then passes the
    returned changes to notify_crossings. A StockLedgerError leaves the
    caller's transaction for the caller to roll back.
    """
    totals = _aggregate(adjustments)
    if not totals:
        return []

    if not commit:
        return _apply_locked(org_id, totals)

    def _op() -> list[StockChange]:
        begin_write()
        changes = _apply_locked(org_id, totals)
        db.session.commit()
        return changes

    changes = _run_ledger_op(_op)

    if notify:
        notify_crossings(org_id, changes)
    return changes


_RESERVING_DOCUMENTS = (
    ("invoice", Invoice, InvoiceItem, InvoiceItem.invoice_id),
    ("quote", Quote, QuoteItem, QuoteItem.quote_id),
    ("visit", Visit, VisitItem, VisitItem.visit_id),
)


def _fractional_holders(org_id: int, product_id: int) -> list[str]:
    """
    Numbers of documents that would hand a tracked counter a fractional delta:
    reserving documents holding a non-whole quantity of the product, or
    documents with a non-whole parked delta for it.
    """
    holders: set[str] = set()
    for doc_type, model, item_model, parent_id in _RESERVING_DOCUMENTS:
        reserved: dict[str, Decimal] = {}
        rows = (
            db.session.query(model.number, item_model.quantity)
            .join(item_model, parent_id == model.id)
            .filter(
                model.org_id == org_id,
                model.status.in_(reserving_statuses(doc_type)),
                item_model.product_id == product_id,
            )
            .all()
        )
        for number, quantity in rows:
            reserved[number] = reserved.get(number, Decimal(0)) + Decimal(str(quantity))

        parked = (
            db.session.query(model.number, model.pending_stock_adjustments)
            .filter(model.org_id == org_id, model.pending_stock_adjustments.isnot(None))
            .all()
        )
        for number, entries in parked:
            for entry in entries or []:
                if int(entry["product_id"]) == product_id:
                    delta = Decimal(str(entry["delta"]))
                    if delta != delta.to_integral_value():
                        holders.add(number)

        holders.update(
            number for number, quantity in reserved.items()
            if quantity != quantity.to_integral_value()
        )
    return sorted(holders)


def set_stock_level(org_id: int, product_id: int, stock_level: int | None, *, notify: bool = True) -> StockChange:
    """
    Operator overwrite of the counter (physical count correction).

    Authoritative: replaces the value instead of applying a delta. Documents
    reserving stock at this moment are not reconciled against it.

    Starting to track a product is refused while documents still hold it in
    fractional quantities: their later release could never be applied.
    """
    if stock_level is not None and (isinstance(stock_level, bool) or not isinstance(stock_level, int)):
        raise StockLedgerError("stock_level must be an integer or null")

    def _op() -> StockChange:
        begin_write()
        product = _lock_products(org_id, [product_id])[product_id]
        if product.kind == KIND_SERVICE and stock_level is not None:
            raise StockLedgerError("Services are not stock-tracked", details={"product_id": product_id})
        if product.stock_level is None and stock_level is not None:
            holders = _fractional_holders(org_id, product_id)
            if holders:
                raise StockLedgerError(
                    f"Cannot start tracking {product.name!r}: fractional quantities on {', '.join(holders)}",
                    details={"product_id": product_id, "documents": holders},
                )

        before = product.stock_level
        product.stock_level = stock_level
        refresh_stock_status(product)
        change = StockChange(
            product_id=product.id,
            product_name=product.name,
            before=before,
            after=stock_level,
            stock_status=product.stock_status,
            crossed_threshold=crossed_threshold(before, stock_level, product.minimum_stock_level),
        )
        db.session.commit()
        return change

    change = _run_ledger_op(_op)

    if notify:
        notify_crossings(org_id, [change])
    return change


def list_low_stock_products(org_id: int) -> list[Product]:
    """Tracked products at or below their minimum, lowest level first."""
    return (
        db.session.query(Product)
        .filter(
            Product.org_id == org_id,
            Product.stock_level.isnot(None),
            Product.stock_level <= Product.minimum_stock_level,
        )
        .order_by(Product.stock_level.asc(), Product.id.asc())
        .all()
    )
