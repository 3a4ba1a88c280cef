# Overview: Document lifecycle coordinator; persists invoices, quotes and visits and keeps stock reconciled.

"""
Document Lifecycle Coordinator

Every save of an invoice, quote or visit runs through save_document:

1. validate (no writes),
2. persist header + items in one transaction (a new document gets its
   number from the sequence allocator inside that same transaction),
3. diff the persisted state before the save against the persisted state
   after it,
4. send the delta to the stock ledger.

INVARIANTS:
- A validation or persistence failure writes nothing: no document, no
  consumed number, no stock change.
- A stock failure after a successful persist does NOT undo the document.
  The delta is parked on the header (pending_stock_adjustments) together
  with stock_sync_error, and the caller gets a stock warning. The next
  successful reconciliation of that document applies the parked delta.
- Reconciliation runs while holding the header lock, so parked deltas are
  never applied twice.
- Delete releases the document's reservation and removes it in one
  transaction; a failed release deletes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Customer, Invoice, InvoiceItem, Product, Quote, QuoteItem, User, Visit, VisitItem
from ..validation import ModelValidationPolicy, ValidationError, validate_line_items, validate_payload
from docledger.time_utils import today_utc, utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry
from .inventory_service import StockChange, StockLedgerError, apply_adjustments, notify_crossings
from .reservation_service import DocumentSnapshot, StockAdjustment, diff_snapshots
from .sequence_service import SequenceAllocationError, next_number


CENT = Decimal("0.01")

# Fields a client may set on every document type
COMMON_FIELDS = {"status", "customer_id", "customer_notes", "internal_notes"}


class DocumentError(Exception):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class DocumentNotFoundError(DocumentError):
    pass


class DocumentConflictError(DocumentError):
    """The caller edited a stale copy of the document."""
    pass


class DocumentSaveError(DocumentError):
    """Persisting the document failed; nothing was written."""
    pass


@dataclass(frozen=True)
class DocumentType:
    name: str
    model: type
    item_model: type
    statuses: tuple[str, ...]
    initial_status: str
    policy: ModelValidationPolicy


DOCUMENT_TYPES: dict[str, DocumentType] = {
    "invoice": DocumentType(
        name="invoice",
        model=Invoice,
        item_model=InvoiceItem,
        statuses=("draft", "sent", "paid", "overdue"),
        initial_status="draft",
        policy=ModelValidationPolicy(
            writable_fields=COMMON_FIELDS | {"issue_date", "due_date", "visit_id"},
            required_on_create={"customer_id"},
        ),
    ),
    "quote": DocumentType(
        name="quote",
        model=Quote,
        item_model=QuoteItem,
        statuses=("draft", "sent", "accepted", "declined"),
        initial_status="draft",
        policy=ModelValidationPolicy(
            writable_fields=COMMON_FIELDS | {"issue_date", "valid_until_date"},
            required_on_create={"customer_id"},
        ),
    ),
    "visit": DocumentType(
        name="visit",
        model=Visit,
        item_model=VisitItem,
        statuses=("planned", "completed", "cancelled"),
        initial_status="planned",
        policy=ModelValidationPolicy(
            writable_fields=COMMON_FIELDS | {"start_time", "end_time", "location", "category", "assigned_user_id"},
            required_on_create={"customer_id"},
        ),
    ),
}

# Payload keys that are not header columns
_NON_HEADER_KEYS = {"items", "prior_version_id", "version_id"}


@dataclass
class SaveResult:
    document: object
    stock_warning: str | None = None
    adjustments: list[StockAdjustment] = field(default_factory=list)
    stock_changes: list[StockChange] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "document": self.document.to_dict(),
            "stock_warning": self.stock_warning,
            "stock_changes": [c.to_dict() for c in self.stock_changes],
        }


def get_document_type(doc_type: str) -> DocumentType:
    try:
        return DOCUMENT_TYPES[doc_type]
    except KeyError:
        raise ValidationError(f"Unknown document type: {doc_type}") from None


# =============================================================================
# Totals
# =============================================================================

def compute_totals(items: Iterable[dict]) -> dict:
    """
    Subtotal, tax per rate and grand total of a list of line dicts.

    Line total = quantity * unit_price; tax = line total * tax_rate / 100.
    Amounts are summed unrounded and rounded to cents once at the end.
    """
    subtotal = Decimal(0)
    tax_by_rate: dict[Decimal, Decimal] = {}
    for item in items:
        line_total = Decimal(item["quantity"]) * Decimal(item["unit_price"])
        subtotal += line_total
        rate = Decimal(item.get("tax_rate") or 0)
        if rate:
            tax_by_rate[rate] = tax_by_rate.get(rate, Decimal(0)) + line_total * rate / 100

    tax_total = sum(tax_by_rate.values(), Decimal(0))
    return {
        "subtotal": subtotal.quantize(CENT, rounding=ROUND_HALF_UP),
        "tax_by_rate": {
            format(rate.normalize(), "f"): amount.quantize(CENT, rounding=ROUND_HALF_UP)
            for rate, amount in sorted(tax_by_rate.items())
        },
        "tax_total": tax_total.quantize(CENT, rounding=ROUND_HALF_UP),
        "total_amount": (subtotal + tax_total).quantize(CENT, rounding=ROUND_HALF_UP),
    }


# =============================================================================
# Validation
# =============================================================================

def _item_dict(item) -> dict:
    return {
        "product_id": item.product_id,
        "expense_id": item.expense_id,
        "description": item.description,
        "quantity": item.quantity,
        "unit_price": item.unit_price,
        "tax_rate": item.tax_rate,
    }


def _check_references(org_id: int, header: dict, items: list[dict]) -> None:
    if header.get("customer_id") is not None:
        customer = db.session.query(Customer.id).filter_by(id=header["customer_id"], org_id=org_id).first()
        if customer is None:
            raise ValidationError("Customer not found", details={"customer_id": header["customer_id"]})

    if header.get("assigned_user_id") is not None:
        user = db.session.query(User.id).filter_by(id=header["assigned_user_id"], org_id=org_id).first()
        if user is None:
            raise ValidationError("Assigned user not found", details={"assigned_user_id": header["assigned_user_id"]})

    if header.get("visit_id") is not None:
        visit = db.session.query(Visit.id).filter_by(id=header["visit_id"], org_id=org_id).first()
        if visit is None:
            raise ValidationError("Visit not found", details={"visit_id": header["visit_id"]})

    product_ids = sorted({item["product_id"] for item in items if item["product_id"] is not None})
    if not product_ids:
        return

    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.org_id == org_id, Product.id.in_(product_ids)).all()
    }
    missing = [pid for pid in product_ids if pid not in products]
    if missing:
        raise ValidationError("Products not found", details={"product_ids": missing})

    for index, item in enumerate(items):
        product = products.get(item["product_id"])
        if product is None or not product.is_tracked:
            continue
        if item["quantity"] != item["quantity"].to_integral_value():
            raise ValidationError(
                f"items[{index}].quantity must be a whole number for stock-tracked product {product.name!r}",
                details={"product_id": product.id},
            )


def validate_document(org_id: int, dtype: DocumentType, payload: dict, *, creating: bool) -> tuple[dict, list[dict] | None]:
    """
    Normalize a save payload into (header patch, items).

    items is None when an update omits "items": the persisted lines are kept.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    header_payload = {k: v for k, v in payload.items() if k not in _NON_HEADER_KEYS}
    header = validate_payload(model=dtype.model, payload=header_payload, policy=dtype.policy, partial=not creating)

    if "status" in header and header["status"] not in dtype.statuses:
        raise ValidationError(f"status must be one of: {', '.join(dtype.statuses)}")

    items = None
    if creating or "items" in payload:
        items = validate_line_items(payload.get("items"))

    _check_references(org_id, header, items or [])
    return header, items


# =============================================================================
# Locking helpers
# =============================================================================

def _find_locked(org_id: int, dtype: DocumentType, document_id: int):
    query = (
        db.session.query(dtype.model)
        .filter(dtype.model.id == document_id, dtype.model.org_id == org_id)
        .populate_existing()
    )
    return lock_for_update(query).first()


def _lock_document(org_id: int, dtype: DocumentType, document_id: int):
    document = _find_locked(org_id, dtype, document_id)
    if document is None:
        raise DocumentNotFoundError(f"{dtype.name.capitalize()} not found", details={"id": document_id})
    return document


def _pending_of(document) -> list[StockAdjustment]:
    return [
        StockAdjustment(product_id=int(entry["product_id"]), delta=Decimal(str(entry["delta"])))
        for entry in (document.pending_stock_adjustments or [])
    ]


def _merge_pending(existing: Iterable[StockAdjustment], new: Iterable[StockAdjustment]) -> list[dict] | None:
    totals: dict[int, Decimal] = {}
    for adj in list(existing) + list(new):
        totals[adj.product_id] = totals.get(adj.product_id, Decimal(0)) + adj.delta
    merged = [
        {"product_id": product_id, "delta": format(delta.normalize(), "f")}
        for product_id, delta in sorted(totals.items())
        if delta != 0
    ]
    return merged or None


# =============================================================================
# Save
# =============================================================================

def _persist(
    org_id: int,
    dtype: DocumentType,
    document_id: int | None,
    header: dict,
    items: list[dict] | None,
    prior: DocumentSnapshot | None,
    user_id: int | None,
) -> tuple[int, DocumentSnapshot, DocumentSnapshot]:
    """Stage 2: one transaction, returns (id, persisted-before, persisted-after)."""

    def _op():
        begin_write()
        if document_id is None:
            document = dtype.model(
                org_id=org_id,
                number=next_number(org_id, dtype.name),
                status=dtype.initial_status,
                created_by_user_id=user_id,
            )
            db.session.add(document)
            before = DocumentSnapshot.empty()
        else:
            document = _lock_document(org_id, dtype, document_id)
            if prior is not None and prior.version_id is not None and prior.version_id != document.version_id:
                raise DocumentConflictError(
                    f"{dtype.name.capitalize()} {document.number} was changed by someone else",
                    details={"expected_version": prior.version_id, "current_version": document.version_id},
                )
            before = DocumentSnapshot.from_document(document)

        for key, value in header.items():
            setattr(document, key, value)

        lines = items if items is not None else [_item_dict(item) for item in document.items]
        document.items = [dtype.item_model(position=i, **line) for i, line in enumerate(lines)]

        totals = compute_totals(lines)
        document.subtotal = totals["subtotal"]
        document.tax_total = totals["tax_total"]
        document.total_amount = totals["total_amount"]
        # Always dirty the header so every save bumps version_id
        document.updated_at = utcnow()

        db.session.flush()
        after = DocumentSnapshot.from_document(document)
        saved_id = document.id
        db.session.commit()
        return saved_id, before, after

    try:
        return run_with_retry(_op)
    except (DocumentError, ValidationError):
        db.session.rollback()
        raise
    except (SQLAlchemyError, SequenceAllocationError) as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to persist %s", dtype.name)
        raise DocumentSaveError(f"Could not save {dtype.name}: {exc.__class__.__name__}") from exc


def _park_adjustments(org_id: int, dtype: DocumentType, document_id: int, adjustments: list[StockAdjustment], warning: str) -> None:
    def _op():
        begin_write()
        document = _find_locked(org_id, dtype, document_id)
        if document is None:
            current_app.logger.warning(
                "%s %s vanished before unapplied stock deltas could be recorded", dtype.name, document_id
            )
            db.session.rollback()
            return
        document.pending_stock_adjustments = _merge_pending(_pending_of(document), adjustments)
        document.stock_sync_error = warning
        db.session.commit()

    try:
        run_with_retry(_op)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to record stock sync error on %s %s", dtype.name, document_id)


def _reconcile(org_id: int, dtype: DocumentType, document_id: int, adjustments: list[StockAdjustment]) -> tuple[list[StockChange], str | None]:
    """
    Stages 3-4: apply this save's delta plus anything parked earlier.

    Returns (stock changes, warning). Never raises for stock failures.
    """

    def _op():
        begin_write()
        document = _find_locked(org_id, dtype, document_id)
        pending = _pending_of(document) if document is not None else []
        changes = apply_adjustments(org_id, list(adjustments) + pending, commit=False)
        if document is not None and (document.pending_stock_adjustments or document.stock_sync_error):
            document.pending_stock_adjustments = None
            document.stock_sync_error = None
        db.session.commit()
        return changes

    try:
        changes = run_with_retry(_op)
    except (StockLedgerError, SQLAlchemyError) as exc:
        db.session.rollback()
        warning = f"stock update failed: {exc}"
        current_app.logger.warning(
            "%s %s saved but stock was not reconciled: %s", dtype.name.capitalize(), document_id, exc
        )
        if adjustments:
            _park_adjustments(org_id, dtype, document_id, adjustments, warning)
        return [], warning

    notify_crossings(org_id, changes)
    return changes, None


def _save(
    org_id: int,
    doc_type: str,
    payload: dict,
    *,
    document_id: int | None = None,
    prior: DocumentSnapshot | None = None,
    user_id: int | None = None,
    system_fields: dict | None = None,
) -> SaveResult:
    dtype = get_document_type(doc_type)
    header, items = validate_document(org_id, dtype, payload, creating=document_id is None)
    if system_fields:
        header.update(system_fields)

    saved_id, before, after = _persist(org_id, dtype, document_id, header, items, prior, user_id)

    adjustments = diff_snapshots(dtype.name, before, after)
    changes: list[StockChange] = []
    warning = None

    needs_reconcile = bool(adjustments)
    if not needs_reconcile and document_id is not None:
        # Nothing new to apply, but an earlier failure may have left deltas parked
        document = db.session.get(dtype.model, saved_id)
        needs_reconcile = bool(document is not None and document.pending_stock_adjustments)

    if needs_reconcile:
        changes, warning = _reconcile(org_id, dtype, saved_id, adjustments)

    document = db.session.get(dtype.model, saved_id, populate_existing=True)
    return SaveResult(document=document, stock_warning=warning, adjustments=adjustments, stock_changes=changes)


def save_document(
    org_id: int,
    doc_type: str,
    payload: dict,
    *,
    document_id: int | None = None,
    prior: DocumentSnapshot | None = None,
    user_id: int | None = None,
) -> SaveResult:
    """
    Create (document_id None) or update one document and reconcile stock.

    prior is the snapshot the caller started editing from. When it carries a
    version_id that no longer matches the stored document the save is
    refused with DocumentConflictError. The stock diff itself is always
    taken against the state read under the row lock.

    Raises ValidationError, DocumentNotFoundError, DocumentConflictError or
    DocumentSaveError; in all of those cases nothing was written. Stock
    problems are reported through SaveResult.stock_warning instead.
    """
    return _save(org_id, doc_type, payload, document_id=document_id, prior=prior, user_id=user_id)


def retry_stock_reconciliation(org_id: int, doc_type: str, document_id: int) -> SaveResult:
    """Re-apply stock deltas parked on a document by an earlier failed save."""
    dtype = get_document_type(doc_type)
    document = get_document(org_id, doc_type, document_id)
    changes, warning = [], None
    if document.pending_stock_adjustments:
        changes, warning = _reconcile(org_id, dtype, document.id, [])
    document = db.session.get(dtype.model, document_id, populate_existing=True)
    return SaveResult(document=document, stock_warning=warning, stock_changes=changes)


# =============================================================================
# Delete
# =============================================================================

def delete_document(org_id: int, doc_type: str, document_id: int) -> list[StockChange]:
    """
    Release the document's reservation and delete it, atomically.

    The release includes deltas parked by earlier failed reconciliations,
    so the ledger ends up exactly as if the document never existed.
    Raises StockLedgerError (nothing deleted) when the release fails.
    """
    dtype = get_document_type(doc_type)

    def _op():
        begin_write()
        document = _lock_document(org_id, dtype, document_id)
        release = diff_snapshots(dtype.name, DocumentSnapshot.from_document(document), DocumentSnapshot.empty())
        changes = apply_adjustments(org_id, release + _pending_of(document), commit=False)
        number = document.number
        db.session.delete(document)
        db.session.commit()
        return number, changes

    try:
        number, changes = run_with_retry(_op)
    except (DocumentError, StockLedgerError):
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to delete %s %s", dtype.name, document_id)
        raise DocumentSaveError(f"Could not delete {dtype.name}: {exc.__class__.__name__}") from exc

    current_app.logger.info("Deleted %s %s (%s stock change(s))", dtype.name, number, len(changes))
    notify_crossings(org_id, changes)
    return changes


# =============================================================================
# Reads
# =============================================================================

def get_document(org_id: int, doc_type: str, document_id: int):
    dtype = get_document_type(doc_type)
    document = db.session.query(dtype.model).filter_by(id=document_id, org_id=org_id).first()
    if document is None:
        raise DocumentNotFoundError(f"{dtype.name.capitalize()} not found", details={"id": document_id})
    return document


def list_documents(
    org_id: int,
    doc_type: str,
    *,
    status: str | None = None,
    customer_id: int | None = None,
    stock_sync_error: bool | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Tenant-scoped listing, newest first, with optional pagination.

    stock_sync_error=True returns only documents whose last reconciliation
    failed (the operator's drift worklist).
    """
    dtype = get_document_type(doc_type)
    model = dtype.model

    query = db.session.query(model).filter(model.org_id == org_id)
    if status:
        if status not in dtype.statuses:
            raise ValidationError(f"status must be one of: {', '.join(dtype.statuses)}")
        query = query.filter(model.status == status)
    if customer_id is not None:
        query = query.filter(model.customer_id == customer_id)
    if stock_sync_error is True:
        query = query.filter(model.stock_sync_error.isnot(None))
    elif stock_sync_error is False:
        query = query.filter(model.stock_sync_error.is_(None))
    query = query.order_by(model.id.desc())

    if page is None:
        documents = query.all()
        return {
            "items": [d.to_dict(include_items=False) for d in documents],
            "count": len(documents),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    documents = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [d.to_dict(include_items=False) for d in documents],
        "count": len(documents),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


# =============================================================================
# Derived operations
# =============================================================================

def _copy_lines(document) -> list[dict]:
    return [
        {
            "product_id": item.product_id,
            "expense_id": item.expense_id,
            "description": item.description,
            "quantity": str(item.quantity),
            "unit_price": str(item.unit_price),
            "tax_rate": str(item.tax_rate),
        }
        for item in document.items
    ]


def copy_document(org_id: int, doc_type: str, document_id: int, *, user_id: int | None = None) -> SaveResult:
    """
    Duplicate a document under a fresh number, reset to the initial status.

    A copied visit is scheduled for tomorrow, keeping the source's duration.
    """
    dtype = get_document_type(doc_type)
    source = get_document(org_id, doc_type, document_id)

    payload = {
        key: getattr(source, key)
        for key in sorted(dtype.policy.writable_fields - {"status"})
    }
    payload["status"] = dtype.initial_status
    payload["items"] = _copy_lines(source)

    if dtype.name == "visit":
        start = utcnow().replace(microsecond=0) + timedelta(days=1)
        duration = None
        if source.start_time and source.end_time:
            duration = source.end_time - source.start_time
        payload["start_time"] = start
        payload["end_time"] = start + duration if duration is not None else None

    result = _save(org_id, doc_type, payload, user_id=user_id)
    current_app.logger.info("Copied %s %s to %s", dtype.name, source.number, result.document.number)
    return result


def convert_quote_to_invoice(
    org_id: int,
    quote_id: int,
    *,
    user_id: int | None = None,
    issue_date: date | None = None,
    payment_days: int = 14,
) -> SaveResult:
    """
    Create a draft invoice from a quote. The quote itself is not changed.

    Drafts do not reserve, so the new invoice does not touch stock until it
    is sent.
    """
    quote = get_document(org_id, "quote", quote_id)
    issue_date = issue_date or today_utc()

    payload = {
        "customer_id": quote.customer_id,
        "customer_notes": quote.customer_notes,
        "internal_notes": quote.internal_notes,
        "status": "draft",
        "issue_date": issue_date,
        "due_date": issue_date + timedelta(days=payment_days),
        "items": _copy_lines(quote),
    }
    result = _save(org_id, "invoice", payload, user_id=user_id, system_fields={"source_quote_id": quote.id})
    current_app.logger.info("Converted quote %s to invoice %s", quote.number, result.document.number)
    return result


def mark_overdue_invoices(org_id: int, today: date | None = None) -> list[SaveResult]:
    """
    Move sent invoices whose due date has passed to overdue.

    Both statuses reserve, so the resulting diff is empty; the transition
    still goes through the regular save path.
    """
    today = today or today_utc()
    overdue_ids = [
        row.id
        for row in (
            db.session.query(Invoice.id)
            .filter(
                Invoice.org_id == org_id,
                Invoice.status == "sent",
                Invoice.due_date.isnot(None),
                Invoice.due_date < today,
            )
            .order_by(Invoice.id.asc())
            .all()
        )
    ]

    results = []
    for invoice_id in overdue_ids:
        try:
            results.append(save_document(org_id, "invoice", {"status": "overdue"}, document_id=invoice_id))
        except DocumentNotFoundError:
            continue
    if results:
        current_app.logger.info("Marked %s invoice(s) overdue for org %s", len(results), org_id)
    return results
