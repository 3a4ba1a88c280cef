from __future__ import annotations

from sqlalchemy.orm import declared_attr

from ..extensions import db
from docledger.time_utils import to_utc_z, to_iso_date


def _decimal_str(value):
    return str(value) if value is not None else None


class DocumentHeaderMixin:
    """
    Column set shared by invoices, quotes and visits.

    number is allocated once at creation and never changes. subtotal,
    tax_total and total_amount are recomputed from the items on every save.
    stock_sync_error holds the reason of the last failed stock
    reconciliation; pending_stock_adjustments holds the deltas that never
    reached the ledger. Both are cleared by the next successful
    reconciliation, which applies the pending deltas along with its own.
    """
    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, index=True)

    customer_notes = db.Column(db.Text, nullable=True)
    internal_notes = db.Column(db.Text, nullable=True)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    stock_sync_error = db.Column(db.Text, nullable=True)
    pending_stock_adjustments = db.Column(db.JSON, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @declared_attr
    def org_id(cls):
        return db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    @declared_attr
    def customer_id(cls):
        return db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    @declared_attr
    def created_by_user_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    def _extra_dict(self) -> dict:
        return {}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "number": self.number,
            "status": self.status,
            "customer_id": self.customer_id,
            "created_by_user_id": self.created_by_user_id,
            "customer_notes": self.customer_notes,
            "internal_notes": self.internal_notes,
            "subtotal": _decimal_str(self.subtotal),
            "tax_total": _decimal_str(self.tax_total),
            "total_amount": _decimal_str(self.total_amount),
            "stock_sync_error": self.stock_sync_error,
            "pending_stock_adjustments": self.pending_stock_adjustments,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        data.update(self._extra_dict())
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class LineItemMixin:
    """
    Line item owned by exactly one document; replaced wholesale on save.

    Lines without product_id (manual text lines, expense lines) never take
    part in stock math.
    """
    id = db.Column(db.Integer, primary_key=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    expense_id = db.Column(db.Integer, nullable=True)
    description = db.Column(db.String(500), nullable=True)
    quantity = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    @declared_attr
    def product_id(cls):
        return db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "product_id": self.product_id,
            "expense_id": self.expense_id,
            "description": self.description,
            "quantity": _decimal_str(self.quantity),
            "unit_price": _decimal_str(self.unit_price),
            "tax_rate": _decimal_str(self.tax_rate),
        }


class Invoice(DocumentHeaderMixin, db.Model):
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("org_id", "number", name="uq_invoices_org_number"),
        {"sqlite_autoincrement": True},
    )

    issue_date = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=True, index=True)
    source_quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id", ondelete="SET NULL"), nullable=True)
    visit_id = db.Column(db.Integer, db.ForeignKey("visits.id", ondelete="SET NULL"), nullable=True)

    items = db.relationship(
        "InvoiceItem",
        order_by="InvoiceItem.position",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": DocumentHeaderMixin.version_id}

    def _extra_dict(self) -> dict:
        return {
            "issue_date": to_iso_date(self.issue_date),
            "due_date": to_iso_date(self.due_date),
            "source_quote_id": self.source_quote_id,
            "visit_id": self.visit_id,
        }


class InvoiceItem(LineItemMixin, db.Model):
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)


class Quote(DocumentHeaderMixin, db.Model):
    __tablename__ = "quotes"
    __table_args__ = (
        db.UniqueConstraint("org_id", "number", name="uq_quotes_org_number"),
        {"sqlite_autoincrement": True},
    )

    issue_date = db.Column(db.Date, nullable=True)
    valid_until_date = db.Column(db.Date, nullable=True)

    items = db.relationship(
        "QuoteItem",
        order_by="QuoteItem.position",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": DocumentHeaderMixin.version_id}

    def _extra_dict(self) -> dict:
        return {
            "issue_date": to_iso_date(self.issue_date),
            "valid_until_date": to_iso_date(self.valid_until_date),
        }


class QuoteItem(LineItemMixin, db.Model):
    __tablename__ = "quote_items"
    __table_args__ = {"sqlite_autoincrement": True}

    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True)


class Visit(DocumentHeaderMixin, db.Model):
    __tablename__ = "visits"
    __table_args__ = (
        db.UniqueConstraint("org_id", "number", name="uq_visits_org_number"),
        {"sqlite_autoincrement": True},
    )

    start_time = db.Column(db.DateTime(timezone=True), nullable=True)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)
    location = db.Column(db.String(255), nullable=True)
    category = db.Column(db.String(32), nullable=True)
    assigned_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    items = db.relationship(
        "VisitItem",
        order_by="VisitItem.position",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": DocumentHeaderMixin.version_id}

    def _extra_dict(self) -> dict:
        return {
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "location": self.location,
            "category": self.category,
            "assigned_user_id": self.assigned_user_id,
        }


class VisitItem(LineItemMixin, db.Model):
    __tablename__ = "visit_items"
    __table_args__ = {"sqlite_autoincrement": True}

    visit_id = db.Column(db.Integer, db.ForeignKey("visits.id", ondelete="CASCADE"), nullable=False, index=True)
