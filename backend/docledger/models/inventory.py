from __future__ import annotations

from ..extensions import db
from docledger.time_utils import to_utc_z, to_iso_date


KIND_GOOD = "good"
KIND_SERVICE = "service"
PRODUCT_KINDS = (KIND_GOOD, KIND_SERVICE)

STOCK_AVAILABLE = "available"
STOCK_LOW = "low"
STOCK_UNAVAILABLE = "unavailable"
STOCK_AVAILABLE_SOON = "available_soon"
STOCK_STATUSES = (STOCK_AVAILABLE, STOCK_LOW, STOCK_UNAVAILABLE, STOCK_AVAILABLE_SOON)


class Product(db.Model):
    """
    Product master data with a single stock counter.

    STOCK INVARIANTS:
    - stock_level NULL means untracked: the stock ledger skips the product.
      Services are always untracked.
    - stock_level is only ever written by inventory_service (batched
      adjustments or the operator overwrite). Product edits never touch it.
    - stock_status is derived from stock_level vs minimum_stock_level unless
      it is pinned to available_soon.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("org_id", "product_number", name="uq_products_org_number"),
        db.Index("ix_products_org_name", "org_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    product_number = db.Column(db.String(32), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    kind = db.Column(db.String(16), nullable=False, default=KIND_GOOD)
    selling_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    unit = db.Column(db.String(32), nullable=True)

    stock_level = db.Column(db.Integer, nullable=True)
    minimum_stock_level = db.Column(db.Integer, nullable=False, default=0)
    stock_status = db.Column(db.String(16), nullable=False, default=STOCK_AVAILABLE, index=True)
    restock_date = db.Column(db.Date, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    organization = db.relationship("Organization", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_tracked(self) -> bool:
        return self.stock_level is not None

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock_level={self.stock_level}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_number": self.product_number,
            "name": self.name,
            "description": self.description,
            "kind": self.kind,
            "selling_price": str(self.selling_price) if self.selling_price is not None else None,
            "unit": self.unit,
            "stock_level": self.stock_level,
            "minimum_stock_level": self.minimum_stock_level,
            "stock_status": self.stock_status,
            "restock_date": to_iso_date(self.restock_date),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class DocumentSequence(db.Model):
    """
    Per-tenant, per-type counter behind human-readable numbers.

    Only mutated through sequence_service.allocate_number (atomic
    increment). Never decremented and values are never reused, even when
    the numbered row is deleted later.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("org_id", "document_type", name="uq_doc_sequences_org_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    current_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "document_type": self.document_type,
            "current_value": self.current_value,
            "updated_at": to_utc_z(self.updated_at),
        }
