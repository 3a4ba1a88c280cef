# backend/docledger/services/products_service.py
"""
Products Service (tenant-scoped)

Product master data edits. The stock counter itself is NOT edited here:
stock_level may be given once on create (opening stock); afterwards it only
changes through inventory_service.
"""
from __future__ import annotations

from flask import current_app
from ..extensions import db
from ..models import Product
from ..models.inventory import KIND_SERVICE, STOCK_AVAILABLE_SOON
from ..validation import ModelValidationPolicy, ValidationError, enforce_rules_product
from .concurrency import begin_write, run_with_retry
from .inventory_service import derive_stock_status
from .sequence_service import next_number


PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "kind", "selling_price", "unit",
        "stock_level", "minimum_stock_level", "stock_status", "restock_date",
    },
    required_on_create={"name"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_CREATE_POLICY.writable_fields - {"stock_level", "kind"},
)


class ProductNotFoundError(Exception):
    pass


def _apply_status_rules(product: Product, patch: dict) -> None:
    """
    stock_status in a patch is only a pin request: available_soon pins,
    anything else unpins and lets the level decide again.
    """
    if "stock_status" in patch:
        if patch["stock_status"] == STOCK_AVAILABLE_SOON:
            product.stock_status = STOCK_AVAILABLE_SOON
        else:
            product.stock_status = derive_stock_status(product.stock_level, product.minimum_stock_level, None)
    else:
        product.stock_status = derive_stock_status(
            product.stock_level, product.minimum_stock_level, product.stock_status
        )

    if product.stock_status != STOCK_AVAILABLE_SOON:
        product.restock_date = None


def create_product(org_id: int, patch: dict) -> Product:
    """Create a product with a fresh product number from the sequence allocator."""
    enforce_rules_product(patch)
    if patch.get("kind") == KIND_SERVICE and patch.get("stock_level") is not None:
        raise ValidationError("Services are not stock-tracked; stock_level must be null")
    if patch.get("stock_level") is not None and patch["stock_level"] < 0:
        raise ValidationError("stock_level must be >= 0")

    def _op() -> int:
        begin_write()
        product = Product(org_id=org_id, product_number=next_number(org_id, "product"))
        for key in ("name", "description", "kind", "selling_price", "unit", "stock_level", "minimum_stock_level", "restock_date"):
            if key in patch:
                setattr(product, key, patch[key])
        if product.minimum_stock_level is None:
            product.minimum_stock_level = 0
        _apply_status_rules(product, patch)
        db.session.add(product)
        db.session.commit()
        return product.id

    product_id = run_with_retry(_op)

    product = db.session.get(Product, product_id)
    current_app.logger.info("Created product %s (%s)", product.product_number, product.name)
    return product


def update_product(org_id: int, product_id: int, patch: dict) -> Product:
    """
    Edit master data. A new minimum re-derives the status but never notifies;
    alerts are only raised by stock movements.
    """
    enforce_rules_product(patch)
    if "stock_level" in patch:
        raise ValidationError("stock_level is changed through the stock endpoint")

    def _op() -> None:
        product = db.session.query(Product).filter_by(id=product_id, org_id=org_id).first()
        if product is None:
            raise ProductNotFoundError("Product not found")
        for key in ("name", "description", "selling_price", "unit", "minimum_stock_level", "restock_date"):
            if key in patch:
                setattr(product, key, patch[key])
        _apply_status_rules(product, patch)
        db.session.commit()

    try:
        run_with_retry(_op)
    except ProductNotFoundError:
        db.session.rollback()
        raise

    return db.session.get(Product, product_id)


def get_product(org_id: int, product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, org_id=org_id).first()
    if product is None:
        raise ProductNotFoundError("Product not found")
    return product


def list_products(
    org_id: int,
    *,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Tenant-scoped product listing with optional pagination.

    Args:
        org_id: Organization ID for tenant scoping
        page: Page number (1-indexed). If None, returns all items.
        per_page: Items per page (default 20, max 100)
    """
    base_query = (
        db.session.query(Product)
        .filter(Product.org_id == org_id)
        .order_by(Product.name.asc(), Product.id.asc())
    )

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
