# Overview: Flask API routes for products and stock levels; parses input and returns JSON responses.

# backend/docledger/routes/products.py
"""
Product routes.

Master data is edited through PATCH; the stock counter only through
PUT /<id>/stock, which is an authoritative overwrite (physical count).
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_role, require_tenant
from ..models import Product
from ..models.tenancy import ROLE_ADMIN, ROLE_KEY_USER, ROLE_SUPER_ADMIN
from ..services import inventory_service, products_service
from ..services.inventory_service import StockLedgerError
from ..services.products_service import PRODUCT_CREATE_POLICY, PRODUCT_UPDATE_POLICY, ProductNotFoundError
from ..validation import ValidationError, parse_int, validate_payload

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_tenant
def list_products():
    """
    Query params:
    - low_stock: true -> only tracked products at or below their minimum
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    if (request.args.get("low_stock") or "").lower() in {"1", "true", "yes"}:
        products = inventory_service.list_low_stock_products(g.org_id)
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200

    result = products_service.list_products(
        g.org_id,
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result), 200


@products_bp.get("/<int:product_id>")
@require_tenant
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(g.org_id, product_id)
        return jsonify({"product": product.to_dict()}), 200
    except ProductNotFoundError as e:
        return jsonify({"error": str(e)}), 404


@products_bp.post("")
@require_tenant
@require_role(ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_KEY_USER)
def create_product_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
        product = products_service.create_product(g.org_id, patch)
        return jsonify({"product": product.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<int:product_id>")
@require_tenant
@require_role(ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_KEY_USER)
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    if "stock_level" in payload:
        return jsonify({"error": "stock_level is changed through PUT /api/products/<id>/stock"}), 400
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        product = products_service.update_product(g.org_id, product_id, patch)
        return jsonify({"product": product.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ProductNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>/stock")
@require_tenant
@require_role(ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_KEY_USER)
def set_stock_route(product_id: int):
    """
    Overwrite the stock counter. JSON: {"stock_level": int | null}.

    Documents currently reserving this product are not re-applied on top.
    """
    data = request.get_json(silent=True) or {}
    if "stock_level" not in data:
        return jsonify({"error": "stock_level required"}), 400
    try:
        stock_level = None if data["stock_level"] is None else parse_int(data["stock_level"], "stock_level")
        change = inventory_service.set_stock_level(g.org_id, product_id, stock_level)
        product = products_service.get_product(g.org_id, product_id)
        return jsonify({"product": product.to_dict(), "change": change.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except StockLedgerError as e:
        status = 404 if "product_ids" in e.details else 400
        return jsonify({"error": str(e), "details": e.details}), status
    except Exception:
        current_app.logger.exception("Failed to set stock level")
        return jsonify({"error": "Internal server error"}), 500
