from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from docledger.time_utils import parse_iso_date, parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .models.inventory import PRODUCT_KINDS, STOCK_STATUSES


# Largest amount accepted for prices and quantities
MAX_AMOUNT = Decimal("999999999.99")


class ValidationError(ValueError):
    """400-level input problem."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ConflictError(ValueError):
    """409-level business rule conflict (e.g. stale version)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def parse_decimal(value: Any, field: str) -> Decimal:
    """Accept int, numeric string or float; reject bool, NaN and infinities."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if abs(result) > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds {MAX_AMOUNT}")
    return result


def parse_int(value: Any, field: str) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if 'e' in stripped.lower() or '.' in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return parse_int(value, col.key)

    if isinstance(coltype, Numeric):
        return parse_decimal(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            if d is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            return d
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "kind" in patch and patch["kind"] not in PRODUCT_KINDS:
        raise ValidationError(f"kind must be one of: {', '.join(PRODUCT_KINDS)}")

    if "selling_price" in patch and patch["selling_price"] is not None:
        if patch["selling_price"] < 0:
            raise ValidationError("selling_price must be >= 0")

    if "minimum_stock_level" in patch and patch["minimum_stock_level"] is not None:
        if patch["minimum_stock_level"] < 0:
            raise ValidationError("minimum_stock_level must be >= 0")

    if "stock_status" in patch and patch["stock_status"] not in STOCK_STATUSES:
        raise ValidationError(f"stock_status must be one of: {', '.join(STOCK_STATUSES)}")


def validate_line_item(raw: Any, index: int) -> dict:
    """
    Normalize one incoming line item.

    A line must reference a product, an expense, or carry a description.
    Product and expense references are mutually exclusive.
    """
    where = f"items[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{where} must be an object")

    product_id = raw.get("product_id")
    expense_id = raw.get("expense_id")
    description = (raw.get("description") or "").strip() or None

    if product_id is not None:
        product_id = parse_int(product_id, f"{where}.product_id")
    if expense_id is not None:
        expense_id = parse_int(expense_id, f"{where}.expense_id")

    if product_id is not None and expense_id is not None:
        raise ValidationError(f"{where} cannot reference both a product and an expense")
    if product_id is None and expense_id is None and description is None:
        raise ValidationError(f"{where} needs a product, an expense or a description")
    if description is not None and len(description) > 500:
        raise ValidationError(f"{where}.description exceeds max length 500")

    quantity = parse_decimal(raw.get("quantity", 1), f"{where}.quantity")
    if quantity < 0:
        raise ValidationError(f"{where}.quantity must be >= 0")

    unit_price = parse_decimal(raw.get("unit_price", 0), f"{where}.unit_price")
    if unit_price < 0:
        raise ValidationError(f"{where}.unit_price must be >= 0")

    tax_rate = parse_decimal(raw.get("tax_rate", 0), f"{where}.tax_rate")
    if tax_rate < 0 or tax_rate > 100:
        raise ValidationError(f"{where}.tax_rate must be between 0 and 100")

    return {
        "product_id": product_id,
        "expense_id": expense_id,
        "description": description,
        "quantity": quantity,
        "unit_price": unit_price,
        "tax_rate": tax_rate,
    }


def validate_line_items(raw_items: Any) -> list[dict]:
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")
    return [validate_line_item(raw, i) for i, raw in enumerate(raw_items)]
