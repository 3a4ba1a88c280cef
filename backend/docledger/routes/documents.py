# Overview: Flask API routes for invoices, quotes and visits; parses input and returns JSON responses.

# backend/docledger/routes/documents.py
"""
Document API routes.

Every save answers with the saved document plus "stock_warning": null on a
clean reconciliation, or the reason the stock ledger could not be updated.
The document is saved in both cases.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_role, require_tenant
from ..models.tenancy import ROLE_ADMIN, ROLE_KEY_USER, ROLE_SUPER_ADMIN
from ..services import document_service, sequence_service
from ..services.document_service import (
    DocumentConflictError,
    DocumentNotFoundError,
    DocumentSaveError,
)
from ..services.inventory_service import StockLedgerError
from ..services.reservation_service import DocumentSnapshot
from ..services.sequence_service import SequenceAllocationError
from ..validation import ValidationError, parse_int
from docledger.time_utils import parse_iso_date


documents_bp = Blueprint("documents", __name__, url_prefix="/api/documents")


def _flag(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in {"1", "true", "yes"}


@documents_bp.post("/<doc_type>/numbers")
@require_tenant
def allocate_number_route(doc_type: str):
    """Allocate a number without creating a document (the number is burned)."""
    if doc_type not in document_service.DOCUMENT_TYPES:
        return jsonify({"error": f"Unknown document type: {doc_type}"}), 404
    try:
        number = sequence_service.allocate_number(g.org_id, doc_type)
        return jsonify({"number": number}), 201
    except SequenceAllocationError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to allocate %s number", doc_type)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.get("/<doc_type>")
@require_tenant
def list_documents_route(doc_type: str):
    """
    Query params:
    - status: filter by status
    - customer_id: filter by customer
    - stock_sync_error: true -> only documents with a failed reconciliation
    - page / per_page: pagination (omit page for all)
    """
    try:
        result = document_service.list_documents(
            g.org_id,
            doc_type,
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
            stock_sync_error=_flag("stock_sync_error"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@documents_bp.get("/<doc_type>/<int:document_id>")
@require_tenant
def get_document_route(doc_type: str, document_id: int):
    try:
        document = document_service.get_document(g.org_id, doc_type, document_id)
        return jsonify({"document": document.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DocumentNotFoundError as e:
        return jsonify({"error": str(e)}), 404


def _save_response(save, status_code: int):
    try:
        result = save()
        return jsonify(result.to_dict()), status_code
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except DocumentNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except DocumentConflictError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except DocumentSaveError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to save document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<doc_type>")
@require_tenant
def create_document_route(doc_type: str):
    """Create a document. The number is allocated server-side."""
    payload = request.get_json(silent=True) or {}
    return _save_response(
        lambda: document_service.save_document(g.org_id, doc_type, payload, user_id=g.current_user.id),
        201,
    )


@documents_bp.put("/<doc_type>/<int:document_id>")
@require_tenant
def update_document_route(doc_type: str, document_id: int):
    """
    Update a document. Items, when given, replace the stored lines.

    Optional "prior_version_id": the version the client started editing
    from; a newer stored version makes the save fail with 409.
    """
    payload = request.get_json(silent=True) or {}

    prior = None
    if payload.get("prior_version_id") is not None:
        try:
            prior = DocumentSnapshot(status=None, version_id=parse_int(payload["prior_version_id"], "prior_version_id"))
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400

    return _save_response(
        lambda: document_service.save_document(
            g.org_id, doc_type, payload, document_id=document_id, prior=prior, user_id=g.current_user.id
        ),
        200,
    )


@documents_bp.delete("/<doc_type>/<int:document_id>")
@require_tenant
def delete_document_route(doc_type: str, document_id: int):
    """Delete a document and release the stock it reserved."""
    try:
        changes = document_service.delete_document(g.org_id, doc_type, document_id)
        return jsonify({"ok": True, "stock_changes": [c.to_dict() for c in changes]}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DocumentNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except StockLedgerError as e:
        # Nothing was deleted
        return jsonify({"error": f"stock update failed: {e}", "details": e.details}), 409
    except DocumentSaveError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to delete document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<doc_type>/<int:document_id>/copy")
@require_tenant
def copy_document_route(doc_type: str, document_id: int):
    return _save_response(
        lambda: document_service.copy_document(g.org_id, doc_type, document_id, user_id=g.current_user.id),
        201,
    )


@documents_bp.post("/<doc_type>/<int:document_id>/reconcile")
@require_tenant
@require_role(ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_KEY_USER)
def reconcile_document_route(doc_type: str, document_id: int):
    """Retry stock deltas left unapplied by an earlier failed reconciliation."""
    return _save_response(
        lambda: document_service.retry_stock_reconciliation(g.org_id, doc_type, document_id),
        200,
    )


@documents_bp.post("/quote/<int:quote_id>/convert")
@require_tenant
def convert_quote_route(quote_id: int):
    """Create a draft invoice from a quote. Optional JSON: issue_date, payment_days."""
    data = request.get_json(silent=True) or {}
    try:
        issue_date = parse_iso_date(data.get("issue_date")) if data.get("issue_date") else None
        payment_days = parse_int(data.get("payment_days", 14), "payment_days")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if payment_days < 0:
        return jsonify({"error": "payment_days must be >= 0"}), 400

    return _save_response(
        lambda: document_service.convert_quote_to_invoice(
            g.org_id, quote_id, user_id=g.current_user.id, issue_date=issue_date, payment_days=payment_days
        ),
        201,
    )


@documents_bp.post("/invoice/mark-overdue")
@require_tenant
@require_role(ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_KEY_USER)
def mark_overdue_route():
    try:
        results = document_service.mark_overdue_invoices(g.org_id)
        return jsonify({
            "count": len(results),
            "invoices": [r.document.number for r in results],
        }), 200
    except Exception:
        current_app.logger.exception("Failed to mark overdue invoices")
        return jsonify({"error": "Internal server error"}), 500
