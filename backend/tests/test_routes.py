# Overview: Pytest coverage for the JSON API: tenant context, document saves, products, notifications.

"""
API Tests

Requests carry the X-Org-Id / X-User-Id headers that the upstream auth
gateway would forward. Objects loaded in the test session are refreshed
after each request, because requests run in their own session.
"""

from docledger.extensions import db
from docledger.models import Notification, Product
from docledger.services import document_service
from docledger.services.inventory_service import StockLedgerError


def level(product_id):
    return db.session.get(Product, product_id, populate_existing=True).stock_level


class TestTenantContext:
    def test_missing_headers(self, client, db_session):
        resp = client.get("/api/documents/invoice")
        assert resp.status_code == 401

    def test_user_of_other_org(self, client, db_session, org_a, org_b, admin_a):
        resp = client.get("/api/documents/invoice", headers={"X-Org-Id": str(org_b.id), "X-User-Id": str(admin_a.id)})
        assert resp.status_code == 401

    def test_role_required(self, client, db_session, field_user_a, tenant_headers, make_product, org_a):
        p = make_product(org_a, stock_level=5)
        resp = client.put(f"/api/products/{p.id}/stock", json={"stock_level": 1}, headers=tenant_headers(field_user_a))
        assert resp.status_code == 403


class TestDocumentRoutes:
    def test_create_update_delete_cycle(self, client, db_session, org_a, admin_a, customer_a, make_product, tenant_headers):
        p = make_product(org_a, stock_level=10)
        headers = tenant_headers(admin_a)

        resp = client.post("/api/documents/invoice", json={
            "customer_id": customer_a.id,
            "items": [{"product_id": p.id, "quantity": 3, "unit_price": "19.90", "tax_rate": "20"}],
        }, headers=headers)
        assert resp.status_code == 201
        body = resp.get_json()
        doc = body["document"]
        assert body["stock_warning"] is None
        assert doc["status"] == "draft"
        assert doc["total_amount"] == "71.64"
        assert doc["items"][0]["quantity"] == "3.000"

        resp = client.put(f"/api/documents/invoice/{doc['id']}", json={
            "status": "sent", "prior_version_id": doc["version_id"],
        }, headers=headers)
        assert resp.status_code == 200
        assert level(p.id) == 7

        resp = client.delete(f"/api/documents/invoice/{doc['id']}", headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["stock_changes"][0]["after"] == 10
        assert level(p.id) == 10

        assert client.get(f"/api/documents/invoice/{doc['id']}", headers=headers).status_code == 404

    def test_stale_version_conflict(self, client, db_session, org_a, admin_a, customer_a, tenant_headers):
        headers = tenant_headers(admin_a)
        doc = client.post("/api/documents/quote", json={"customer_id": customer_a.id}, headers=headers).get_json()["document"]

        ok = client.put(f"/api/documents/quote/{doc['id']}", json={"status": "sent", "prior_version_id": doc["version_id"]}, headers=headers)
        assert ok.status_code == 200

        stale = client.put(f"/api/documents/quote/{doc['id']}", json={"status": "declined", "prior_version_id": doc["version_id"]}, headers=headers)
        assert stale.status_code == 409

    def test_validation_error(self, client, db_session, admin_a, customer_a, tenant_headers):
        resp = client.post("/api/documents/visit", json={"customer_id": customer_a.id, "status": "paid"}, headers=tenant_headers(admin_a))
        assert resp.status_code == 400
        assert "status" in resp.get_json()["error"]

    def test_unknown_type(self, client, db_session, admin_a, tenant_headers):
        assert client.get("/api/documents/receipt", headers=tenant_headers(admin_a)).status_code == 400
        assert client.post("/api/documents/receipt/numbers", headers=tenant_headers(admin_a)).status_code == 404

    def test_stock_warning_is_returned_with_saved_document(
        self, client, db_session, org_a, admin_a, customer_a, make_product, tenant_headers, monkeypatch
    ):
        p = make_product(org_a, stock_level=10)

        def _fail(org_id, adjustments, **kwargs):
            raise StockLedgerError("database unavailable")

        monkeypatch.setattr(document_service, "apply_adjustments", _fail)

        resp = client.post("/api/documents/invoice", json={
            "customer_id": customer_a.id, "status": "sent", "items": [{"product_id": p.id, "quantity": 2}],
        }, headers=tenant_headers(admin_a))

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["stock_warning"] == "stock update failed: database unavailable"
        assert body["document"]["stock_sync_error"] == "stock update failed: database unavailable"
        assert level(p.id) == 10

        monkeypatch.undo()
        resp = client.post(f"/api/documents/invoice/{body['document']['id']}/reconcile", headers=tenant_headers(admin_a))
        assert resp.status_code == 200
        assert resp.get_json()["document"]["stock_sync_error"] is None
        assert level(p.id) == 8

    def test_allocate_number(self, client, db_session, admin_a, tenant_headers):
        first = client.post("/api/documents/visit/numbers", headers=tenant_headers(admin_a))
        second = client.post("/api/documents/visit/numbers", headers=tenant_headers(admin_a))
        assert first.status_code == 201
        assert first.get_json()["number"].endswith("-00001")
        assert second.get_json()["number"].endswith("-00002")

    def test_copy_convert_and_overdue(self, client, db_session, admin_a, customer_a, tenant_headers):
        headers = tenant_headers(admin_a)
        quote = client.post("/api/documents/quote", json={"customer_id": customer_a.id, "status": "accepted"}, headers=headers).get_json()["document"]

        copy = client.post(f"/api/documents/quote/{quote['id']}/copy", headers=headers)
        assert copy.status_code == 201
        assert copy.get_json()["document"]["status"] == "draft"

        invoice = client.post(f"/api/documents/quote/{quote['id']}/convert", json={"issue_date": "2020-01-01"}, headers=headers)
        assert invoice.status_code == 201
        inv = invoice.get_json()["document"]
        assert inv["source_quote_id"] == quote["id"]
        assert inv["due_date"] == "2020-01-15"

        client.put(f"/api/documents/invoice/{inv['id']}", json={"status": "sent"}, headers=headers)
        overdue = client.post("/api/documents/invoice/mark-overdue", headers=headers)
        assert overdue.status_code == 200
        assert overdue.get_json()["invoices"] == [inv["number"]]

    def test_list_with_filters(self, client, db_session, admin_a, customer_a, tenant_headers):
        headers = tenant_headers(admin_a)
        for status in ("draft", "sent", "sent"):
            client.post("/api/documents/invoice", json={"customer_id": customer_a.id, "status": status}, headers=headers)

        body = client.get("/api/documents/invoice?status=sent", headers=headers).get_json()
        assert body["count"] == 2
        body = client.get("/api/documents/invoice?page=1&per_page=2", headers=headers).get_json()
        assert body["pagination"]["total"] == 3
        body = client.get("/api/documents/invoice?stock_sync_error=true", headers=headers).get_json()
        assert body["count"] == 0

    def test_documents_of_other_tenant_are_invisible(
        self, client, db_session, admin_a, admin_b, customer_a, tenant_headers
    ):
        doc = client.post("/api/documents/invoice", json={"customer_id": customer_a.id}, headers=tenant_headers(admin_a)).get_json()["document"]

        assert client.get(f"/api/documents/invoice/{doc['id']}", headers=tenant_headers(admin_b)).status_code == 404
        assert client.delete(f"/api/documents/invoice/{doc['id']}", headers=tenant_headers(admin_b)).status_code == 404
        assert client.get("/api/documents/invoice", headers=tenant_headers(admin_b)).get_json()["count"] == 0


class TestProductRoutes:
    def test_create_and_patch(self, client, db_session, admin_a, tenant_headers):
        headers = tenant_headers(admin_a)
        resp = client.post("/api/products", json={"name": "Valve", "selling_price": "12.50", "stock_level": 4}, headers=headers)
        assert resp.status_code == 201
        product = resp.get_json()["product"]
        assert product["product_number"].startswith("PRD-")

        resp = client.patch(f"/api/products/{product['id']}", json={"minimum_stock_level": 4}, headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["product"]["stock_status"] == "low"

        resp = client.patch(f"/api/products/{product['id']}", json={"stock_level": 99}, headers=headers)
        assert resp.status_code == 400

    def test_stock_overwrite_notifies(self, client, db_session, org_a, admin_a, key_user_a, make_product, tenant_headers):
        p = make_product(org_a, stock_level=20, minimum=5)
        resp = client.put(f"/api/products/{p.id}/stock", json={"stock_level": 3}, headers=tenant_headers(key_user_a))
        assert resp.status_code == 200
        assert resp.get_json()["change"]["crossed_threshold"] is True
        assert db.session.query(Notification).count() == 2

    def test_stock_overwrite_bad_input(self, client, db_session, org_a, admin_a, make_product, tenant_headers):
        p = make_product(org_a, stock_level=20)
        headers = tenant_headers(admin_a)
        assert client.put(f"/api/products/{p.id}/stock", json={}, headers=headers).status_code == 400
        assert client.put(f"/api/products/{p.id}/stock", json={"stock_level": "1.5"}, headers=headers).status_code == 400
        assert client.put("/api/products/99999/stock", json={"stock_level": 1}, headers=headers).status_code == 404

    def test_low_stock_listing(self, client, db_session, org_a, admin_a, make_product, tenant_headers):
        low = make_product(org_a, "Low", stock_level=1, minimum=3)
        make_product(org_a, "Fine", stock_level=10, minimum=3)
        body = client.get("/api/products?low_stock=true", headers=tenant_headers(admin_a)).get_json()
        assert [p["id"] for p in body["items"]] == [low.id]


class TestNotificationRoutes:
    def test_list_delete_clear(self, client, db_session, org_a, admin_a, key_user_a, make_product, tenant_headers):
        p = make_product(org_a, stock_level=6, minimum=5)
        client.put(f"/api/products/{p.id}/stock", json={"stock_level": 5}, headers=tenant_headers(admin_a))

        body = client.get("/api/notifications", headers=tenant_headers(admin_a)).get_json()
        assert body["count"] == 1
        notification_id = body["items"][0]["id"]
        assert body["items"][0]["payload"]["product_id"] == p.id

        # only the recipient can dismiss a notification
        assert client.delete(f"/api/notifications/{notification_id}", headers=tenant_headers(key_user_a)).status_code == 404
        assert client.delete(f"/api/notifications/{notification_id}", headers=tenant_headers(admin_a)).status_code == 200

        resp = client.delete("/api/notifications", headers=tenant_headers(key_user_a))
        assert resp.get_json()["deleted"] == 1


def test_health(client, db_session):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "healthy"
