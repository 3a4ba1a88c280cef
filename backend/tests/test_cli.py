# Overview: Tests for the Flask CLI command groups.

from datetime import date, timedelta

from docledger.extensions import db
from docledger.models import Organization, Product
from docledger.services import document_service, sequence_service


class TestOrgCommands:
    def test_create_and_list(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["orgs", "create", "--name", "Gamma Ltd", "--code", "GAMMA"])
        assert "PASS Created organization: Gamma Ltd" in result.output
        assert db.session.query(Organization).filter_by(code="GAMMA").count() == 1

        result = runner.invoke(args=["orgs", "create", "--name", "Gamma Again", "--code", "GAMMA"])
        assert "FAIL" in result.output

        result = runner.invoke(args=["orgs", "list"])
        assert "Gamma Ltd" in result.output

    def test_user_and_customer_bootstrap(self, app, db_session, org_a):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            "users", "create", "--org-id", str(org_a.id), "--email", "Boss@Acme.test", "--role", "admin",
        ])
        assert "PASS Created user boss@acme.test" in result.output

        result = runner.invoke(args=["customers", "create", "--org-id", str(org_a.id), "--name", "Hofer"])
        assert "PASS Created customer CUS-" in result.output


class TestStockCommands:
    def test_set_and_low(self, app, db_session, org_a, admin_a, make_product):
        p = make_product(org_a, "Filter", stock_level=10, minimum=3)
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            "stock", "set", "--org-id", str(org_a.id), "--product-id", str(p.id), "--level", "2",
        ])
        assert "PASS Filter: 10 -> 2 (low) [low-stock alert sent]" in result.output
        assert db.session.get(Product, p.id, populate_existing=True).stock_level == 2

        result = runner.invoke(args=["stock", "low", "--org-id", str(org_a.id)])
        assert "Filter" in result.output

    def test_set_unknown_product(self, app, db_session, org_a):
        result = app.test_cli_runner().invoke(args=[
            "stock", "set", "--org-id", str(org_a.id), "--product-id", "999", "--level", "1",
        ])
        assert "FAIL Products not found: 999" in result.output


class TestDocumentCommands:
    def test_mark_overdue_all_orgs(self, app, db_session, org_a, admin_a, customer_a):
        document_service.save_document(org_a.id, "invoice", {
            "customer_id": customer_a.id,
            "status": "sent",
            "due_date": (date.today() - timedelta(days=3)).isoformat(),
        })

        result = app.test_cli_runner().invoke(args=["documents", "mark-overdue"])
        assert "-> overdue" in result.output
        assert "PASS 1 invoice(s) marked overdue." in result.output

    def test_drifted_listing_empty(self, app, db_session, org_a):
        result = app.test_cli_runner().invoke(args=["documents", "drifted", "--org-id", str(org_a.id)])
        assert "No documents with a failed stock reconciliation." in result.output


def test_sequences_show(app, db_session, org_a):
    runner = app.test_cli_runner()
    assert "No numbers issued yet." in runner.invoke(args=["sequences", "show", "--org-id", str(org_a.id)]).output

    sequence_service.allocate_number(org_a.id, "visit")
    sequence_service.allocate_number(org_a.id, "visit")

    result = runner.invoke(args=["sequences", "show", "--org-id", str(org_a.id)])
    assert "visit      2" in result.output
