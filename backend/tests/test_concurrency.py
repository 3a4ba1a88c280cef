# Overview: Threaded tests for number allocation and stock reservation against a file-backed SQLite database.

"""
Concurrency tests.

The in-memory database of the other tests lives on a single connection, so
these tests build their own app on a temporary file database. Each worker
thread runs in its own app context and therefore its own session.
"""

import threading
from decimal import Decimal

import pytest

from docledger import create_app
from docledger.extensions import db
from docledger.models import Customer, Organization, Product, User
from docledger.models.tenancy import ROLE_ADMIN
from docledger.services import document_service, sequence_service
from docledger.services.concurrency import begin_write


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'DB_RETRY_ATTEMPTS': 10,
        'DB_RETRY_BACKOFF': 0.01,
    })

    with app.app_context():
        db.create_all()

        org = Organization(name="Concurrency Org", code="CONC", is_active=True)
        db.session.add(org)
        db.session.commit()

        user = User(org_id=org.id, email="worker@conc.test", role=ROLE_ADMIN, is_active=True)
        customer = Customer(org_id=org.id, customer_number="CUS-C-1", name="Concurrent Customer")
        product = Product(
            org_id=org.id,
            product_number="PRD-C-1",
            name="Shared Part",
            selling_price=Decimal("5.00"),
            stock_level=20,
            minimum_stock_level=0,
            stock_status="available",
        )
        db.session.add_all([user, customer, product])
        db.session.commit()

        app.config["TEST_IDS"] = {
            "org_id": org.id,
            "user_id": user.id,
            "customer_id": customer.id,
            "product_id": product.id,
        }

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def run_workers(app, target, count):
    results = []
    errors = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            try:
                value = target()
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


class TestConcurrentAllocation:
    def test_numbers_never_collide(self, file_app):
        org_id = file_app.config["TEST_IDS"]["org_id"]

        numbers, errors = run_workers(file_app, lambda: sequence_service.allocate_number(org_id, "invoice"), 10)

        assert errors == []
        assert len(numbers) == 10
        assert len(set(numbers)) == 10
        assert sorted(int(n.rsplit("-", 1)[1]) for n in numbers) == list(range(1, 11))

    def test_documents_created_in_parallel_get_distinct_numbers(self, file_app):
        ids = file_app.config["TEST_IDS"]

        def create():
            result = document_service.save_document(
                ids["org_id"], "quote", {"customer_id": ids["customer_id"]}, user_id=ids["user_id"]
            )
            return result.document.number

        numbers, errors = run_workers(file_app, create, 8)

        assert errors == []
        assert len(set(numbers)) == 8


class TestConcurrentReservations:
    def test_parallel_saves_sum_their_deltas(self, file_app):
        ids = file_app.config["TEST_IDS"]

        def reserve():
            result = document_service.save_document(ids["org_id"], "invoice", {
                "customer_id": ids["customer_id"],
                "status": "sent",
                "items": [{"product_id": ids["product_id"], "quantity": 2}],
            }, user_id=ids["user_id"])
            return result.stock_warning

        warnings, errors = run_workers(file_app, reserve, 6)

        assert errors == []
        assert warnings == [None] * 6
        with file_app.app_context():
            product = db.session.get(Product, ids["product_id"])
            assert product.stock_level == 8


class TestBeginWrite:
    def test_discards_open_read_transaction(self, db_session, org_a):
        db.session.query(Organization).count()
        assert db.session().in_transaction()

        begin_write()
        org = db.session.get(Organization, org_a.id)
        org.name = "Renamed"
        db.session.commit()

        assert db.session.get(Organization, org_a.id, populate_existing=True).name == "Renamed"

    def test_write_path_on_sqlite(self, file_app):
        with file_app.app_context():
            org_id = file_app.config["TEST_IDS"]["org_id"]
            db.session.query(Product).count()
            assert sequence_service.allocate_number(org_id, "visit").endswith("-00001")
