"""
Pytest fixtures for docledger backend tests.

Provides the test application, a per-test wiped database, two tenants with
users of every role, customers, and a product factory.
"""

import pytest
from decimal import Decimal

from docledger import create_app
from docledger.extensions import db
from docledger.models import Customer, Organization, Product, User
from docledger.models.tenancy import (
    ROLE_ADMIN,
    ROLE_FIELD_SERVICE,
    ROLE_KEY_USER,
    ROLE_SUPER_ADMIN,
)
from docledger.services.inventory_service import derive_stock_status


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF': 0,
        'LOW_STOCK_NOTIFY_SUPER_ADMINS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Corp", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Inc", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


def _make_user(db_session, org, email, role, is_active=True):
    user = User(org_id=org.id, email=email, role=role, full_name=email.split("@")[0], is_active=is_active)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_a(db_session, org_a):
    return _make_user(db_session, org_a, "admin@acme.test", ROLE_ADMIN)


@pytest.fixture(scope='function')
def key_user_a(db_session, org_a):
    return _make_user(db_session, org_a, "key@acme.test", ROLE_KEY_USER)


@pytest.fixture(scope='function')
def field_user_a(db_session, org_a):
    return _make_user(db_session, org_a, "field@acme.test", ROLE_FIELD_SERVICE)


@pytest.fixture(scope='function')
def super_admin_a(db_session, org_a):
    return _make_user(db_session, org_a, "root@acme.test", ROLE_SUPER_ADMIN)


@pytest.fixture(scope='function')
def admin_b(db_session, org_b):
    return _make_user(db_session, org_b, "admin@beta.test", ROLE_ADMIN)


@pytest.fixture(scope='function')
def customer_a(db_session, org_a):
    customer = Customer(org_id=org_a.id, customer_number="CUS-A-1", name="Hofer GmbH")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, org_b):
    customer = Customer(org_id=org_b.id, customer_number="CUS-B-1", name="Beta Kunde")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(org, name, stock_level=None, minimum=0, **extra)."""
    counter = {"n": 0}

    def _make(org, name="Widget", stock_level=None, minimum=0, **extra):
        counter["n"] += 1
        product = Product(
            org_id=org.id,
            product_number=f"PRD-T-{counter['n']:05d}",
            name=name,
            selling_price=extra.pop("selling_price", Decimal("10.00")),
            stock_level=stock_level,
            minimum_stock_level=minimum,
            **extra,
        )
        product.stock_status = derive_stock_status(stock_level, minimum, extra.get("stock_status"))
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def tenant_headers():
    """Headers the upstream auth gateway would forward for a user."""
    def _headers(user):
        return {"X-Org-Id": str(user.org_id), "X-User-Id": str(user.id)}

    return _headers
