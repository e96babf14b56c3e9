"""
Pytest fixtures for the billing backend tests.

Provides test database setup, two vendors for isolation checks, customers,
and bearer-token helpers for route tests.
"""

import pytest

from billing import create_app
from billing.extensions import db
from billing.models import Customer, GstSlab, Vendor
from billing.services.session_service import create_session


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    # Engines are bound in init_app, so the database URI goes in up front
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'IMPORT_RUN_ASYNC': False,
        'IMPORT_BATCH_SIZE': 2,
        'CELERY': {'broker_url': 'memory://', 'task_always_eager': True, 'task_ignore_result': True},
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
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def vendor_a(db_session):
    """Vendor A (first tenant)."""
    vendor = Vendor(vendor_name="Sharma Traders", mobile_number="9800000001")
    db_session.add(vendor)
    db_session.commit()
    return vendor


@pytest.fixture(scope='function')
def vendor_b(db_session):
    """Vendor B (second tenant)."""
    vendor = Vendor(vendor_name="Gupta Supplies", mobile_number="9800000002")
    db_session.add(vendor)
    db_session.commit()
    return vendor


@pytest.fixture(scope='function')
def customer_a(db_session, vendor_a):
    customer = Customer(created_by=vendor_a.id, customer_name="Asha Builders", mobile_number="9000000001")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_a2(db_session, vendor_a):
    customer = Customer(created_by=vendor_a.id, customer_name="Bharat Works", mobile_number="9000000002")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, vendor_b):
    customer = Customer(created_by=vendor_b.id, customer_name="Chetan Infra", mobile_number="9000000003")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def gst_slab_a(db_session, vendor_a):
    slab = GstSlab(vendor_id=vendor_a.id, slab_name="GST 5", rate=5, priority=1, active=True)
    db_session.add(slab)
    db_session.commit()
    return slab


@pytest.fixture(scope='function')
def scenario_items():
    """Two items: (2 x 100 @ 18%) and (1 x 50 @ 5%)."""
    return [
        {"product_id": 1, "product_name": "Cement", "qty": 2, "price_per_unit": 100, "gst_percent": 18},
        {"product_id": 2, "product_name": "Sand", "qty": 1, "price_per_unit": 50, "gst_percent": 5},
    ]


def _bearer(role, vendor_id=None, customer_id=None):
    _, token = create_session(role, vendor_id=vendor_id, customer_id=customer_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def vendor_headers(db_session, vendor_a):
    return _bearer("vendor", vendor_id=vendor_a.id)


@pytest.fixture(scope='function')
def vendor_b_headers(db_session, vendor_b):
    return _bearer("vendor", vendor_id=vendor_b.id)


@pytest.fixture(scope='function')
def admin_headers(db_session):
    return _bearer("admin")


@pytest.fixture(scope='function')
def customer_headers(db_session, vendor_a, customer_a):
    return _bearer("customer", vendor_id=vendor_a.id, customer_id=customer_a.id)
