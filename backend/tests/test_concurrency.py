# Overview: Threaded tests for numbering, settlement and opening balances under concurrent requests.

"""
Concurrency Tests

Each worker thread runs in its own app context (own session and connection)
against a file-backed SQLite database, released together by a barrier and
joined before asserting. SQLite ignores FOR UPDATE, so these exercise the
unique constraints, version counters and retry loops that serialize writers.
"""

import threading
from decimal import Decimal

import pytest

from billing import create_app
from billing.errors import ConflictError
from billing.extensions import db
from billing.models import Bill, Customer, InvoiceSettings, Payment, Transaction, Vendor
from billing.services import bill_service, challan_service, invoice_sequence_service, payment_service

WORKERS = 6


@pytest.fixture
def race_app(tmp_path):
    """Application bound to a SQLite file so every thread gets a real connection."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
        'IMPORT_RUN_ASYNC': False,
        'CELERY': {'broker_url': 'memory://', 'task_always_eager': True, 'task_ignore_result': True},
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def tenant(race_app):
    """A vendor and one customer, returned as plain ids."""
    with race_app.app_context():
        vendor = Vendor(vendor_name="Sharma Traders", mobile_number="9800000001")
        db.session.add(vendor)
        db.session.commit()
        customer = Customer(created_by=vendor.id, customer_name="Asha Builders", mobile_number="9000000001")
        db.session.add(customer)
        db.session.commit()
        return {"vendor_id": vendor.id, "customer_id": customer.id}


def _items(price=150):
    return [{"product_name": "Bricks", "qty": 1, "price_per_unit": price}]


def _run_concurrently(app, count, work):
    """Run work(index) in count threads at once; return (results, errors)."""
    barrier = threading.Barrier(count)
    results = []
    errors = []

    def worker(index):
        with app.app_context():
            barrier.wait()
            try:
                results.append(work(index))
            except Exception as exc:
                errors.append(exc)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=120)
    assert not any(thread.is_alive() for thread in threads)
    return results, errors


class TestConcurrentBills:
    def test_bill_numbers_stay_contiguous(self, race_app, tenant):
        vendor_id, customer_id = tenant["vendor_id"], tenant["customer_id"]
        with race_app.app_context():
            challan_ids = [
                challan_service.create_challan(vendor_id, customer_id, _items()).id
                for _ in range(WORKERS)
            ]

        def work(index):
            bill = bill_service.create_bill(vendor_id, customer_id, [challan_ids[index]])
            return bill.bill_number

        numbers, errors = _run_concurrently(race_app, WORKERS, work)

        assert errors == []
        assert sorted(numbers) == [f"INV{1001 + i}" for i in range(WORKERS)]
        with race_app.app_context():
            settings = invoice_sequence_service.get_settings(vendor_id)
            assert settings.used_numbers == [1001 + i for i in range(WORKERS)]
            assert settings.current_count == 1001 + WORKERS
            assert invoice_sequence_service.audit_sequence(vendor_id)["contiguous"] is True

    def test_first_settings_access_creates_one_row(self, race_app, tenant):
        vendor_id = tenant["vendor_id"]

        def work(index):
            settings = invoice_sequence_service.get_settings(vendor_id)
            settings_id = settings.id
            db.session.commit()
            return settings_id

        ids, errors = _run_concurrently(race_app, WORKERS, work)

        assert errors == []
        assert len(set(ids)) == 1
        with race_app.app_context():
            assert db.session.query(InvoiceSettings).filter_by(vendor_id=vendor_id).count() == 1

    def test_adjusted_payments_on_one_bill_all_apply(self, race_app, tenant):
        vendor_id, customer_id = tenant["vendor_id"], tenant["customer_id"]
        with race_app.app_context():
            challan = challan_service.create_challan(vendor_id, customer_id, _items(price=600))
            bill_id = bill_service.create_bill(vendor_id, customer_id, [challan.id]).id

        def work(index):
            payment = payment_service.create_payment(vendor_id, {
                "type": "credit",
                "sub_type": "customer",
                "customer_id": customer_id,
                "amount": 100,
                "adjusted_invoices": [{"billId": bill_id, "payAmount": 100}],
            })
            return payment.payment_number

        numbers, errors = _run_concurrently(race_app, 4, work)

        assert errors == []
        assert len(set(numbers)) == 4
        with race_app.app_context():
            bill = db.session.get(Bill, bill_id)
            assert bill.paid_amount == Decimal("400.00")
            assert bill.pending_amount == Decimal("200.00")
            assert bill.status == "partial"


class TestConcurrentChallanPayments:
    def test_two_payments_on_same_challan_both_count(self, race_app, tenant):
        vendor_id, customer_id = tenant["vendor_id"], tenant["customer_id"]
        with race_app.app_context():
            challan = challan_service.create_challan(vendor_id, customer_id, _items(price=150))
            challan_id, challan_number = challan.id, challan.challan_number

        def work(index):
            result = challan_service.mark_challan_paid(challan_id, vendor_id, 100)
            return result["status"]

        _, errors = _run_concurrently(race_app, 2, work)

        assert errors == []
        with race_app.app_context():
            detail = challan_service.get_challan(challan_id, vendor_id)
            assert detail["paid"] == Decimal("200.00")
            assert detail["due"] == Decimal("-50.00")
            assert detail["challan"].status == "paid"
            payments = (
                db.session.query(Transaction)
                .filter_by(vendor_id=vendor_id, challan_number=challan_number, type="payment")
                .count()
            )
            assert payments == 2


class TestConcurrentOpeningBalances:
    def test_only_one_opening_balance_per_year(self, race_app, tenant):
        vendor_id = tenant["vendor_id"]

        def work(index):
            return payment_service.create_opening_balance(
                vendor_id, "cash", 1000 + index, payment_date="2026-10-19"
            ).id

        created, errors = _run_concurrently(race_app, WORKERS, work)

        assert len(created) == 1
        assert len(errors) == WORKERS - 1
        assert all(isinstance(exc, ConflictError) for exc in errors)
        assert {exc.details["payment_id"] for exc in errors} == set(created)
        with race_app.app_context():
            rows = (
                db.session.query(Payment)
                .filter_by(vendor_id=vendor_id, method="cash", is_opening_balance=True)
                .count()
            )
            assert rows == 1
