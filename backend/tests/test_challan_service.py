# Overview: Pytest coverage for challan pricing, payments and reconciliation.

from datetime import date
from decimal import Decimal

import pytest

from billing.errors import InvalidAmount, NotFound, StateError, ValidationError
from billing.models import Challan, Transaction
from billing.services import challan_service


def _one_item(price=150, qty=1, gst=0):
    return [{"product_name": "Tiles", "qty": qty, "price_per_unit": price, "gst_percent": gst}]


class TestPricing:
    def test_two_item_challan_totals(self, db_session, vendor_a, customer_a, scenario_items):
        challan = challan_service.create_challan(vendor_a.id, customer_a.id, scenario_items)

        first, second = sorted(challan.items, key=lambda i: i.position)
        assert first.amount == Decimal("200.00")
        assert first.gst_amount == Decimal("36.00")
        assert first.total_with_gst == Decimal("236.00")
        assert second.amount == Decimal("50.00")
        assert second.gst_amount == Decimal("2.50")
        assert second.total_with_gst == Decimal("52.50")

        assert challan.subtotal == Decimal("250.00")
        assert challan.gst_total == Decimal("38.50")
        assert challan.total_without_gst == Decimal("250.00")
        assert challan.total_with_gst == Decimal("288.50")
        assert challan.status == "unpaid"

    def test_line_rounding_is_half_up(self):
        line = challan_service.price_line("3", "0.335", "0")
        assert line.amount == Decimal("1.01")
        line = challan_service.price_line(1, 10, "12.5")
        assert line.gst_amount == Decimal("1.25")

    def test_gst_from_slab(self, db_session, vendor_a, customer_a, gst_slab_a):
        challan = challan_service.create_challan(
            vendor_a.id,
            customer_a.id,
            [{"product_name": "Sand", "qty": 1, "price_per_unit": 50, "gst_slab": "GST 5"}],
        )
        assert challan.items[0].gst_percent == Decimal("5.00")
        assert challan.total_with_gst == Decimal("52.50")

    def test_unknown_slab_rejected(self, db_session, vendor_a, customer_a):
        with pytest.raises(NotFound):
            challan_service.create_challan(
                vendor_a.id,
                customer_a.id,
                [{"product_name": "Sand", "qty": 1, "price_per_unit": 50, "gst_slab": "GST 99"}],
            )

    @pytest.mark.parametrize("item", [
        {"product_name": "X", "qty": 0, "price_per_unit": 10},
        {"product_name": "X", "qty": 1, "price_per_unit": -1},
        {"product_name": "X", "qty": 1, "price_per_unit": 10, "gst_percent": 101},
        {"product_name": "", "qty": 1, "price_per_unit": 10},
    ])
    def test_invalid_items_rejected(self, db_session, vendor_a, customer_a, item):
        with pytest.raises(ValidationError):
            challan_service.create_challan(vendor_a.id, customer_a.id, [item])

    def test_empty_items_rejected(self, db_session, vendor_a, customer_a):
        with pytest.raises(ValidationError):
            challan_service.create_challan(vendor_a.id, customer_a.id, [])

    def test_customer_of_other_vendor_rejected(self, db_session, vendor_a, customer_b):
        with pytest.raises(NotFound):
            challan_service.create_challan(vendor_a.id, customer_b.id, _one_item())


class TestNumbering:
    def test_numbers_follow_vendor_and_day(self, db_session, vendor_a, vendor_b, customer_a, customer_b):
        first = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item(), challan_date="2026-10-19")
        second = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item(), challan_date="2026-10-19")
        other_day = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item(), challan_date="2026-10-20")
        other_vendor = challan_service.create_challan(vendor_b.id, customer_b.id, _one_item(), challan_date="2026-10-19")

        assert first.challan_number == "CH-20261019-0001"
        assert second.challan_number == "CH-20261019-0002"
        assert other_day.challan_number == "CH-20261020-0001"
        assert other_vendor.challan_number == "CH-20261019-0001"

    def test_deleted_numbers_are_not_reused(self, db_session, vendor_a, customer_a):
        first = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item(), challan_date="2026-10-19")
        challan_service.delete_challan(first.id, vendor_a.id)
        second = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item(), challan_date="2026-10-19")
        assert second.challan_number == "CH-20261019-0002"

    def test_five_digit_suffix_sorts_above_four_digits(self, db_session, vendor_a, customer_a):
        older = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item(), challan_date="2026-10-19")
        newer = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item(), challan_date="2026-10-19")
        older.challan_number = "CH-20261019-9999"
        newer.challan_number = "CH-20261019-10000"
        db_session.commit()

        assert challan_service.next_challan_number(vendor_a.id, date(2026, 10, 19)) == "CH-20261019-10001"


class TestPayments:
    def test_two_payments_on_same_challan_both_count(self, db_session, vendor_a, customer_a):
        challan = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item(150))

        first = challan_service.mark_challan_paid(challan.id, vendor_a.id, 100)
        assert first["status"] == "partial"
        assert first["due"] == Decimal("50.00")

        second = challan_service.mark_challan_paid(challan.id, vendor_a.id, 100)
        assert second["paid"] == Decimal("200.00")
        assert second["due"] == Decimal("-50.00")
        assert second["status"] == "paid"

        payments = db_session.query(Transaction).filter_by(challan_number=challan.challan_number).all()
        assert len(payments) == 2

    def test_non_positive_amount_rejected(self, db_session, vendor_a, customer_a):
        challan = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item())
        with pytest.raises(InvalidAmount):
            challan_service.mark_challan_paid(challan.id, vendor_a.id, 0)

    def test_cancelled_challan_cannot_be_paid(self, db_session, vendor_a, customer_a):
        challan = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item())
        challan_service.cancel_challan(challan.id, vendor_a.id)
        with pytest.raises(StateError):
            challan_service.mark_challan_paid(challan.id, vendor_a.id, 10)

    def test_failed_payment_leaves_nothing_behind(self, db_session, vendor_a, customer_a):
        challan = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item())
        challan_service.cancel_challan(challan.id, vendor_a.id)
        with pytest.raises(StateError):
            challan_service.mark_challan_paid(challan.id, vendor_a.id, 10)
        assert db_session.query(Transaction).count() == 0


class TestReconcile:
    def test_reconcile_persists_drift_once(self, db_session, vendor_a, customer_a):
        challan = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item(150))
        challan_service.mark_challan_paid(challan.id, vendor_a.id, 150)

        # Simulate a stale stored status
        stored = db_session.get(Challan, challan.id)
        stored.status = "unpaid"
        db_session.commit()

        first = challan_service.reconcile_challan(challan.id, vendor_a.id)
        assert first["status"] == "paid"
        assert db_session.get(Challan, challan.id).status == "paid"

        second = challan_service.reconcile_challan(challan.id, vendor_a.id)
        assert second["status"] == first["status"]
        assert second["paid"] == first["paid"]
        assert second["due"] == first["due"]

    def test_pure_read_does_not_write(self, db_session, vendor_a, customer_a):
        challan = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item(150))
        challan_service.mark_challan_paid(challan.id, vendor_a.id, 150)
        stored = db_session.get(Challan, challan.id)
        stored.status = "unpaid"
        db_session.commit()

        result = challan_service.get_challan(challan.id, vendor_a.id)
        assert result["status"] == "paid"
        db_session.expire_all()
        assert db_session.get(Challan, challan.id).status == "unpaid"

    def test_cancelled_status_is_kept(self, db_session, vendor_a, customer_a):
        challan = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item())
        challan_service.cancel_challan(challan.id, vendor_a.id)
        assert challan_service.reconcile_challan(challan.id, vendor_a.id)["status"] == "cancelled"


class TestListingAndLifecycle:
    def test_list_filters(self, db_session, vendor_a, customer_a, customer_a2):
        challan_service.create_challan(vendor_a.id, customer_a.id, _one_item(), challan_date="2026-10-01", note="site alpha")
        challan_service.create_challan(vendor_a.id, customer_a2.id, _one_item(), challan_date="2026-10-15")

        assert challan_service.list_challans(vendor_a.id)["total"] == 2
        assert challan_service.list_challans(vendor_a.id, customer_id=customer_a2.id)["total"] == 1
        assert challan_service.list_challans(vendor_a.id, from_date=date(2026, 10, 10))["total"] == 1
        assert challan_service.list_challans(vendor_a.id, search="alpha")["total"] == 1
        with pytest.raises(ValidationError):
            challan_service.list_challans(vendor_a.id, status="lost")

    def test_deleted_challan_not_found(self, db_session, vendor_a, customer_a):
        challan = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item())
        challan_service.delete_challan(challan.id, vendor_a.id)
        with pytest.raises(NotFound):
            challan_service.get_challan(challan.id, vendor_a.id)

    def test_cancel_twice_rejected(self, db_session, vendor_a, customer_a):
        challan = challan_service.create_challan(vendor_a.id, customer_a.id, _one_item())
        challan_service.cancel_challan(challan.id, vendor_a.id)
        with pytest.raises(StateError):
            challan_service.cancel_challan(challan.id, vendor_a.id)
