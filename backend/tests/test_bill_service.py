# Overview: Pytest coverage for bill creation, editing, payment and release of challans.

"""
Bill Engine Tests

INVARIANT checked throughout:
    pending_amount = max(0, total_with_gst - paid_amount)
    status = paid if pending <= 0.01, partial if paid > 0, else pending
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from billing.errors import (
    ConflictError,
    InvoiceNumberAlreadyUsed,
    NonSequentialInvoiceNumber,
    NoValidChallans,
    StateError,
    ValidationError,
)
from billing.models import Bill, Challan
from billing.services import bill_service, challan_service, invoice_sequence_service


def _assert_settled(bill):
    expected_pending = max(Decimal("0"), Decimal(bill.total_with_gst) - Decimal(bill.paid_amount))
    assert Decimal(bill.pending_amount) == expected_pending
    if Decimal(bill.pending_amount) <= Decimal("0.01"):
        assert bill.status == "paid"
    elif Decimal(bill.paid_amount) > 0:
        assert bill.status == "partial"
    else:
        assert bill.status == "pending"


@pytest.fixture
def challan(db_session, vendor_a, customer_a, scenario_items):
    return challan_service.create_challan(vendor_a.id, customer_a.id, scenario_items)


@pytest.fixture
def bill(db_session, vendor_a, customer_a, challan):
    return bill_service.create_bill(
        vendor_a.id, customer_a.id, [challan.id], discount_percent=10, gst_percent=12,
    )


class TestCreateFromChallans:
    def test_discount_then_gst_on_item_amounts(self, bill):
        assert bill.subtotal == Decimal("250.00")
        assert bill.discount_amount == Decimal("25.00")
        assert bill.total_without_gst == Decimal("225.00")
        assert bill.gst_total == Decimal("27.00")
        assert bill.total_with_gst == Decimal("252.00")
        assert bill.paid_amount == Decimal("0")
        assert bill.pending_amount == Decimal("252.00")
        assert bill.status == "pending"

    def test_items_copied_from_challan_without_gst(self, bill):
        items = sorted(bill.items, key=lambda i: i.position)
        assert [i.description for i in items] == ["Cement", "Sand"]
        assert items[0].total_with_gst == items[0].amount

    def test_bill_takes_next_invoice_number(self, db_session, vendor_a, bill):
        assert bill.bill_number == "INV1001"
        assert bill.invoice_count == 1001
        settings = invoice_sequence_service.get_settings(vendor_a.id)
        assert settings.used_numbers == [1001]
        assert settings.current_count == 1002

    def test_folded_challans_become_billed(self, db_session, bill, challan):
        assert db_session.get(Challan, challan.id).status == "billed"
        assert bill.challan_id_list == [challan.id]

    def test_billed_challan_cannot_be_billed_again(self, db_session, vendor_a, customer_a, bill, challan):
        with pytest.raises(NoValidChallans):
            bill_service.create_bill(vendor_a.id, customer_a.id, [challan.id])

    def test_challans_of_other_customer_are_ignored(self, db_session, vendor_a, customer_a, customer_a2, scenario_items):
        mine = challan_service.create_challan(vendor_a.id, customer_a.id, scenario_items)
        theirs = challan_service.create_challan(vendor_a.id, customer_a2.id, scenario_items)

        created = bill_service.create_bill(vendor_a.id, customer_a.id, [mine.id, theirs.id])
        assert created.challan_id_list == [mine.id]
        assert db_session.get(Challan, theirs.id).status == "unpaid"

    def test_no_challans_rejected(self, db_session, vendor_a, customer_a):
        with pytest.raises(ValidationError):
            bill_service.create_bill(vendor_a.id, customer_a.id, [])

    def test_custom_prefix_and_next_number(self, db_session, vendor_a, customer_a, challan):
        created = bill_service.create_bill(
            vendor_a.id, customer_a.id, [challan.id],
            custom_invoice_prefix="sb", custom_invoice_number=1001, invoice_template="template2",
        )
        assert created.bill_number == "SB1001"
        assert created.invoice_prefix == "INV"
        assert created.invoice_template == "template2"

    def test_out_of_sequence_number_creates_nothing(self, db_session, vendor_a, customer_a, challan):
        with pytest.raises(NonSequentialInvoiceNumber):
            bill_service.create_bill(vendor_a.id, customer_a.id, [challan.id], custom_invoice_number=1007)

        assert db_session.query(Bill).count() == 0
        assert db_session.get(Challan, challan.id).status == "unpaid"
        assert invoice_sequence_service.get_settings(vendor_a.id).used_numbers == []

    def test_used_number_rejected(self, db_session, vendor_a, customer_a, bill, scenario_items):
        another = challan_service.create_challan(vendor_a.id, customer_a.id, scenario_items)
        with pytest.raises(InvoiceNumberAlreadyUsed):
            bill_service.create_bill(vendor_a.id, customer_a.id, [another.id], custom_invoice_number=1001)

    def test_sequence_stays_contiguous_over_many_bills(self, db_session, vendor_a, customer_a, scenario_items):
        for _ in range(4):
            c = challan_service.create_challan(vendor_a.id, customer_a.id, scenario_items)
            bill_service.create_bill(vendor_a.id, customer_a.id, [c.id])

        report = invoice_sequence_service.audit_sequence(vendor_a.id)
        assert report["contiguous"] is True
        assert report["current_count"] == 1005


def _unreserved_bill(vendor_id, customer_id, number=1001):
    """A bill holding a number the sequence has not recorded, as a racing writer leaves it mid-commit."""
    return Bill(
        vendor_id=vendor_id, customer_id=customer_id, bill_number=f"INV{number}",
        invoice_prefix="INV", invoice_count=number, bill_date=date(2026, 10, 19),
    )


class TestNumberCollisions:
    def test_taken_sequenced_number_retries_then_gives_up(self, db_session, vendor_a, customer_a, challan):
        db_session.add(_unreserved_bill(vendor_a.id, customer_a.id))
        db_session.commit()

        with pytest.raises(ConflictError, match="Could not allocate a bill number"):
            bill_service.create_bill(vendor_a.id, customer_a.id, [challan.id])

        assert db_session.query(Bill).count() == 1
        assert db_session.get(Challan, challan.id).status == "unpaid"

    def test_taken_custom_number_fails_without_retry(self, db_session, vendor_a, customer_a, challan):
        db_session.add(_unreserved_bill(vendor_a.id, customer_a.id))
        db_session.commit()

        with pytest.raises(ConflictError, match="Bill number INV1001 already exists"):
            bill_service.create_bill(vendor_a.id, customer_a.id, [challan.id], custom_invoice_number=1001)

        assert invoice_sequence_service.get_settings(vendor_a.id).used_numbers == []

    def test_invoice_count_unique_per_vendor(self, db_session, vendor_a, customer_a):
        db_session.add(_unreserved_bill(vendor_a.id, customer_a.id))
        db_session.commit()
        twin = _unreserved_bill(vendor_a.id, customer_a.id)
        twin.bill_number = "OLD1001"
        db_session.add(twin)

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


class TestCreateFromItems:
    def test_per_item_gst(self, db_session, vendor_a, customer_a):
        created = bill_service.create_bill_from_items(
            vendor_a.id,
            customer_a.id,
            [
                {"description": "Labour", "qty": 1, "rate": 500, "gst_percent": 18},
                {"description": "Transport", "qty": 2, "rate": 100, "gst_percent": 5},
            ],
        )
        assert created.subtotal == Decimal("700.00")
        assert created.gst_total == Decimal("100.00")
        assert created.total_with_gst == Decimal("800.00")
        assert created.pending_amount == Decimal("800.00")
        assert created.challan_id_list == []
        assert created.bill_number == "INV1001"

    def test_gst_option_off(self, db_session, vendor_a, customer_a):
        created = bill_service.create_bill_from_items(
            vendor_a.id, customer_a.id,
            [{"description": "Labour", "qty": 1, "rate": 500, "gst_percent": 18}],
            gst_option=False,
        )
        assert created.gst_total == Decimal("0")
        assert created.total_with_gst == Decimal("500.00")


class TestEdit:
    def test_percent_change_keeps_paid_amount(self, db_session, vendor_a, bill):
        bill_service.mark_bill_paid(bill.id, vendor_a.id, 100)

        edited = bill_service.edit_bill(bill.id, vendor_a.id, discount_percent=0, gst_percent=0)
        assert edited.total_with_gst == Decimal("250.00")
        assert edited.paid_amount == Decimal("100.00")
        assert edited.pending_amount == Decimal("150.00")
        assert edited.status == "partial"
        _assert_settled(edited)

    def test_prefix_change_rebuilds_number_without_new_reservation(self, db_session, vendor_a, bill):
        edited = bill_service.edit_bill(bill.id, vendor_a.id, custom_invoice_prefix="sb")
        assert edited.bill_number == "SB1001"
        assert invoice_sequence_service.get_settings(vendor_a.id).used_numbers == [1001]

    def test_unknown_field_rejected(self, db_session, vendor_a, bill):
        with pytest.raises(ValidationError):
            bill_service.edit_bill(bill.id, vendor_a.id, paid_amount=10)

    def test_paid_bill_cannot_be_edited(self, db_session, vendor_a, bill):
        bill_service.mark_bill_paid(bill.id, vendor_a.id)
        with pytest.raises(StateError):
            bill_service.edit_bill(bill.id, vendor_a.id, note="late")


class TestPay:
    def test_partial_then_full(self, db_session, vendor_a, bill):
        first = bill_service.mark_bill_paid(bill.id, vendor_a.id, 52)
        assert first["paid_amount"] == Decimal("52.00")
        assert first["pending_amount"] == Decimal("200.00")
        assert first["bill"].status == "partial"

        second = bill_service.mark_bill_paid(bill.id, vendor_a.id)
        assert second["pending_amount"] == Decimal("0")
        assert second["bill"].status == "paid"
        assert second["payment"].bill_id == bill.id
        _assert_settled(second["bill"])

    def test_overpayment_clamps_pending(self, db_session, vendor_a, bill):
        result = bill_service.mark_bill_paid(bill.id, vendor_a.id, 300)
        assert result["paid_amount"] == Decimal("300.00")
        assert result["pending_amount"] == Decimal("0")
        _assert_settled(result["bill"])

    def test_cancelled_bill_cannot_be_paid(self, db_session, vendor_a, bill):
        bill_service.cancel_bill(bill.id, vendor_a.id)
        with pytest.raises(StateError):
            bill_service.mark_bill_paid(bill.id, vendor_a.id, 10)


class TestDeleteAndCancel:
    def test_delete_releases_challans(self, db_session, vendor_a, bill, challan):
        bill_service.delete_bill(bill.id, vendor_a.id)
        assert db_session.get(Challan, challan.id).status == "unpaid"
        assert bill_service.list_bills(vendor_a.id)["total"] == 0

    def test_delete_with_payments_rejected(self, db_session, vendor_a, bill):
        bill_service.mark_bill_paid(bill.id, vendor_a.id, 10)
        with pytest.raises(StateError):
            bill_service.delete_bill(bill.id, vendor_a.id)

    def test_cancel_releases_challans_and_drops_from_pending_total(self, db_session, vendor_a, bill, challan):
        assert bill_service.vendor_pending_total(vendor_a.id)["total_pending_amount"] == Decimal("252.00")

        bill_service.cancel_bill(bill.id, vendor_a.id)
        assert db_session.get(Challan, challan.id).status == "unpaid"
        assert bill_service.vendor_pending_total(vendor_a.id)["total_pending_amount"] == Decimal("0")


class TestInvariant:
    def test_settle_bill_derivation(self, db_session):
        b = Bill(total_with_gst=Decimal("100.00"), status="pending")
        bill_service.settle_bill(b, Decimal("99.995"))
        assert b.pending_amount == Decimal("0")
        assert b.status == "paid"

        bill_service.settle_bill(b, Decimal("-5"))
        assert b.paid_amount == Decimal("0")
        assert b.status == "pending"

        bill_service.settle_bill(b, Decimal("40"))
        assert b.status == "partial"
        _assert_settled(b)
