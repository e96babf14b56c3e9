# Overview: Pytest coverage for derived balances, vendor summary and customer ledger.

from datetime import date
from decimal import Decimal

from billing.services import bill_service, challan_service, outstanding_service, payment_service, statuses


def _billed(vendor_id, customer_id, items, bill_date=None, **kwargs):
    challan = challan_service.create_challan(vendor_id, customer_id, items, challan_date=bill_date)
    return bill_service.create_bill(vendor_id, customer_id, [challan.id], bill_date=bill_date, **kwargs)


def _pay(vendor_id, customer_id, amount, payment_type="credit", payment_date=None):
    return payment_service.create_payment(vendor_id, {
        "type": payment_type,
        "sub_type": "customer",
        "customer_id": customer_id,
        "amount": amount,
        "payment_date": payment_date,
    })


class TestCustomerOutstanding:
    def test_bills_minus_credits_plus_debits(self, db_session, vendor_a, customer_a, scenario_items):
        _billed(vendor_a.id, customer_a.id, scenario_items, discount_percent=10, gst_percent=12)
        _pay(vendor_a.id, customer_a.id, 100)
        _pay(vendor_a.id, customer_a.id, 10, payment_type="debit")

        assert outstanding_service.customer_outstanding(vendor_a.id, customer_a.id) == Decimal("162.00")

    def test_cancelled_bills_and_pending_payments_do_not_count(self, db_session, vendor_a, customer_a, scenario_items):
        bill = _billed(vendor_a.id, customer_a.id, scenario_items)
        bill_service.cancel_bill(bill.id, vendor_a.id)
        payment_service.create_payment(vendor_a.id, {
            "type": "credit", "sub_type": "customer", "customer_id": customer_a.id, "amount": 40, "status": "pending",
        })

        assert outstanding_service.customer_outstanding(vendor_a.id, customer_a.id) == Decimal("0")

    def test_advance_is_negative(self, db_session, vendor_a, customer_a):
        _pay(vendor_a.id, customer_a.id, 75)
        assert outstanding_service.customer_outstanding(vendor_a.id, customer_a.id) == Decimal("-75.00")

    def test_non_customer_payments_are_ignored_by_vendor_total(self, db_session, vendor_a, customer_a, scenario_items):
        _billed(vendor_a.id, customer_a.id, scenario_items)
        payment_service.create_payment(vendor_a.id, {"type": "debit", "sub_type": "miscellaneous", "amount": 999})

        assert outstanding_service.vendor_outstanding(vendor_a.id) == Decimal("250.00")


class TestVendorSummary:
    def test_totals_and_purchases(self, db_session, vendor_a, customer_a, scenario_items):
        bill = _billed(vendor_a.id, customer_a.id, scenario_items, discount_percent=10, gst_percent=12)
        bill_service.mark_bill_paid(bill.id, vendor_a.id, 52)
        challan_service.create_challan(
            vendor_a.id, customer_a.id,
            [{"product_id": 2, "product_name": "Sand", "qty": 5, "price_per_unit": 50}],
        )

        summary = outstanding_service.vendor_summary(vendor_a.id)
        assert summary["totalBills"] == Decimal("252.00")
        assert summary["totalPayments"] == Decimal("52.00")
        assert summary["totalPending"] == Decimal("200.00")

        top = summary["purchasesByProduct"][0]
        assert top["productName"] == "Sand"
        assert top["totalQty"] == Decimal("6.00")
        assert top["totalAmount"] == Decimal("300.00")

    def test_date_window(self, db_session, vendor_a, customer_a, scenario_items):
        _billed(vendor_a.id, customer_a.id, scenario_items, bill_date="2026-09-30")
        _billed(vendor_a.id, customer_a.id, scenario_items, bill_date="2026-10-05")

        summary = outstanding_service.vendor_summary(vendor_a.id, from_date=date(2026, 10, 1))
        assert summary["totalBills"] == Decimal("250.00")


class TestBalancesAndLedger:
    def test_customer_balances_sorted_desc(self, db_session, vendor_a, customer_a, customer_a2, scenario_items):
        _billed(vendor_a.id, customer_a.id, scenario_items)
        _billed(vendor_a.id, customer_a2.id, scenario_items, gst_percent=10)

        rows = outstanding_service.customer_balances(vendor_a.id)
        assert [r["customer_id"] for r in rows] == [customer_a2.id, customer_a.id]
        assert rows[0]["outstanding"] == Decimal("275.00")

    def test_ledger_running_balance_with_opening(self, db_session, vendor_a, customer_a, scenario_items):
        _billed(vendor_a.id, customer_a.id, scenario_items, bill_date="2026-09-15")
        _pay(vendor_a.id, customer_a.id, 50, payment_date="2026-09-20")
        _billed(vendor_a.id, customer_a.id, scenario_items, bill_date="2026-10-02")
        _pay(vendor_a.id, customer_a.id, 100, payment_date="2026-10-03")
        _pay(vendor_a.id, customer_a.id, 20, payment_type="debit", payment_date="2026-10-04")

        ledger = outstanding_service.customer_ledger(vendor_a.id, customer_a.id, from_date=date(2026, 10, 1))
        assert ledger["opening_balance"] == Decimal("200.00")
        assert [r["kind"] for r in ledger["rows"]] == ["bill", "payment", "refund"]
        assert [r["balance"] for r in ledger["rows"]] == [Decimal("450.00"), Decimal("350.00"), Decimal("370.00")]
        assert ledger["total_debit"] == Decimal("270.00")
        assert ledger["total_credit"] == Decimal("100.00")
        assert ledger["closing_balance"] == outstanding_service.customer_outstanding(vendor_a.id, customer_a.id)
        assert ledger["rows"][0]["date"] == "2026-10-02"


class TestSharedStatuses:
    def test_services_read_one_set_of_status_values(self):
        assert outstanding_service.BILL_CANCELLED is statuses.BILL_CANCELLED
        assert bill_service.BILL_CANCELLED is statuses.BILL_CANCELLED
        assert outstanding_service.PAYMENT_COMPLETED is payment_service.PAYMENT_COMPLETED
        assert outstanding_service.CHALLAN_CANCELLED is challan_service.CHALLAN_CANCELLED
        assert payment_service.VALID_PAYMENT_TYPES is statuses.VALID_PAYMENT_TYPES

    def test_cancelled_bill_leaves_outstanding(self, db_session, vendor_a, customer_a, scenario_items):
        bill = _billed(vendor_a.id, customer_a.id, scenario_items)
        bill_service.cancel_bill(bill.id, vendor_a.id)

        assert bill.status == statuses.BILL_CANCELLED
        assert outstanding_service.customer_outstanding(vendor_a.id, customer_a.id) == Decimal("0.00")
