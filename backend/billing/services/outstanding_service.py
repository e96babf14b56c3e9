# Overview: Service-layer read models for balances, summaries and customer ledgers.

"""
Outstanding / Reconciliation Calculator

WHY: Outstanding balances are never stored on the customer. They are
derived on demand from bills and payments so that no write path can leave
a cached balance out of date.

FORMULA:
    outstanding = SUM(bills.total_with_gst, not cancelled)
                - SUM(credit payments, completed)
                + SUM(debit payments, completed)

Each term is COALESCE(SUM, 0); rounding happens once on the final value.
Soft-deleted rows never count.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import Bill, Challan, ChallanItem, Customer, Payment
from ..money import ZERO, round2, to_decimal
from billing.time_utils import to_iso_date
from .statuses import BILL_CANCELLED, CHALLAN_CANCELLED, PAYMENT_COMPLETED, PAYMENT_CREDIT, PAYMENT_DEBIT


def _dec(value) -> Decimal:
    return to_decimal(value)


def _bill_total(vendor_id: int, customer_id: int | None = None, before: date | None = None) -> Decimal:
    query = db.session.query(func.coalesce(func.sum(Bill.total_with_gst), 0)).filter(
        Bill.vendor_id == vendor_id,
        Bill.status != BILL_CANCELLED,
        Bill.deleted_at.is_(None),
    )
    if customer_id is not None:
        query = query.filter(Bill.customer_id == customer_id)
    if before is not None:
        query = query.filter(Bill.bill_date < before)
    return _dec(query.scalar())


def _payment_total(
    vendor_id: int,
    payment_type: str,
    customer_id: int | None = None,
    before: date | None = None,
) -> Decimal:
    query = db.session.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
        Payment.vendor_id == vendor_id,
        Payment.type == payment_type,
        Payment.status == PAYMENT_COMPLETED,
        Payment.deleted_at.is_(None),
    )
    if customer_id is not None:
        query = query.filter(Payment.customer_id == customer_id)
    else:
        query = query.filter(Payment.customer_id.isnot(None))
    if before is not None:
        query = query.filter(Payment.payment_date < before)
    return _dec(query.scalar())


def customer_outstanding(vendor_id: int, customer_id: int, *, before: date | None = None) -> Decimal:
    """
    What the customer owes this vendor right now (or before a date).

    Negative means the vendor holds an advance.
    """
    bills = _bill_total(vendor_id, customer_id, before)
    credits = _payment_total(vendor_id, PAYMENT_CREDIT, customer_id, before)
    debits = _payment_total(vendor_id, PAYMENT_DEBIT, customer_id, before)
    return round2(bills - credits + debits)


def vendor_outstanding(vendor_id: int) -> Decimal:
    """customer_outstanding summed over every customer of the vendor."""
    bills = _bill_total(vendor_id)
    credits = _payment_total(vendor_id, PAYMENT_CREDIT)
    debits = _payment_total(vendor_id, PAYMENT_DEBIT)
    return round2(bills - credits + debits)


def vendor_summary(vendor_id: int, from_date: date | None = None, to_date: date | None = None) -> dict:
    """
    Dashboard totals over an optional bill/challan date window.

    purchasesByProduct aggregates challan items per product, largest
    quantity first.
    """
    bill_query = db.session.query(
        func.coalesce(func.sum(Bill.total_with_gst), 0),
        func.coalesce(func.sum(Bill.paid_amount), 0),
        func.coalesce(func.sum(Bill.pending_amount), 0),
    ).filter(
        Bill.vendor_id == vendor_id,
        Bill.status != BILL_CANCELLED,
        Bill.deleted_at.is_(None),
    )
    if from_date:
        bill_query = bill_query.filter(Bill.bill_date >= from_date)
    if to_date:
        bill_query = bill_query.filter(Bill.bill_date <= to_date)
    total_bills, total_paid, total_pending = bill_query.one()

    total_qty = func.sum(ChallanItem.qty)
    purchase_query = (
        db.session.query(
            ChallanItem.product_id,
            ChallanItem.product_name,
            total_qty.label("total_qty"),
            func.sum(ChallanItem.amount).label("total_amount"),
        )
        .join(Challan, Challan.id == ChallanItem.challan_id)
        .filter(
            Challan.vendor_id == vendor_id,
            Challan.status != CHALLAN_CANCELLED,
            Challan.deleted_at.is_(None),
        )
    )
    if from_date:
        purchase_query = purchase_query.filter(Challan.challan_date >= from_date)
    if to_date:
        purchase_query = purchase_query.filter(Challan.challan_date <= to_date)
    purchases = (
        purchase_query.group_by(ChallanItem.product_id, ChallanItem.product_name)
        .order_by(total_qty.desc())
        .all()
    )

    return {
        "totalBills": round2(_dec(total_bills)),
        "totalPayments": round2(_dec(total_paid)),
        "totalPending": round2(_dec(total_pending)),
        "purchasesByProduct": [
            {
                "productId": row.product_id,
                "productName": row.product_name,
                "totalQty": round2(_dec(row.total_qty)),
                "totalAmount": round2(_dec(row.total_amount)),
            }
            for row in purchases
        ],
    }


def customer_balances(vendor_id: int) -> list[dict]:
    """Outstanding per customer, highest first."""
    bills = dict(
        db.session.query(Bill.customer_id, func.coalesce(func.sum(Bill.total_with_gst), 0))
        .filter(Bill.vendor_id == vendor_id, Bill.status != BILL_CANCELLED, Bill.deleted_at.is_(None))
        .group_by(Bill.customer_id)
        .all()
    )

    movements = defaultdict(lambda: ZERO)
    payment_rows = (
        db.session.query(Payment.customer_id, Payment.type, func.coalesce(func.sum(Payment.amount), 0))
        .filter(
            Payment.vendor_id == vendor_id,
            Payment.customer_id.isnot(None),
            Payment.status == PAYMENT_COMPLETED,
            Payment.deleted_at.is_(None),
        )
        .group_by(Payment.customer_id, Payment.type)
        .all()
    )
    for customer_id, payment_type, total in payment_rows:
        sign = -1 if payment_type == PAYMENT_CREDIT else 1
        movements[customer_id] += sign * _dec(total)

    customers = (
        db.session.query(Customer)
        .filter(Customer.created_by == vendor_id)
        .order_by(Customer.customer_name.asc())
        .all()
    )
    rows = []
    for customer in customers:
        outstanding = round2(_dec(bills.get(customer.id)) + movements[customer.id])
        rows.append({
            "customer_id": customer.id,
            "customer_name": customer.customer_name,
            "mobile_number": customer.mobile_number,
            "outstanding": outstanding,
        })
    rows.sort(key=lambda r: r["outstanding"], reverse=True)
    return rows


def customer_ledger(
    vendor_id: int,
    customer_id: int,
    from_date: date | None = None,
    to_date: date | None = None,
) -> dict:
    """
    Chronological statement with a running balance.

    Bills are debits, credit payments are credits, debit payments (refunds)
    are debits. With from_date, the balance before it opens the statement.
    Rows are plain dicts for CSV/PDF renderers.
    """
    opening = customer_outstanding(vendor_id, customer_id, before=from_date) if from_date else ZERO

    bill_query = db.session.query(Bill).filter(
        Bill.vendor_id == vendor_id,
        Bill.customer_id == customer_id,
        Bill.status != BILL_CANCELLED,
        Bill.deleted_at.is_(None),
    )
    payment_query = db.session.query(Payment).filter(
        Payment.vendor_id == vendor_id,
        Payment.customer_id == customer_id,
        Payment.status == PAYMENT_COMPLETED,
        Payment.deleted_at.is_(None),
    )
    if from_date:
        bill_query = bill_query.filter(Bill.bill_date >= from_date)
        payment_query = payment_query.filter(Payment.payment_date >= from_date)
    if to_date:
        bill_query = bill_query.filter(Bill.bill_date <= to_date)
        payment_query = payment_query.filter(Payment.payment_date <= to_date)

    entries = []
    for bill in bill_query.all():
        entries.append((bill.bill_date, 0, bill.id, {
            "date": bill.bill_date,
            "kind": "bill",
            "reference": bill.bill_number,
            "bill_id": bill.id,
            "payment_id": None,
            "debit": round2(bill.total_with_gst),
            "credit": ZERO,
        }))
    for payment in payment_query.all():
        amount = round2(payment.amount)
        is_credit = payment.type == PAYMENT_CREDIT
        entries.append((payment.payment_date, 1, payment.id, {
            "date": payment.payment_date,
            "kind": "payment" if is_credit else "refund",
            "reference": payment.payment_number,
            "bill_id": payment.bill_id,
            "payment_id": payment.id,
            "debit": ZERO if is_credit else amount,
            "credit": amount if is_credit else ZERO,
        }))
    entries.sort(key=lambda e: (e[0], e[1], e[2]))

    balance = opening
    rows = []
    total_debit = ZERO
    total_credit = ZERO
    for _, _, _, row in entries:
        balance = balance + row["debit"] - row["credit"]
        total_debit += row["debit"]
        total_credit += row["credit"]
        row["date"] = to_iso_date(row["date"])
        row["balance"] = balance
        rows.append(row)

    return {
        "customer_id": customer_id,
        "from_date": to_iso_date(from_date),
        "to_date": to_iso_date(to_date),
        "opening_balance": opening,
        "total_debit": total_debit,
        "total_credit": total_credit,
        "closing_balance": balance,
        "rows": rows,
    }
