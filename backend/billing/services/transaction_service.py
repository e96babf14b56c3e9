# Overview: Append-only customer ledger entries mirroring payments, plus the ledger report.

"""
Transaction Ledger Service

WHY: Reporting and exports read a flat, chronological list of what a
customer paid and was refunded. Rows are written alongside the operation
they mirror (same session, same commit) and never re-derive balances.

TRANSACTION TYPES:
- payment: money received (challan/bill mark-paid, customer credit payments)
- refund: money paid back (customer debit payments)

REPORT:
    list_transactions(...)  -> filtered page plus credit/debit/net summary
    get_transaction(...)    -> one row, vendor scoped
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import func, or_

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Transaction
from ..money import ZERO, round2
from billing.time_utils import today


# =============================================================================
# TRANSACTION TYPES (CONSTANTS)
# =============================================================================

TXN_PAYMENT = "payment"
TXN_REFUND = "refund"

VALID_TRANSACTION_TYPES = [TXN_PAYMENT, TXN_REFUND]

MAX_PAGE_SIZE = 200


def record_transaction(
    *,
    vendor_id: int,
    customer_id: int,
    amount: Decimal,
    txn_type: str,
    description: str | None = None,
    transaction_date: date | None = None,
    challan_id: int | None = None,
    challan_number: str | None = None,
    bill_id: int | None = None,
    payment_id: int | None = None,
) -> Transaction:
    """
    Append a ledger entry to the current session.

    Does NOT commit; the caller owns the transaction boundary.
    """
    if txn_type not in VALID_TRANSACTION_TYPES:
        raise ValueError(f"Invalid transaction type: {txn_type}")

    txn = Transaction(
        vendor_id=vendor_id,
        customer_id=customer_id,
        amount=amount,
        type=txn_type,
        description=description,
        transaction_date=transaction_date or today(),
        challan_id=challan_id,
        challan_number=challan_number,
        bill_id=bill_id,
        payment_id=payment_id,
    )
    db.session.add(txn)
    return txn


def transactions_for_payment(vendor_id: int, payment_id: int) -> list[Transaction]:
    return (
        db.session.query(Transaction)
        .filter_by(vendor_id=vendor_id, payment_id=payment_id)
        .all()
    )


def transactions_for_bill(vendor_id: int, bill_id: int) -> list[Transaction]:
    """Ledger rows linked to a bill, newest first."""
    return (
        db.session.query(Transaction)
        .filter_by(vendor_id=vendor_id, bill_id=bill_id)
        .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        .all()
    )


# =============================================================================
# REPORTING
# =============================================================================

def get_transaction(txn_id: int, vendor_id: int) -> Transaction:
    txn = db.session.query(Transaction).filter_by(id=txn_id, vendor_id=vendor_id).first()
    if not txn:
        raise NotFound("Transaction not found")
    return txn


def list_transactions(
    vendor_id: int,
    *,
    page: int = 1,
    size: int = 20,
    txn_type: str | None = None,
    customer_id: int | None = None,
    bill_id: int | None = None,
    challan_id: int | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    search: str | None = None,
) -> dict:
    """
    Filtered ledger page, newest first.

    The summary covers every row matching the filters, not just the page:
    credit = payments received, debit = refunds, net = credit - debit.
    """
    if txn_type and txn_type not in VALID_TRANSACTION_TYPES:
        raise ValidationError(f"Invalid type: {txn_type}. Must be one of {VALID_TRANSACTION_TYPES}")
    page = max(1, int(page or 1))
    size = min(MAX_PAGE_SIZE, max(1, int(size or 20)))

    query = db.session.query(Transaction).filter(Transaction.vendor_id == vendor_id)
    if txn_type:
        query = query.filter(Transaction.type == txn_type)
    if customer_id is not None:
        query = query.filter(Transaction.customer_id == customer_id)
    if bill_id is not None:
        query = query.filter(Transaction.bill_id == bill_id)
    if challan_id is not None:
        query = query.filter(Transaction.challan_id == challan_id)
    if from_date:
        query = query.filter(Transaction.transaction_date >= from_date)
    if to_date:
        query = query.filter(Transaction.transaction_date <= to_date)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Transaction.description.ilike(like),
            Transaction.challan_number.ilike(like),
        ))

    total = query.with_entities(func.count(Transaction.id)).scalar() or 0
    sums = {TXN_PAYMENT: ZERO, TXN_REFUND: ZERO}
    grouped = query.with_entities(Transaction.type, func.coalesce(func.sum(Transaction.amount), 0))
    for row_type, amount in grouped.group_by(Transaction.type).all():
        if row_type in sums:
            sums[row_type] = round2(amount)
    credit, debit = sums[TXN_PAYMENT], sums[TXN_REFUND]

    rows = (
        query.order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        .offset((page - 1) * size)
        .limit(size)
        .all()
    )
    return {
        "total": total,
        "page": page,
        "size": size,
        "rows": rows,
        "summary": {"credit": credit, "debit": debit, "net": round2(credit - debit)},
    }
