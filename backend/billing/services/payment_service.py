# Overview: Service-layer operations for payments; encapsulates business logic and database work.

"""
Payment Ledger Service

WHY: Vendors record money received from customers (credit), money paid out
(debit) and non-customer cash movements. Customer payments may settle
specific bills through adjusted_invoices.

DESIGN PRINCIPLES:
- One payment = one transaction: snapshot, payment row, ledger mirror and
  bill adjustments commit together or not at all
- Snapshots (total_outstanding, outstanding_after_payment) are taken at
  creation time and never recomputed retroactively; use
  recompute_outstanding_snapshot for ground truth
- delete_payment is the exact inverse of create_payment
- Only sub_type "customer" carries a customer and a ledger mirror
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, InvalidAmount, NotFound, StateError, ValidationError
from ..extensions import db
from ..models import Bill, Challan, Payment, Vendor
from ..money import ZERO, round2, to_decimal
from billing.time_utils import financial_year_bounds, parse_date, today, utcnow
from .bill_service import apply_bill_payment
from .concurrency import lock_for_update, run_with_retry
from .outstanding_service import customer_outstanding
from .statuses import (
    BILL_CANCELLED,
    PAYMENT_COMPLETED,
    PAYMENT_CREDIT,
    PAYMENT_DEBIT,
    VALID_PAYMENT_STATUSES,
    VALID_PAYMENT_TYPES,
)
from .tenant_service import require_customer, require_vendor
from .transaction_service import TXN_PAYMENT, TXN_REFUND, record_transaction, transactions_for_payment


# =============================================================================
# PAYMENT SUB TYPES AND METHODS (CONSTANTS)
# =============================================================================

SUB_TYPE_CUSTOMER = "customer"

VALID_SUB_TYPES = [
    SUB_TYPE_CUSTOMER,
    "vendor",
    "cash-deposit",
    "cash-withdrawal",
    "bank-charges",
    "electricity-bill",
    "miscellaneous",
]

VALID_METHODS = ["cash", "bank", "cheque", "online", "upi", "card", "other"]

EDITABLE_FIELDS = {"amount", "payment_date", "method", "reference", "note", "status"}

PAYMENT_NUMBER_PREFIX = "PAY"
PAYMENT_NUMBER_ATTEMPTS = 5

MAX_PAGE_SIZE = 200


# =============================================================================
# HELPERS
# =============================================================================

def _payment_number_prefix(payment_date: date) -> str:
    return f"{PAYMENT_NUMBER_PREFIX}-{payment_date.strftime('%Y%m%d')}-"


def next_payment_number(vendor_id: int, payment_date: date) -> str:
    prefix = _payment_number_prefix(payment_date)
    last = lock_for_update(
        db.session.query(Payment)
        .filter(Payment.vendor_id == vendor_id, Payment.payment_number.like(f"{prefix}%"))
        # Length first: suffixes past 9999 are wider and sort low as text
        .order_by(func.length(Payment.payment_number).desc(), Payment.payment_number.desc())
    ).first()
    sequence = 1
    if last:
        suffix = last.payment_number[len(prefix):]
        sequence = int(suffix) + 1 if suffix.isdigit() else 1
    return f"{prefix}{str(sequence).zfill(4)}"


def _parse_payment_date(value) -> date:
    try:
        return parse_date(value) or today()
    except ValueError:
        raise ValidationError("payment_date must be YYYY-MM-DD")


def _optional_id(value, field: str) -> int | None:
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def _positive_amount(value, field: str = "amount") -> Decimal:
    amount = to_decimal(value, field)
    if amount <= 0:
        raise InvalidAmount(f"{field} must be > 0")
    return round2(amount)


def _parse_adjustments(raw) -> list[dict]:
    if raw in (None, ""):
        return []
    if not isinstance(raw, list):
        raise ValidationError("adjusted_invoices must be a list")
    adjustments = []
    for position, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"adjusted_invoices[{position}] must be an object")
        bill_id = _optional_id(entry.get("billId"), f"adjusted_invoices[{position}].billId")
        if bill_id is None:
            raise ValidationError(f"adjusted_invoices[{position}].billId is required")
        pay_amount = _positive_amount(entry.get("payAmount"), f"adjusted_invoices[{position}].payAmount")
        adjustments.append({"billId": bill_id, "payAmount": str(pay_amount)})
    return adjustments


def _snapshot_after(total: Decimal, amount: Decimal, payment_type: str) -> Decimal:
    if payment_type == PAYMENT_CREDIT:
        return round2(total - amount)
    return round2(total + amount)


def _mirror_type(payment_type: str) -> str:
    return TXN_PAYMENT if payment_type == PAYMENT_CREDIT else TXN_REFUND


def load_payment(vendor_id: int, payment_id: int, *, lock: bool = False) -> Payment:
    query = db.session.query(Payment).filter(
        Payment.id == payment_id,
        Payment.vendor_id == vendor_id,
        Payment.deleted_at.is_(None),
    )
    if lock:
        query = lock_for_update(query)
    payment = query.first()
    if not payment:
        raise NotFound("Payment not found")
    return payment


def _locked_bill_for(vendor_id: int, customer_id: int | None, bill_id: int) -> Bill:
    query = db.session.query(Bill).filter(
        Bill.id == bill_id,
        Bill.vendor_id == vendor_id,
        Bill.deleted_at.is_(None),
    )
    if customer_id is not None:
        query = query.filter(Bill.customer_id == customer_id)
    bill = lock_for_update(query).first()
    if not bill:
        raise NotFound(f"Bill {bill_id} not found")
    return bill


# =============================================================================
# CREATE
# =============================================================================

def create_payment(vendor_id: int, payload: dict) -> Payment:
    """
    Record a payment.

    payload keys: type, sub_type, customer_id, amount, payment_date, method,
    reference, note, status, bill_id, challan_id, adjusted_invoices.

    For credit customer payments, each adjusted invoice {billId, payAmount}
    is added to that bill's paid_amount. The sum of payAmount against amount
    is checked by validate_adjusted_invoices before this is called.

    Raises:
        ValidationError / InvalidAmount: bad type, sub_type, method, amount
        NotFound: customer, bill or challan not owned by the vendor
        StateError: adjusted bill is cancelled
    """
    require_vendor(vendor_id)
    payload = payload or {}

    payment_type = payload.get("type")
    if payment_type not in VALID_PAYMENT_TYPES:
        raise ValidationError(f"Invalid payment type: {payment_type}. Must be one of {VALID_PAYMENT_TYPES}")

    sub_type = payload.get("sub_type") or SUB_TYPE_CUSTOMER
    if sub_type not in VALID_SUB_TYPES:
        raise ValidationError(f"Invalid sub_type: {sub_type}. Must be one of {VALID_SUB_TYPES}")

    method = payload.get("method") or "cash"
    if method not in VALID_METHODS:
        raise ValidationError(f"Invalid method: {method}. Must be one of {VALID_METHODS}")

    status = payload.get("status") or PAYMENT_COMPLETED
    if status not in VALID_PAYMENT_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_PAYMENT_STATUSES}")

    amount = _positive_amount(payload.get("amount"))
    payment_date = _parse_payment_date(payload.get("payment_date"))

    customer_id = _optional_id(payload.get("customer_id"), "customer_id")
    if sub_type == SUB_TYPE_CUSTOMER:
        if customer_id is None:
            raise ValidationError("customer_id is required for customer payments")
        require_customer(vendor_id, customer_id)
    elif customer_id is not None:
        raise ValidationError(f"customer_id is not allowed for {sub_type} payments")

    bill_id = _optional_id(payload.get("bill_id"), "bill_id")
    challan_id = _optional_id(payload.get("challan_id"), "challan_id")
    adjustments = _parse_adjustments(payload.get("adjusted_invoices"))
    if adjustments and (payment_type != PAYMENT_CREDIT or sub_type != SUB_TYPE_CUSTOMER):
        raise ValidationError("adjusted_invoices are only allowed on credit customer payments")

    def _op():
        if bill_id is not None:
            bill = db.session.query(Bill).filter_by(id=bill_id, vendor_id=vendor_id, deleted_at=None).first()
            if not bill:
                raise NotFound("Bill not found")
        challan = None
        if challan_id is not None:
            challan = db.session.query(Challan).filter_by(id=challan_id, vendor_id=vendor_id, deleted_at=None).first()
            if not challan:
                raise NotFound("Challan not found")

        total_outstanding = None
        outstanding_after = None
        if sub_type == SUB_TYPE_CUSTOMER:
            total_outstanding = customer_outstanding(vendor_id, customer_id)
            outstanding_after = _snapshot_after(total_outstanding, amount, payment_type)

        payment = Payment(
            vendor_id=vendor_id,
            customer_id=customer_id,
            payment_number=next_payment_number(vendor_id, payment_date),
            type=payment_type,
            sub_type=sub_type,
            amount=amount,
            payment_date=payment_date,
            method=method,
            reference=payload.get("reference"),
            note=payload.get("note"),
            status=status,
            bill_id=bill_id,
            challan_id=challan_id,
            total_outstanding=total_outstanding,
            outstanding_after_payment=outstanding_after,
            adjusted_invoices=adjustments or None,
            is_opening_balance=False,
            opening_balance=ZERO,
        )
        db.session.add(payment)
        db.session.flush()

        if sub_type == SUB_TYPE_CUSTOMER:
            record_transaction(
                vendor_id=vendor_id,
                customer_id=customer_id,
                amount=amount,
                txn_type=_mirror_type(payment_type),
                description=payment.note or f"Payment {payment.payment_number}",
                transaction_date=payment_date,
                challan_id=challan_id,
                challan_number=challan.challan_number if challan else None,
                bill_id=bill_id,
                payment_id=payment.id,
            )

        for adjustment in adjustments:
            bill = _locked_bill_for(vendor_id, customer_id, adjustment["billId"])
            if bill.status == BILL_CANCELLED:
                raise StateError(f"Bill {bill.bill_number} is cancelled")
            apply_bill_payment(bill, Decimal(adjustment["payAmount"]))

        db.session.commit()
        return payment

    for attempt in range(PAYMENT_NUMBER_ATTEMPTS):
        try:
            return run_with_retry(_op)
        except IntegrityError:
            if attempt >= PAYMENT_NUMBER_ATTEMPTS - 1:
                raise ConflictError("Could not allocate a payment number, please retry")
    raise ConflictError("Could not allocate a payment number, please retry")


def _live_opening_balance(vendor_id: int, method: str, fy_start: date, fy_end: date) -> Payment | None:
    return (
        db.session.query(Payment)
        .filter(
            Payment.vendor_id == vendor_id,
            Payment.method == method,
            Payment.is_opening_balance.is_(True),
            Payment.deleted_at.is_(None),
            Payment.payment_date >= fy_start,
            Payment.payment_date <= fy_end,
        )
        .first()
    )


def _opening_balance_conflict(method: str, fy_start: date, existing: Payment) -> ConflictError:
    return ConflictError(
        f"Opening balance for {method} already exists for financial year starting {fy_start.isoformat()}",
        payment_id=existing.id,
    )


def create_opening_balance(vendor_id: int, method: str, opening_balance, payment_date=None) -> Payment:
    """
    Record the opening balance of a cash/bank book.

    One per vendor and method per financial year (April 1 to March 31).
    The payment itself carries amount 0. The vendor row is locked while
    checking, and uq_payments_opening_balance rejects a concurrent twin
    where FOR UPDATE is a no-op; the loser gets the same ConflictError.
    """
    require_vendor(vendor_id)
    if method not in VALID_METHODS:
        raise ValidationError(f"Invalid method: {method}. Must be one of {VALID_METHODS}")
    balance = round2(to_decimal(opening_balance, "opening_balance"))
    payment_day = _parse_payment_date(payment_date)
    fy_start, fy_end = financial_year_bounds(payment_day)

    def _op():
        lock_for_update(db.session.query(Vendor).filter(Vendor.id == vendor_id)).first()
        existing = _live_opening_balance(vendor_id, method, fy_start, fy_end)
        if existing:
            raise _opening_balance_conflict(method, fy_start, existing)

        payment = Payment(
            vendor_id=vendor_id,
            customer_id=None,
            payment_number=next_payment_number(vendor_id, payment_day),
            type=PAYMENT_CREDIT,
            sub_type="miscellaneous",
            amount=ZERO,
            payment_date=payment_day,
            method=method,
            note="Opening balance",
            status=PAYMENT_COMPLETED,
            is_opening_balance=True,
            opening_balance=balance,
            financial_year_start=fy_start,
        )
        db.session.add(payment)
        db.session.commit()
        return payment

    for attempt in range(PAYMENT_NUMBER_ATTEMPTS):
        try:
            return run_with_retry(_op)
        except IntegrityError:
            # Either a concurrent opening balance won the year slot, or it took our payment number
            existing = _live_opening_balance(vendor_id, method, fy_start, fy_end)
            if existing:
                raise _opening_balance_conflict(method, fy_start, existing)
            if attempt >= PAYMENT_NUMBER_ATTEMPTS - 1:
                raise ConflictError("Could not allocate a payment number, please retry")
    raise ConflictError("Could not allocate a payment number, please retry")


# =============================================================================
# DELETE / UPDATE
# =============================================================================

def delete_payment(payment_id: int, vendor_id: int) -> bool:
    """
    Exact inverse of create_payment, in one transaction.

    Subtracts every adjusted payAmount from its bill (paid clamps at 0),
    removes the mirrored ledger rows and soft-deletes the payment.
    """
    def _op():
        payment = load_payment(vendor_id, payment_id, lock=True)

        if payment.type == PAYMENT_CREDIT:
            for adjustment in payment.adjusted_invoices or []:
                bill = (
                    lock_for_update(
                        db.session.query(Bill).filter_by(id=int(adjustment["billId"]), vendor_id=vendor_id)
                    ).first()
                )
                if bill is None:
                    raise NotFound(f"Bill {adjustment['billId']} not found")
                apply_bill_payment(bill, -to_decimal(adjustment["payAmount"]))

        for txn in transactions_for_payment(vendor_id, payment.id):
            db.session.delete(txn)

        # Frees the vendor/method/year slot for a replacement opening balance
        payment.financial_year_start = None
        payment.deleted_at = utcnow()
        db.session.commit()
        return True

    return run_with_retry(_op)


def update_payment(payment_id: int, vendor_id: int, changes: dict) -> Payment:
    """
    Edit amount, payment_date, method, reference, note or status.

    An amount change moves outstanding_after_payment by the delta only
    (approximation; see recompute_outstanding_snapshot). The mirrored ledger
    row follows amount and date.

    Raises StateError for opening-balance payments, and for amount changes
    on payments that settled invoices (delete and recreate instead).
    """
    changes = changes or {}
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    new_amount = _positive_amount(changes["amount"]) if "amount" in changes else None
    new_date = _parse_payment_date(changes["payment_date"]) if changes.get("payment_date") else None
    if "method" in changes and changes["method"] not in VALID_METHODS:
        raise ValidationError(f"Invalid method: {changes['method']}. Must be one of {VALID_METHODS}")
    if "status" in changes and changes["status"] not in VALID_PAYMENT_STATUSES:
        raise ValidationError(f"Invalid status: {changes['status']}. Must be one of {VALID_PAYMENT_STATUSES}")

    def _op():
        payment = load_payment(vendor_id, payment_id, lock=True)
        if payment.is_opening_balance:
            raise StateError("Opening balance payments cannot be edited")

        mirrored = transactions_for_payment(vendor_id, payment.id)

        if new_amount is not None and new_amount != Decimal(payment.amount):
            if payment.adjusted_invoices:
                raise StateError("Payment settled invoices; delete and recreate it to change the amount")
            delta = new_amount - Decimal(payment.amount)
            if payment.outstanding_after_payment is not None:
                if payment.type == PAYMENT_CREDIT:
                    payment.outstanding_after_payment = round2(Decimal(payment.outstanding_after_payment) - delta)
                else:
                    payment.outstanding_after_payment = round2(Decimal(payment.outstanding_after_payment) + delta)
            payment.amount = new_amount
            for txn in mirrored:
                txn.amount = new_amount

        if "status" in changes and changes["status"] != payment.status and payment.adjusted_invoices:
            raise StateError("Payment settled invoices; delete it instead of changing status")

        if new_date is not None:
            payment.payment_date = new_date
            for txn in mirrored:
                txn.transaction_date = new_date
        for field in ("method", "reference", "note", "status"):
            if field in changes:
                setattr(payment, field, changes[field])

        db.session.commit()
        return payment

    return run_with_retry(_op)


def recompute_outstanding_snapshot(payment_id: int, vendor_id: int) -> Payment:
    """
    Refresh the snapshot from live balances.

    outstanding_after_payment becomes the live outstanding; total_outstanding
    is that value with this payment backed out.
    """
    def _op():
        payment = load_payment(vendor_id, payment_id, lock=True)
        if payment.customer_id is None:
            raise StateError("Only customer payments carry an outstanding snapshot")

        live = customer_outstanding(vendor_id, payment.customer_id)
        amount = Decimal(payment.amount)
        payment.outstanding_after_payment = live
        if payment.type == PAYMENT_CREDIT:
            payment.total_outstanding = round2(live + amount)
        else:
            payment.total_outstanding = round2(live - amount)
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment(payment_id: int, vendor_id: int) -> dict:
    payment = load_payment(vendor_id, payment_id)
    return {"payment": payment, "transactions": transactions_for_payment(vendor_id, payment.id)}


def list_payments(
    vendor_id: int,
    *,
    page: int = 1,
    size: int = 20,
    payment_type: str | None = None,
    sub_type: str | None = None,
    customer_id: int | None = None,
    method: str | None = None,
    status: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    search: str | None = None,
) -> dict:
    page = max(1, int(page or 1))
    size = min(MAX_PAGE_SIZE, max(1, int(size or 20)))

    query = db.session.query(Payment).filter(Payment.vendor_id == vendor_id, Payment.deleted_at.is_(None))
    if payment_type:
        query = query.filter(Payment.type == payment_type)
    if sub_type:
        query = query.filter(Payment.sub_type == sub_type)
    if customer_id is not None:
        query = query.filter(Payment.customer_id == customer_id)
    if method:
        query = query.filter(Payment.method == method)
    if status:
        query = query.filter(Payment.status == status)
    if from_date:
        query = query.filter(Payment.payment_date >= from_date)
    if to_date:
        query = query.filter(Payment.payment_date <= to_date)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Payment.payment_number.ilike(like),
            Payment.reference.ilike(like),
            Payment.note.ilike(like),
        ))

    total = query.with_entities(func.count(Payment.id)).scalar() or 0
    rows = (
        query.order_by(Payment.payment_date.desc(), Payment.id.desc())
        .offset((page - 1) * size)
        .limit(size)
        .all()
    )
    return {"total": total, "page": page, "size": size, "rows": rows}


def payment_stats(vendor_id: int, from_date: date | None = None, to_date: date | None = None) -> dict:
    """Completed credit/debit totals and counts; opening balances excluded."""
    query = (
        db.session.query(Payment.type, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
        .filter(
            Payment.vendor_id == vendor_id,
            Payment.deleted_at.is_(None),
            Payment.status == PAYMENT_COMPLETED,
            Payment.is_opening_balance.is_(False),
        )
    )
    if from_date:
        query = query.filter(Payment.payment_date >= from_date)
    if to_date:
        query = query.filter(Payment.payment_date <= to_date)

    stats = {
        PAYMENT_CREDIT: {"count": 0, "total": ZERO},
        PAYMENT_DEBIT: {"count": 0, "total": ZERO},
    }
    for payment_type, count, total in query.group_by(Payment.type).all():
        if payment_type in stats:
            stats[payment_type] = {"count": count, "total": round2(total)}

    return {
        "credit": stats[PAYMENT_CREDIT],
        "debit": stats[PAYMENT_DEBIT],
        "net": round2(stats[PAYMENT_CREDIT]["total"] - stats[PAYMENT_DEBIT]["total"]),
        "count": stats[PAYMENT_CREDIT]["count"] + stats[PAYMENT_DEBIT]["count"],
    }

