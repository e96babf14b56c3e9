# Overview: Service-layer operations for bills (invoices); encapsulates business logic and database work.

"""
Bill (Invoice) Engine

WHY: A bill folds one or more challans (or ad-hoc items) into a numbered
tax invoice and tracks how much of it has been paid.

DESIGN PRINCIPLES:
- Numbers come from the invoice sequencer; the reservation is flushed in
  the same transaction as the bill row, so a failed bill never burns a number
- Bill-level GST: discount and GST are applied to the aggregated subtotal,
  unlike the challan's per-line GST. Totals of a bill and of its source
  challans may therefore differ.
- paid_amount only moves through explicit payment operations; edits never reset it

INVARIANT (after every mutation):
    pending_amount = max(0, total_with_gst - paid_amount)
    status = paid if pending <= 0.01 else partial if paid > 0 else pending
"""

from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import (
    ConflictError,
    InvalidAmount,
    NoValidChallans,
    NotFound,
    StateError,
    ValidationError,
)
from ..extensions import db
from ..models import Bill, BillItem, Challan, InvoiceSettings, Payment
from ..money import PAID_TOLERANCE, ZERO, percent_of, round2, to_decimal
from billing.time_utils import parse_date, today, utcnow
from .challan_service import BILLABLE_STATUSES, price_line
from .concurrency import lock_for_update, run_with_retry
from .invoice_sequence_service import (
    VALID_TEMPLATES,
    get_settings,
    next_for_settings,
    reserve_on_settings,
)
from .statuses import (
    BILL_CANCELLED,
    BILL_PAID,
    BILL_PARTIAL,
    BILL_PENDING,
    CHALLAN_BILLED,
    CHALLAN_UNPAID,
    VALID_BILL_STATUSES,
)
from .tenant_service import require_customer, require_vendor
from .transaction_service import TXN_PAYMENT, record_transaction, transactions_for_bill


# =============================================================================
# BILL EDITING (CONSTANTS)
# =============================================================================

# Fields edit_bill accepts
EDITABLE_FIELDS = {
    "discount_percent",
    "gst_percent",
    "custom_invoice_prefix",
    "note",
    "bill_date",
    "invoice_template",
}

MAX_PAGE_SIZE = 200

# Sequenced numbers retried after losing a race to a concurrent bill
BILL_NUMBER_ATTEMPTS = 10


# =============================================================================
# AMOUNT HELPERS
# =============================================================================

def derive_bill_status(pending: Decimal, paid: Decimal) -> str:
    if pending <= PAID_TOLERANCE:
        return BILL_PAID
    if paid > 0:
        return BILL_PARTIAL
    return BILL_PENDING


def settle_bill(bill: Bill, paid: Decimal) -> Bill:
    """Set paid_amount and re-derive pending_amount and status."""
    paid = round2(paid)
    if paid < 0:
        paid = ZERO
    pending = round2(Decimal(bill.total_with_gst) - paid)
    if pending < 0:
        pending = ZERO
    bill.paid_amount = paid
    bill.pending_amount = pending
    if bill.status != BILL_CANCELLED:
        bill.status = derive_bill_status(pending, paid)
    return bill


def apply_bill_payment(bill: Bill, delta: Decimal) -> Bill:
    """Add (or with a negative delta, remove) a payment amount; paid clamps at 0."""
    return settle_bill(bill, Decimal(bill.paid_amount or 0) + delta)


def _bill_totals(subtotal: Decimal, discount_percent, gst_percent) -> dict:
    discount_amount = percent_of(subtotal, discount_percent)
    total_without_gst = round2(subtotal - discount_amount)
    gst_total = percent_of(total_without_gst, gst_percent)
    return {
        "subtotal": round2(subtotal),
        "discount_amount": discount_amount,
        "total_without_gst": total_without_gst,
        "gst_total": gst_total,
        "total_with_gst": total_without_gst + gst_total,
    }


def _percent(value, field: str) -> Decimal:
    pct = to_decimal(value, field)
    if pct < 0 or pct > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    return pct


def _custom_prefix(value) -> str | None:
    if value is None:
        return None
    prefix = str(value).strip().upper()
    return prefix or None


def _parse_bill_date(value) -> date:
    try:
        return parse_date(value) or today()
    except ValueError:
        raise ValidationError("bill_date must be YYYY-MM-DD")


def _parse_challan_ids(challan_ids) -> list[int]:
    if not isinstance(challan_ids, list) or not challan_ids:
        raise ValidationError("At least one challan must be selected")
    parsed = []
    for raw in challan_ids:
        if isinstance(raw, bool):
            raise ValidationError("challan_ids must be integers")
        try:
            parsed.append(int(raw))
        except (TypeError, ValueError):
            raise ValidationError("challan_ids must be integers")
    # Preserve order, drop duplicates
    return list(dict.fromkeys(parsed))


def _number_bill(settings: InvoiceSettings, custom_invoice_number, custom_invoice_prefix, invoice_template):
    number = next_for_settings(settings, custom_invoice_number)
    prefix = _custom_prefix(custom_invoice_prefix) or settings.prefix
    template = invoice_template or number.template or "template1"
    if template not in VALID_TEMPLATES:
        raise ValidationError(f"Invalid invoice_template: {template}. Must be one of {VALID_TEMPLATES}")
    return number, settings.format_number(number.numeric_part, prefix=prefix), template


def _persist_numbered_bill(settings: InvoiceSettings, bill: Bill, custom_invoice_number=None) -> Bill:
    db.session.add(bill)
    try:
        db.session.flush()
    except IntegrityError:
        if custom_invoice_number in (None, ""):
            # Sequenced number taken by a concurrent bill; _create_with_number_retry re-reads the sequence
            raise
        raise ConflictError(f"Bill number {bill.bill_number} already exists")
    reserve_on_settings(settings, bill.invoice_count)
    return bill


def _create_with_number_retry(op) -> Bill:
    for attempt in range(BILL_NUMBER_ATTEMPTS):
        try:
            return run_with_retry(op)
        except IntegrityError:
            # The session is already rolled back
            if attempt >= BILL_NUMBER_ATTEMPTS - 1:
                raise ConflictError("Could not allocate a bill number, please retry")
    raise ConflictError("Could not allocate a bill number, please retry")


# =============================================================================
# CREATE
# =============================================================================

def create_bill(
    vendor_id: int,
    customer_id: int,
    challan_ids,
    bill_date=None,
    discount_percent=0,
    gst_percent=0,
    custom_invoice_prefix: str | None = None,
    custom_invoice_number=None,
    invoice_template: str | None = None,
    note: str | None = None,
) -> Bill:
    """
    Create a bill from challans.

    Only challans of this vendor and customer in unpaid/partial/paid status
    are folded in; the rest of challan_ids is ignored. Folded challans become
    billed.

    Raises:
        NotFound: vendor or customer missing
        NoValidChallans: nothing billable among challan_ids
        InvalidInvoiceNumber / NonSequentialInvoiceNumber / InvoiceNumberAlreadyUsed:
            custom_invoice_number rejected by the sequencer
    """
    require_vendor(vendor_id)
    require_customer(vendor_id, customer_id)
    ids = _parse_challan_ids(challan_ids)
    discount_pct = _percent(discount_percent, "discount_percent")
    gst_pct = _percent(gst_percent, "gst_percent")
    bill_day = _parse_bill_date(bill_date)

    def _op():
        settings = get_settings(vendor_id, lock=True)
        number, bill_number, template = _number_bill(
            settings, custom_invoice_number, custom_invoice_prefix, invoice_template
        )

        challans = lock_for_update(
            db.session.query(Challan)
            .filter(
                Challan.id.in_(ids),
                Challan.vendor_id == vendor_id,
                Challan.customer_id == customer_id,
                Challan.status.in_(BILLABLE_STATUSES),
                Challan.deleted_at.is_(None),
            )
            .order_by(Challan.id.asc())
        ).all()
        if not challans:
            raise NoValidChallans("No billable challans found for this customer")

        items = []
        for challan in challans:
            for source in challan.items:
                items.append(BillItem(
                    challan_id=challan.id,
                    position=len(items),
                    description=source.product_name,
                    qty=source.qty,
                    rate=source.price_per_unit,
                    amount=source.amount,
                    gst_percent=source.gst_percent,
                    total_with_gst=source.amount,
                ))

        subtotal = sum((Decimal(item.amount) for item in items), ZERO)
        totals = _bill_totals(subtotal, discount_pct, gst_pct)

        bill = Bill(
            vendor_id=vendor_id,
            customer_id=customer_id,
            bill_number=bill_number,
            invoice_prefix=settings.prefix,
            custom_invoice_prefix=_custom_prefix(custom_invoice_prefix),
            invoice_count=number.numeric_part,
            invoice_template=template,
            bill_date=bill_day,
            discount_percent=discount_pct,
            gst_percent=gst_pct,
            paid_amount=ZERO,
            pending_amount=totals["total_with_gst"],
            status=BILL_PENDING,
            note=note,
            challan_ids=json.dumps([c.id for c in challans]),
            **totals,
        )
        bill.items = items
        _persist_numbered_bill(settings, bill, custom_invoice_number)

        for challan in challans:
            challan.status = CHALLAN_BILLED

        db.session.commit()
        return bill

    return _create_with_number_retry(_op)


def create_bill_from_items(
    vendor_id: int,
    customer_id: int,
    items,
    gst_option: bool = True,
    bill_date=None,
    custom_invoice_prefix: str | None = None,
    custom_invoice_number=None,
    invoice_template: str | None = None,
    note: str | None = None,
) -> Bill:
    """
    Ad-hoc bill without challans.

    GST is per item like a challan when gst_option is set, otherwise zero.
    Still numbered by the sequencer.
    """
    require_vendor(vendor_id)
    require_customer(vendor_id, customer_id)
    bill_day = _parse_bill_date(bill_date)

    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    lines = []
    for position, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{position}] must be an object")
        description = str(raw.get("description") or raw.get("product_name") or "").strip()
        if not description:
            raise ValidationError(f"items[{position}].description is required")
        gst = (raw.get("gst_percent") or 0) if gst_option else 0
        lines.append((description, price_line(raw.get("qty"), raw.get("rate"), gst)))

    def _op():
        settings = get_settings(vendor_id, lock=True)
        number, bill_number, template = _number_bill(
            settings, custom_invoice_number, custom_invoice_prefix, invoice_template
        )

        bill_items = [
            BillItem(
                position=position,
                description=description,
                qty=line.qty,
                rate=line.price_per_unit,
                amount=line.amount,
                gst_percent=line.gst_percent,
                total_with_gst=line.total_with_gst,
            )
            for position, (description, line) in enumerate(lines)
        ]
        subtotal = sum((line.amount for _, line in lines), ZERO)
        gst_total = sum((line.gst_amount for _, line in lines), ZERO)
        total = subtotal + gst_total

        bill = Bill(
            vendor_id=vendor_id,
            customer_id=customer_id,
            bill_number=bill_number,
            invoice_prefix=settings.prefix,
            custom_invoice_prefix=_custom_prefix(custom_invoice_prefix),
            invoice_count=number.numeric_part,
            invoice_template=template,
            bill_date=bill_day,
            discount_percent=ZERO,
            gst_percent=ZERO,
            discount_amount=ZERO,
            subtotal=subtotal,
            gst_total=gst_total,
            total_without_gst=subtotal,
            total_with_gst=total,
            paid_amount=ZERO,
            pending_amount=total,
            status=BILL_PENDING,
            note=note,
            challan_ids=json.dumps([]),
        )
        bill.items = bill_items
        _persist_numbered_bill(settings, bill, custom_invoice_number)
        db.session.commit()
        return bill

    return _create_with_number_retry(_op)


# =============================================================================
# LOOKUP
# =============================================================================

def load_bill(vendor_id: int, bill_id: int, *, lock: bool = False) -> Bill:
    query = db.session.query(Bill).filter(
        Bill.id == bill_id,
        Bill.vendor_id == vendor_id,
        Bill.deleted_at.is_(None),
    )
    if lock:
        query = lock_for_update(query)
    bill = query.first()
    if not bill:
        raise NotFound("Bill not found")
    return bill


def get_bill(bill_id: int, vendor_id: int) -> Bill:
    return load_bill(vendor_id, bill_id)


def bill_payment_history(bill: Bill) -> dict:
    """
    Money applied to a bill.

    transactions: ledger rows linked by bill_id (mark_bill_paid, payments
    recorded against the bill). payments: live credit payments whose
    adjusted_invoices settled part of this bill, with the amount applied.
    """
    adjusted = []
    candidates = (
        db.session.query(Payment)
        .filter(
            Payment.vendor_id == bill.vendor_id,
            Payment.customer_id == bill.customer_id,
            Payment.deleted_at.is_(None),
        )
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
    )
    for payment in candidates:
        applied = sum(
            (to_decimal(entry["payAmount"]) for entry in payment.adjusted_invoices or []
             if int(entry["billId"]) == bill.id),
            ZERO,
        )
        if applied > 0:
            adjusted.append({"payment": payment, "applied": round2(applied)})

    return {
        "transactions": transactions_for_bill(bill.vendor_id, bill.id),
        "payments": adjusted,
    }


def list_bills(
    vendor_id: int,
    *,
    page: int = 1,
    size: int = 20,
    search: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    status: str | None = None,
    customer_id: int | None = None,
) -> dict:
    if status and status not in VALID_BILL_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_BILL_STATUSES}")

    page = max(1, int(page or 1))
    size = min(MAX_PAGE_SIZE, max(1, int(size or 20)))

    query = db.session.query(Bill).filter(Bill.vendor_id == vendor_id, Bill.deleted_at.is_(None))
    if customer_id is not None:
        query = query.filter(Bill.customer_id == customer_id)
    if status:
        query = query.filter(Bill.status == status)
    if from_date:
        query = query.filter(Bill.bill_date >= from_date)
    if to_date:
        query = query.filter(Bill.bill_date <= to_date)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Bill.bill_number.ilike(like), Bill.note.ilike(like)))

    total = query.with_entities(func.count(Bill.id)).scalar() or 0
    rows = (
        query.order_by(Bill.bill_date.desc(), Bill.id.desc())
        .offset((page - 1) * size)
        .limit(size)
        .all()
    )
    return {"total": total, "page": page, "size": size, "rows": rows}


def vendor_pending_total(vendor_id: int) -> dict:
    total = (
        db.session.query(func.coalesce(func.sum(Bill.pending_amount), 0))
        .filter(
            Bill.vendor_id == vendor_id,
            Bill.deleted_at.is_(None),
            Bill.status.in_([BILL_PENDING, BILL_PARTIAL]),
        )
        .scalar()
    )
    return {"vendor_id": vendor_id, "total_pending_amount": round2(total or 0)}


# =============================================================================
# EDIT / PAY
# =============================================================================

def edit_bill(bill_id: int, vendor_id: int, **changes) -> Bill:
    """
    Edit a bill that is neither cancelled nor fully paid.

    - discount_percent / gst_percent: totals recomputed from the bill's items;
      paid_amount kept, pending and status re-derived
    - custom_invoice_prefix: bill_number rebuilt from the existing invoice_count
      (the sequencer is not consulted again)
    - note, bill_date, invoice_template: stored as given
    """
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    if "invoice_template" in changes and changes["invoice_template"] not in VALID_TEMPLATES:
        raise ValidationError(f"Invalid invoice_template. Must be one of {VALID_TEMPLATES}")

    discount_pct = _percent(changes["discount_percent"], "discount_percent") if "discount_percent" in changes else None
    gst_pct = _percent(changes["gst_percent"], "gst_percent") if "gst_percent" in changes else None
    new_date = _parse_bill_date(changes["bill_date"]) if changes.get("bill_date") else None

    def _op():
        bill = load_bill(vendor_id, bill_id, lock=True)
        if bill.status == BILL_CANCELLED:
            raise StateError("Cannot edit a cancelled bill")
        if bill.status == BILL_PAID:
            raise StateError("Cannot edit a paid bill")

        if discount_pct is not None or gst_pct is not None:
            if discount_pct is not None:
                bill.discount_percent = discount_pct
            if gst_pct is not None:
                bill.gst_percent = gst_pct
            subtotal = sum((Decimal(item.amount) for item in bill.items), ZERO)
            for key, value in _bill_totals(subtotal, bill.discount_percent, bill.gst_percent).items():
                setattr(bill, key, value)
            settle_bill(bill, Decimal(bill.paid_amount or 0))

        if "custom_invoice_prefix" in changes:
            custom = _custom_prefix(changes["custom_invoice_prefix"])
            settings = get_settings(vendor_id)
            bill.custom_invoice_prefix = custom
            bill.bill_number = settings.format_number(bill.invoice_count, prefix=custom or bill.invoice_prefix)

        if "note" in changes:
            bill.note = changes["note"]
        if new_date is not None:
            bill.bill_date = new_date
        if "invoice_template" in changes:
            bill.invoice_template = changes["invoice_template"]

        try:
            db.session.commit()
        except IntegrityError:
            raise ConflictError(f"Bill number {bill.bill_number} already exists")
        return bill

    return run_with_retry(_op)


def mark_bill_paid(
    bill_id: int,
    vendor_id: int,
    paid_amount=None,
    note: str | None = None,
    transaction_date=None,
) -> dict:
    """
    Record a payment against one bill.

    The raw amount is added to paid_amount (defaults to the full pending
    amount); paid_amount never decreases here. A payment transaction with
    bill_id mirrors it.
    """
    amount = to_decimal(paid_amount, "paid_amount") if paid_amount not in (None, "") else None
    if amount is not None and amount <= 0:
        raise InvalidAmount("paid_amount must be > 0")

    try:
        txn_date = parse_date(transaction_date) or today()
    except ValueError:
        raise ValidationError("transaction_date must be YYYY-MM-DD")

    def _op():
        bill = load_bill(vendor_id, bill_id, lock=True)
        if bill.status == BILL_CANCELLED:
            raise StateError("Cannot pay a cancelled bill")

        payment_amount = round2(amount if amount is not None else Decimal(bill.pending_amount))
        if payment_amount <= 0:
            raise InvalidAmount("Bill has no pending amount")

        apply_bill_payment(bill, payment_amount)
        txn = record_transaction(
            vendor_id=vendor_id,
            customer_id=bill.customer_id,
            amount=payment_amount,
            txn_type=TXN_PAYMENT,
            description=note or f"Payment for {bill.bill_number}",
            transaction_date=txn_date,
            bill_id=bill.id,
        )
        db.session.commit()
        return {
            "bill": bill,
            "payment": txn,
            "paid_amount": Decimal(bill.paid_amount),
            "pending_amount": Decimal(bill.pending_amount),
        }

    return run_with_retry(_op)


# =============================================================================
# DELETE / CANCEL
# =============================================================================

def _release_challans(bill: Bill) -> None:
    ids = bill.challan_id_list
    if not ids:
        return
    challans = lock_for_update(
        db.session.query(Challan).filter(
            Challan.id.in_(ids),
            Challan.vendor_id == bill.vendor_id,
            Challan.status == CHALLAN_BILLED,
        )
    ).all()
    for challan in challans:
        challan.status = CHALLAN_UNPAID


def delete_bill(bill_id: int, vendor_id: int) -> bool:
    """
    Soft-delete a bill and release its challans back to unpaid.

    Bills that already received money cannot be deleted; cancel them instead.
    """
    def _op():
        bill = load_bill(vendor_id, bill_id, lock=True)
        if Decimal(bill.paid_amount or 0) > 0:
            raise StateError("Cannot delete bill with payments. Mark as cancelled instead.")
        _release_challans(bill)
        bill.deleted_at = utcnow()
        db.session.commit()
        return True

    return run_with_retry(_op)


def cancel_bill(bill_id: int, vendor_id: int) -> Bill:
    """Cancel a bill: excluded from outstanding, challans released to unpaid."""
    def _op():
        bill = load_bill(vendor_id, bill_id, lock=True)
        if bill.status == BILL_CANCELLED:
            raise StateError("Bill is already cancelled")
        _release_challans(bill)
        bill.status = BILL_CANCELLED
        db.session.commit()
        return bill

    return run_with_retry(_op)
