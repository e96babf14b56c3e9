# Overview: Service-layer operations for delivery challans.

"""
Challan Engine

WHY: A challan records goods handed to a customer before (or instead of)
an invoice. It can be paid directly or folded into a bill.

STATUS LIFECYCLE:
- unpaid -> partial -> paid: driven by payment transactions on the challan
- billed: folded into a bill (see bill_service); payments now go to the bill
- cancelled: terminal

PRICING: GST is computed per line and rounded half-up per line before
summation. Bills use bill-level GST instead; both rules are kept.

NUMBERING: CH-YYYYMMDD-NNNN per vendor and challan date. The
(vendor_id, challan_number) unique constraint settles races; a losing
insert retries with the next suffix.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, InvalidAmount, NotFound, StateError, ValidationError
from ..extensions import db
from ..models import Challan, ChallanItem, Transaction
from ..money import ZERO, percent_of, round2, to_decimal
from billing.time_utils import parse_date, today, utcnow
from .concurrency import lock_for_update, run_with_retry
from .gst_service import rate_for_slab
from .statuses import (
    CHALLAN_BILLED,
    CHALLAN_CANCELLED,
    CHALLAN_PAID,
    CHALLAN_PARTIAL,
    CHALLAN_UNPAID,
    VALID_CHALLAN_STATUSES,
)
from .tenant_service import require_customer, require_vendor
from .transaction_service import TXN_PAYMENT, record_transaction


# =============================================================================
# CHALLAN STATUS GROUPS AND NUMBERING (CONSTANTS)
# =============================================================================

# Statuses a bill may fold in
BILLABLE_STATUSES = [CHALLAN_UNPAID, CHALLAN_PARTIAL, CHALLAN_PAID]

# Statuses the reconciling read leaves alone
FROZEN_STATUSES = [CHALLAN_BILLED, CHALLAN_CANCELLED]

CHALLAN_NUMBER_PREFIX = "CH"
CHALLAN_SEQUENCE_WIDTH = 4
CHALLAN_NUMBER_ATTEMPTS = 5

MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class PricedLine:
    qty: Decimal
    price_per_unit: Decimal
    gst_percent: Decimal
    amount: Decimal
    gst_amount: Decimal
    total_with_gst: Decimal


def price_line(qty, price_per_unit, gst_percent) -> PricedLine:
    """
    Per-line pricing, rounded half-up per line.

    amount = round2(qty * price); gst = round2(amount * gst% / 100)
    """
    qty = to_decimal(qty, "qty")
    price = to_decimal(price_per_unit, "price_per_unit")
    gst = to_decimal(gst_percent, "gst_percent")

    if qty <= 0:
        raise ValidationError("qty must be > 0")
    if price < 0:
        raise ValidationError("price_per_unit must be >= 0")
    if gst < 0 or gst > 100:
        raise ValidationError("gst_percent must be between 0 and 100")

    amount = round2(qty * price)
    gst_amount = percent_of(amount, gst)
    return PricedLine(
        qty=qty,
        price_per_unit=price,
        gst_percent=gst,
        amount=amount,
        gst_amount=gst_amount,
        total_with_gst=amount + gst_amount,
    )


def resolve_gst_percent(vendor_id: int, raw: dict):
    """gst_percent from the item, or from the vendor's slab named by gst_slab."""
    if raw.get("gst_slab"):
        return rate_for_slab(vendor_id, raw["gst_slab"])
    return raw.get("gst_percent") or 0


def _build_items(vendor_id: int, raw_items) -> list[ChallanItem]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    items = []
    for position, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{position}] must be an object")
        product_name = str(raw.get("product_name") or "").strip()
        if not product_name:
            raise ValidationError(f"items[{position}].product_name is required")

        line = price_line(raw.get("qty"), raw.get("price_per_unit"), resolve_gst_percent(vendor_id, raw))
        items.append(ChallanItem(
            position=position,
            product_id=raw.get("product_id"),
            product_name=product_name,
            size=raw.get("size"),
            qty=line.qty,
            price_per_unit=line.price_per_unit,
            amount=line.amount,
            gst_percent=line.gst_percent,
            gst_amount=line.gst_amount,
            total_with_gst=line.total_with_gst,
        ))
    return items


# =============================================================================
# NUMBERING
# =============================================================================

def _challan_number_prefix(challan_date: date) -> str:
    return f"{CHALLAN_NUMBER_PREFIX}-{challan_date.strftime('%Y%m%d')}-"


def next_challan_number(vendor_id: int, challan_date: date) -> str:
    """
    One past the highest suffix for this vendor/day.

    Soft-deleted challans count, so numbers are never reused.
    """
    prefix = _challan_number_prefix(challan_date)
    last = lock_for_update(
        db.session.query(Challan)
        .filter(Challan.vendor_id == vendor_id, Challan.challan_number.like(f"{prefix}%"))
        # Length first: suffixes past 9999 are wider and sort low as text
        .order_by(func.length(Challan.challan_number).desc(), Challan.challan_number.desc())
    ).first()

    sequence = 1
    if last:
        suffix = last.challan_number[len(prefix):]
        sequence = int(suffix) + 1 if suffix.isdigit() else 1
    return f"{prefix}{str(sequence).zfill(CHALLAN_SEQUENCE_WIDTH)}"


# =============================================================================
# CREATE
# =============================================================================

def create_challan(
    vendor_id: int,
    customer_id: int,
    items,
    challan_date=None,
    note: str | None = None,
) -> Challan:
    """
    Create a challan with priced items.

    Raises:
        NotFound: vendor or customer missing (or customer of another vendor)
        ValidationError: empty items, bad qty/price, unknown date format
    """
    require_vendor(vendor_id)
    require_customer(vendor_id, customer_id)

    try:
        challan_date = parse_date(challan_date) or today()
    except ValueError:
        raise ValidationError("challan_date must be YYYY-MM-DD")

    # Validate items before touching the sequence
    _build_items(vendor_id, items)

    def _op():
        built = _build_items(vendor_id, items)
        subtotal = sum((item.amount for item in built), ZERO)
        gst_total = sum((item.gst_amount for item in built), ZERO)

        challan = Challan(
            vendor_id=vendor_id,
            customer_id=customer_id,
            challan_number=next_challan_number(vendor_id, challan_date),
            challan_date=challan_date,
            subtotal=subtotal,
            gst_total=gst_total,
            total_without_gst=subtotal,
            total_with_gst=subtotal + gst_total,
            status=CHALLAN_UNPAID,
            note=note,
        )
        challan.items = built
        db.session.add(challan)
        db.session.commit()
        return challan

    for attempt in range(CHALLAN_NUMBER_ATTEMPTS):
        try:
            return run_with_retry(_op)
        except IntegrityError:
            # Another request took this number; the session is already rolled back
            if attempt >= CHALLAN_NUMBER_ATTEMPTS - 1:
                raise ConflictError("Could not allocate a challan number, please retry")
    raise ConflictError("Could not allocate a challan number, please retry")


# =============================================================================
# LOOKUP
# =============================================================================

def _challan_query(vendor_id: int, challan_id: int):
    return db.session.query(Challan).filter(
        Challan.id == challan_id,
        Challan.vendor_id == vendor_id,
        Challan.deleted_at.is_(None),
    )


def load_challan(vendor_id: int, challan_id: int, *, lock: bool = False) -> Challan:
    query = _challan_query(vendor_id, challan_id)
    if lock:
        query = lock_for_update(query)
    challan = query.first()
    if not challan:
        raise NotFound("Challan not found")
    return challan


def challan_payments(challan: Challan) -> list[Transaction]:
    return (
        db.session.query(Transaction)
        .filter_by(
            vendor_id=challan.vendor_id,
            customer_id=challan.customer_id,
            challan_number=challan.challan_number,
            type=TXN_PAYMENT,
        )
        .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        .all()
    )


def derive_challan_status(total: Decimal, paid: Decimal) -> str:
    due = round2(total - paid)
    if due <= 0:
        return CHALLAN_PAID
    if paid > 0:
        return CHALLAN_PARTIAL
    return CHALLAN_UNPAID


def _payment_position(challan: Challan) -> tuple[list[Transaction], Decimal, Decimal, str]:
    payments = challan_payments(challan)
    paid = round2(sum((Decimal(p.amount) for p in payments), ZERO))
    due = round2(Decimal(challan.total_with_gst) - paid)
    if challan.status in FROZEN_STATUSES:
        status = challan.status
    else:
        status = derive_challan_status(Decimal(challan.total_with_gst), paid)
    return payments, paid, due, status


def get_challan(challan_id: int, vendor_id: int) -> dict:
    """Pure read: challan, its payment transactions, paid and due."""
    challan = load_challan(vendor_id, challan_id)
    payments, paid, due, status = _payment_position(challan)
    return {
        "challan": challan,
        "payments": payments,
        "paid": paid,
        "due": due,
        "status": status,
    }


def reconcile_challan(challan_id: int, vendor_id: int) -> dict:
    """
    Reconciling read.

    Recomputes paid/due/status from payment transactions and persists the
    status if it drifted. Billed and cancelled challans keep their status.
    Calling it twice in a row changes nothing the second time.
    """
    def _op():
        challan = load_challan(vendor_id, challan_id, lock=True)
        payments, paid, due, status = _payment_position(challan)
        if challan.status != status:
            challan.status = status
            db.session.commit()
        return {
            "challan": challan,
            "payments": payments,
            "paid": paid,
            "due": due,
            "status": status,
        }

    return run_with_retry(_op)


def list_challans(
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
    if status and status not in VALID_CHALLAN_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_CHALLAN_STATUSES}")

    page = max(1, int(page or 1))
    size = min(MAX_PAGE_SIZE, max(1, int(size or 20)))

    query = db.session.query(Challan).filter(
        Challan.vendor_id == vendor_id,
        Challan.deleted_at.is_(None),
    )
    if customer_id is not None:
        query = query.filter(Challan.customer_id == customer_id)
    if status:
        query = query.filter(Challan.status == status)
    if from_date:
        query = query.filter(Challan.challan_date >= from_date)
    if to_date:
        query = query.filter(Challan.challan_date <= to_date)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Challan.challan_number.ilike(like), Challan.note.ilike(like)))

    total = query.with_entities(func.count(Challan.id)).scalar() or 0
    rows = (
        query.order_by(Challan.challan_date.desc(), Challan.id.desc())
        .offset((page - 1) * size)
        .limit(size)
        .all()
    )
    return {"total": total, "page": page, "size": size, "rows": rows}


# =============================================================================
# PAYMENT / STATE CHANGES
# =============================================================================

def mark_challan_paid(
    challan_id: int,
    vendor_id: int,
    payment_amount,
    note: str | None = None,
    transaction_date=None,
) -> dict:
    """
    Record a direct payment against a challan.

    Writes a payment transaction, recomputes paid-to-date from every payment
    transaction on this challan number and re-derives status; all in one
    transaction with the challan row locked.

    Raises:
        InvalidAmount: payment_amount <= 0
        StateError: challan cancelled
        NotFound: challan missing or owned by another vendor
    """
    amount = to_decimal(payment_amount, "payment_amount")
    if amount <= 0:
        raise InvalidAmount("payment_amount must be > 0")
    amount = round2(amount)

    try:
        txn_date = parse_date(transaction_date) or today()
    except ValueError:
        raise ValidationError("transaction_date must be YYYY-MM-DD")

    def _op():
        challan = load_challan(vendor_id, challan_id, lock=True)
        if challan.status == CHALLAN_CANCELLED:
            raise StateError("Cannot pay a cancelled challan")

        payment = record_transaction(
            vendor_id=challan.vendor_id,
            customer_id=challan.customer_id,
            amount=amount,
            txn_type=TXN_PAYMENT,
            description=note or f"Payment for {challan.challan_number}",
            transaction_date=txn_date,
            challan_id=challan.id,
            challan_number=challan.challan_number,
        )
        db.session.flush()

        _, paid, due, status = _payment_position(challan)
        challan.status = status
        db.session.commit()
        return {
            "challan": challan,
            "payment": payment,
            "paid": paid,
            "due": due,
            "status": status,
        }

    return run_with_retry(_op)


def cancel_challan(challan_id: int, vendor_id: int) -> Challan:
    def _op():
        challan = load_challan(vendor_id, challan_id, lock=True)
        if challan.status == CHALLAN_CANCELLED:
            raise StateError("Challan is already cancelled")
        if challan.status == CHALLAN_BILLED:
            raise StateError("Billed challans cannot be cancelled; cancel the bill first")
        challan.status = CHALLAN_CANCELLED
        db.session.commit()
        return challan

    return run_with_retry(_op)


def delete_challan(challan_id: int, vendor_id: int) -> bool:
    """Soft delete. Billed challans cannot be deleted."""
    def _op():
        challan = load_challan(vendor_id, challan_id, lock=True)
        if challan.status == CHALLAN_BILLED:
            raise StateError("Billed challans cannot be deleted")
        challan.deleted_at = utcnow()
        db.session.commit()
        return True

    return run_with_retry(_op)
