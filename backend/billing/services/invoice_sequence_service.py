# Overview: Service-layer operations for per-vendor invoice numbering.

"""
Invoice Number Sequencer

WHY: Bill numbers are legal documents. Two bills must never share a number
and the issued run must have no holes.

INVARIANTS:
- current_count is the smallest sequential number not yet issued
- used_numbers is the contiguous run start_count..current_count-1
- Every mutation of the settings row happens under SELECT ... FOR UPDATE

USAGE:
    number = get_next(vendor_id)                  # read, no side effects
    ... flush bill row ...
    reserve(vendor_id, number.numeric_part)       # same transaction as the bill

The reservation is flushed, never committed, here: the caller's commit makes
the bill and its number visible together or not at all.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    InvalidInvoiceNumber,
    InvoiceNumberAlreadyUsed,
    NonSequentialInvoiceNumber,
    ValidationError,
)
from ..extensions import db
from ..models import Bill, InvoiceSettings
from .concurrency import lock_for_update, run_with_retry


# =============================================================================
# DEFAULTS (CONSTANTS)
# =============================================================================

DEFAULT_PREFIX = "INV"
DEFAULT_START_COUNT = 1001
DEFAULT_TEMPLATE = "template1"

VALID_TEMPLATES = ["template1", "template2", "template3"]

MAX_PREFIX_LENGTH = 10


@dataclass(frozen=True)
class InvoiceNumber:
    full_number: str
    numeric_part: int
    prefix: str
    template: str

    def to_dict(self) -> dict:
        return {
            "full_number": self.full_number,
            "numeric_part": self.numeric_part,
            "prefix": self.prefix,
            "template": self.template,
        }


# =============================================================================
# SETTINGS ACCESS
# =============================================================================

def _select_settings(vendor_id: int, lock: bool) -> InvoiceSettings | None:
    query = db.session.query(InvoiceSettings).filter_by(vendor_id=vendor_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_settings(vendor_id: int, *, lock: bool = False) -> InvoiceSettings:
    """
    Load the vendor's settings row, creating defaults on first access.

    With lock=True the row is selected FOR UPDATE. A freshly created row is
    flushed inside a savepoint so that later reads in the same transaction
    see it; if a concurrent first access inserted the row first, only the
    savepoint is rolled back and the winner's row is returned.
    """
    settings = _select_settings(vendor_id, lock)
    if settings:
        return settings

    settings = InvoiceSettings(
        vendor_id=vendor_id,
        prefix=DEFAULT_PREFIX,
        start_count=DEFAULT_START_COUNT,
        current_count=DEFAULT_START_COUNT,
        invoice_template=DEFAULT_TEMPLATE,
        used_numbers=[],
    )
    try:
        with db.session.begin_nested():
            db.session.add(settings)
    except IntegrityError:
        current_app.logger.info("Invoice settings for vendor %s created concurrently, reloading", vendor_id)
        settings = _select_settings(vendor_id, lock)
        if settings is None:
            raise
    return settings


def _used_set(settings: InvoiceSettings) -> set[int]:
    return set(int(n) for n in (settings.used_numbers or []))


def _parse_requested(requested_number) -> int:
    if isinstance(requested_number, bool):
        raise InvalidInvoiceNumber("Invoice number must be a positive integer")
    if isinstance(requested_number, str):
        stripped = requested_number.strip()
        if not stripped.isdigit():
            raise InvalidInvoiceNumber("Invoice number must be a positive integer")
        requested_number = int(stripped)
    if not isinstance(requested_number, int) or requested_number <= 0:
        raise InvalidInvoiceNumber("Invoice number must be a positive integer")
    return requested_number


# =============================================================================
# ISSUE / RESERVE
# =============================================================================

def next_for_settings(settings: InvoiceSettings, requested_number=None) -> InvoiceNumber:
    """get_next against an already loaded (and possibly locked) settings row."""
    used = _used_set(settings)

    if requested_number is None:
        candidate = settings.current_count
        while candidate in used:
            candidate += 1
    else:
        candidate = _parse_requested(requested_number)
        if candidate in used:
            raise InvoiceNumberAlreadyUsed(candidate)
        if candidate != settings.current_count:
            raise NonSequentialInvoiceNumber(candidate, settings.current_count)

    return InvoiceNumber(
        full_number=settings.format_number(candidate),
        numeric_part=candidate,
        prefix=settings.prefix,
        template=settings.invoice_template,
    )


def get_next(vendor_id: int, requested_number=None) -> InvoiceNumber:
    """
    Next invoice number for a vendor.

    Without requested_number: current_count, skipping anything already used.
    With requested_number: validated against the sequence.

    Raises:
        InvalidInvoiceNumber: requested number is not a positive integer
        InvoiceNumberAlreadyUsed: requested number was issued before
        NonSequentialInvoiceNumber: requested number is not current_count
    """
    return next_for_settings(get_settings(vendor_id), requested_number)


def reserve_on_settings(settings: InvoiceSettings, numeric_part: int) -> InvoiceSettings:
    """reserve against a settings row the caller already holds locked."""
    used = _used_set(settings)
    if numeric_part in used:
        raise InvoiceNumberAlreadyUsed(numeric_part)

    # Reassign so the JSON column is marked dirty
    settings.used_numbers = sorted(used | {numeric_part})
    settings.current_count = numeric_part + 1
    db.session.flush()
    return settings


def reserve(vendor_id: int, numeric_part: int) -> InvoiceSettings:
    """
    Mark numeric_part as issued and advance current_count past it.

    Runs under a row lock on the settings row and flushes in the caller's
    transaction. Raises InvoiceNumberAlreadyUsed if the number was taken.
    """
    settings = get_settings(vendor_id, lock=True)
    return reserve_on_settings(settings, numeric_part)


# =============================================================================
# SETTINGS MANAGEMENT
# =============================================================================

def update_settings(
    vendor_id: int,
    *,
    prefix: str | None = None,
    start_count: int | None = None,
    invoice_template: str | None = None,
) -> InvoiceSettings:
    """
    Update numbering settings.

    WARNING: changing start_count resets current_count to it and clears
    used_numbers. Existing bills keep their numbers.
    """
    if prefix is not None:
        if not isinstance(prefix, str) or not prefix.strip():
            raise ValidationError("prefix cannot be blank")
        prefix = prefix.strip().upper()
        if len(prefix) > MAX_PREFIX_LENGTH:
            raise ValidationError(f"prefix exceeds max length {MAX_PREFIX_LENGTH}")

    if start_count is not None:
        if isinstance(start_count, bool) or not isinstance(start_count, int) or start_count <= 0:
            raise ValidationError("start_count must be a positive integer")

    if invoice_template is not None and invoice_template not in VALID_TEMPLATES:
        raise ValidationError(f"Invalid invoice_template: {invoice_template}. Must be one of {VALID_TEMPLATES}")

    def _op():
        settings = get_settings(vendor_id, lock=True)
        if prefix is not None:
            settings.prefix = prefix
        if invoice_template is not None:
            settings.invoice_template = invoice_template
        if start_count is not None and start_count != settings.start_count:
            settings.start_count = start_count
            settings.current_count = start_count
            settings.used_numbers = []
        db.session.commit()
        return settings

    return run_with_retry(_op)


def check_availability(vendor_id: int, number) -> dict:
    """
    Check whether a custom invoice number could be used.

    Available means positive, not below start_count and not issued yet.
    """
    settings = get_settings(vendor_id)
    try:
        numeric = _parse_requested(number)
    except InvalidInvoiceNumber:
        return {"available": False, "number": number, "reason": "not a positive integer"}

    if numeric < settings.start_count:
        return {"available": False, "number": numeric, "reason": "below start_count"}
    if numeric in _used_set(settings):
        return {"available": False, "number": numeric, "reason": "already used"}
    return {
        "available": True,
        "number": numeric,
        "full_number": settings.format_number(numeric),
        "is_next": numeric == settings.current_count,
    }


def audit_sequence(vendor_id: int) -> dict:
    """
    Check the issued run for holes and orphans.

    - gaps: numbers between start_count and current_count missing from used_numbers
    - duplicates: invoice_count values carried by more than one live bill
    - unreserved_bills: live bills whose invoice_count is absent from used_numbers
      (a crash between bill insert and reservation)
    """
    settings = get_settings(vendor_id)
    raw_used = [int(n) for n in (settings.used_numbers or [])]
    used = set(raw_used)

    gaps = [n for n in range(settings.start_count, settings.current_count) if n not in used]

    counts = [
        row[0]
        for row in db.session.query(Bill.invoice_count)
        .filter(Bill.vendor_id == vendor_id, Bill.deleted_at.is_(None), Bill.invoice_count.isnot(None))
        .all()
    ]
    seen: set[int] = set()
    duplicates: set[int] = set()
    for count in counts:
        if count in seen:
            duplicates.add(count)
        seen.add(count)
    duplicates.update(n for n in used if raw_used.count(n) > 1)

    unreserved = sorted(c for c in seen if c not in used)

    return {
        "vendor_id": vendor_id,
        "start_count": settings.start_count,
        "current_count": settings.current_count,
        "contiguous": not gaps and not duplicates and not unreserved,
        "gaps": gaps,
        "duplicates": sorted(duplicates),
        "unreserved_bills": unreserved,
    }


def dump_settings(settings: InvoiceSettings) -> str:
    """Compact JSON of the numbering state (used by the CLI)."""
    return json.dumps(settings.to_dict(), sort_keys=True)
