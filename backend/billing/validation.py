from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .money import PAID_TOLERANCE, round2, to_decimal
from .time_utils import parse_date


# Largest amount a Numeric(12, 2) column can hold
MAX_AMOUNT = Decimal("9999999999.99")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - reject floats, bools and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or 'e' in stripped.lower() or '.' in stripped:
                raise ValidationError(f"{col.key} must be a plain integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    # Money / percentages
    if isinstance(coltype, Numeric):
        amount = to_decimal(value, col.key)
        if abs(amount) > MAX_AMOUNT:
            raise ValidationError(f"{col.key} exceeds {MAX_AMOUNT}")
        return amount

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    # Business dates ("YYYY-MM-DD")
    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        try:
            parsed = parse_date(value)
        except ValueError:
            raise ValidationError(f"{col.key} must be YYYY-MM-DD")
        if parsed is None:
            raise ValidationError(f"{col.key} must be YYYY-MM-DD")
        return parsed

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = [f for f in sorted(required) if f not in payload]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols.get(k)
        # Non-column inputs and structured values (item lists, id lists) pass through
        if col is None or isinstance(raw, (list, dict)):
            patch[k] = raw
            continue

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def validate_adjusted_invoices(amount, adjusted_invoices) -> None:
    """
    Allocation check for credit payments.

    SUM(payAmount) must equal the payment amount within 0.01.
    """
    if not adjusted_invoices:
        return
    if not isinstance(adjusted_invoices, list):
        raise ValidationError("adjusted_invoices must be a list")

    total = Decimal("0")
    for position, entry in enumerate(adjusted_invoices):
        if not isinstance(entry, dict):
            raise ValidationError(f"adjusted_invoices[{position}] must be an object")
        total += to_decimal(entry.get("payAmount"), f"adjusted_invoices[{position}].payAmount")

    if abs(round2(total) - round2(amount)) > PAID_TOLERANCE:
        raise ValidationError(
            "Sum of adjusted invoice amounts must equal the payment amount",
            adjusted_total=str(round2(total)),
            amount=str(round2(amount)),
        )


# =============================================================================
# POLICIES
# =============================================================================

CHALLAN_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"vendorId", "customer_id", "challan_date", "note", "items"},
    required_on_create={"customer_id", "items"},
)

BILL_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "vendorId",
        "customer_id",
        "challan_ids",
        "bill_date",
        "discount_percent",
        "gst_percent",
        "custom_invoice_prefix",
        "custom_invoice_number",
        "invoice_template",
        "note",
    },
    required_on_create={"customer_id", "challan_ids"},
)

BILL_FROM_ITEMS_POLICY = ModelValidationPolicy(
    writable_fields={
        "vendorId",
        "customer_id",
        "items",
        "gst_option",
        "bill_date",
        "custom_invoice_prefix",
        "custom_invoice_number",
        "invoice_template",
        "note",
    },
    required_on_create={"customer_id", "items"},
)

BILL_EDIT_POLICY = ModelValidationPolicy(
    writable_fields={
        "vendorId",
        "discount_percent",
        "gst_percent",
        "custom_invoice_prefix",
        "note",
        "bill_date",
        "invoice_template",
    },
)

PAYMENT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "vendorId",
        "type",
        "sub_type",
        "customer_id",
        "amount",
        "payment_date",
        "method",
        "reference",
        "note",
        "status",
        "bill_id",
        "challan_id",
        "adjusted_invoices",
    },
    required_on_create={"type", "amount"},
)

PAYMENT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"vendorId", "amount", "payment_date", "method", "reference", "note", "status"},
)

OPENING_BALANCE_POLICY = ModelValidationPolicy(
    writable_fields={"vendorId", "method", "opening_balance", "payment_date"},
    required_on_create={"method", "opening_balance"},
)

INVOICE_SETTINGS_POLICY = ModelValidationPolicy(
    writable_fields={"vendorId", "prefix", "start_count", "invoice_template"},
)


# =============================================================================
# QUERY STRING HELPERS
# =============================================================================

def int_arg(args, name: str, default: int | None = None) -> int | None:
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def date_arg(args, name: str) -> date | None:
    raw = args.get(name)
    if not raw:
        return None
    try:
        return parse_date(raw)
    except ValueError:
        raise ValidationError(f"{name} must be YYYY-MM-DD")
