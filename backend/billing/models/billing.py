from __future__ import annotations

import json

from ..extensions import db
from ..money import money_str
from billing.time_utils import to_iso_date, to_utc_z

class InvoiceSettings(db.Model):
    """
    Per-vendor invoice numbering state.

    INVARIANTS:
    - current_count is the smallest sequential number not yet issued
    - used_numbers is exactly the contiguous run start_count..current_count-1
    - Rows are only mutated under SELECT ... FOR UPDATE (see invoice_sequence_service)
    """
    __tablename__ = "invoice_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, unique=True, index=True)

    prefix = db.Column(db.String(10), nullable=False, default="INV")
    start_count = db.Column(db.Integer, nullable=False, default=1001)
    current_count = db.Column(db.Integer, nullable=False, default=1001)
    invoice_template = db.Column(db.String(16), nullable=False, default="template1")

    # JSON list of issued numeric parts. Always reassign, never mutate in place.
    used_numbers = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    vendor = db.relationship("Vendor", backref=db.backref("invoice_settings", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def pad_width(self) -> int:
        return len(str(self.start_count))

    def format_number(self, numeric_part: int, prefix: str | None = None) -> str:
        return f"{prefix if prefix is not None else self.prefix}{str(numeric_part).zfill(self.pad_width)}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "prefix": self.prefix,
            "start_count": self.start_count,
            "current_count": self.current_count,
            "invoice_template": self.invoice_template,
            "used_numbers": list(self.used_numbers or []),
            "updated_at": to_utc_z(self.updated_at),
        }

class Challan(db.Model):
    """
    Delivery challan issued by a vendor to a customer.

    STATUS: unpaid -> partial -> paid from direct challan payments;
    billed once folded into a bill; cancelled is terminal.

    Totals are derived from items with per-line GST rounding.
    Soft-deleted via deleted_at.
    """
    __tablename__ = "challans"
    __table_args__ = (
        db.UniqueConstraint("vendor_id", "challan_number", name="uq_challans_vendor_number"),
        db.Index("ix_challans_vendor_date", "vendor_id", "challan_date"),
        db.Index("ix_challans_vendor_customer_status", "vendor_id", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    # Human-readable number (e.g., "CH-20261019-0001")
    challan_number = db.Column(db.String(32), nullable=False)
    challan_date = db.Column(db.Date, nullable=False)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    gst_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_without_gst = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_with_gst = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="unpaid", index=True)
    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("challans", lazy=True))
    items = db.relationship(
        "ChallanItem",
        backref="challan",
        lazy=True,
        order_by="ChallanItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "customer_id": self.customer_id,
            "challan_number": self.challan_number,
            "challan_date": to_iso_date(self.challan_date),
            "subtotal": money_str(self.subtotal),
            "gst_total": money_str(self.gst_total),
            "total_without_gst": money_str(self.total_without_gst),
            "total_with_gst": money_str(self.total_with_gst),
            "status": self.status,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data

class ChallanItem(db.Model):
    """Line on a challan; amount/gst_amount/total_with_gst are rounded per line."""
    __tablename__ = "challan_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    challan_id = db.Column(db.Integer, db.ForeignKey("challans.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.Integer, nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    size = db.Column(db.String(64), nullable=True)

    qty = db.Column(db.Numeric(12, 2), nullable=False)
    price_per_unit = db.Column(db.Numeric(12, 2), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    gst_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    gst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_with_gst = db.Column(db.Numeric(12, 2), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "challan_id": self.challan_id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "size": self.size,
            "qty": money_str(self.qty),
            "price_per_unit": money_str(self.price_per_unit),
            "amount": money_str(self.amount),
            "gst_percent": money_str(self.gst_percent),
            "gst_amount": money_str(self.gst_amount),
            "total_with_gst": money_str(self.total_with_gst),
        }

class Bill(db.Model):
    """
    Invoice issued to a customer, usually folding one or more challans.

    INVARIANTS (after every mutation):
    - pending_amount = max(0, total_with_gst - paid_amount)
    - status: pending <= 0.01 -> paid; paid > 0 -> partial; else pending
    - bill_number = (custom prefix or settings prefix) + padded invoice_count

    GST here is bill-level (on the discounted subtotal), unlike the
    challan's per-line GST. Both are kept as-is.
    """
    __tablename__ = "bills"
    __table_args__ = (
        db.UniqueConstraint("vendor_id", "bill_number", name="uq_bills_vendor_number"),
        db.UniqueConstraint("vendor_id", "invoice_count", name="uq_bills_vendor_invoice_count"),
        db.Index("ix_bills_vendor_customer_status", "vendor_id", "customer_id", "status"),
        db.Index("ix_bills_vendor_date", "vendor_id", "bill_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    bill_number = db.Column(db.String(64), nullable=False)
    invoice_prefix = db.Column(db.String(10), nullable=True)
    custom_invoice_prefix = db.Column(db.String(32), nullable=True)
    invoice_count = db.Column(db.Integer, nullable=True, index=True)
    invoice_template = db.Column(db.String(16), nullable=False, default="template1")

    bill_date = db.Column(db.Date, nullable=False)

    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    gst_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    gst_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_without_gst = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_with_gst = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    pending_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    note = db.Column(db.Text, nullable=True)
    # JSON-encoded list of source challan ids
    challan_ids = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("bills", lazy=True))
    items = db.relationship(
        "BillItem",
        backref="bill",
        lazy=True,
        order_by="BillItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def challan_id_list(self) -> list[int]:
        return json.loads(self.challan_ids) if self.challan_ids else []

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "customer_id": self.customer_id,
            "bill_number": self.bill_number,
            "invoice_prefix": self.invoice_prefix,
            "custom_invoice_prefix": self.custom_invoice_prefix,
            "invoice_count": self.invoice_count,
            "invoice_template": self.invoice_template,
            "bill_date": to_iso_date(self.bill_date),
            "discount_percent": money_str(self.discount_percent),
            "gst_percent": money_str(self.gst_percent),
            "discount_amount": money_str(self.discount_amount),
            "subtotal": money_str(self.subtotal),
            "gst_total": money_str(self.gst_total),
            "total_without_gst": money_str(self.total_without_gst),
            "total_with_gst": money_str(self.total_with_gst),
            "paid_amount": money_str(self.paid_amount),
            "pending_amount": money_str(self.pending_amount),
            "status": self.status,
            "note": self.note,
            "challan_ids": self.challan_id_list,
            "created_at": to_utc_z(self.created_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data

class BillItem(db.Model):
    """Line on a bill; for challan-sourced bills total_with_gst equals amount."""
    __tablename__ = "bill_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    challan_id = db.Column(db.Integer, db.ForeignKey("challans.id"), nullable=True, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    description = db.Column(db.String(255), nullable=False)
    qty = db.Column(db.Numeric(12, 2), nullable=False)
    rate = db.Column(db.Numeric(12, 2), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    gst_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    total_with_gst = db.Column(db.Numeric(12, 2), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "challan_id": self.challan_id,
            "position": self.position,
            "description": self.description,
            "qty": money_str(self.qty),
            "rate": money_str(self.rate),
            "amount": money_str(self.amount),
            "gst_percent": money_str(self.gst_percent),
            "total_with_gst": money_str(self.total_with_gst),
        }
