from __future__ import annotations

from ..extensions import db
from ..money import money_str
from billing.time_utils import to_iso_date, to_utc_z

class Payment(db.Model):
    """
    Money movement recorded by a vendor.

    TYPES:
    - credit: money received
    - debit: money paid out

    SUB TYPES: customer, vendor, cash-deposit, cash-withdrawal,
    bank-charges, electricity-bill, miscellaneous. Only "customer"
    carries (and requires) customer_id.

    SNAPSHOTS: total_outstanding / outstanding_after_payment are taken at
    creation time and are never recomputed retroactively.

    ALLOCATIONS: adjusted_invoices is a JSON list of {billId, payAmount};
    each entry was added to that bill's paid_amount when the payment was
    created and is subtracted again when the payment is deleted.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("vendor_id", "payment_number", name="uq_payments_vendor_number"),
        db.UniqueConstraint("vendor_id", "method", "financial_year_start", name="uq_payments_opening_balance"),
        db.Index("ix_payments_vendor_customer_status", "vendor_id", "customer_id", "status"),
        db.Index("ix_payments_vendor_date", "vendor_id", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Human-readable number (e.g., "PAY-20261019-0001")
    payment_number = db.Column(db.String(32), nullable=False)

    type = db.Column(db.String(8), nullable=False, index=True)
    sub_type = db.Column(db.String(32), nullable=False, default="customer", index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_date = db.Column(db.Date, nullable=False, index=True)
    method = db.Column(db.String(16), nullable=False, default="cash")
    reference = db.Column(db.String(255), nullable=True)
    note = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=True, index=True)
    challan_id = db.Column(db.Integer, db.ForeignKey("challans.id"), nullable=True, index=True)

    total_outstanding = db.Column(db.Numeric(12, 2), nullable=True)
    outstanding_after_payment = db.Column(db.Numeric(12, 2), nullable=True)
    adjusted_invoices = db.Column(db.JSON, nullable=True)

    # One opening-balance row per vendor/method/financial year (amount is 0)
    is_opening_balance = db.Column(db.Boolean, nullable=False, default=False, index=True)
    opening_balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    # Set only on live opening balances; NULL rows never collide
    financial_year_start = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    customer = db.relationship("Customer", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "customer_id": self.customer_id,
            "payment_number": self.payment_number,
            "type": self.type,
            "sub_type": self.sub_type,
            "amount": money_str(self.amount),
            "payment_date": to_iso_date(self.payment_date),
            "method": self.method,
            "reference": self.reference,
            "note": self.note,
            "status": self.status,
            "bill_id": self.bill_id,
            "challan_id": self.challan_id,
            "total_outstanding": money_str(self.total_outstanding),
            "outstanding_after_payment": money_str(self.outstanding_after_payment),
            "adjusted_invoices": list(self.adjusted_invoices or []),
            "is_opening_balance": self.is_opening_balance,
            "opening_balance": money_str(self.opening_balance),
            "financial_year_start": to_iso_date(self.financial_year_start),
            "created_at": to_utc_z(self.created_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
        }

class Transaction(db.Model):
    """
    Append-only customer ledger entry used for reporting and export.

    TRANSACTION TYPES:
    - payment: money received against a challan, bill or account
    - refund: money paid back to the customer

    Rows never re-derive balances. They are removed only together with
    the payment they mirror.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_vendor_customer_date", "vendor_id", "customer_id", "transaction_date"),
        db.Index("ix_transactions_challan_number", "vendor_id", "challan_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    transaction_date = db.Column(db.Date, nullable=False)

    challan_id = db.Column(db.Integer, db.ForeignKey("challans.id"), nullable=True, index=True)
    challan_number = db.Column(db.String(32), nullable=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=True, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "customer_id": self.customer_id,
            "amount": money_str(self.amount),
            "type": self.type,
            "description": self.description,
            "transaction_date": to_iso_date(self.transaction_date),
            "challan_id": self.challan_id,
            "challan_number": self.challan_number,
            "bill_id": self.bill_id,
            "payment_id": self.payment_id,
            "created_at": to_utc_z(self.created_at),
        }
