from __future__ import annotations

from ..extensions import db
from ..money import money_str
from billing.time_utils import to_utc_z

class Vendor(db.Model):
    """
    Multi-tenant root: every tenant is a Vendor.

    WHY: Customers, challans, bills, payments, GST slabs and invoice settings
    all carry vendor_id. No data may cross vendor boundaries.
    """
    __tablename__ = "vendors"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    vendor_name = db.Column(db.String(255), nullable=False)
    business_name = db.Column(db.String(255), nullable=True)
    mobile_number = db.Column(db.String(32), nullable=True, unique=True, index=True)
    gst_number = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Vendor id={self.id} name={self.vendor_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_name": self.vendor_name,
            "business_name": self.business_name,
            "mobile_number": self.mobile_number,
            "gst_number": self.gst_number,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

class Customer(db.Model):
    """
    Customer of exactly one vendor (created_by).

    Outstanding balance is derived from bills and payments on demand and
    is never stored here.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("created_by", "mobile_number", name="uq_customers_vendor_mobile"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    created_by = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)

    customer_name = db.Column(db.String(255), nullable=False)
    business_name = db.Column(db.String(255), nullable=True)
    mobile_number = db.Column(db.String(32), nullable=False)
    gst_number = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    vendor = db.relationship("Vendor", backref=db.backref("customers", lazy=True))

    @property
    def vendor_id(self) -> int:
        return self.created_by

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_id": self.created_by,
            "customer_name": self.customer_name,
            "business_name": self.business_name,
            "mobile_number": self.mobile_number,
            "gst_number": self.gst_number,
            "created_at": to_utc_z(self.created_at),
        }

class GstSlab(db.Model):
    """Vendor-defined GST rate; read-only input to item pricing."""
    __tablename__ = "gst_slabs"
    __table_args__ = (
        db.UniqueConstraint("vendor_id", "slab_name", name="uq_gst_slabs_vendor_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)
    slab_name = db.Column(db.String(64), nullable=False)
    rate = db.Column(db.Numeric(5, 2), nullable=False)
    priority = db.Column(db.Integer, nullable=False, default=0)
    active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "slab_name": self.slab_name,
            "rate": money_str(self.rate),
            "priority": self.priority,
            "active": self.active,
        }
