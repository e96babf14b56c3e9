"""
Multi-Tenant Service: Vendor Scope Resolution and Ownership Checks

WHY: Every core operation is scoped by vendor_id. Which vendor a request
acts for depends on the caller's role, and that decision lives here
instead of being repeated at every entry point.

SECURITY INVARIANTS:
1. Every authenticated request has g.identity set (see decorators.require_auth)
2. Vendor ids from client input are only honored for admin identities
3. Customer ids are always checked against the resolved vendor
4. Missing and foreign rows are indistinguishable to the caller (NotFound)

USAGE:
    from billing.services.tenant_service import resolve_vendor_scope

    vendor_id = resolve_vendor_scope(g.identity, request)
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import BillingError, NotFound, ValidationError
from ..extensions import db
from ..models import Customer, Vendor


ROLE_VENDOR = "vendor"
ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"

VALID_ROLES = [ROLE_VENDOR, ROLE_ADMIN, ROLE_CUSTOMER]


class TenantAccessError(BillingError):
    """Raised when an identity cannot act for the requested vendor."""
    status_code = 403


@dataclass(frozen=True)
class Identity:
    """
    Authenticated caller, trusted as-is by the core.

    vendor_id is None only for admin identities.
    customer_id is set only for customer identities.
    """
    role: str
    vendor_id: int | None = None
    customer_id: int | None = None


def _parse_vendor_id(raw) -> int:
    if raw is None or raw == "":
        raise ValidationError("vendorId is required")
    try:
        vendor_id = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("vendorId must be an integer")
    if vendor_id <= 0:
        raise ValidationError("vendorId must be positive")
    return vendor_id


def _vendor_scope_for_vendor(identity: Identity, request) -> int:
    if not identity.vendor_id:
        raise TenantAccessError("Vendor session has no vendor context")
    return identity.vendor_id


def _vendor_scope_for_admin(identity: Identity, request) -> int:
    # Admins act on behalf of a vendor named in the body or query string
    body = request.get_json(silent=True) if request.is_json else None
    raw = body.get("vendorId") if isinstance(body, dict) else None
    if raw is None:
        raw = request.args.get("vendorId")
    vendor_id = _parse_vendor_id(raw)
    require_vendor(vendor_id)
    return vendor_id


def _vendor_scope_for_customer(identity: Identity, request) -> int:
    if not identity.vendor_id or not identity.customer_id:
        raise TenantAccessError("Customer session has no vendor context")
    return identity.vendor_id


_SCOPE_RESOLVERS = {
    ROLE_VENDOR: _vendor_scope_for_vendor,
    ROLE_ADMIN: _vendor_scope_for_admin,
    ROLE_CUSTOMER: _vendor_scope_for_customer,
}


def resolve_vendor_scope(identity: Identity, request) -> int:
    """
    Decide which vendor a request acts for.

    - vendor: the vendor in the session
    - admin: vendorId from the JSON body, else the query string
    - customer: the vendor the customer belongs to
    """
    resolver = _SCOPE_RESOLVERS.get(identity.role)
    if resolver is None:
        raise TenantAccessError(f"Unknown role: {identity.role}")
    return resolver(identity, request)


def scoped_customer_id(identity: Identity, requested: int | None) -> int | None:
    """
    Customer filter for read endpoints.

    Customers only ever see their own records; other roles may filter freely.
    """
    if identity.role != ROLE_CUSTOMER:
        return requested
    if requested is not None and requested != identity.customer_id:
        raise TenantAccessError("Customers can only access their own records")
    return identity.customer_id


def require_vendor(vendor_id: int) -> Vendor:
    vendor = db.session.query(Vendor).filter_by(id=vendor_id).first()
    if not vendor:
        raise NotFound("Vendor not found")
    return vendor


def require_customer(vendor_id: int, customer_id: int) -> Customer:
    """
    Load a customer of this vendor.

    SECURITY: a customer of another vendor raises the same NotFound as a
    missing one.
    """
    if not customer_id:
        raise ValidationError("customerId is required")
    customer = (
        db.session.query(Customer)
        .filter_by(id=customer_id, created_by=vendor_id)
        .first()
    )
    if not customer:
        raise NotFound("Customer not found")
    return customer


def ensure_visible(identity: Identity, customer_id: int | None) -> None:
    """Customers only see documents issued to them; others see everything in scope."""
    if identity.role == ROLE_CUSTOMER and customer_id != identity.customer_id:
        raise NotFound("Not found")
