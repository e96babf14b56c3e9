# Overview: Service-layer operations for identity sessions.

"""
Identity Session Service

WHY: The billing core trusts an identity context {role, vendor_id,
customer_id} on every call. Sessions are the seam through which that
context arrives; proving who the caller is happens upstream.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute timeout (SESSION_TTL_HOURS)
- Revocable
- Identity context is immutable for the session lifetime
"""

import hashlib
import secrets
from datetime import timedelta

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Customer, SessionToken, Vendor
from billing.time_utils import utcnow
from .tenant_service import Identity, ROLE_ADMIN, ROLE_CUSTOMER, ROLE_VENDOR, VALID_ROLES


DEFAULT_TTL_HOURS = 24


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    role: str,
    vendor_id: int | None = None,
    customer_id: int | None = None,
    ttl_hours: int = DEFAULT_TTL_HOURS,
) -> tuple[SessionToken, str]:
    """
    Issue a session for an already-authenticated caller.

    Returns (session_record, plaintext_token). Only the hash is stored.

    Raises ValidationError if the role/vendor/customer combination is
    inconsistent, NotFound if a referenced vendor or customer is missing.
    """
    if role not in VALID_ROLES:
        raise ValidationError(f"Invalid role: {role}. Must be one of {VALID_ROLES}")

    if role == ROLE_ADMIN:
        vendor_id = None
        customer_id = None
    else:
        if not vendor_id:
            raise ValidationError(f"{role} sessions require vendor_id")
        if not db.session.query(Vendor).filter_by(id=vendor_id).first():
            raise NotFound("Vendor not found")

    if role == ROLE_CUSTOMER:
        customer = db.session.query(Customer).filter_by(id=customer_id, created_by=vendor_id).first() if customer_id else None
        if not customer:
            raise NotFound("Customer not found")
    elif role == ROLE_VENDOR:
        customer_id = None

    token = generate_token()
    session = SessionToken(
        role=role,
        vendor_id=vendor_id,
        customer_id=customer_id,
        token_hash=hash_token(token),
        expires_at=utcnow() + timedelta(hours=ttl_hours),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> Identity | None:
    """
    Resolve a bearer token to its identity.

    Returns None for unknown, revoked or expired tokens.
    """
    if not token:
        return None

    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return None

    if session.expires_at < utcnow():
        return None

    return Identity(role=session.role, vendor_id=session.vendor_id, customer_id=session.customer_id)


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
