from __future__ import annotations

from ..extensions import db
from billing.time_utils import to_utc_z

class SessionToken(db.Model):
    """
    Bearer session carrying the identity context for every request.

    MULTI-TENANT: vendor_id / customer_id / role are captured when the
    session is issued and are immutable for its lifetime. How the caller
    proved who they are (password, OTP) happens before a session exists.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - Absolute timeout (SESSION_TTL_HOURS)
    - Revocable
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_vendor_active", "vendor_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # ROLES: vendor, admin, customer
    role = db.Column(db.String(16), nullable=False)
    # Null for admin sessions (admin picks the vendor per request)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "vendor_id": self.vendor_id,
            "customer_id": self.customer_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
