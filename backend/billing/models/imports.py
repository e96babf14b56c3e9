from __future__ import annotations

from ..extensions import db
from billing.time_utils import to_utc_z

class ImportJob(db.Model):
    """
    Background JSON import of a vendor's data.

    LIFECYCLE:
    1. accepted: request acknowledged, worker not started yet
    2. running: worker inserting rows
    3. completed: summary holds per-entity inserted/skipped/errors
    4. failed: error_message holds the reason

    The HTTP caller only ever receives the accepted acknowledgment and
    polls this row for the outcome.
    """
    __tablename__ = "import_jobs"
    __table_args__ = (
        db.Index("ix_import_jobs_vendor_status", "vendor_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="accepted", index=True)
    source_file_name = db.Column(db.String(255), nullable=True)
    summary = db.Column(db.JSON, nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "status": self.status,
            "source_file_name": self.source_file_name,
            "summary": self.summary,
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
            "started_at": to_utc_z(self.started_at) if self.started_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }
