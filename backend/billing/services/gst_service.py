# Overview: Read-only GST slab lookups used while pricing items.

from __future__ import annotations

from decimal import Decimal

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import GstSlab


def rate_for_slab(vendor_id: int, slab_name: str) -> Decimal:
    """
    GST percent of a vendor's active slab.

    Raises NotFound for unknown or inactive slabs.
    """
    if not slab_name or not str(slab_name).strip():
        raise ValidationError("gst_slab cannot be blank")
    slab = (
        db.session.query(GstSlab)
        .filter_by(vendor_id=vendor_id, slab_name=str(slab_name).strip(), active=True)
        .first()
    )
    if not slab:
        raise NotFound(f"GST slab not found: {slab_name}")
    return Decimal(slab.rate)
