# Overview: Flask API routes for background JSON imports; accepts uploads and reports job status.

"""
Import Routes

Accepts a JSON document either as the request body or as an uploaded
.json file. The request answers 202 with the job; clients poll
GET /api/imports/<id> for the per-entity summary.
"""

import json

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import BillingError, error_response
from ..services import import_service
from ..services.tenant_service import resolve_vendor_scope


imports_bp = Blueprint("imports", __name__, url_prefix="/api/imports")


def _read_upload():
    file = request.files["file"]
    filename = file.filename or ""
    ext = filename.split(".")[-1].lower()
    if ext != "json":
        return None, filename, "Unsupported file format"
    try:
        return json.load(file.stream), filename, None
    except ValueError:
        return None, filename, "Uploaded file is not valid JSON"


@imports_bp.post("")
@require_auth
@require_role("vendor", "admin")
def start_import_route():
    """
    Start an import.

    Body (or uploaded file "file"):
    {
        "gst_slabs": [{"slab_name": "GST 18", "rate": 18}],
        "customers": [{"customer_name": "Asha", "mobile_number": "9000000001"}],
        "challans": [{"challan_number": "CH-20260101-0001", "customer_mobile": "9000000001", "items": [...]}],
        "bills": [{"bill_number": "INV1001", "customer_mobile": "9000000001", "total_with_gst": 250}],
        "payments": [{"payment_number": "PAY-20260101-0001", "type": "credit", "amount": 250, "payment_date": "2026-01-01"}]
    }

    Returns:
        202: Job accepted
        400: Body is not a JSON object
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        source_file_name = None
        if "file" in request.files:
            data, source_file_name, error = _read_upload()
            if error:
                return jsonify({"error": error}), 400
        else:
            data = request.get_json(silent=True)
            if isinstance(data, dict):
                data = {k: v for k, v in data.items() if k != "vendorId"}

        job = import_service.start_import(vendor_id, data, source_file_name=source_file_name)
        return jsonify({"job": job.to_dict()}), 202
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start import")
        return jsonify({"error": "Internal server error"}), 500


@imports_bp.get("/<int:job_id>")
@require_auth
@require_role("vendor", "admin")
def get_import_route(job_id: int):
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        job = import_service.get_import_job(job_id, vendor_id)
        return jsonify({"job": job.to_dict()}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load import job")
        return jsonify({"error": "Internal server error"}), 500
