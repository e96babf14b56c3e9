# Overview: Flask API routes for invoice numbering settings; parses input and returns JSON responses.

"""
Invoice Settings API Routes

DESIGN:
- GET/PUT the vendor's numbering settings (prefix, start_count, template)
- Preview the next number, check a custom number, audit the issued run

SECURITY:
- vendor and admin only; admins name the vendor with vendorId
- Changing start_count clears the issued list (see invoice_sequence_service)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import BillingError, error_response
from ..extensions import db
from ..models import InvoiceSettings
from ..services import invoice_sequence_service
from ..services.tenant_service import resolve_vendor_scope
from ..validation import INVOICE_SETTINGS_POLICY, validate_payload


invoice_settings_bp = Blueprint("invoice_settings", __name__, url_prefix="/api/invoice-settings")


@invoice_settings_bp.get("")
@require_auth
@require_role("vendor", "admin")
def get_settings_route():
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        settings = invoice_sequence_service.get_settings(vendor_id)
        next_number = invoice_sequence_service.next_for_settings(settings)
        db.session.commit()
        return jsonify({"settings": settings.to_dict(), "next": next_number.to_dict()}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load invoice settings")
        return jsonify({"error": "Internal server error"}), 500


@invoice_settings_bp.put("")
@require_auth
@require_role("vendor", "admin")
def update_settings_route():
    """
    Update numbering settings.

    Request body:
    {
        "prefix": "INV",
        "start_count": 1001,          (resets the sequence!)
        "invoice_template": "template2"
    }
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        patch = validate_payload(
            model=InvoiceSettings,
            payload=request.get_json(silent=True),
            policy=INVOICE_SETTINGS_POLICY,
            partial=True,
        )
        patch.pop("vendorId", None)
        settings = invoice_sequence_service.update_settings(vendor_id, **patch)
        return jsonify({"settings": settings.to_dict()}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice settings")
        return jsonify({"error": "Internal server error"}), 500


@invoice_settings_bp.get("/next-number")
@require_auth
@require_role("vendor", "admin")
def next_number_route():
    """
    Preview the next invoice number.

    Query params:
    - number: validate a requested custom number instead
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        number = invoice_sequence_service.get_next(vendor_id, request.args.get("number"))
        db.session.commit()
        return jsonify(number.to_dict()), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute next invoice number")
        return jsonify({"error": "Internal server error"}), 500


@invoice_settings_bp.get("/check")
@require_auth
@require_role("vendor", "admin")
def check_number_route():
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        number = request.args.get("number")
        if number is None:
            return jsonify({"error": "number query parameter required"}), 400
        result = invoice_sequence_service.check_availability(vendor_id, number)
        db.session.commit()
        return jsonify(result), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check invoice number")
        return jsonify({"error": "Internal server error"}), 500


@invoice_settings_bp.get("/audit")
@require_auth
@require_role("vendor", "admin")
def audit_route():
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        report = invoice_sequence_service.audit_sequence(vendor_id)
        db.session.commit()
        return jsonify(report), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to audit invoice sequence")
        return jsonify({"error": "Internal server error"}), 500
