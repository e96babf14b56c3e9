# Overview: Flask API routes for bills (invoices); parses input and returns JSON responses.

"""
Bill API Routes

DESIGN:
- Create bills from challans or from ad-hoc items (sequencer-numbered)
- Edit discount/GST/prefix/template/note/date without touching paid_amount
- Record bill payments, cancel, soft delete
- Vendor pending total for dashboards

SECURITY:
- Writes: vendor and admin
- Reads: also customers, restricted to their own bills
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import BillingError, error_response
from ..models import Bill
from ..money import money_str
from ..services import bill_service
from ..services.tenant_service import ensure_visible, resolve_vendor_scope, scoped_customer_id
from ..validation import (
    BILL_CREATE_POLICY,
    BILL_EDIT_POLICY,
    BILL_FROM_ITEMS_POLICY,
    date_arg,
    int_arg,
    validate_payload,
)


bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")


# =============================================================================
# BILL CREATION
# =============================================================================

@bills_bp.post("")
@require_auth
@require_role("vendor", "admin")
def create_bill_route():
    """
    Create a bill from challans.

    Request body:
    {
        "customer_id": 12,
        "challan_ids": [5, 6],
        "discount_percent": 10,          (optional)
        "gst_percent": 12,               (optional)
        "custom_invoice_prefix": "SB",   (optional)
        "custom_invoice_number": 1005,   (optional, must be the next number)
        "invoice_template": "template2", (optional)
        "bill_date": "2026-10-19",       (optional)
        "note": "October supplies"       (optional)
    }

    Returns:
        201: Bill with items
        400: Invalid input, no billable challans, out-of-sequence number
        409: Invoice number already used
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        data = validate_payload(
            model=Bill,
            payload=request.get_json(silent=True),
            policy=BILL_CREATE_POLICY,
            partial=False,
        )
        data.pop("vendorId", None)
        bill = bill_service.create_bill(
            vendor_id,
            data.pop("customer_id"),
            data.pop("challan_ids"),
            **data,
        )
        return jsonify({"bill": bill.to_dict()}), 201
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.post("/from-items")
@require_auth
@require_role("vendor", "admin")
def create_bill_from_items_route():
    """
    Create an ad-hoc bill without challans.

    Request body:
    {
        "customer_id": 12,
        "items": [{"description": "Labour", "qty": 1, "rate": 500, "gst_percent": 18}],
        "gst_option": true
    }
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        data = validate_payload(
            model=Bill,
            payload=request.get_json(silent=True),
            policy=BILL_FROM_ITEMS_POLICY,
            partial=False,
        )
        data.pop("vendorId", None)
        gst_option = data.pop("gst_option", True)
        if not isinstance(gst_option, bool):
            return jsonify({"error": "gst_option must be true or false"}), 400
        bill = bill_service.create_bill_from_items(
            vendor_id,
            data.pop("customer_id"),
            data.pop("items"),
            gst_option=gst_option,
            **data,
        )
        return jsonify({"bill": bill.to_dict()}), 201
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create bill from items")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# BILL QUERIES
# =============================================================================

@bills_bp.get("")
@require_auth
def list_bills_route():
    """
    List bills.

    Query params: page, size, search, from_date, to_date, status, customer_id
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        customer_id = scoped_customer_id(g.identity, int_arg(request.args, "customer_id"))
        result = bill_service.list_bills(
            vendor_id,
            page=int_arg(request.args, "page", 1),
            size=int_arg(request.args, "size", 20),
            search=request.args.get("search"),
            from_date=date_arg(request.args, "from_date"),
            to_date=date_arg(request.args, "to_date"),
            status=request.args.get("status"),
            customer_id=customer_id,
        )
        return jsonify({
            "total": result["total"],
            "page": result["page"],
            "size": result["size"],
            "bills": [b.to_dict(include_items=False) for b in result["rows"]],
        }), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list bills")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/pending-total")
@require_auth
@require_role("vendor", "admin")
def pending_total_route():
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        result = bill_service.vendor_pending_total(vendor_id)
        return jsonify({
            "vendor_id": result["vendor_id"],
            "total_pending_amount": money_str(result["total_pending_amount"]),
        }), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute pending total")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/<int:bill_id>")
@require_auth
def get_bill_route(bill_id: int):
    """Bill with its payment history (ledger rows and adjusting payments)."""
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        bill = bill_service.get_bill(bill_id, vendor_id)
        ensure_visible(g.identity, bill.customer_id)
        history = bill_service.bill_payment_history(bill)
        return jsonify({
            "bill": bill.to_dict(),
            "transactions": [t.to_dict() for t in history["transactions"]],
            "payments": [
                {"payment": entry["payment"].to_dict(), "applied": money_str(entry["applied"])}
                for entry in history["payments"]
            ],
        }), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load bill")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# BILL CHANGES
# =============================================================================

@bills_bp.put("/<int:bill_id>")
@require_auth
@require_role("vendor", "admin")
def edit_bill_route(bill_id: int):
    """
    Edit a bill.

    Request body (all optional):
    {
        "discount_percent": 5,
        "gst_percent": 18,
        "custom_invoice_prefix": "SB",
        "invoice_template": "template3",
        "bill_date": "2026-10-19",
        "note": "Revised"
    }

    Returns:
        200: Updated bill
        409: Bill cancelled or fully paid
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        patch = validate_payload(
            model=Bill,
            payload=request.get_json(silent=True),
            policy=BILL_EDIT_POLICY,
            partial=True,
        )
        patch.pop("vendorId", None)
        bill = bill_service.edit_bill(bill_id, vendor_id, **patch)
        return jsonify({"bill": bill.to_dict()}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to edit bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.post("/<int:bill_id>/pay")
@require_auth
@require_role("vendor", "admin")
def pay_bill_route(bill_id: int):
    """
    Record a payment against a bill.

    Request body:
    {
        "paid_amount": 100,              (optional, defaults to full pending)
        "note": "Cheque 0042",           (optional)
        "transaction_date": "2026-10-19" (optional)
    }
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        data = request.get_json(silent=True) or {}
        result = bill_service.mark_bill_paid(
            bill_id,
            vendor_id,
            paid_amount=data.get("paid_amount"),
            note=data.get("note"),
            transaction_date=data.get("transaction_date"),
        )
        return jsonify({
            "bill": result["bill"].to_dict(),
            "payment": result["payment"].to_dict(),
            "paid_amount": money_str(result["paid_amount"]),
            "pending_amount": money_str(result["pending_amount"]),
        }), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record bill payment")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.post("/<int:bill_id>/cancel")
@require_auth
@require_role("vendor", "admin")
def cancel_bill_route(bill_id: int):
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        bill = bill_service.cancel_bill(bill_id, vendor_id)
        return jsonify({"bill": bill.to_dict()}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.delete("/<int:bill_id>")
@require_auth
@require_role("vendor", "admin")
def delete_bill_route(bill_id: int):
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        bill_service.delete_bill(bill_id, vendor_id)
        return jsonify({"deleted": True, "id": bill_id}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete bill")
        return jsonify({"error": "Internal server error"}), 500
