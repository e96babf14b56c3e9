# Overview: Flask API routes for challans; parses input and returns JSON responses.

"""
Challan API Routes

DESIGN:
- Create challans with priced items
- GET /<id> is the reconciling read: status is recomputed from payment
  transactions and persisted if it drifted
- Direct payments, cancellation and soft delete

SECURITY:
- Writes: vendor and admin
- Reads: also customers, restricted to their own challans
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import BillingError, error_response
from ..models import Challan
from ..money import money_str
from ..services import challan_service
from ..services.tenant_service import (
    ROLE_CUSTOMER,
    ensure_visible,
    resolve_vendor_scope,
    scoped_customer_id,
)
from ..validation import CHALLAN_CREATE_POLICY, date_arg, int_arg, validate_payload


challans_bp = Blueprint("challans", __name__, url_prefix="/api/challans")


def _position_json(result: dict) -> dict:
    return {
        "challan": result["challan"].to_dict(),
        "payments": [p.to_dict() for p in result["payments"]],
        "paid": money_str(result["paid"]),
        "due": money_str(result["due"]),
        "status": result["status"],
    }


@challans_bp.post("")
@require_auth
@require_role("vendor", "admin")
def create_challan_route():
    """
    Create a challan.

    Request body:
    {
        "customer_id": 12,
        "challan_date": "2026-10-19",   (optional, defaults to today)
        "note": "Site A",               (optional)
        "items": [
            {"product_name": "Cement", "qty": 2, "price_per_unit": 100, "gst_percent": 18},
            {"product_name": "Sand", "qty": 1, "price_per_unit": 50, "gst_slab": "GST 5"}
        ]
    }

    Returns:
        201: Challan with items and computed totals
        400: Invalid input
        404: Customer not found
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        data = validate_payload(
            model=Challan,
            payload=request.get_json(silent=True),
            policy=CHALLAN_CREATE_POLICY,
            partial=False,
        )
        challan = challan_service.create_challan(
            vendor_id,
            data["customer_id"],
            data["items"],
            challan_date=data.get("challan_date"),
            note=data.get("note"),
        )
        return jsonify({"challan": challan.to_dict()}), 201
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create challan")
        return jsonify({"error": "Internal server error"}), 500


@challans_bp.get("")
@require_auth
def list_challans_route():
    """
    List challans.

    Query params: page, size, search, from_date, to_date, status, customer_id
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        customer_id = scoped_customer_id(g.identity, int_arg(request.args, "customer_id"))
        result = challan_service.list_challans(
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
            "challans": [c.to_dict(include_items=False) for c in result["rows"]],
        }), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list challans")
        return jsonify({"error": "Internal server error"}), 500


@challans_bp.get("/<int:challan_id>")
@require_auth
def get_challan_route(challan_id: int):
    """
    Reconciling read of one challan with its payments, paid and due.

    Query params:
    - reconcile: "false" for a pure read without persisting status drift
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        pure_read = request.args.get("reconcile", "true").lower() == "false"
        # Customers never trigger writes
        if pure_read or g.identity.role == ROLE_CUSTOMER:
            result = challan_service.get_challan(challan_id, vendor_id)
        else:
            result = challan_service.reconcile_challan(challan_id, vendor_id)
        ensure_visible(g.identity, result["challan"].customer_id)
        return jsonify(_position_json(result)), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load challan")
        return jsonify({"error": "Internal server error"}), 500


@challans_bp.post("/<int:challan_id>/pay")
@require_auth
@require_role("vendor", "admin")
def pay_challan_route(challan_id: int):
    """
    Record a direct payment against a challan.

    Request body:
    {
        "payment_amount": 100,
        "note": "Cash at delivery",      (optional)
        "transaction_date": "2026-10-19" (optional)
    }
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        data = request.get_json(silent=True) or {}
        if data.get("payment_amount") in (None, ""):
            return jsonify({"error": "payment_amount required"}), 400
        result = challan_service.mark_challan_paid(
            challan_id,
            vendor_id,
            data.get("payment_amount"),
            note=data.get("note"),
            transaction_date=data.get("transaction_date"),
        )
        return jsonify({
            "challan": result["challan"].to_dict(),
            "payment": result["payment"].to_dict(),
            "paid": money_str(result["paid"]),
            "due": money_str(result["due"]),
            "status": result["status"],
        }), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record challan payment")
        return jsonify({"error": "Internal server error"}), 500


@challans_bp.post("/<int:challan_id>/cancel")
@require_auth
@require_role("vendor", "admin")
def cancel_challan_route(challan_id: int):
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        challan = challan_service.cancel_challan(challan_id, vendor_id)
        return jsonify({"challan": challan.to_dict()}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel challan")
        return jsonify({"error": "Internal server error"}), 500


@challans_bp.delete("/<int:challan_id>")
@require_auth
@require_role("vendor", "admin")
def delete_challan_route(challan_id: int):
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        challan_service.delete_challan(challan_id, vendor_id)
        return jsonify({"deleted": True, "id": challan_id}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete challan")
        return jsonify({"error": "Internal server error"}), 500
