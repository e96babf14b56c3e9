# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

"""
Payment API Routes

DESIGN:
- Record credit/debit payments, optionally settling bills (adjusted_invoices)
- Opening balances per cash/bank book and financial year
- Edit, delete (exact inverse) and snapshot recompute
- Stats for dashboards

SECURITY:
- Writes: vendor and admin
- Reads: also customers, restricted to their own payments
- The adjusted_invoices sum is validated here, before the service runs
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import BillingError, error_response
from ..models import Payment
from ..money import money_str
from ..services import payment_service
from ..services.tenant_service import ensure_visible, resolve_vendor_scope, scoped_customer_id
from ..validation import (
    OPENING_BALANCE_POLICY,
    PAYMENT_CREATE_POLICY,
    PAYMENT_UPDATE_POLICY,
    date_arg,
    int_arg,
    validate_adjusted_invoices,
    validate_payload,
)


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("")
@require_auth
@require_role("vendor", "admin")
def create_payment_route():
    """
    Record a payment.

    Request body:
    {
        "type": "credit",
        "sub_type": "customer",
        "customer_id": 12,
        "amount": 252,
        "payment_date": "2026-10-19",
        "method": "upi",
        "reference": "UTR123",
        "adjusted_invoices": [{"billId": 7, "payAmount": 252}]
    }

    SUB TYPES:
    - customer: requires customer_id; mirrored into the customer ledger
    - vendor, cash-deposit, cash-withdrawal, bank-charges,
      electricity-bill, miscellaneous: no customer, no outstanding snapshot

    Returns:
        201: Payment with outstanding snapshot
        400: Invalid input or adjusted amounts not matching amount
        404: Customer/bill/challan not found
        409: Adjusted bill cancelled
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        data = validate_payload(
            model=Payment,
            payload=request.get_json(silent=True),
            policy=PAYMENT_CREATE_POLICY,
            partial=False,
        )
        data.pop("vendorId", None)
        validate_adjusted_invoices(data.get("amount"), data.get("adjusted_invoices"))
        payment = payment_service.create_payment(vendor_id, data)
        return jsonify({"payment": payment.to_dict()}), 201
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/opening-balance")
@require_auth
@require_role("vendor", "admin")
def create_opening_balance_route():
    """
    Record an opening balance.

    Request body:
    {
        "method": "cash",
        "opening_balance": 5000,
        "payment_date": "2026-04-01"
    }

    Returns:
        201: Opening balance payment
        409: One already exists for this method and financial year
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        data = validate_payload(
            model=Payment,
            payload=request.get_json(silent=True),
            policy=OPENING_BALANCE_POLICY,
            partial=False,
        )
        payment = payment_service.create_opening_balance(
            vendor_id,
            data["method"],
            data["opening_balance"],
            payment_date=data.get("payment_date"),
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create opening balance")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("")
@require_auth
def list_payments_route():
    """
    List payments.

    Query params: page, size, type, sub_type, customer_id, method, status,
    from_date, to_date, search
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        customer_id = scoped_customer_id(g.identity, int_arg(request.args, "customer_id"))
        result = payment_service.list_payments(
            vendor_id,
            page=int_arg(request.args, "page", 1),
            size=int_arg(request.args, "size", 20),
            payment_type=request.args.get("type"),
            sub_type=request.args.get("sub_type"),
            customer_id=customer_id,
            method=request.args.get("method"),
            status=request.args.get("status"),
            from_date=date_arg(request.args, "from_date"),
            to_date=date_arg(request.args, "to_date"),
            search=request.args.get("search"),
        )
        return jsonify({
            "total": result["total"],
            "page": result["page"],
            "size": result["size"],
            "payments": [p.to_dict() for p in result["rows"]],
        }), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/stats")
@require_auth
@require_role("vendor", "admin")
def payment_stats_route():
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        stats = payment_service.payment_stats(
            vendor_id,
            from_date=date_arg(request.args, "from_date"),
            to_date=date_arg(request.args, "to_date"),
        )
        return jsonify({
            "credit": {"count": stats["credit"]["count"], "total": money_str(stats["credit"]["total"])},
            "debit": {"count": stats["debit"]["count"], "total": money_str(stats["debit"]["total"])},
            "net": money_str(stats["net"]),
            "count": stats["count"],
        }), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute payment stats")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
@require_auth
def get_payment_route(payment_id: int):
    """Payment with its mirrored ledger rows."""
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        result = payment_service.get_payment(payment_id, vendor_id)
        ensure_visible(g.identity, result["payment"].customer_id)
        return jsonify({
            "payment": result["payment"].to_dict(),
            "transactions": [t.to_dict() for t in result["transactions"]],
        }), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT CHANGES
# =============================================================================

@payments_bp.put("/<int:payment_id>")
@require_auth
@require_role("vendor", "admin")
def update_payment_route(payment_id: int):
    """
    Edit a payment.

    Editable: amount, payment_date, method, reference, note, status.
    Amount changes move outstanding_after_payment by the delta only; use
    POST /<id>/recompute-outstanding for live values.
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        patch = validate_payload(
            model=Payment,
            payload=request.get_json(silent=True),
            policy=PAYMENT_UPDATE_POLICY,
            partial=True,
        )
        patch.pop("vendorId", None)
        payment = payment_service.update_payment(payment_id, vendor_id, patch)
        return jsonify({"payment": payment.to_dict()}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/recompute-outstanding")
@require_auth
@require_role("vendor", "admin")
def recompute_outstanding_route(payment_id: int):
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        payment = payment_service.recompute_outstanding_snapshot(payment_id, vendor_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to recompute outstanding snapshot")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.delete("/<int:payment_id>")
@require_auth
@require_role("vendor", "admin")
def delete_payment_route(payment_id: int):
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        payment_service.delete_payment(payment_id, vendor_id)
        return jsonify({"deleted": True, "id": payment_id}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete payment")
        return jsonify({"error": "Internal server error"}), 500
