# Overview: Flask API routes for the customer transaction ledger; read-only reporting.

"""
Transaction Ledger API Routes

DESIGN:
- Flat, filterable list of payment/refund ledger rows with a summary
- Rows are written by payment operations only; there are no write routes

SECURITY:
- Vendors and admins read the whole vendor ledger
- Customers are pinned to their own rows
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..errors import BillingError, error_response
from ..money import money_str
from ..services import transaction_service
from ..services.tenant_service import ensure_visible, resolve_vendor_scope, scoped_customer_id
from ..validation import date_arg, int_arg


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.get("")
@require_auth
def list_transactions_route():
    """
    List ledger rows.

    Query params: page, size, type, customer_id, bill_id, challan_id,
    from_date, to_date, search

    Returns:
        200: {total, page, size, transactions, summary: {credit, debit, net}}
        400: Unknown type or malformed filter
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        customer_id = scoped_customer_id(g.identity, int_arg(request.args, "customer_id"))
        result = transaction_service.list_transactions(
            vendor_id,
            page=int_arg(request.args, "page", 1),
            size=int_arg(request.args, "size", 20),
            txn_type=request.args.get("type"),
            customer_id=customer_id,
            bill_id=int_arg(request.args, "bill_id"),
            challan_id=int_arg(request.args, "challan_id"),
            from_date=date_arg(request.args, "from_date"),
            to_date=date_arg(request.args, "to_date"),
            search=request.args.get("search"),
        )
        summary = result["summary"]
        return jsonify({
            "total": result["total"],
            "page": result["page"],
            "size": result["size"],
            "transactions": [t.to_dict() for t in result["rows"]],
            "summary": {
                "credit": money_str(summary["credit"]),
                "debit": money_str(summary["debit"]),
                "net": money_str(summary["net"]),
            },
        }), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/<int:txn_id>")
@require_auth
def get_transaction_route(txn_id: int):
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        txn = transaction_service.get_transaction(txn_id, vendor_id)
        ensure_visible(g.identity, txn.customer_id)
        return jsonify({"transaction": txn.to_dict()}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load transaction")
        return jsonify({"error": "Internal server error"}), 500
