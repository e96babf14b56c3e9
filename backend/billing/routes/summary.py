# Overview: Flask API routes for balances and summaries; read-only JSON views.

"""
Summary API Routes

DESIGN:
- Vendor dashboard summary (bills, payments, pending, purchases by product)
- Live outstanding of one customer, per-customer balances
- Customer ledger with running balance (rows for CSV/PDF collaborators)

SECURITY:
- Customers may read their own outstanding and ledger only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import BillingError, error_response
from ..money import money_str
from ..services import outstanding_service
from ..services.tenant_service import require_customer, resolve_vendor_scope, scoped_customer_id
from ..validation import date_arg


summary_bp = Blueprint("summary", __name__, url_prefix="/api/summary")


def _money_fields(row: dict, *fields: str) -> dict:
    out = dict(row)
    for field in fields:
        out[field] = money_str(out[field])
    return out


@summary_bp.get("")
@require_auth
@require_role("vendor", "admin")
def vendor_summary_route():
    """
    Vendor summary.

    Query params: from_date, to_date (YYYY-MM-DD)
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        summary = outstanding_service.vendor_summary(
            vendor_id,
            from_date=date_arg(request.args, "from_date"),
            to_date=date_arg(request.args, "to_date"),
        )
        return jsonify({
            "totalBills": money_str(summary["totalBills"]),
            "totalPayments": money_str(summary["totalPayments"]),
            "totalPending": money_str(summary["totalPending"]),
            "totalOutstanding": money_str(outstanding_service.vendor_outstanding(vendor_id)),
            "purchasesByProduct": [
                _money_fields(row, "totalQty", "totalAmount") for row in summary["purchasesByProduct"]
            ],
        }), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build vendor summary")
        return jsonify({"error": "Internal server error"}), 500


@summary_bp.get("/customers")
@require_auth
@require_role("vendor", "admin")
def customer_balances_route():
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        rows = outstanding_service.customer_balances(vendor_id)
        return jsonify({"customers": [_money_fields(r, "outstanding") for r in rows]}), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list customer balances")
        return jsonify({"error": "Internal server error"}), 500


@summary_bp.get("/customers/<int:customer_id>/outstanding")
@require_auth
def customer_outstanding_route(customer_id: int):
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        customer_id = scoped_customer_id(g.identity, customer_id)
        require_customer(vendor_id, customer_id)
        outstanding = outstanding_service.customer_outstanding(vendor_id, customer_id)
        return jsonify({
            "vendor_id": vendor_id,
            "customer_id": customer_id,
            "outstanding": money_str(outstanding),
        }), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute customer outstanding")
        return jsonify({"error": "Internal server error"}), 500


@summary_bp.get("/customers/<int:customer_id>/ledger")
@require_auth
def customer_ledger_route(customer_id: int):
    """
    Customer statement.

    Query params: from_date, to_date (YYYY-MM-DD)
    """
    try:
        vendor_id = resolve_vendor_scope(g.identity, request)
        customer_id = scoped_customer_id(g.identity, customer_id)
        require_customer(vendor_id, customer_id)
        ledger = outstanding_service.customer_ledger(
            vendor_id,
            customer_id,
            from_date=date_arg(request.args, "from_date"),
            to_date=date_arg(request.args, "to_date"),
        )
        ledger = _money_fields(ledger, "opening_balance", "total_debit", "total_credit", "closing_balance")
        ledger["rows"] = [_money_fields(r, "debit", "credit", "balance") for r in ledger["rows"]]
        return jsonify(ledger), 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build customer ledger")
        return jsonify({"error": "Internal server error"}), 500
