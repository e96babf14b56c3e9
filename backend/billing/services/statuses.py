# Overview: Status and type values shared by the challan, bill and payment services.

"""
Document States

Stored verbatim in the status/type columns and compared in SQL filters, so
every service imports them from here.

CHALLAN: unpaid -> partial -> paid, or billed / cancelled (frozen)
BILL:    pending -> partial -> paid, or cancelled
PAYMENT: type credit/debit; status pending/completed/failed/cancelled
"""

# =============================================================================
# CHALLAN STATUS
# =============================================================================

CHALLAN_UNPAID = "unpaid"
CHALLAN_PARTIAL = "partial"
CHALLAN_PAID = "paid"
CHALLAN_BILLED = "billed"
CHALLAN_CANCELLED = "cancelled"

VALID_CHALLAN_STATUSES = [
    CHALLAN_UNPAID,
    CHALLAN_PARTIAL,
    CHALLAN_PAID,
    CHALLAN_BILLED,
    CHALLAN_CANCELLED,
]


# =============================================================================
# BILL STATUS
# =============================================================================

BILL_PENDING = "pending"
BILL_PARTIAL = "partial"
BILL_PAID = "paid"
BILL_CANCELLED = "cancelled"

VALID_BILL_STATUSES = [BILL_PENDING, BILL_PARTIAL, BILL_PAID, BILL_CANCELLED]


# =============================================================================
# PAYMENT TYPE / STATUS
# =============================================================================

PAYMENT_CREDIT = "credit"
PAYMENT_DEBIT = "debit"

VALID_PAYMENT_TYPES = [PAYMENT_CREDIT, PAYMENT_DEBIT]

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_CANCELLED = "cancelled"

VALID_PAYMENT_STATUSES = [PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_CANCELLED]
