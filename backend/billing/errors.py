# Overview: Error taxonomy shared by services and routes.

"""
Billing Errors

Services raise these; routes translate them with `error_response`.
Each class carries the HTTP status the calling layer should answer with.

- NotFound: vendor/customer/bill/challan/payment absent or owned by another vendor
- ValidationError: missing or malformed input, non-sequential invoice number
- ConflictError: invoice number already used, duplicate opening balance
- StateError: operation not allowed in the document's current state
"""

from __future__ import annotations


class BillingError(Exception):
    """Base class for every error the billing core signals."""
    status_code = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "kind": type(self).__name__}
        payload.update(self.details)
        return payload


class NotFound(BillingError):
    status_code = 404


class ValidationError(BillingError, ValueError):
    status_code = 400


class InvalidAmount(ValidationError):
    pass


class InvalidInvoiceNumber(ValidationError):
    pass


class NonSequentialInvoiceNumber(ValidationError):
    def __init__(self, requested: int, expected_next: int):
        super().__init__(
            f"Invoice number {requested} is out of sequence; next expected is {expected_next}",
            requested=requested,
            expected_next=expected_next,
        )
        self.requested = requested
        self.expected_next = expected_next


class NoValidChallans(ValidationError):
    pass


class ConflictError(BillingError):
    status_code = 409


class InvoiceNumberAlreadyUsed(ConflictError):
    def __init__(self, number: int):
        super().__init__(f"Invoice number {number} is already used", number=number)
        self.number = number


class StateError(BillingError):
    status_code = 409


def error_response(exc: BillingError):
    """(body, status) tuple for a route to return."""
    from flask import jsonify

    return jsonify(exc.to_dict()), exc.status_code
