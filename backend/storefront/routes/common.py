# Overview: Shared response helpers for API routes.

from flask import jsonify

from ..errors import FulfillmentError


# Presentation-layer mapping of fulfillment error kinds to HTTP statuses
ERROR_STATUS = {
    "not_found": 404,
    "already_cancelled": 400,
    "invalid_transition": 400,
    "out_of_stock": 409,
    "idempotency_conflict": 409,
    "retries_exhausted": 503,
    "timeout": 503,
}


def fulfillment_error_response(exc: FulfillmentError):
    """Only the fixed message and code cross the boundary, never storage detail."""
    status = ERROR_STATUS.get(exc.code, 400)
    body = {"error": exc.message, "code": exc.code}
    if status == 409 and exc.details:
        body["details"] = exc.details
    return jsonify(body), status
