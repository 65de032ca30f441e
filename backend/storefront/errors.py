# Overview: Typed failures raised by the fulfillment core.

"""
Fulfillment error taxonomy.

Business-rule errors (not found, already cancelled, invalid transition,
out of stock) are raised immediately and never retried. Transient storage
errors are absorbed by the transactional executor and only surface as
RetriesExhausted or TransactionTimeout.

Messages are fixed strings and safe to return to clients. Storage error text
stays on the chained __cause__ and is never put into .message.
"""

from __future__ import annotations


class FulfillmentError(Exception):
    """Base class; `code` is the stable machine-readable kind."""

    code = "fulfillment_error"
    default_message = "Request could not be completed"

    def __init__(self, message: str | None = None, details: dict | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.details = details or {}


class NotFound(FulfillmentError):
    code = "not_found"
    default_message = "Resource not found"


class OrderNotFound(NotFound):
    """Raised for missing orders AND for orders the actor does not own."""
    default_message = "Order not found"


class ProductNotFound(NotFound):
    default_message = "Product not found"


class AlreadyCancelled(FulfillmentError):
    code = "already_cancelled"
    default_message = "Order is already cancelled"


class InvalidTransition(FulfillmentError):
    code = "invalid_transition"
    default_message = "Order status transition is not allowed"


class OutOfStock(FulfillmentError):
    code = "out_of_stock"
    default_message = "Insufficient stock"


class RetriesExhausted(FulfillmentError):
    code = "retries_exhausted"
    default_message = "Temporary failure, please retry"


class TransactionTimeout(FulfillmentError):
    code = "timeout"
    default_message = "Operation timed out, please retry"


class IdempotencyConflict(FulfillmentError):
    """A concurrent request recorded the same (scope, key) first."""
    code = "idempotency_conflict"
    default_message = "Operation already processed"

    def __init__(self, scope: str, key: str):
        super().__init__(details={"scope": scope})
        self.scope = scope
        self.key = key
