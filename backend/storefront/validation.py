from __future__ import annotations

from typing import Any

from .models import OrderStatus, PaymentStatus


MAX_REASON_LENGTH = 500
MAX_IDEMPOTENCY_KEY_LENGTH = 128
MAX_RESTOCK_QUANTITY = 1_000_000


class ValidationError(ValueError):
    """400-level input problem."""


def _reject_unknown(payload: dict, allowed: set[str]) -> None:
    unknown = set(payload) - allowed
    if unknown:
        raise ValidationError(f"unknown fields: {', '.join(sorted(unknown))}")


def _optional_str(payload: dict, field: str, max_length: int) -> str | None:
    value = payload.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value or None


def _strict_int(value: Any, field: str) -> int:
    # bool is an int subclass; floats and numeric strings are rejected
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    return value


def validate_cancel_payload(payload: dict, header_key: str | None = None) -> dict:
    """
    {reason?: str<=500, idempotency_key?: str<=128}

    The Idempotency-Key header is accepted as an alternative to the body field;
    if both are present they must match.
    """
    if not isinstance(payload, dict):
        raise ValidationError("body must be a JSON object")
    _reject_unknown(payload, {"reason", "idempotency_key"})

    reason = _optional_str(payload, "reason", MAX_REASON_LENGTH)
    key = _optional_str(payload, "idempotency_key", MAX_IDEMPOTENCY_KEY_LENGTH)
    header_key = (header_key or "").strip() or None

    if header_key is not None:
        if len(header_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise ValidationError(f"Idempotency-Key must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters")
        if key is not None and key != header_key:
            raise ValidationError("idempotency_key does not match Idempotency-Key header")
        key = header_key

    return {"reason": reason, "idempotency_key": key}


def validate_restock_payload(payload: dict, header_key: str | None = None) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("body must be a JSON object")
    _reject_unknown(payload, {"quantity", "reason", "idempotency_key"})

    if "quantity" not in payload:
        raise ValidationError("quantity is required")
    quantity = _strict_int(payload["quantity"], "quantity")
    if quantity <= 0 or quantity > MAX_RESTOCK_QUANTITY:
        raise ValidationError(f"quantity must be between 1 and {MAX_RESTOCK_QUANTITY}")

    rest = validate_cancel_payload(
        {k: v for k, v in payload.items() if k in ("reason", "idempotency_key")},
        header_key=header_key,
    )
    return {"quantity": quantity, **rest}


def validate_status_update(payload: dict) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("body must be a JSON object")
    _reject_unknown(payload, {"status", "payment_status", "tracking_number", "carrier"})

    patch: dict[str, Any] = {}
    if payload.get("status") is not None:
        try:
            patch["status"] = OrderStatus(payload["status"])
        except ValueError:
            raise ValidationError("status is not a valid order status")
    if payload.get("payment_status") is not None:
        try:
            patch["payment_status"] = PaymentStatus(payload["payment_status"])
        except ValueError:
            raise ValidationError("payment_status is not a valid payment status")
    for field in ("tracking_number", "carrier"):
        if field in payload:
            patch[field] = _optional_str(payload, field, 64) or ""

    if not patch:
        raise ValidationError("no updatable fields supplied")
    return patch


def parse_positive_int_arg(raw: str | None, field: str, default: int | None = None) -> int | None:
    if raw is None or raw == "":
        return default
    stripped = raw.strip()
    if not stripped.isdigit():
        raise ValidationError(f"{field} must be a positive integer")
    value = int(stripped)
    if value <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return value
