# Overview: Flask API routes for order fulfillment; parses input and returns JSON responses.

# backend/storefront/routes/orders.py
"""
Order routes.

SECURITY: All routes require authentication.
- Customers may view, confirm and cancel only their own orders; other
  customers' orders answer 404, exactly like missing ones.
- Status updates require the admin role.

Idempotency: cancel/confirm accept `idempotency_key` in the body or an
`Idempotency-Key` header. Replays return the first outcome with 200.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import FulfillmentError
from ..extensions import db
from ..services import fulfillment_service, order_service
from ..services.concurrency import run_in_transaction
from ..validation import ValidationError, validate_cancel_payload, validate_status_update
from ..decorators import require_auth, require_admin
from .common import fulfillment_error_response


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _result_body(result, message: str, replay_message: str) -> dict:
    return {
        "success": True,
        "message": replay_message if result.replayed else message,
        "order": result.data,
        "idempotency_key": result.idempotency_key,
    }


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    """Get order with items (owner or admin)."""
    try:
        order = order_service.load_order_for_actor(db.session, order_id, g.current_user)
    except FulfillmentError as e:
        return fulfillment_error_response(e)

    return jsonify({"order": order.to_dict()}), 200


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """
    Cancel order and restore stock.

    Body: {"reason"?: str, "idempotency_key"?: str}
    """
    try:
        data = validate_cancel_payload(
            request.get_json(silent=True) or {},
            header_key=request.headers.get("Idempotency-Key"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = fulfillment_service.cancel_order(
            order_id,
            g.current_user,
            reason=data["reason"],
            idempotency_key=data["idempotency_key"],
        )
    except FulfillmentError as e:
        return fulfillment_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Failed to cancel order"}), 500

    return jsonify(_result_body(
        result,
        "Order cancelled successfully",
        "Order cancellation already processed",
    )), 200


@orders_bp.post("/<int:order_id>/confirm")
@require_auth
def confirm_order_route(order_id: int):
    """
    Confirm a pending order and deduct stock.

    Body: {"idempotency_key"?: str}
    """
    payload = request.get_json(silent=True) or {}
    try:
        if not isinstance(payload, dict) or set(payload) - {"idempotency_key"}:
            raise ValidationError("only idempotency_key may be supplied")
        data = validate_cancel_payload(payload, header_key=request.headers.get("Idempotency-Key"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = fulfillment_service.confirm_order(
            order_id,
            g.current_user,
            idempotency_key=data["idempotency_key"],
        )
    except FulfillmentError as e:
        return fulfillment_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm order")
        return jsonify({"error": "Failed to confirm order"}), 500

    return jsonify(_result_body(
        result,
        "Order confirmed successfully",
        "Order confirmation already processed",
    )), 200


@orders_bp.patch("/<int:order_id>")
@require_auth
@require_admin
def update_order_route(order_id: int):
    """
    Update order status / payment status / tracking (admin only).

    Cancellation is not accepted here; use POST /cancel so stock is restored.
    """
    try:
        patch = validate_status_update(request.get_json(silent=True) or {})
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        order = run_in_transaction(
            lambda session: order_service.update_status(session, order_id=order_id, **patch)
        )
    except FulfillmentError as e:
        return fulfillment_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Failed to update order"}), 500

    return jsonify({
        "success": True,
        "message": "Order updated successfully",
        "order": order.to_dict(),
    }), 200
