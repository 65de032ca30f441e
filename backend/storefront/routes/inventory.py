# backend/storefront/routes/inventory.py
"""
Inventory routes.

SECURITY: All routes require authentication.
- Summary and availability are readable by any signed-in user
- Restock, audit logs and low-stock alerts require the admin role
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..errors import FulfillmentError
from ..models import InventoryLogType
from ..services import fulfillment_service, inventory_service
from ..validation import (
    ValidationError,
    parse_positive_int_arg,
    validate_restock_payload,
)
from ..decorators import require_auth, require_admin
from .common import fulfillment_error_response


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/<int:product_id>")
@require_auth
def inventory_summary_route(product_id: int):
    """Derived inventory summary for a product."""
    try:
        return jsonify(inventory_service.get_inventory_summary(product_id)), 200
    except FulfillmentError as e:
        return fulfillment_error_response(e)


@inventory_bp.get("/<int:product_id>/availability")
@require_auth
def inventory_availability_route(product_id: int):
    try:
        quantity = parse_positive_int_arg(request.args.get("quantity"), "quantity", default=1)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(inventory_service.check_availability(product_id, quantity)), 200


@inventory_bp.post("/<int:product_id>/restock")
@require_auth
@require_admin
def restock_route(product_id: int):
    """
    Add stock to a product (admin only).

    Body: {"quantity": int, "reason"?: str, "idempotency_key"?: str}
    """
    try:
        data = validate_restock_payload(
            request.get_json(silent=True) or {},
            header_key=request.headers.get("Idempotency-Key"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = fulfillment_service.restock_product(
            product_id,
            data["quantity"],
            g.current_user,
            reason=data["reason"],
            idempotency_key=data["idempotency_key"],
        )
    except FulfillmentError as e:
        return fulfillment_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to restock product")
        return jsonify({"error": "Failed to restock product"}), 500

    return jsonify({
        "success": True,
        "message": "Restock already processed" if result.replayed else "Product restocked successfully",
        "summary": result.data,
        "idempotency_key": result.idempotency_key,
    }), 200


@inventory_bp.get("/logs")
@require_auth
@require_admin
def inventory_logs_route():
    """Audit log, newest first. Filters: product_id, order_id, type. Paged by page/limit."""
    try:
        product_id = parse_positive_int_arg(request.args.get("product_id"), "product_id")
        order_id = parse_positive_int_arg(request.args.get("order_id"), "order_id")
        page = parse_positive_int_arg(request.args.get("page"), "page", default=1)
        limit = parse_positive_int_arg(request.args.get("limit"), "limit", default=20)
        log_type = request.args.get("type") or None
        if log_type is not None and log_type not in {t.value for t in InventoryLogType}:
            raise ValidationError("type is not a valid inventory log type")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    rows, total = inventory_service.list_inventory_logs(
        product_id=product_id,
        order_id=order_id,
        type=log_type,
        page=page,
        limit=limit,
    )
    limit = min(limit, inventory_service.MAX_PAGE_SIZE)
    return jsonify({
        "logs": [r.to_dict() for r in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }), 200


@inventory_bp.get("/low-stock")
@require_auth
@require_admin
def low_stock_route():
    try:
        limit = parse_positive_int_arg(request.args.get("limit"), "limit", default=50)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    products = inventory_service.list_low_stock(limit)
    return jsonify({
        "products": [
            {**p.to_dict(), **inventory_service.summarize(p)}
            for p in products
        ],
        "count": len(products),
    }), 200
