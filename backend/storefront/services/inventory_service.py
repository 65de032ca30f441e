# Overview: Service-layer operations for inventory; the ledger that applies logged quantity deltas.

# backend/storefront/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import OutOfStock, ProductNotFound
from ..extensions import db
from ..models import InventoryLogEntry, InventoryLogType, Product
from storefront.time_utils import utcnow
from .concurrency import lock_for_update
"""
Inventory Ledger Invariants (authoritative)

- Product.quantity / reserved_quantity change ONLY through adjust().
- adjust() appends exactly one InventoryLogEntry per applied delta, in the
  same transaction as the quantity change. A rolled-back attempt leaves
  neither the change nor the log row behind.
- adjust() never opens or commits a transaction; it runs on the session the
  caller passes in, so inventory and order changes commit or abort together.
- Consumption (delta < 0) on a tracked, non-backorder product fails with
  OutOfStock if quantity would go below zero. Quantity is never clamped.
- Backorder products may go negative.
- Conservation: SUM(quantity_delta) over a product's log equals the net
  change in Product.quantity.
"""

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class Adjustment:
    product: Product
    previous_quantity: int
    new_quantity: int
    log_entry: InventoryLogEntry


def _get_product_locked(session: Session, product_id: int) -> Product:
    product = lock_for_update(session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise ProductNotFound()
    return product


def _sync_stock_status(product: Product) -> None:
    """Flip active <-> out_of_stock as tracked stock crosses zero. Drafts are left alone."""
    if not product.track_quantity or product.allow_backorder:
        if product.status == "out_of_stock":
            product.status = "active"
        return

    if product.status == "active" and product.quantity <= 0:
        product.status = "out_of_stock"
    elif product.status == "out_of_stock" and product.quantity > 0:
        product.status = "active"


def adjust(
    session: Session,
    *,
    product_id: int,
    delta: int,
    type: InventoryLogType | str,
    performed_by: str = "system",
    reason: str | None = None,
    order_id: int | None = None,
) -> Adjustment:
    """
    Apply an atomic quantity delta to one product and log it.

    Must be called inside run_in_transaction(); the row is locked for the
    remainder of the caller's transaction.
    """
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValueError("delta must be an integer")
    if delta == 0:
        raise ValueError("delta must be non-zero")

    log_type = InventoryLogType(type)
    product = _get_product_locked(session, product_id)

    previous = product.quantity
    new = previous + delta

    if delta < 0 and product.track_quantity and not product.allow_backorder and new < 0:
        raise OutOfStock(
            f"Insufficient stock for {product.sku}",
            details={
                "product_id": product.id,
                "sku": product.sku,
                "requested_quantity": -delta,
                "on_hand": previous,
            },
        )

    product.quantity = new
    _sync_stock_status(product)

    entry = InventoryLogEntry(
        product_id=product.id,
        type=log_type.value,
        quantity_delta=delta,
        previous_quantity=previous,
        new_quantity=new,
        reason=reason,
        order_id=order_id,
        performed_by=performed_by,
        created_at=utcnow(),
    )
    session.add(entry)
    session.flush()  # version check on the product row happens here

    return Adjustment(product=product, previous_quantity=previous, new_quantity=new, log_entry=entry)


def summarize(product: Product) -> dict:
    return {
        "product_id": product.id,
        "sku": product.sku,
        "status": product.status,
        "quantity": product.quantity,
        "reserved_quantity": product.reserved_quantity,
        "available_quantity": product.available_quantity,
        "is_low_stock": product.is_low_stock,
        "is_out_of_stock": product.is_out_of_stock,
        "can_purchase": product.can_purchase,
        "track_quantity": product.track_quantity,
        "allow_backorder": product.allow_backorder,
        "low_stock_threshold": product.low_stock_threshold,
    }


def get_inventory_summary(product_id: int) -> dict:
    """Read-only derived inventory view. Raises ProductNotFound."""
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise ProductNotFound()
    return summarize(product)


def check_availability(product_id: int, quantity: int = 1) -> dict:
    """
    Non-blocking availability check for the cart/checkout layer.

    Missing or non-active products are unavailable. Untracked products are
    always available (available_quantity is None: unlimited).
    """
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None or product.status != "active":
        return {"available": False, "available_quantity": 0, "can_backorder": False}

    if not product.track_quantity:
        return {"available": True, "available_quantity": None, "can_backorder": False}

    available_quantity = max(0, product.available_quantity)
    can_backorder = bool(product.allow_backorder)
    return {
        "available": available_quantity >= quantity or can_backorder,
        "available_quantity": available_quantity,
        "can_backorder": can_backorder,
    }


def list_low_stock(limit: int = 50) -> list[Product]:
    """Active tracked products with 0 < available <= threshold, lowest stock first."""
    limit = min(max(int(limit), 1), MAX_PAGE_SIZE)
    available = Product.quantity - Product.reserved_quantity
    return (
        db.session.query(Product)
        .filter(
            Product.status == "active",
            Product.track_quantity.is_(True),
            available <= Product.low_stock_threshold,
            available > 0,
        )
        .order_by(Product.quantity.asc(), Product.id.asc())
        .limit(limit)
        .all()
    )


def list_inventory_logs(
    *,
    product_id: int | None = None,
    order_id: int | None = None,
    type: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[InventoryLogEntry], int]:
    """Newest first. Returns (rows, total_matching)."""
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), MAX_PAGE_SIZE)

    q = db.session.query(InventoryLogEntry)
    if product_id is not None:
        q = q.filter(InventoryLogEntry.product_id == product_id)
    if order_id is not None:
        q = q.filter(InventoryLogEntry.order_id == order_id)
    if type is not None:
        q = q.filter(InventoryLogEntry.type == InventoryLogType(type).value)

    total = q.count()
    rows = (
        q.order_by(InventoryLogEntry.created_at.desc(), InventoryLogEntry.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def sum_log_deltas(product_id: int) -> int:
    """Reconciliation: net quantity change recorded in the ledger for a product."""
    total = db.session.query(
        func.coalesce(func.sum(InventoryLogEntry.quantity_delta), 0)
    ).filter(InventoryLogEntry.product_id == product_id).scalar()
    return int(total or 0)


def verify_ledger(product: Product) -> list[str]:
    """
    Check a product's log chain: each entry's new - previous equals its delta,
    consecutive entries link up, and the last entry matches Product.quantity.

    Returns a list of human-readable problems (empty when consistent).
    """
    problems: list[str] = []
    entries = (
        db.session.query(InventoryLogEntry)
        .filter(InventoryLogEntry.product_id == product.id)
        .order_by(InventoryLogEntry.id.asc())
        .all()
    )

    expected_previous = None
    for entry in entries:
        if entry.new_quantity - entry.previous_quantity != entry.quantity_delta:
            problems.append(f"entry {entry.id}: delta {entry.quantity_delta} does not match {entry.previous_quantity}->{entry.new_quantity}")
        if expected_previous is not None and entry.previous_quantity != expected_previous:
            problems.append(f"entry {entry.id}: previous {entry.previous_quantity} but prior entry ended at {expected_previous}")
        expected_previous = entry.new_quantity

    if expected_previous is not None and expected_previous != product.quantity:
        problems.append(f"ledger ends at {expected_previous} but product quantity is {product.quantity}")

    return problems
