from __future__ import annotations

from enum import Enum

from ..extensions import db
from ..time_utils import to_utc_z


class InventoryLogType(str, Enum):
    RESTOCK = "restock"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
    CANCELLATION = "cancellation"


class Product(db.Model):
    """
    Product with its inventory record.

    INVARIANT: quantity and reserved_quantity are written ONLY by
    inventory_service.adjust(), which appends an InventoryLogEntry in the
    same transaction. Nothing else assigns these columns.

    reserved_quantity is carried for the cart hold workflow; the
    fulfillment core reports it but never changes it.

    Catalog content (descriptions, images, collections) comes from the CMS
    and is not stored here.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_status_track", "status", "track_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    title = db.Column(db.String(255), nullable=False)

    # active | out_of_stock | draft
    status = db.Column(db.String(16), nullable=False, default="active")

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)
    track_quantity = db.Column(db.Boolean, nullable=False, default=True)
    allow_backorder = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.reserved_quantity

    @property
    def is_low_stock(self) -> bool:
        return bool(self.track_quantity) and self.available_quantity <= self.low_stock_threshold

    @property
    def is_out_of_stock(self) -> bool:
        return bool(self.track_quantity) and not self.allow_backorder and self.available_quantity <= 0

    @property
    def can_purchase(self) -> bool:
        return not self.track_quantity or bool(self.allow_backorder) or self.available_quantity > 0

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "title": self.title,
            "status": self.status,
            "price_cents": self.price_cents,
            "quantity": self.quantity,
            "reserved_quantity": self.reserved_quantity,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLogEntry(db.Model):
    """
    Append-only audit record: exactly one row per applied quantity delta.

    Rows are never updated or deleted. For every product,
    SUM(quantity_delta) equals the net change of Product.quantity.
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        db.Index("ix_inventory_logs_product_created", "product_id", "created_at"),
        db.Index("ix_inventory_logs_type_created", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)

    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(500), nullable=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    # user id as string, or "system"
    performed_by = db.Column(db.String(64), nullable=False, default="system")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    product = db.relationship("Product")

    def __repr__(self) -> str:
        return (
            f"<InventoryLogEntry id={self.id} product_id={self.product_id} "
            f"type={self.type} delta={self.quantity_delta}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "reason": self.reason,
            "order_id": self.order_id,
            "performed_by": self.performed_by,
            "created_at": to_utc_z(self.created_at),
        }
