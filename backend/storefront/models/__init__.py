from .auth import User, SessionToken
from .inventory import Product, InventoryLogEntry, InventoryLogType
from .orders import Order, OrderItem, OrderStatus, PaymentStatus
from .idempotency import IdempotencyRecord

__all__ = [
    'User', 'SessionToken',
    'Product', 'InventoryLogEntry', 'InventoryLogType',
    'Order', 'OrderItem', 'OrderStatus', 'PaymentStatus',
    'IdempotencyRecord',
]
