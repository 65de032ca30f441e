# Overview: Order state machine; validates and applies order/payment status transitions.

"""
Order lifecycle

    pending -> confirmed -> processing -> shipped -> delivered -> refunded
    any non-terminal status -> cancelled     (cancel() only)

- Forward moves along the main chain may skip states; backward moves are
  rejected.
- delivered, cancelled and refunded are terminal. The only exit is
  delivered -> refunded (post-delivery return).
- Cancellation restores inventory, so it is only reachable through cancel();
  update_status() refuses it.
- Payment: once refunded or partially_refunded, payment_status may only be
  refunded or partially_refunded (never back to paid).

Every function here takes the transaction session explicitly and never
commits; callers wrap them in run_in_transaction().
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from ..errors import AlreadyCancelled, InvalidTransition, OrderNotFound
from ..models import InventoryLogType, Order, OrderStatus, PaymentStatus
from ..time_utils import utcnow
from . import inventory_service
from .concurrency import lock_for_update
from .session_service import AuthenticatedUser

DEFAULT_CANCEL_REASON = "Cancelled by user"

FORWARD_CHAIN = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED})

REFUNDED_PAYMENT_STATES = frozenset({PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED})


def can_transition(current: OrderStatus | str, new: OrderStatus | str) -> bool:
    current = OrderStatus(current)
    new = OrderStatus(new)

    if current == new:
        return True
    if current == OrderStatus.DELIVERED:
        return new == OrderStatus.REFUNDED
    if current in TERMINAL_STATUSES:
        return False
    if new == OrderStatus.CANCELLED:
        return True
    if new == OrderStatus.REFUNDED:
        return False
    return FORWARD_CHAIN.index(new) > FORWARD_CHAIN.index(current)


def can_transition_payment(current: PaymentStatus | str, new: PaymentStatus | str) -> bool:
    current = PaymentStatus(current)
    new = PaymentStatus(new)
    if current in REFUNDED_PAYMENT_STATES:
        return new in REFUNDED_PAYMENT_STATES
    return True


def load_order_for_actor(session: Session, order_id: int, actor: AuthenticatedUser, *, lock: bool = False) -> Order:
    """
    Fetch an order the actor may act on.

    Non-owners get the same OrderNotFound as a missing order so order ids of
    other customers cannot be probed. Admins may act on any order.
    """
    query = session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise OrderNotFound()
    if order.user_id != actor.id and not actor.is_admin:
        raise OrderNotFound()
    return order


def _items_by_product(order: Order):
    # Lock product rows in ascending id order so concurrent orders sharing
    # products never deadlock against each other.
    return sorted(order.items, key=lambda item: (item.product_id, item.position))


def cancel(session: Session, *, order_id: int, actor: AuthenticatedUser, reason: str | None = None) -> Order:
    """
    Cancel an order and restore its stock, exactly once per item.

    Raises OrderNotFound, AlreadyCancelled or InvalidTransition before any
    inventory is touched.
    """
    order = load_order_for_actor(session, order_id, actor, lock=True)
    status = OrderStatus(order.status)

    if status == OrderStatus.CANCELLED:
        raise AlreadyCancelled()
    if status == OrderStatus.DELIVERED:
        raise InvalidTransition("Cannot cancel delivered order")
    if not can_transition(status, OrderStatus.CANCELLED):
        raise InvalidTransition(f"Cannot cancel {status.value} order")

    reason = reason or DEFAULT_CANCEL_REASON

    for item in _items_by_product(order):
        inventory_service.adjust(
            session,
            product_id=item.product_id,
            delta=item.quantity,
            type=InventoryLogType.CANCELLATION,
            reason=reason,
            order_id=order.id,
            performed_by=actor.performed_by,
        )

    order.status = OrderStatus.CANCELLED.value
    order.cancelled_at = utcnow()
    order.cancelled_reason = reason
    if order.payment_status == PaymentStatus.PAID.value:
        order.payment_status = PaymentStatus.REFUNDED.value

    session.flush()
    return order


def confirm(session: Session, *, order_id: int, actor: AuthenticatedUser) -> Order:
    """
    Confirm a pending order and consume its stock.

    Any item that cannot be covered raises OutOfStock and aborts the whole
    order; no item is partially consumed.
    """
    order = load_order_for_actor(session, order_id, actor, lock=True)
    status = OrderStatus(order.status)

    if status == OrderStatus.CANCELLED:
        raise AlreadyCancelled()
    if status != OrderStatus.PENDING:
        raise InvalidTransition(f"Cannot confirm {status.value} order")

    for item in _items_by_product(order):
        inventory_service.adjust(
            session,
            product_id=item.product_id,
            delta=-item.quantity,
            type=InventoryLogType.SALE,
            reason=f"Order {order.order_number}",
            order_id=order.id,
            performed_by=actor.performed_by,
        )

    order.status = OrderStatus.CONFIRMED.value
    order.confirmed_at = utcnow()

    session.flush()
    return order


def update_status(
    session: Session,
    *,
    order_id: int,
    status: OrderStatus | str | None = None,
    payment_status: PaymentStatus | str | None = None,
    tracking_number: str | None = None,
    carrier: str | None = None,
) -> Order:
    """
    Administrative status update (shipping progress, payment flags).

    Does not touch inventory. Use cancel() for cancellations.
    """
    order = lock_for_update(session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise OrderNotFound()

    if status is not None:
        new_status = OrderStatus(status)
        current = OrderStatus(order.status)
        if new_status == OrderStatus.CANCELLED and current != OrderStatus.CANCELLED:
            raise InvalidTransition("Use order cancellation to cancel an order")
        if not can_transition(current, new_status):
            raise InvalidTransition(f"Cannot change status of {current.value} order to {new_status.value}")

        order.status = new_status.value
        if new_status == OrderStatus.SHIPPED and order.shipped_at is None:
            order.shipped_at = utcnow()
        if new_status == OrderStatus.DELIVERED and order.delivered_at is None:
            order.delivered_at = utcnow()

    if payment_status is not None:
        new_payment = PaymentStatus(payment_status)
        if not can_transition_payment(order.payment_status, new_payment):
            raise InvalidTransition("Cannot change payment status of refunded order")
        order.payment_status = new_payment.value

    if tracking_number is not None:
        order.tracking_number = tracking_number or None
    if carrier is not None:
        order.carrier = carrier or None

    session.flush()
    return order
