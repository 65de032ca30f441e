# Overview: Order fulfillment orchestration; atomic, idempotent cancel/confirm/restock operations.

"""
Order Fulfillment Service

Each public operation follows the same ordering:

1. Resolve the idempotency key (generate one if the caller sent none).
2. Check the idempotency store OUTSIDE the retry loop. A recorded key
   returns the stored outcome unchanged, even if live state has moved on,
   but only to an actor who may see the recorded order (owner or admin).
   Anyone else gets the same OrderNotFound as for a missing order.
3. run_in_transaction(unit): the unit re-reads state, applies ledger deltas
   and the status change, and records the key in the same transaction.
4. Failures record nothing, so the same or a new key can be retried.

No partial state is visible to other readers: the order, every touched
inventory row, every log entry and the idempotency record commit together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..errors import AlreadyCancelled, IdempotencyConflict
from ..extensions import db
from ..models import InventoryLogType, Order
from . import idempotency_service, inventory_service, order_service
from .concurrency import run_in_transaction
from .session_service import AuthenticatedUser

logger = logging.getLogger(__name__)

CANCEL_SCOPE = "cancel-order"
CONFIRM_SCOPE = "confirm-order"
RESTOCK_SCOPE = "restock"


@dataclass(frozen=True)
class FulfillmentResult:
    """Outcome handed to the presentation layer."""
    data: dict[str, Any]
    idempotency_key: str
    replayed: bool = False


def _replayed(check, key: str, authorize) -> FulfillmentResult:
    # A stored outcome is only handed to an actor allowed to see its resource
    if authorize is not None and check.resource_id is not None:
        authorize(check.resource_id)
    return FulfillmentResult(data=check.prior_result, idempotency_key=key, replayed=True)


def _replay(scope: str, key: str, authorize) -> FulfillmentResult | None:
    check = idempotency_service.check_and_reserve(None, scope, key)
    if not check.already_completed:
        return None
    result = _replayed(check, key, authorize)
    logger.info("Idempotent replay: scope=%s", scope)
    return result


def _execute_once(
    scope: str,
    key: str,
    unit,
    *,
    caller_supplied_key: bool,
    timeout: float | None,
    race_errors=(),
    authorize=None,
):
    """
    Run `unit` under the retrying executor, memoizing only success.

    IdempotencyConflict means a concurrent request with the same key won;
    `race_errors` are business errors that the winner's commit can cause
    for the loser (e.g. AlreadyCancelled). Either way the stored outcome, if
    present, is returned as a replay.

    `authorize(resource_id)` runs before any stored outcome is returned and
    raises if the actor may not see that resource.
    """
    replay = _replay(scope, key, authorize)
    if replay is not None:
        return replay

    try:
        data = run_in_transaction(unit, timeout=timeout)
    except IdempotencyConflict:
        check = idempotency_service.replay_if_recorded(scope, key)
        if check.already_completed:
            return _replayed(check, key, authorize)
        raise
    except race_errors:
        if caller_supplied_key:
            check = idempotency_service.replay_if_recorded(scope, key)
            if check.already_completed:
                return _replayed(check, key, authorize)
        raise

    return FulfillmentResult(data=data, idempotency_key=key)


def _order_visible_to(actor: AuthenticatedUser):
    def _authorize(resource_id: str) -> None:
        order_service.load_order_for_actor(db.session, int(resource_id), actor)
    return _authorize


def _stamp_order_key(order: Order, key: str) -> None:
    if not order.idempotency_key:
        order.idempotency_key = key


def cancel_order(
    order_id: int,
    actor: AuthenticatedUser,
    reason: str | None = None,
    idempotency_key: str | None = None,
    *,
    timeout: float | None = None,
) -> FulfillmentResult:
    """
    Cancel an order and restore its stock as one atomic, idempotent operation.

    Raises OrderNotFound, AlreadyCancelled, InvalidTransition,
    RetriesExhausted or TransactionTimeout.
    """
    key = idempotency_key or idempotency_service.generate_key(CANCEL_SCOPE)

    def _unit(session):
        order = order_service.cancel(session, order_id=order_id, actor=actor, reason=reason)
        _stamp_order_key(order, key)
        summary = order.summary()
        idempotency_service.record(
            session,
            scope=CANCEL_SCOPE,
            key=key,
            resource_id=order.id,
            result=summary,
        )
        return summary

    return _execute_once(
        CANCEL_SCOPE,
        key,
        _unit,
        caller_supplied_key=idempotency_key is not None,
        timeout=timeout,
        race_errors=(AlreadyCancelled,),
        authorize=_order_visible_to(actor),
    )


def confirm_order(
    order_id: int,
    actor: AuthenticatedUser,
    idempotency_key: str | None = None,
    *,
    timeout: float | None = None,
) -> FulfillmentResult:
    """
    Confirm a pending order and consume its stock (sale entries in the ledger).

    Raises OrderNotFound, AlreadyCancelled, InvalidTransition, OutOfStock,
    RetriesExhausted or TransactionTimeout.
    """
    key = idempotency_key or idempotency_service.generate_key(CONFIRM_SCOPE)

    def _unit(session):
        order = order_service.confirm(session, order_id=order_id, actor=actor)
        summary = order.summary()
        idempotency_service.record(
            session,
            scope=CONFIRM_SCOPE,
            key=key,
            resource_id=order.id,
            result=summary,
        )
        return summary

    return _execute_once(
        CONFIRM_SCOPE,
        key,
        _unit,
        caller_supplied_key=idempotency_key is not None,
        timeout=timeout,
        authorize=_order_visible_to(actor),
    )


def restock_product(
    product_id: int,
    quantity: int,
    actor: AuthenticatedUser,
    reason: str | None = None,
    idempotency_key: str | None = None,
    *,
    timeout: float | None = None,
) -> FulfillmentResult:
    """Admin restock. A replayed key returns the summary captured at the first restock."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError("quantity must be a positive integer")

    key = idempotency_key or idempotency_service.generate_key(RESTOCK_SCOPE)

    def _unit(session):
        adjustment = inventory_service.adjust(
            session,
            product_id=product_id,
            delta=quantity,
            type=InventoryLogType.RESTOCK,
            reason=reason or "Manual restock",
            performed_by=actor.performed_by,
        )
        summary = inventory_service.summarize(adjustment.product)
        idempotency_service.record(
            session,
            scope=RESTOCK_SCOPE,
            key=key,
            resource_id=product_id,
            result=summary,
        )
        return summary

    return _execute_once(
        RESTOCK_SCOPE,
        key,
        _unit,
        caller_supplied_key=idempotency_key is not None,
        timeout=timeout,
    )
