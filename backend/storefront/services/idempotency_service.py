# Overview: Service-layer operations for idempotency keys; records first outcomes and replays them.

"""
Idempotency Store

At-most-once execution per (scope, key):

- check_and_reserve() is a plain read, called BEFORE the retry loop.
- record() inserts the outcome INSIDE the same transaction as the side
  effects it describes, so "effects committed" and "key recorded" are
  atomic. A crashed or failed attempt records nothing and may be retried.
- Duplicate concurrent writers are resolved by the (scope, key) unique
  constraint in the database, not by an in-process lock: the loser gets
  IdempotencyConflict and re-reads the stored result.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import IdempotencyConflict
from ..extensions import db
from ..models import IdempotencyRecord
from ..time_utils import compact_stamp, utcnow

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 128


@dataclass(frozen=True)
class IdempotencyCheck:
    already_completed: bool
    prior_result: Any = None
    resource_id: str | None = None


def generate_key(scope: str = "op") -> str:
    """
    Format: {scope}-{YYYYMMDDHHMMSS}-{16 hex chars}
    Example: "cancel-order-20250101120000-9f2c4e1ab07d3356"
    """
    return f"{scope}-{compact_stamp()}-{secrets.token_hex(8)}"


def check_and_reserve(session: Session | None, scope: str, key: str) -> IdempotencyCheck:
    """
    Report whether (scope, key) already completed.

    Nothing is written here; the caller proceeds and calls record() inside
    its transaction. On replay, prior_result is the decoded stored outcome and
    the caller must return it verbatim without repeating side effects.
    """
    session = session or db.session
    row = session.query(IdempotencyRecord).filter_by(scope=scope, key=key).first()
    if row is None:
        return IdempotencyCheck(already_completed=False)
    return IdempotencyCheck(
        already_completed=True,
        prior_result=json.loads(row.result),
        resource_id=row.resource_id,
    )


def record(
    session: Session,
    *,
    scope: str,
    key: str,
    result: Any,
    resource_id: Any = None,
) -> IdempotencyRecord:
    """
    Persist the outcome of the first successful execution.

    Raises IdempotencyConflict if another request already holds (scope, key);
    the caller's transaction must then be rolled back (run_in_transaction
    does this) and the stored result re-read.
    """
    if not key or len(key) > MAX_KEY_LENGTH:
        raise ValueError("idempotency key must be 1-128 characters")

    row = IdempotencyRecord(
        scope=scope,
        key=key,
        resource_id=str(resource_id) if resource_id is not None else None,
        result=json.dumps(result, sort_keys=True),
        created_at=utcnow(),
    )
    session.add(row)
    try:
        session.flush()
    except IntegrityError as exc:
        raise IdempotencyConflict(scope, key) from exc
    return row


def replay_if_recorded(scope: str, key: str) -> IdempotencyCheck:
    """
    Re-read after losing a race. Runs in a fresh transaction so a row
    committed by the winner is visible.
    """
    db.session.rollback()
    check = check_and_reserve(db.session, scope, key)
    if check.already_completed:
        logger.info("Idempotent replay after concurrent completion: scope=%s", scope)
    return check
