# Overview: Transactional executor; runs a unit of work in one DB transaction and retries transient failures.

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import RetriesExhausted, TransactionTimeout
from ..extensions import db

"""
Executor invariants

- One attempt == one DB transaction. Commit on success, rollback on any error.
- A retry re-runs the WHOLE unit of work against freshly read state; there is
  no partial resume.
- Only transient storage failures are retried. Business-rule failures raised
  by the unit propagate on the first attempt.
- The unit of work receives the session explicitly and must not commit.
- Idempotency checks happen in the caller, before this loop is entered.
"""

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 0.1


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; run_in_transaction takes the
    database write lock up front there instead (BEGIN IMMEDIATE).
    """
    return query.with_for_update()


# Driver messages / SQLSTATEs of OperationalErrors that clear up on re-run.
# Anything else ("no such table", bad credentials) is permanent.
TRANSIENT_MESSAGES = (
    "database is locked",
    "database table is locked",
    "database is busy",
    "deadlock",
    "lock wait timeout",
    "could not serialize",
    "could not obtain lock",
    "server closed the connection",
    "connection reset",
)
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def is_transient(exc: BaseException) -> bool:
    """
    True for failures expected to succeed if the whole transaction is re-run:
    lock timeouts, deadlocks, serialization/write conflicts (OperationalError),
    optimistic version conflicts (StaleDataError) and dropped connections.
    """
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, OperationalError):
        if getattr(exc.orig, "pgcode", None) in TRANSIENT_SQLSTATES:
            return True
        message = str(exc.orig).lower()
        return any(marker in message for marker in TRANSIENT_MESSAGES)
    return False


def _expired(deadline: float | None) -> bool:
    return deadline is not None and time.monotonic() >= deadline


def _begin(session: Session) -> None:
    if db.engine.dialect.name == "sqlite":
        session.execute(text("BEGIN IMMEDIATE"))


def run_in_transaction(
    unit_of_work: Callable[[Session], T],
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
    timeout: float | None = None,
) -> T:
    """
    Execute unit_of_work(session) inside a transaction with retry on
    transient failures.

    Backoff before attempt n+1 is backoff_base * 2**n seconds. When the
    attempt budget is spent, RetriesExhausted is raised (chained to the last
    storage error). If `timeout` seconds of wall-clock time elapse, the
    in-flight transaction is rolled back and TransactionTimeout is raised;
    nothing from that attempt is committed.
    """
    config = current_app.config
    if attempts is None:
        attempts = config.get("TX_RETRY_ATTEMPTS", DEFAULT_ATTEMPTS)
    if backoff_base is None:
        backoff_base = config.get("TX_RETRY_BACKOFF_BASE", DEFAULT_BACKOFF_BASE)
    if timeout is None:
        timeout = config.get("TX_TIMEOUT_SECONDS")
    attempts = max(1, int(attempts))

    deadline = time.monotonic() + timeout if timeout is not None else None
    session = db.session
    last_exc: BaseException | None = None

    for attempt in range(attempts):
        if _expired(deadline):
            raise TransactionTimeout() from last_exc

        # Start from a clean transaction so every attempt re-reads current state
        session.rollback()

        try:
            _begin(session)
            result = unit_of_work(session)
            session.flush()
        except Exception as exc:
            session.rollback()
            if not is_transient(exc):
                raise
            last_exc = exc
        else:
            if _expired(deadline):
                session.rollback()
                raise TransactionTimeout()
            try:
                session.commit()
            except Exception as exc:
                session.rollback()
                if not is_transient(exc):
                    raise
                last_exc = exc
            else:
                return result

        if attempt >= attempts - 1:
            break

        delay = backoff_base * (2 ** attempt)
        if deadline is not None and time.monotonic() + delay >= deadline:
            raise TransactionTimeout() from last_exc

        logger.warning(
            "Transient storage error (attempt %d/%d), retrying in %.3fs: %s",
            attempt + 1,
            attempts,
            delay,
            type(last_exc).__name__,
        )
        time.sleep(delay)

    raise RetriesExhausted(details={"attempts": attempts}) from last_exc
