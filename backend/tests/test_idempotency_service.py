"""Idempotency store tests."""

import json
import re

import pytest

from storefront.errors import IdempotencyConflict
from storefront.models import IdempotencyRecord
from storefront.services import idempotency_service
from storefront.services.concurrency import run_in_transaction


KEY_PATTERN = re.compile(r"^cancel-order-\d{14}-[0-9a-f]{16}$")


def _record(scope, key, result, resource_id=None):
    return run_in_transaction(
        lambda session: idempotency_service.record(
            session, scope=scope, key=key, result=result, resource_id=resource_id
        )
    )


def test_generated_key_format_and_uniqueness():
    keys = {idempotency_service.generate_key("cancel-order") for _ in range(50)}

    assert len(keys) == 50
    assert all(KEY_PATTERN.match(k) for k in keys)


def test_unknown_key_is_not_completed(db_session):
    check = idempotency_service.check_and_reserve(db_session, "cancel-order", "never-seen")

    assert check.already_completed is False
    assert check.prior_result is None
    assert db_session.query(IdempotencyRecord).count() == 0


def test_recorded_result_is_replayed_verbatim(db_session):
    outcome = {"id": 7, "status": "cancelled", "payment_status": "refunded", "cancelled_at": "2025-01-01T12:00:00Z"}
    _record("cancel-order", "k-1", outcome, resource_id=7)

    check = idempotency_service.check_and_reserve(None, "cancel-order", "k-1")

    assert check.already_completed is True
    assert check.prior_result == outcome
    row = db_session.query(IdempotencyRecord).one()
    assert row.resource_id == "7"
    assert json.loads(row.result) == outcome


def test_same_key_in_another_scope_is_independent(db_session):
    _record("cancel-order", "shared", {"a": 1})

    assert idempotency_service.check_and_reserve(None, "restock", "shared").already_completed is False
    _record("restock", "shared", {"b": 2})
    assert db_session.query(IdempotencyRecord).count() == 2


def test_duplicate_record_raises_conflict_and_keeps_first(db_session):
    _record("cancel-order", "dup", {"first": True})

    with pytest.raises(IdempotencyConflict) as excinfo:
        _record("cancel-order", "dup", {"first": False})

    assert excinfo.value.key == "dup"
    assert excinfo.value.code == "idempotency_conflict"
    check = idempotency_service.replay_if_recorded("cancel-order", "dup")
    assert check.prior_result == {"first": True}


@pytest.mark.parametrize("key", ["", "x" * 129])
def test_key_length_is_enforced(db_session, key):
    with pytest.raises(ValueError):
        _record("cancel-order", key, {})
