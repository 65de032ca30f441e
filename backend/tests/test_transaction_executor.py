"""
Transactional executor tests.

Verifies:
- Transient storage errors re-run the whole unit with exponential backoff
- Business errors propagate on the first attempt
- Exhausted budgets raise RetriesExhausted chained to the storage error
- Timeouts roll back the in-flight attempt
"""

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from storefront.errors import InvalidTransition, RetriesExhausted, TransactionTimeout
from storefront.models import User
from storefront.services import concurrency
from storefront.services.concurrency import is_transient, run_in_transaction


class FakeClock:
    """Stands in for the time module inside the executor."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(concurrency, "time", fake)
    return fake


def _locked():
    return OperationalError("UPDATE products", {}, Exception("database is locked"))


def _flaky(failures):
    """Unit that raises the queued errors one per attempt, then inserts a user."""
    calls = {"n": 0}

    def _unit(session):
        calls["n"] += 1
        if failures:
            raise failures.pop(0)
        user = User(email=f"attempt-{calls['n']}@example.com")
        session.add(user)
        return user.email

    return _unit, calls


# =============================================================================
# CLASSIFICATION
# =============================================================================


class TestIsTransient:
    def test_lock_and_version_conflicts_are_transient(self):
        assert is_transient(_locked())
        assert is_transient(StaleDataError("version mismatch"))

    def test_dropped_connection_is_transient(self):
        exc = DBAPIError("SELECT 1", {}, Exception("gone"), connection_invalidated=True)
        assert is_transient(exc)

    def test_business_and_integrity_errors_are_not(self):
        assert not is_transient(InvalidTransition())
        assert not is_transient(IntegrityError("INSERT", {}, Exception("UNIQUE")))
        assert not is_transient(ValueError("bad"))

    def test_permanent_operational_errors_are_not(self):
        assert not is_transient(OperationalError("SELECT", {}, Exception("no such table: orders")))
        assert not is_transient(OperationalError("SELECT", {}, Exception('no such column: "nope"')))

    def test_serialization_failure_by_sqlstate(self):
        class SerializationFailure(Exception):
            pgcode = "40001"

        assert is_transient(OperationalError("UPDATE", {}, SerializationFailure("conflict")))

    def test_permanent_operational_error_is_not_retried(self, db_session, clock):
        unit, calls = _flaky([OperationalError("SELECT", {}, Exception("no such table: orders"))])

        with pytest.raises(OperationalError):
            run_in_transaction(unit, attempts=3, backoff_base=0.1)

        assert calls["n"] == 1
        assert clock.sleeps == []


# =============================================================================
# RETRY LOOP
# =============================================================================


class TestRetry:
    def test_success_first_try_commits(self, db_session, clock):
        unit, calls = _flaky([])

        email = run_in_transaction(unit)

        assert calls["n"] == 1
        assert clock.sleeps == []
        assert db_session.query(User).filter_by(email=email).count() == 1

    def test_transient_failures_retry_with_exponential_backoff(self, db_session, clock):
        unit, calls = _flaky([_locked(), StaleDataError("stale")])

        email = run_in_transaction(unit, attempts=3, backoff_base=0.1)

        assert calls["n"] == 3
        assert clock.sleeps == pytest.approx([0.1, 0.2])
        assert email == "attempt-3@example.com"
        assert db_session.query(User).count() == 1

    def test_exhausted_budget_raises_with_cause(self, db_session, clock):
        unit, calls = _flaky([_locked(), _locked(), _locked()])

        with pytest.raises(RetriesExhausted) as excinfo:
            run_in_transaction(unit, attempts=3, backoff_base=0.05)

        assert calls["n"] == 3
        assert clock.sleeps == pytest.approx([0.05, 0.1])
        assert isinstance(excinfo.value.__cause__, OperationalError)
        assert excinfo.value.details == {"attempts": 3}
        assert "locked" not in excinfo.value.message

    def test_business_error_is_not_retried(self, db_session, clock):
        unit, calls = _flaky([InvalidTransition("nope")])

        with pytest.raises(InvalidTransition):
            run_in_transaction(unit, attempts=5)

        assert calls["n"] == 1
        assert clock.sleeps == []

    def test_failed_attempt_leaves_no_writes(self, db_session, clock):
        def _unit(session):
            session.add(User(email="half-written@example.com"))
            session.flush()
            raise InvalidTransition()

        with pytest.raises(InvalidTransition):
            run_in_transaction(_unit)

        assert db_session.query(User).filter_by(email="half-written@example.com").count() == 0

    def test_defaults_come_from_config(self, app, db_session, clock, monkeypatch):
        monkeypatch.setitem(app.config, "TX_RETRY_ATTEMPTS", 2)
        monkeypatch.setitem(app.config, "TX_RETRY_BACKOFF_BASE", 0.5)
        unit, calls = _flaky([_locked(), _locked()])

        with pytest.raises(RetriesExhausted):
            run_in_transaction(unit)

        assert calls["n"] == 2
        assert clock.sleeps == [0.5]


# =============================================================================
# TIMEOUT
# =============================================================================


class TestTimeout:
    def test_slow_unit_is_rolled_back(self, db_session, clock):
        def _unit(session):
            session.add(User(email="too-slow@example.com"))
            clock.now += 10
            return "done"

        with pytest.raises(TransactionTimeout):
            run_in_transaction(_unit, timeout=5)

        assert db_session.query(User).filter_by(email="too-slow@example.com").count() == 0

    def test_backoff_that_would_pass_deadline_times_out(self, db_session, clock):
        unit, calls = _flaky([_locked(), _locked()])

        with pytest.raises(TransactionTimeout):
            run_in_transaction(unit, attempts=5, backoff_base=2.0, timeout=1.5)

        assert calls["n"] == 1
        assert clock.sleeps == []

    def test_within_deadline_succeeds(self, db_session, clock):
        unit, calls = _flaky([_locked()])

        run_in_transaction(unit, attempts=3, backoff_base=0.1, timeout=5)

        assert calls["n"] == 2
