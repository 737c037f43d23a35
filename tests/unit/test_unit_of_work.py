"""Unit tests for the transactional retry wrapper"""

import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import OperationalError
from microfin_gateway.domain.exceptions import ConcurrencyConflictError
from microfin_gateway.infrastructure.database.unit_of_work import is_retryable_conflict, run_in_transaction


class FakeDriverError(Exception):
    def __init__(self, pgcode):
        super().__init__(f"driver error {pgcode}")
        self.pgcode = pgcode


def conflict(pgcode: str = "40001") -> OperationalError:
    return OperationalError("UPDATE repayment_schedule_item ...", {}, FakeDriverError(pgcode))


def test_commits_on_success():
    db = MagicMock()
    result = run_in_transaction(db, lambda: "done", max_attempts=3)

    assert result == "done"
    db.commit.assert_called_once()
    db.rollback.assert_not_called()


def test_retries_serialization_failure_then_succeeds():
    db = MagicMock()
    operation = MagicMock(side_effect=[conflict("40001"), conflict("40P01"), "ok"])

    result = run_in_transaction(db, operation, max_attempts=3)

    assert result == "ok"
    assert operation.call_count == 3
    assert db.rollback.call_count == 2
    db.commit.assert_called_once()


def test_raises_transient_error_when_retries_exhausted():
    db = MagicMock()
    operation = MagicMock(side_effect=conflict())

    with pytest.raises(ConcurrencyConflictError):
        run_in_transaction(db, operation, max_attempts=2)

    assert operation.call_count == 2
    db.commit.assert_not_called()


def test_non_conflict_database_error_is_not_retried():
    db = MagicMock()
    operation = MagicMock(side_effect=conflict("08006"))  # connection failure

    with pytest.raises(OperationalError):
        run_in_transaction(db, operation, max_attempts=3)

    operation.assert_called_once()
    db.rollback.assert_called_once()


def test_business_error_rolls_back_and_propagates():
    db = MagicMock()

    def operation():
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        run_in_transaction(db, operation, max_attempts=3)

    db.rollback.assert_called_once()
    db.commit.assert_not_called()


def test_commit_conflict_is_retried():
    """Serialization failures often surface at COMMIT time"""
    db = MagicMock()
    db.commit.side_effect = [conflict(), None]
    operation = MagicMock(return_value="ok")

    assert run_in_transaction(db, operation, max_attempts=3) == "ok"
    assert operation.call_count == 2


def test_is_retryable_conflict():
    assert is_retryable_conflict(conflict("40001"))
    assert is_retryable_conflict(conflict("40P01"))
    assert not is_retryable_conflict(conflict("23505"))
