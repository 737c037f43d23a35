"""Transactional unit of work with bounded retry on serialization conflicts"""

import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from microfin_gateway.config import settings
from microfin_gateway.domain.exceptions import ConcurrencyConflictError
from microfin_gateway.infrastructure.observability.metrics import transaction_conflict_counter

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL SQLSTATEs: serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_retryable_conflict(exc: DBAPIError) -> bool:
    """True when the driver reports a serialization failure or deadlock"""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return sqlstate in RETRYABLE_SQLSTATES


def run_in_transaction(db: Session, operation: Callable[[], T], max_attempts: Optional[int] = None) -> T:
    """
    Run ``operation`` as one transaction on ``db`` and commit it.

    The operation must do all of its reads and writes through ``db`` so a
    rollback discards every effect. On a retryable conflict the session is
    rolled back and the whole operation runs again from scratch.

    Raises:
        ConcurrencyConflictError: If every attempt hit a conflict
    """
    attempts = max_attempts or settings.allocation_max_retries
    attempt = 0

    while True:
        attempt += 1
        try:
            result = operation()
            db.commit()
            return result
        except DBAPIError as e:
            db.rollback()
            if not is_retryable_conflict(e):
                raise
            transaction_conflict_counter.inc()
            if attempt >= attempts:
                raise ConcurrencyConflictError(
                    f"Transaction conflicted {attempt} times, please retry"
                ) from e
            logger.warning(
                "Transaction conflict, retrying",
                extra={"attempt": attempt, "max_attempts": attempts},
            )
        except Exception:
            db.rollback()
            raise
