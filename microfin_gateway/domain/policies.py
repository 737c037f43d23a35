"""Role-based access rules for loans and repayments"""

from datetime import datetime, timedelta

from microfin_gateway.domain.exceptions import EditWindowExpiredError, PermissionDeniedError
from microfin_gateway.domain.models import Actor, Role
from microfin_gateway.utils.date_utils import ensure_utc


def can_view_loan(actor: Actor, loan) -> bool:
    """
    ADMIN sees every loan, BRANCH_MANAGER the loans of their branch,
    CREDIT_OFFICER the loans they are assigned to or created.
    """
    if actor.role == Role.ADMIN:
        return True
    if actor.role == Role.BRANCH_MANAGER:
        return actor.branch_id is not None and loan.branch_id == actor.branch_id
    if actor.role == Role.CREDIT_OFFICER:
        return actor.user_id in (loan.assigned_officer_id, loan.created_by_user_id)
    return False


def can_manage_loan(actor: Actor, loan) -> bool:
    """Stricter rule for edits and schedule views: officers only on loans assigned to them"""
    if actor.role == Role.CREDIT_OFFICER:
        return loan.assigned_officer_id == actor.user_id
    return can_view_loan(actor, loan)


def ensure_can_view(actor: Actor, loan) -> None:
    if not can_view_loan(actor, loan):
        raise PermissionDeniedError("You do not have permission to view this repayment")


def ensure_can_view_schedule(actor: Actor, loan) -> None:
    if not can_manage_loan(actor, loan):
        raise PermissionDeniedError("You do not have permission to view this loan's schedule")


def ensure_can_update(actor: Actor, loan) -> None:
    if not can_manage_loan(actor, loan):
        raise PermissionDeniedError("You do not have permission to update this repayment")


def ensure_can_delete(actor: Actor, loan) -> None:
    if actor.role == Role.CREDIT_OFFICER:
        raise PermissionDeniedError("Credit officers cannot delete repayments")
    if not can_view_loan(actor, loan):
        raise PermissionDeniedError("You do not have permission to delete this repayment")


def ensure_within_edit_window(created_at: datetime, now: datetime, window_hours: int, action: str) -> None:
    """Reject edits to repayments older than the edit window"""
    if ensure_utc(now) - ensure_utc(created_at) > timedelta(hours=window_hours):
        raise EditWindowExpiredError(f"Cannot {action} repayment after {window_hours} hours")
