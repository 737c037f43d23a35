"""/v1/repayments - record, list, view, edit and delete loan repayments"""

import logging
import time
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from microfin_gateway.api.dependencies import (
    domain_http_error,
    get_audit_client,
    get_request_id,
    parse_id,
    require_manager,
    require_staff,
)
from microfin_gateway.api.v1.schemas import (
    LoanScheduleResponse,
    MethodBreakdown,
    RecentRepayment,
    RepaymentCreateRequest,
    RepaymentListResponse,
    RepaymentResponse,
    RepaymentUpdateRequest,
    ScheduleListResponse,
    SummaryResponse,
    loan_schema,
    repayment_response,
    schedule_item_schema,
)
from microfin_gateway.domain.exceptions import DomainException
from microfin_gateway.domain.models import Actor, RepaymentMethod, ScheduleStatus
from microfin_gateway.infrastructure.clients.audit import AuditClient
from microfin_gateway.infrastructure.database.session import get_db
from microfin_gateway.infrastructure.observability.logging import log_repayment
from microfin_gateway.infrastructure.observability.metrics import record_repayment
from microfin_gateway.services.repayments import RepaymentService

router = APIRouter()


def _audit_event(action: str, repayment_id: str, loan_id: str, actor: Actor, request_id: str) -> dict:
    return {
        "action": action,
        "entity": "Repayment",
        "entity_id": repayment_id,
        "loan_id": loan_id,
        "actor_id": actor.user_id,
        "actor_role": actor.role.value,
        "request_id": request_id,
    }


def _fail(db: Session, e: Exception, request_id: str) -> HTTPException:
    """Roll back and map a failure to an HTTP error"""
    db.rollback()
    if isinstance(e, DomainException):
        logging.warning(f"Repayment request rejected: {e}", extra={"request_id": request_id})
        return domain_http_error(e)
    logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/repayments", response_model=RepaymentResponse, status_code=201)
def create_repayment(
    request_body: RepaymentCreateRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
    audit_client: AuditClient = Depends(get_audit_client),
):
    """
    Record a payment against an active loan.

    Flow:
    1. Lock the loan and its unpaid installments
    2. Persist the repayment
    3. Allocate the amount oldest installment first
    4. Complete the loan if nothing is left unpaid
    5. Commit, then send the audit event in the background
    """
    start_time = time.time()
    request_id = get_request_id(request)
    loan_id = parse_id(request_body.loan_id, "loan")

    try:
        repayment = RepaymentService(db).create_repayment(
            actor,
            loan_id=loan_id,
            amount=request_body.amount,
            method=request_body.method,
            paid_at=request_body.paid_at,
            reference=request_body.reference,
            notes=request_body.notes,
        )
        response = repayment_response(repayment)
    except Exception as e:
        raise _fail(db, e, request_id)

    duration_ms = (time.time() - start_time) * 1000
    record_repayment(response.method, len(response.allocations), response.unallocated_amount)
    log_repayment(
        request_id,
        response.id,
        response.loan_id,
        response.amount,
        len(response.allocations),
        response.unallocated_amount,
        duration_ms,
    )

    background_tasks.add_task(
        audit_client.send_event,
        _audit_event("REPAYMENT_CREATED", response.id, response.loan_id, actor, request_id),
    )
    return response


@router.get("/repayments", response_model=RepaymentListResponse)
def list_repayments(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    loan_id: Optional[str] = Query(None),
    received_by_user_id: Optional[str] = Query(None),
    method: Optional[RepaymentMethod] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    """Repayments visible to the caller, newest first"""
    loan_uuid = parse_id(loan_id, "loan") if loan_id else None
    repayments, total, paging = RepaymentService(db).list_repayments(
        actor,
        page=page,
        limit=limit,
        loan_id=loan_uuid,
        received_by_user_id=received_by_user_id,
        method=method,
        date_from=date_from,
        date_to=date_to,
    )
    return RepaymentListResponse(
        repayments=[repayment_response(r) for r in repayments],
        total=total,
        page=paging.page,
        limit=paging.limit,
    )


@router.get("/repayments/summary", response_model=SummaryResponse)
def get_repayment_summary(
    loan_id: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    """Totals and per-method breakdown of repayments visible to the caller"""
    loan_uuid = parse_id(loan_id, "loan") if loan_id else None
    summary = RepaymentService(db).get_summary(actor, loan_id=loan_uuid, date_from=date_from, date_to=date_to)

    return SummaryResponse(
        total_repayments=summary["total_repayments"],
        total_amount=summary["total_amount"],
        method_breakdown=[MethodBreakdown(**row) for row in summary["method_breakdown"]],
        recent_repayments=[
            RecentRepayment(
                id=str(r.id),
                loan_id=str(r.loan_id),
                amount=r.amount,
                method=r.method,
                paid_at=r.paid_at,
            )
            for r in summary["recent_repayments"]
        ],
    )


@router.get("/repayments/schedules", response_model=ScheduleListResponse)
def list_repayment_schedules(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    loan_id: Optional[str] = Query(None),
    status: Optional[ScheduleStatus] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    """Installments across the caller's loans, earliest due first"""
    loan_uuid = parse_id(loan_id, "loan") if loan_id else None
    items, total, paging = RepaymentService(db).list_schedules(
        actor,
        page=page,
        limit=limit,
        loan_id=loan_uuid,
        status=status.value if status else None,
        date_from=date_from,
        date_to=date_to,
    )
    return ScheduleListResponse(
        schedules=[schedule_item_schema(item) for item in items],
        total=total,
        page=paging.page,
        limit=paging.limit,
    )


@router.get("/repayments/schedules/{loan_id}", response_model=LoanScheduleResponse)
def get_loan_repayment_schedule(
    loan_id: str,
    request: Request,
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    """Full schedule of one loan with the repayments applied to each installment"""
    loan_uuid = parse_id(loan_id, "loan")
    try:
        loan, schedule = RepaymentService(db).get_loan_schedule(actor, loan_uuid)
    except DomainException as e:
        raise _fail(db, e, get_request_id(request))

    return LoanScheduleResponse(
        loan=loan_schema(loan),
        schedule=[schedule_item_schema(item) for item in schedule],
    )


@router.get("/repayments/{repayment_id}", response_model=RepaymentResponse)
def get_repayment(
    repayment_id: str,
    request: Request,
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    repayment_uuid = parse_id(repayment_id, "repayment")
    try:
        repayment = RepaymentService(db).get_repayment(actor, repayment_uuid)
    except DomainException as e:
        raise _fail(db, e, get_request_id(request))
    return repayment_response(repayment)


@router.put("/repayments/{repayment_id}", response_model=RepaymentResponse)
def update_repayment(
    repayment_id: str,
    request_body: RepaymentUpdateRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
    audit_client: AuditClient = Depends(get_audit_client),
):
    """Edit method, reference or notes within the edit window"""
    request_id = get_request_id(request)
    repayment_uuid = parse_id(repayment_id, "repayment")

    try:
        repayment = RepaymentService(db).update_repayment(
            actor,
            repayment_uuid,
            method=request_body.method,
            reference=request_body.reference,
            notes=request_body.notes,
        )
        response = repayment_response(repayment)
    except Exception as e:
        raise _fail(db, e, request_id)

    background_tasks.add_task(
        audit_client.send_event,
        _audit_event("REPAYMENT_UPDATED", response.id, response.loan_id, actor, request_id),
    )
    return response


@router.delete("/repayments/{repayment_id}", status_code=204)
def delete_repayment(
    repayment_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
    audit_client: AuditClient = Depends(get_audit_client),
):
    """Reverse a repayment's allocations and soft-delete it"""
    request_id = get_request_id(request)
    repayment_uuid = parse_id(repayment_id, "repayment")

    try:
        repayment = RepaymentService(db).delete_repayment(actor, repayment_uuid)
        loan_id = str(repayment.loan_id)
    except Exception as e:
        raise _fail(db, e, request_id)

    background_tasks.add_task(
        audit_client.send_event,
        _audit_event("REPAYMENT_DELETED", str(repayment_uuid), loan_id, actor, request_id),
    )
