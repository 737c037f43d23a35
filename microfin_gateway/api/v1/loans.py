"""POST /v1/loans/{loan_id}/activate - create the repayment schedule of an approved loan"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from microfin_gateway.api.dependencies import (
    domain_http_error,
    get_audit_client,
    get_request_id,
    parse_id,
    require_manager,
)
from microfin_gateway.api.v1.schemas import LoanActivationRequest, LoanScheduleResponse, loan_schema, schedule_item_schema
from microfin_gateway.domain.exceptions import DomainException
from microfin_gateway.domain.models import Actor
from microfin_gateway.infrastructure.clients.audit import AuditClient
from microfin_gateway.infrastructure.database.session import get_db
from microfin_gateway.services.loans import LoanService

router = APIRouter()


@router.post("/loans/{loan_id}/activate", response_model=LoanScheduleResponse)
def activate_loan(
    loan_id: str,
    request_body: LoanActivationRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
    audit_client: AuditClient = Depends(get_audit_client),
):
    """
    Activate an approved loan.

    Returns:
        Loan details with its newly generated installment schedule
    """
    request_id = get_request_id(request)
    loan_uuid = parse_id(loan_id, "loan")

    try:
        loan, items = LoanService(db).activate_loan(
            loan_uuid,
            num_installments=request_body.num_installments,
            interval_days=request_body.interval_days,
            interest_rate=request_body.interest_rate,
            start_date=request_body.start_date,
        )
        response = LoanScheduleResponse(
            loan=loan_schema(loan),
            schedule=[schedule_item_schema(item) for item in items],
        )
    except DomainException as e:
        db.rollback()
        logging.warning(f"Loan activation rejected: {e}", extra={"request_id": request_id})
        raise domain_http_error(e)
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    background_tasks.add_task(
        audit_client.send_event,
        {
            "action": "LOAN_ACTIVATED",
            "entity": "Loan",
            "entity_id": response.loan.loan_id,
            "actor_id": actor.user_id,
            "actor_role": actor.role.value,
            "request_id": request_id,
        },
    )
    return response
