"""Loan endpoints - request, repay, default, lookup"""

from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from peerpool_ledger.api.dependencies import (
    get_caller_id,
    get_engine,
    get_notification_client,
    get_request_id,
    get_session_factory,
)
from peerpool_ledger.api.operations import run_ledger_operation
from peerpool_ledger.api.v1.schemas import LoanCreatedResponse, LoanRequest, LoanResponse, RepaymentResponse
from peerpool_ledger.domain.ledger import LedgerEngine
from peerpool_ledger.domain.models import LoanView
from peerpool_ledger.infrastructure.clients.notifications import NotificationClient

router = APIRouter()


def to_loan_response(loan: LoanView) -> LoanResponse:
    return LoanResponse(
        loan_id=loan.id,
        borrower=loan.borrower,
        principal=loan.principal,
        amount_due=loan.amount_due,
        deadline=loan.deadline,
        status=loan.status,
        is_overdue=loan.is_overdue,
    )


@router.post("/loans", response_model=LoanCreatedResponse, status_code=201)
def request_loan(
    request_body: LoanRequest,
    background_tasks: BackgroundTasks,
    caller: str = Depends(get_caller_id),
    request_id: str = Depends(get_request_id),
    engine: LedgerEngine = Depends(get_engine),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    notification_client: NotificationClient = Depends(get_notification_client),
):
    """
    Borrow from the pool against the caller's credit score.

    Flow:
    1. Validate amount against credit limit and pool liquidity
    2. Fix amount_due (principal + truncated interest) and deadline
    3. Disburse principal via the value-transfer service
    4. Return the new loan id with its repayment terms
    """
    loan_id = run_ledger_operation(
        "request_loan",
        lambda: engine.request_loan(caller, request_body.amount, request_body.duration_days),
        engine,
        request_id,
        caller,
        background_tasks,
        session_factory,
        notification_client,
    )
    loan = engine.get_loan(loan_id)

    return LoanCreatedResponse(loan_id=loan.id, amount_due=loan.amount_due, deadline=loan.deadline)


@router.post("/loans/{loan_id}/repay", response_model=RepaymentResponse)
def repay_loan(
    loan_id: int,
    background_tasks: BackgroundTasks,
    caller: str = Depends(get_caller_id),
    request_id: str = Depends(get_request_id),
    engine: LedgerEngine = Depends(get_engine),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    notification_client: NotificationClient = Depends(get_notification_client),
):
    """Repay amount_due in full; the response reports timeliness and the updated score"""
    result = run_ledger_operation(
        "repay_loan",
        lambda: engine.repay_loan(caller, loan_id),
        engine,
        request_id,
        caller,
        background_tasks,
        session_factory,
        notification_client,
        loan_id=loan_id,
    )

    return RepaymentResponse(loan_id=result.loan_id, on_time=result.on_time, credit_score=result.credit_score)


@router.post("/loans/{loan_id}/default", response_model=LoanResponse)
def mark_as_defaulted(
    loan_id: int,
    background_tasks: BackgroundTasks,
    caller: str = Depends(get_caller_id),
    request_id: str = Depends(get_request_id),
    engine: LedgerEngine = Depends(get_engine),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    notification_client: NotificationClient = Depends(get_notification_client),
):
    """Owner only: write off a loan 30+ days past its deadline"""
    run_ledger_operation(
        "mark_as_defaulted",
        lambda: engine.mark_as_defaulted(caller, loan_id),
        engine,
        request_id,
        caller,
        background_tasks,
        session_factory,
        notification_client,
        loan_id=loan_id,
    )

    return to_loan_response(engine.get_loan(loan_id))


@router.get("/loans/{loan_id}", response_model=LoanResponse)
def get_loan(loan_id: int, engine: LedgerEngine = Depends(get_engine)):
    """Loan terms and status, with derived is_overdue flag"""
    return to_loan_response(engine.get_loan(loan_id))
