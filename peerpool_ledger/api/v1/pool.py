"""Pool endpoints - deposit, owner withdrawal, summary"""

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
from peerpool_ledger.api.v1.schemas import AmountRequest, PoolResponse
from peerpool_ledger.domain.ledger import LedgerEngine
from peerpool_ledger.infrastructure.clients.notifications import NotificationClient

router = APIRouter()


def pool_summary(engine: LedgerEngine) -> PoolResponse:
    pool = engine.get_pool()
    return PoolResponse(
        total_liquidity=pool.total_liquidity,
        custody_balance=pool.custody_balance,
        loans_issued=pool.loans_issued,
    )


@router.post("/pool/deposit", response_model=PoolResponse)
def deposit(
    request_body: AmountRequest,
    background_tasks: BackgroundTasks,
    caller: str = Depends(get_caller_id),
    request_id: str = Depends(get_request_id),
    engine: LedgerEngine = Depends(get_engine),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    notification_client: NotificationClient = Depends(get_notification_client),
):
    """Add the caller's funds to the pool"""
    run_ledger_operation(
        "deposit",
        lambda: engine.deposit(caller, request_body.amount),
        engine,
        request_id,
        caller,
        background_tasks,
        session_factory,
        notification_client,
    )
    return pool_summary(engine)


@router.post("/pool/withdraw", response_model=PoolResponse)
def withdraw_liquidity(
    request_body: AmountRequest,
    background_tasks: BackgroundTasks,
    caller: str = Depends(get_caller_id),
    request_id: str = Depends(get_request_id),
    engine: LedgerEngine = Depends(get_engine),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    notification_client: NotificationClient = Depends(get_notification_client),
):
    """Owner only: move idle liquidity out of the pool"""
    run_ledger_operation(
        "withdraw_liquidity",
        lambda: engine.withdraw_liquidity(caller, request_body.amount),
        engine,
        request_id,
        caller,
        background_tasks,
        session_factory,
        notification_client,
    )
    return pool_summary(engine)


@router.get("/pool", response_model=PoolResponse)
def get_pool(engine: LedgerEngine = Depends(get_engine)):
    return pool_summary(engine)
