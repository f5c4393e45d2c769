"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from peerpool_ledger.domain.models import LoanStatus


class AmountRequest(BaseModel):
    """Request body for POST /v1/pool/deposit and /v1/pool/withdraw"""

    amount: int = Field(..., gt=0, description="Amount in whole units")


class LoanRequest(BaseModel):
    """Request body for POST /v1/loans"""

    amount: int = Field(..., gt=0, description="Principal in whole units")
    duration_days: int = Field(..., description="Days until the loan is due (7-365)")


class LoanCreatedResponse(BaseModel):
    """Response for POST /v1/loans"""

    loan_id: int
    amount_due: int
    deadline: int


class RepaymentResponse(BaseModel):
    """Response for POST /v1/loans/{loan_id}/repay"""

    loan_id: int
    on_time: bool
    credit_score: int


class LoanResponse(BaseModel):
    """Response for GET /v1/loans/{loan_id}"""

    loan_id: int
    borrower: str
    principal: int
    amount_due: int
    deadline: int
    status: LoanStatus
    is_overdue: bool


class PoolResponse(BaseModel):
    """Response for GET /v1/pool and pool mutations"""

    total_liquidity: int
    custody_balance: int
    loans_issued: int


class ProfileResponse(BaseModel):
    """Response for GET /v1/users/{identity}/profile"""

    identity: str
    credit_score: int
    total_borrowed: int
    total_repaid: int
    loans_count: int
    on_time_payments: int
    late_payments: int
    account_opened_at: Optional[int] = None
    max_loan_amount: int
    interest_rate: int


class UserLoansResponse(BaseModel):
    """Response for GET /v1/users/{identity}/loans"""

    identity: str
    loan_ids: List[int]


class EventItem(BaseModel):
    """Single notification in the log"""

    sequence: int
    event_type: str
    subject: str
    loan_id: Optional[int] = None
    payload: Dict[str, Any]
    status: str
    created_at: str


class EventsResponse(BaseModel):
    """Response for GET /v1/events"""

    events: List[EventItem]
