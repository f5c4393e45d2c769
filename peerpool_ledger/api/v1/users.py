"""User lookups and notification history"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from peerpool_ledger.api.dependencies import get_engine
from peerpool_ledger.api.v1.schemas import EventItem, EventsResponse, ProfileResponse, UserLoansResponse
from peerpool_ledger.domain.ledger import LedgerEngine
from peerpool_ledger.infrastructure.database.repositories import EventRepository
from peerpool_ledger.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/users/{identity}/profile", response_model=ProfileResponse)
def get_profile(identity: str, engine: LedgerEngine = Depends(get_engine)):
    """
    Credit profile with current borrowing terms.

    Identities that never borrowed read as a zero profile; nothing is created.
    """
    profile = engine.get_profile(identity)
    return ProfileResponse(
        identity=profile.identity,
        credit_score=profile.credit_score,
        total_borrowed=profile.total_borrowed,
        total_repaid=profile.total_repaid,
        loans_count=profile.loans_count,
        on_time_payments=profile.on_time_payments,
        late_payments=profile.late_payments,
        account_opened_at=profile.account_opened_at,
        max_loan_amount=profile.max_loan_amount,
        interest_rate=profile.interest_rate,
    )


@router.get("/users/{identity}/loans", response_model=UserLoansResponse)
def get_user_loans(identity: str, engine: LedgerEngine = Depends(get_engine)):
    """Loan ids taken by `identity`, oldest first"""
    return UserLoansResponse(identity=identity, loan_ids=engine.get_user_loans(identity))


@router.get("/events", response_model=EventsResponse)
def get_events(
    subject: Optional[str] = Query(None, description="Identity the notification is about"),
    loan_id: Optional[int] = Query(None, description="Loan the notification is about"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Committed notifications in publication order"""
    records = EventRepository(db).list_events(subject=subject, loan_id=loan_id, limit=limit)

    return EventsResponse(
        events=[
            EventItem(
                sequence=r.id,
                event_type=r.event_type,
                subject=r.subject,
                loan_id=r.loan_id,
                payload=r.payload,
                status=r.status,
                created_at=r.created_at.isoformat(),
            )
            for r in records
        ]
    )
