"""Data access layer for ledger state and notifications"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session
from peerpool_ledger.infrastructure.database.models import (
    POOL_ROW_ID,
    LedgerEventRecord,
    LoanRecord,
    PoolRecord,
    ProfileRecord,
)
from peerpool_ledger.domain.models import (
    LedgerChanges,
    LedgerEvent,
    LedgerState,
    Loan,
    LoanStatus,
    UserProfile,
)


class LedgerStateRepository:
    """Repository for pool, loan and profile rows"""

    def __init__(self, db: Session):
        self.db = db

    def load_state(self) -> LedgerState:
        """Rebuild the full ledger state; the per-user index follows loan id order"""
        state = LedgerState()

        pool = self.db.get(PoolRecord, POOL_ROW_ID)
        if pool is not None:
            state.pool.total_liquidity = pool.total_liquidity
            state.next_loan_id = pool.next_loan_id

        for record in self.db.query(LoanRecord).order_by(LoanRecord.id.asc()):
            state.loans[record.id] = Loan(
                id=record.id,
                borrower=record.borrower,
                principal=record.principal,
                amount_due=record.amount_due,
                deadline=record.deadline,
                status=LoanStatus(record.status),
            )
            state.loans_by_user.setdefault(record.borrower, []).append(record.id)

        for record in self.db.query(ProfileRecord):
            state.profiles[record.identity] = UserProfile(
                credit_score=record.credit_score,
                total_borrowed=record.total_borrowed,
                total_repaid=record.total_repaid,
                loans_count=record.loans_count,
                on_time_payments=record.on_time_payments,
                late_payments=record.late_payments,
                account_opened_at=record.account_opened_at,
            )

        return state

    def save_changes(self, changes: LedgerChanges) -> None:
        """Upsert the pool row and every touched loan and profile"""
        pool = self.db.get(PoolRecord, POOL_ROW_ID) or PoolRecord(id=POOL_ROW_ID)
        pool.total_liquidity = changes.total_liquidity
        pool.next_loan_id = changes.next_loan_id
        self.db.add(pool)

        for loan in changes.loans:
            self.db.merge(
                LoanRecord(
                    id=loan.id,
                    borrower=loan.borrower,
                    principal=loan.principal,
                    amount_due=loan.amount_due,
                    deadline=loan.deadline,
                    status=loan.status.value,
                )
            )

        for identity, profile in changes.profiles.items():
            self.db.merge(
                ProfileRecord(
                    identity=identity,
                    credit_score=profile.credit_score,
                    total_borrowed=profile.total_borrowed,
                    total_repaid=profile.total_repaid,
                    loans_count=profile.loans_count,
                    on_time_payments=profile.on_time_payments,
                    late_payments=profile.late_payments,
                    account_opened_at=profile.account_opened_at,
                )
            )

        self.db.flush()


class EventRepository:
    """Repository for the notification log and its delivery queue"""

    def __init__(self, db: Session):
        self.db = db

    def append(self, event: LedgerEvent) -> LedgerEventRecord:
        """Add a committed notification to the log"""
        record = LedgerEventRecord(
            event_type=event.event_type,
            subject=event.subject,
            loan_id=getattr(event, "loan_id", None),
            payload=event.to_payload(),
        )
        self.db.add(record)
        self.db.flush()  # Get ID without committing
        return record

    def list_events(
        self,
        subject: Optional[str] = None,
        loan_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[LedgerEventRecord]:
        """Fetch notifications in publication order, optionally filtered"""
        query = self.db.query(LedgerEventRecord)
        if subject is not None:
            query = query.filter(LedgerEventRecord.subject == subject)
        if loan_id is not None:
            query = query.filter(LedgerEventRecord.loan_id == loan_id)
        return query.order_by(LedgerEventRecord.id.asc()).limit(limit).all()

    def has_active_claim(self, lease_cutoff: int) -> bool:
        """True while another delivery run holds rows whose lease has not expired"""
        row = (
            self.db.query(LedgerEventRecord.id)
            .filter(LedgerEventRecord.status == "sending", LedgerEventRecord.claimed_at > lease_cutoff)
            .first()
        )
        return row is not None

    def get_deliverable_ids(self, limit: int, max_attempts: int, lease_cutoff: int) -> List[int]:
        """Oldest undelivered notifications first, including rows from an abandoned run"""
        rows = (
            self.db.query(LedgerEventRecord.id)
            .filter(self._claimable(lease_cutoff), LedgerEventRecord.attempts < max_attempts)
            .order_by(LedgerEventRecord.id.asc())
            .limit(limit)
            .all()
        )
        return [row.id for row in rows]

    def claim(self, ids: List[int], claimant: str, now: int, lease_cutoff: int) -> int:
        """
        Move the given rows to `sending` on behalf of one delivery run.

        Returns:
            Number of rows claimed; fewer than `ids` means another run got there first
        """
        return (
            self.db.query(LedgerEventRecord)
            .filter(LedgerEventRecord.id.in_(ids), self._claimable(lease_cutoff))
            .update(
                {
                    LedgerEventRecord.status: "sending",
                    LedgerEventRecord.claimed_by: claimant,
                    LedgerEventRecord.claimed_at: now,
                },
                synchronize_session=False,
            )
        )

    def get_claimed(self, claimant: str) -> List[LedgerEventRecord]:
        return (
            self.db.query(LedgerEventRecord)
            .filter(LedgerEventRecord.status == "sending", LedgerEventRecord.claimed_by == claimant)
            .order_by(LedgerEventRecord.id.asc())
            .all()
        )

    def release(self, claimant: str) -> int:
        """Hand rows a run did not get to back to the queue"""
        return (
            self.db.query(LedgerEventRecord)
            .filter(LedgerEventRecord.status == "sending", LedgerEventRecord.claimed_by == claimant)
            .update(
                {
                    LedgerEventRecord.status: "pending",
                    LedgerEventRecord.claimed_by: None,
                    LedgerEventRecord.claimed_at: None,
                },
                synchronize_session=False,
            )
        )

    def mark_attempt(self, record: LedgerEventRecord, delivered: bool, max_attempts: int) -> None:
        """Record the outcome of a delivery attempt; a row is given up on after `max_attempts`"""
        record.attempts += 1
        record.last_attempt_at = datetime.now(timezone.utc)
        record.claimed_by = None
        record.claimed_at = None
        if delivered:
            record.status = "delivered"
        elif record.attempts >= max_attempts:
            record.status = "failed"
        else:
            record.status = "pending"

    @staticmethod
    def _claimable(lease_cutoff: int):
        return or_(
            LedgerEventRecord.status == "pending",
            and_(LedgerEventRecord.status == "sending", LedgerEventRecord.claimed_at <= lease_cutoff),
        )


class SqlLedgerStore:
    """Ledger state store writing touched records and notifications in one transaction"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def load(self) -> LedgerState:
        db = self.session_factory()
        try:
            return LedgerStateRepository(db).load_state()
        finally:
            db.close()

    def save(self, changes: LedgerChanges, events: List[LedgerEvent]) -> None:
        db = self.session_factory()
        try:
            LedgerStateRepository(db).save_changes(changes)
            event_repo = EventRepository(db)
            for event in events:
                event_repo.append(event)
            db.commit()
        except Exception:
            db.rollback()
            logging.error(f"Failed to persist ledger changes with {len(events)} notifications")
            raise
        finally:
            db.close()
