"""SQLAlchemy ORM models for ledger state and the notification log"""

from sqlalchemy import Column, Integer, BigInteger, DateTime, Text, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

POOL_ROW_ID = 1


class PoolRecord(Base):
    """Single-row pool ledger: lendable liquidity and the next loan id"""

    __tablename__ = "ledger_pool"

    id = Column(Integer, primary_key=True, default=POOL_ROW_ID)
    total_liquidity = Column(BigInteger, nullable=False, default=0)
    next_loan_id = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class LoanRecord(Base):
    """Loan issued from the pool"""

    __tablename__ = "ledger_loan"

    id = Column(Integer, primary_key=True, autoincrement=False)
    borrower = Column(Text, nullable=False, index=True)
    principal = Column(BigInteger, nullable=False)
    amount_due = Column(BigInteger, nullable=False)
    deadline = Column(BigInteger, nullable=False)  # epoch seconds
    status = Column(Text, nullable=False, default="open")  # open | repaid | defaulted


class ProfileRecord(Base):
    """Per-identity credit history"""

    __tablename__ = "user_profile"

    identity = Column(Text, primary_key=True)
    credit_score = Column(Integer, nullable=False, default=0)
    total_borrowed = Column(BigInteger, nullable=False, default=0)
    total_repaid = Column(BigInteger, nullable=False, default=0)
    loans_count = Column(Integer, nullable=False, default=0)
    on_time_payments = Column(Integer, nullable=False, default=0)
    late_payments = Column(Integer, nullable=False, default=0)
    account_opened_at = Column(BigInteger, nullable=True)  # epoch seconds


class LedgerEventRecord(Base):
    """Committed ledger notification; also the outbound webhook queue"""

    __tablename__ = "ledger_event"

    id = Column(Integer, primary_key=True, autoincrement=True)  # global publication order
    event_type = Column(Text, nullable=False)
    subject = Column(Text, nullable=False, index=True)
    loan_id = Column(Integer, nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    status = Column(Text, nullable=False, default="pending", index=True)  # pending | sending | delivered | failed
    attempts = Column(Integer, nullable=False, default=0)
    claimed_by = Column(Text, nullable=True)  # delivery run holding the row while `sending`
    claimed_at = Column(BigInteger, nullable=True)  # epoch seconds
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
