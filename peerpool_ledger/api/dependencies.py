"""Dependency injection for FastAPI endpoints"""

from functools import lru_cache
from typing import Callable

from fastapi import Header, Request
from sqlalchemy.orm import Session

from peerpool_ledger.config import settings
from peerpool_ledger.domain.ledger import LedgerEngine
from peerpool_ledger.domain.ports import SystemClock
from peerpool_ledger.infrastructure.clients.notifications import NotificationClient
from peerpool_ledger.infrastructure.clients.token import build_transfer_service
from peerpool_ledger.infrastructure.database.repositories import SqlLedgerStore
from peerpool_ledger.infrastructure.database.session import SessionLocal
from peerpool_ledger.infrastructure.observability.metrics import record_event


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_caller_id(x_caller_id: str = Header(..., min_length=1)) -> str:
    """Caller identity as resolved by the upstream identity layer"""
    return x_caller_id


def is_owner(identity: str) -> bool:
    return identity == settings.owner_id


@lru_cache
def get_engine() -> LedgerEngine:
    """Process-wide ledger engine, restored from the database and wired to the configured collaborators"""
    engine = LedgerEngine(
        transfer_service=build_transfer_service(),
        clock=SystemClock(),
        is_owner=is_owner,
        pool_account=settings.pool_account,
        store=SqlLedgerStore(SessionLocal),
    )
    engine.subscribe(record_event)
    return engine


def get_session_factory() -> Callable[[], Session]:
    """Session factory for work that outlives the request (background delivery)"""
    return SessionLocal


def get_notification_client() -> NotificationClient:
    """Provide notification webhook client instance"""
    return NotificationClient()
