"""Pytest fixtures for testing"""

import json
import httpx
import pytest
from typing import Generator, List
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from peerpool_ledger.api.main import create_app
from peerpool_ledger.api.dependencies import get_engine, get_notification_client, get_session_factory
from peerpool_ledger.domain.ledger import LedgerEngine
from peerpool_ledger.domain.models import LedgerEvent
from peerpool_ledger.infrastructure.clients.notifications import NotificationClient
from peerpool_ledger.infrastructure.clients.token import InMemoryTokenService
from peerpool_ledger.infrastructure.database.models import Base
from peerpool_ledger.infrastructure.database.repositories import SqlLedgerStore
from peerpool_ledger.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

START = 1_700_000_000
DAY = 86_400

POOL = "pool"
OWNER = "owner"
LENDER = "lender"
ALICE = "alice"
BOB = "bob"


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, start: int = START):
        self.current = start

    def now(self) -> int:
        return self.current

    def advance(self, seconds: int = 0, days: int = 0) -> None:
        self.current += seconds + days * DAY

    def set(self, timestamp: int) -> None:
        self.current = timestamp


class FlakyTokenService(InMemoryTokenService):
    """In-memory token book whose transfers can be switched off"""

    def __init__(self, pool_account: str):
        super().__init__(pool_account)
        self.fail_transfer = False
        self.fail_transfer_from = False

    def transfer(self, to: str, amount: int) -> bool:
        if self.fail_transfer:
            return False
        return super().transfer(to, amount)

    def transfer_from(self, sender: str, to: str, amount: int) -> bool:
        if self.fail_transfer_from:
            return False
        return super().transfer_from(sender, to, amount)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token() -> FlakyTokenService:
    """Token book with funded lender and borrowers"""
    token = FlakyTokenService(pool_account=POOL)
    token.mint(LENDER, 100_000)
    token.mint(OWNER, 1_000)
    token.mint(ALICE, 1_000)
    token.mint(BOB, 1_000)
    return token


@pytest.fixture
def events() -> List[LedgerEvent]:
    return []


@pytest.fixture
def ledger(token: FlakyTokenService, clock: FakeClock, events: List[LedgerEvent]) -> LedgerEngine:
    """Empty ledger recording every published notification"""
    ledger = LedgerEngine(
        transfer_service=token,
        clock=clock,
        is_owner=lambda identity: identity == OWNER,
        pool_account=POOL,
    )
    ledger.subscribe(events.append)
    return ledger


@pytest.fixture
def funded_ledger(ledger: LedgerEngine, events: List[LedgerEvent]) -> LedgerEngine:
    """Ledger with 50,000 units of liquidity and a clean event list"""
    ledger.deposit(LENDER, 50_000)
    events.clear()
    return ledger


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def delivered_payloads() -> List[dict]:
    return []


@pytest.fixture
def client(
    db: Session,
    token: FlakyTokenService,
    clock: FakeClock,
    delivered_payloads: List[dict],
) -> TestClient:
    """Create FastAPI test client with test database, in-memory token book and mock webhook"""
    app = create_app()

    test_engine = LedgerEngine(
        transfer_service=token,
        clock=clock,
        is_owner=lambda identity: identity == OWNER,
        pool_account=POOL,
        store=SqlLedgerStore(TestingSessionLocal),
    )

    def webhook(request: httpx.Request) -> httpx.Response:
        delivered_payloads.append(json.loads(request.content))
        return httpx.Response(200)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_engine] = lambda: test_engine
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_notification_client] = lambda: NotificationClient(
        webhook_url="http://notifications.test/hook",
        max_retries=1,
        backoff_base=0,
        transport=httpx.MockTransport(webhook),
    )
    return TestClient(app)
