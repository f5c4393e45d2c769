"""Shared request flow for mutating ledger endpoints"""

import time
from typing import Callable, Optional, TypeVar

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from peerpool_ledger.domain.exceptions import LedgerError
from peerpool_ledger.domain.ledger import LedgerEngine
from peerpool_ledger.infrastructure.clients.notifications import NotificationClient
from peerpool_ledger.infrastructure.observability.logging import log_operation
from peerpool_ledger.infrastructure.observability.metrics import pool_liquidity_gauge, record_operation
from peerpool_ledger.infrastructure.outbox import deliver_pending_events

T = TypeVar("T")


def run_ledger_operation(
    operation: str,
    call: Callable[[], T],
    engine: LedgerEngine,
    request_id: str,
    caller: str,
    background_tasks: BackgroundTasks,
    session_factory: Callable[[], Session],
    notification_client: NotificationClient,
    loan_id: Optional[int] = None,
) -> T:
    """
    Run one engine call, then record metrics/logs and schedule webhook delivery.

    Flow:
    1. Execute the engine call (atomic; raises LedgerError on rejection)
    2. Record outcome metric and update the pool liquidity gauge
    3. Log structured outcome
    4. On commit, schedule background delivery of pending notifications
    """
    start_time = time.time()
    fields = {} if loan_id is None else {"loan_id": loan_id}

    try:
        result = call()
    except LedgerError:
        duration_ms = (time.time() - start_time) * 1000
        record_operation(operation, committed=False)
        log_operation(request_id, caller, operation, False, duration_ms, **fields)
        raise

    duration_ms = (time.time() - start_time) * 1000
    record_operation(operation, committed=True)
    pool_liquidity_gauge.set(engine.total_liquidity)
    log_operation(request_id, caller, operation, True, duration_ms, **fields)

    background_tasks.add_task(deliver_pending_events, session_factory, notification_client)

    return result
