"""Deliver pending notifications from the event log to the webhook"""

import logging
import time
import uuid
from typing import Callable

import httpx
from sqlalchemy.orm import Session

from peerpool_ledger.config import settings
from peerpool_ledger.infrastructure.clients.notifications import NotificationClient
from peerpool_ledger.infrastructure.database.repositories import EventRepository


async def deliver_pending_events(
    session_factory: Callable[[], Session],
    client: NotificationClient,
    batch_size: int | None = None,
    max_attempts: int | None = None,
) -> int:
    """
    Push undelivered notifications in publication order.

    A run first claims its batch in a separate transaction; while another
    run holds a live claim nothing is sent, so overlapping runs never send a
    row twice or out of order. The run stops at the first failed row and
    returns the rest of its batch to the queue, so a later notification never
    overtakes an earlier one. A row is retried on later runs until it has
    been attempted `max_attempts` times, then marked `failed`.

    Returns:
        Number of notifications delivered
    """
    max_attempts = max_attempts or settings.webhook_max_delivery_attempts
    claimant = uuid.uuid4().hex
    now = int(time.time())
    lease_cutoff = now - settings.webhook_claim_lease_seconds

    delivered = 0
    db = session_factory()
    try:
        repo = EventRepository(db)

        if repo.has_active_claim(lease_cutoff):
            return 0
        ids = repo.get_deliverable_ids(batch_size or settings.webhook_batch_size, max_attempts, lease_cutoff)
        if not ids:
            return 0
        if repo.claim(ids, claimant, now, lease_cutoff) != len(ids):
            db.rollback()
            return 0
        db.commit()

        for record in repo.get_claimed(claimant):
            payload = dict(record.payload, sequence=record.id)
            try:
                await client.send_event(payload)
            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                repo.mark_attempt(record, delivered=False, max_attempts=max_attempts)
                db.flush()
                repo.release(claimant)
                db.commit()
                log = logging.error if record.status == "failed" else logging.warning
                log(
                    f"Notification delivery failed: {e}",
                    extra={"event_id": record.id, "event_type": record.event_type, "attempts": record.attempts},
                )
                break

            repo.mark_attempt(record, delivered=True, max_attempts=max_attempts)
            db.commit()
            delivered += 1
    finally:
        db.close()

    return delivered
