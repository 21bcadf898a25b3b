"""
Background jobs.

Only one today: the pending-request expiry sweep. It is registered when
REQUEST_TTL_SECONDS > 0; otherwise unanswered requests live until their
requester disconnects.
"""
from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from broker.config import REQUEST_TTL_SECONDS, SWEEP_INTERVAL_SECONDS
from broker.routing.request_router import router

log = logging.getLogger(__name__)

EXPIRY_JOB_ID = "expire_pending_requests"


async def expire_pending_requests(ttl_seconds: float = REQUEST_TTL_SECONDS) -> int:
    """Drop requests older than ttl_seconds. Returns how many were dropped."""
    expired = await router.expire_stale(ttl_seconds)
    if expired:
        log.info("expire_pending_requests: %d request(s) expired", len(expired))
    return len(expired)


def register_expiry_job(
    scheduler: AsyncIOScheduler,
    ttl_seconds: float = REQUEST_TTL_SECONDS,
    interval_seconds: float = SWEEP_INTERVAL_SECONDS,
) -> bool:
    """Add the sweep job (idempotent). False when expiry is disabled."""
    if ttl_seconds <= 0:
        log.info("Request expiry disabled")
        return False
    scheduler.add_job(
        expire_pending_requests,
        "interval",
        seconds=interval_seconds,
        args=[ttl_seconds],
        id=EXPIRY_JOB_ID,
        replace_existing=True,
    )
    log.info("Request expiry every %ss (ttl=%ss)", interval_seconds, ttl_seconds)
    return True


async def setup_scheduler(ttl_seconds: float = REQUEST_TTL_SECONDS) -> AsyncIOScheduler:
    """Initialise and start the scheduler with the expiry job if enabled."""
    scheduler = AsyncIOScheduler(timezone="UTC")
    register_expiry_job(scheduler, ttl_seconds)
    scheduler.start()
    return scheduler
