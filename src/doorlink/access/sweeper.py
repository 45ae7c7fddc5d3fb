"""Periodic purge of expired invite codes and stale access requests."""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from sqlmodel import Session

import doorlink.database as db_module
from doorlink.access.invites import delete_expired
from doorlink.access.ledger import delete_stale_requests

logger = logging.getLogger(__name__)

PENDING_REQUEST_TTL_HOURS = 48


def sweep_expired(
    session: Session,
    now: datetime | None = None,
    pending_ttl_hours: int = PENDING_REQUEST_TTL_HOURS,
) -> tuple[int, int]:
    """Run both cleanups once. Returns (invites deleted, requests deleted)."""
    now = now or datetime.now(UTC)
    invites = delete_expired(session, now=now)
    requests = delete_stale_requests(session, now - timedelta(hours=pending_ttl_hours))
    if invites:
        logger.info("Deleted %d expired invite code(s)", invites)
    if requests:
        logger.warning("Deleted %d expired access request(s)", requests)
    return invites, requests


class ExpirySweeper:
    """Runs ``sweep_expired`` on a fixed interval as an asyncio task."""

    def __init__(self, interval: float = 3600, pending_ttl_hours: int = PENDING_REQUEST_TTL_HOURS) -> None:
        self.interval = interval
        self.pending_ttl_hours = pending_ttl_hours
        self._running = False
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        logger.info("Starting expiry sweeper (interval=%ds)", self.interval)
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        logger.info("Stopping expiry sweeper")
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def sweep_once(self) -> tuple[int, int]:
        with Session(db_module.engine) as session:
            return sweep_expired(session, pending_ttl_hours=self.pending_ttl_hours)

    async def _sweep_loop(self) -> None:
        # First sweep runs one interval after start
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Expiry sweep failed")
