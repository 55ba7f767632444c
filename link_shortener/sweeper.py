"""Background expiration of links.

A link is swept when it is active and either its ``expires_at`` has passed or
its ``last_visited_at`` is older than the staleness window. Never-visited links
are only caught by ``expires_at``. Swept links are deactivated and their token
is rewritten to ``expired_<random>_<id>`` so the original token can be reused
while the row and its visit history stay in place.
"""

import asyncio
import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy import String, and_, func, literal, or_, select, update
from sqlalchemy.orm import sessionmaker

from . import models
from .utils import utcnow

SWEEP_INTERVAL_SECONDS = 30.0
STALE_AFTER = timedelta(days=90)


def expired_prefix() -> str:
    return "expired_" + secrets.token_urlsafe(12)[:12] + "_"


class ExpirationSweeper:
    """Periodically deactivates expired and stale links."""

    def __init__(
        self,
        session_factory: sessionmaker,
        interval_seconds: float = SWEEP_INTERVAL_SECONDS,
        stale_after: timedelta = STALE_AFTER,
        logger: Optional[logging.Logger] = None,
    ):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.stale_after = stale_after
        self.logger = logger or logging.getLogger(__name__)
        self.task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    def _expired_condition(self, now):
        return and_(
            models.Link.is_active.is_(True),
            or_(
                and_(models.Link.expires_at.isnot(None), models.Link.expires_at < now),
                and_(
                    models.Link.last_visited_at.isnot(None),
                    models.Link.last_visited_at < now - self.stale_after,
                ),
            ),
        )

    def sweep(self) -> int:
        """Run one sweep in a single transaction.

        Safe to run concurrently with itself: swept rows are inactive and no
        longer match, so each link is renamed by exactly one sweep.

        Returns:
            Number of links deactivated
        """
        now = utcnow()
        condition = self._expired_condition(now)

        with self.session_factory() as db:
            with db.begin():
                pending = db.scalar(
                    select(func.count()).select_from(models.Link).where(condition)
                )
                if not pending:
                    return 0

                result = db.execute(
                    update(models.Link)
                    .where(condition)
                    .values(
                        is_active=False,
                        shortened=literal(expired_prefix(), String) + models.Link.id,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                count = result.rowcount

        if count:
            self.logger.info(f"Processed {count} expired links")
        return count

    async def run(self, stop_event: asyncio.Event) -> None:
        """Sweep every ``interval_seconds`` until ``stop_event`` is set.

        A failed sweep is logged and retried on the next tick.
        """
        self.logger.info(f"Link expiration sweeper started (every {self.interval_seconds}s)")
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break

            try:
                await asyncio.to_thread(self.sweep)
            except Exception as e:
                self.logger.error(f"Error processing expired links: {e}", exc_info=True)

        self.logger.info("Link expiration sweeper stopped")

    def start(self) -> asyncio.Task:
        """Start the sweep loop on the running event loop."""
        if self.task is not None and not self.task.done():
            return self.task
        self._stop_event = asyncio.Event()
        self.task = asyncio.create_task(self.run(self._stop_event))
        return self.task

    async def stop(self) -> None:
        if self.task is None:
            return
        self._stop_event.set()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        self.task = None
