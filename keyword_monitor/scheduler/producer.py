"""
Producer - periodically marks terms that are due for a rescan.

One UPDATE per tick:
    is_active
    AND (last_scanned_at IS NULL OR last_scanned_at <= now - rescan_interval)
    AND next_eligible_at <= now
    -> next_eligible_at = now

Terms under lease have next_eligible_at in the future and are never touched.
A failed tick is logged and skipped; the next tick evaluates the same predicate.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..archivist.models import Term, utc_now_naive
from ..config.monitoring import MonitoringConfig

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[object]]


async def queue_due_terms(
    session_factory: async_sessionmaker[AsyncSession],
    rescan_interval: timedelta,
    now: Optional[datetime] = None,
) -> int:
    """Mark due terms as eligible for leasing. Returns the number of rows marked."""
    now = now or utc_now_naive()
    cutoff = now - rescan_interval

    try:
        async with session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Term)
                    .where(
                        Term.is_active == True,  # noqa: E712
                        or_(Term.last_scanned_at.is_(None), Term.last_scanned_at <= cutoff),
                        Term.next_eligible_at <= now,
                    )
                    .values(next_eligible_at=now)
                    .execution_options(synchronize_session=False)
                )
        queued = result.rowcount or 0
    except Exception as e:
        logger.error(f"[Producer] Error queuing terms: {e}", exc_info=True)
        return 0

    if queued > 0:
        logger.info(f"[Producer] Queued {queued} terms for scanning.")
    else:
        logger.debug("[Producer] No terms due")
    return queued


class Ticker(Protocol):
    """Anything that can call an async callback on a fixed cadence."""

    def on_tick(self, callback: TickCallback) -> None:
        ...

    def start(self) -> None:
        ...

    def shutdown(self) -> None:
        ...


class APSchedulerTicker:
    """Ticker backed by APScheduler's AsyncIOScheduler."""

    def __init__(
        self,
        interval_minutes: int,
        run_immediately: bool = True,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.interval_minutes = interval_minutes
        self.run_immediately = run_immediately
        self.scheduler = scheduler or AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Collapse missed ticks - the predicate is idempotent
                "max_instances": 1,  # Only one tick at a time
                "misfire_grace_time": 60,
            },
        )

    def on_tick(self, callback: TickCallback) -> None:
        job_kwargs = {}
        if self.run_immediately:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)

        self.scheduler.add_job(
            callback,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="queue_due_terms",
            name=f"Queue due terms (every {self.interval_minutes} min)",
            replace_existing=True,
            **job_kwargs,
        )

    def start(self) -> None:
        self.scheduler.start()
        for job in self.scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.id} - next run: {job.next_run_time}")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)


# Module-level producer (one per process)
_producer: Optional[Ticker] = None


def setup_producer(
    config: MonitoringConfig,
    session_factory: async_sessionmaker[AsyncSession],
    ticker: Optional[Ticker] = None,
) -> Ticker:
    """
    Register queue_due_terms on the ticker and start it.

    Must be called from within a running event loop.
    """
    global _producer

    ticker = ticker or APSchedulerTicker(config.producer_interval_minutes)

    async def tick():
        return await queue_due_terms(session_factory, config.rescan_interval)

    ticker.on_tick(tick)
    ticker.start()
    _producer = ticker

    logger.info(
        f"Monitoring producer started: queuing terms every {config.producer_interval_minutes} min "
        f"(rescan interval {config.rescan_interval_hours}h)"
    )
    return ticker


def shutdown_producer():
    """Shutdown the producer without waiting for a running tick."""
    global _producer
    if _producer:
        _producer.shutdown()
        logger.info("Producer shutdown complete")
        _producer = None
