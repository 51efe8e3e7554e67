"""
Monitoring worker - leases due terms, searches Reddit and stores new mentions.

Each cycle:
1. Lease up to batch_size due terms (atomic, see archivist.leases)
2. For each term, in lease order:
   - wait rate_limit_delay (Reddit API courtesy)
   - search with a window based on whether the term was scanned before
   - ingest new mentions + mark the term scanned + release the lease (one transaction)
   - publish each new mention to the tenant's channel
3. Sleep for the adaptive idle delay and repeat

Error isolation:
- A failing term is logged and skipped. Its lease is not released, so it
  becomes eligible again when the lease expires.
- A failing batch (lease transaction, token exchange) is logged and the loop
  waits error_recovery_delay before trying again. Nothing here ever stops
  the process.
"""

import asyncio
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..archivist.ingestion import ingest_mentions
from ..archivist.leases import TermLease
from ..archivist.models import LeasedTerm, Mention, utc_now_naive
from ..common.reddit_client import RedditSearchClient, choose_window
from ..config.monitoring import MonitoringConfig
from .backoff import IdleBackoff
from .events import EventPublisher

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of one worker cycle."""
    terms_leased: int = 0
    terms_scanned: int = 0
    terms_failed: int = 0
    mentions_created: int = 0
    events_published: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class MonitoringWorker:
    """Long-running poller over the term lease."""

    def __init__(
        self,
        lease: TermLease,
        search_client: RedditSearchClient,
        publisher: EventPublisher,
        session_factory: async_sessionmaker[AsyncSession],
        config: MonitoringConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now_naive,
        name: str = "Worker",
    ):
        self.lease = lease
        self.search_client = search_client
        self.publisher = publisher
        self.config = config
        self.name = name
        self.backoff = IdleBackoff.from_config(config)
        self.last_result: Optional[BatchResult] = None
        self.cycles = 0
        self._session_factory = session_factory
        self._sleep = sleep
        self._clock = clock
        self._stop = asyncio.Event()

    async def process_term(self, term: LeasedTerm) -> List[Mention]:
        """Search one term and persist what is new. Raises on any failure."""
        window = choose_window(
            term.last_scanned_at,
            first_scan_window=self.config.search_time_window,
            rescan_window=self.config.rescan_time_window,
        )
        items = await self.search_client.search(term.text, window, self.config.search_limit)

        scanned_at = self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                created = await ingest_mentions(session, term, items, now=scanned_at)
                await self.lease.release(
                    term, scanned_at, self.config.rescan_interval, session=session
                )
        return created

    async def process_batch(self) -> BatchResult:
        """
        Lease and process one batch.

        Per-term failures are absorbed; anything raised from here is a
        batch-level failure handled by run_cycle().
        """
        terms = await self.lease.acquire(self.config.batch_size)
        result = BatchResult(terms_leased=len(terms))
        if not terms:
            return result

        self.backoff.mark_busy()
        logger.info(f"[{self.name}] Processing batch of {len(terms)} terms.")

        # Fail the batch early if the token cannot be obtained at all
        await self.search_client.token_provider.get_token()

        for term in terms:
            await self._sleep(self.config.rate_limit_delay)

            try:
                created = await self.process_term(term)
            except Exception as e:
                result.terms_failed += 1
                logger.error(
                    f"[{self.name}] Failed to process term \"{term.text}\" (ID: {term.id}): {e}"
                )
                continue

            result.terms_scanned += 1
            result.mentions_created += len(created)

            for mention in created:
                if await self.publisher.publish(term.tenant_id, mention):
                    result.events_published += 1

        return result

    async def run_cycle(self) -> float:
        """Run one cycle and return how long to wait before the next one."""
        self.cycles += 1
        try:
            result = await self.process_batch()
        except Exception as e:
            logger.error(f"[{self.name}] CRITICAL: Error processing term batch: {e}", exc_info=True)
            return self.config.error_recovery_delay

        self.last_result = result
        delay = self.backoff.record(result.terms_leased)

        if result.terms_leased:
            logger.info(
                f"[{self.name}] Batch done: {result.terms_scanned}/{result.terms_leased} terms scanned, "
                f"{result.terms_failed} failed, {result.mentions_created} new mentions. "
                f"Next poll in {delay:.1f}s"
            )
        else:
            logger.debug(
                f"[{self.name}] No due terms ({self.backoff.consecutive_empty} empty cycles), "
                f"next poll in {delay:.1f}s"
            )
        return delay

    async def run(self, max_cycles: Optional[int] = None):
        """Poll until stop() is called (or max_cycles cycles have run)."""
        logger.info(f"[{self.name}] Monitoring worker started.")
        completed = 0
        while not self._stop.is_set():
            delay = await self.run_cycle()
            completed += 1
            if max_cycles is not None and completed >= max_cycles:
                break
            await self._idle(delay)
        logger.info(f"[{self.name}] Monitoring worker stopped after {completed} cycles.")

    def stop(self):
        """Stop before the next cycle. A batch in progress is finished first."""
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def _idle(self, delay: float):
        """Sleep for `delay`, waking early if stop() is called."""
        sleeper = asyncio.ensure_future(self._sleep(delay))
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                if not task.done():
                    task.cancel()
