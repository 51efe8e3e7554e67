"""
Term leases - work claiming for monitoring workers.

A lease is expressed entirely through terms.next_eligible_at:
- acquire() pushes next_eligible_at of a batch of due terms to now + lease_duration
  inside one transaction, so no other worker can select them
- release() sets next_eligible_at to scanned_at + rescan_interval after a
  successful scan
- a failed or abandoned scan is never released; the term comes back on its
  own once the lease horizon passes

Disjointness of concurrent acquire() calls is enforced by the database:
SELECT ... FOR UPDATE SKIP LOCKED on PostgreSQL (BEGIN IMMEDIATE on SQLite)
followed by a conditional UPDATE that only claims rows still due.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import LeasedTerm, Term, utc_now_naive

logger = logging.getLogger(__name__)


class TermLease:
    """Atomic batch leasing of due terms."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lease_duration: timedelta,
        clock: Callable[[], datetime] = utc_now_naive,
    ):
        self._session_factory = session_factory
        self.lease_duration = lease_duration
        self._clock = clock

    async def acquire(self, limit: int) -> List[LeasedTerm]:
        """
        Lease up to `limit` due terms, oldest-eligible first.

        Returns the pre-lease snapshots (including last_scanned_at). An empty
        list means there is no work right now.
        """
        if limit < 1:
            raise ValueError(f"lease limit must be >= 1, got {limit}")

        now = self._clock()
        lease_until = now + self.lease_duration

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(
                        Term.id,
                        Term.tenant_id,
                        Term.text,
                        Term.last_scanned_at,
                        Term.next_eligible_at,
                    )
                    .where(Term.is_active == True, Term.next_eligible_at <= now)  # noqa: E712
                    .order_by(Term.next_eligible_at.asc(), Term.id.asc())
                    .limit(limit)
                    .with_for_update(skip_locked=True)
                )
                candidates = result.all()
                if not candidates:
                    return []

                # Compare-and-swap: only rows that are still due get claimed
                claimed = await session.execute(
                    update(Term)
                    .where(
                        Term.id.in_([row.id for row in candidates]),
                        Term.is_active == True,  # noqa: E712
                        Term.next_eligible_at <= now,
                    )
                    .values(next_eligible_at=lease_until)
                    .returning(Term.id)
                    .execution_options(synchronize_session=False)
                )
                claimed_ids = set(claimed.scalars().all())

        leased = [
            LeasedTerm(
                id=row.id,
                tenant_id=row.tenant_id,
                text=row.text,
                last_scanned_at=row.last_scanned_at,
                eligible_at=row.next_eligible_at,
                lease_expires_at=lease_until,
            )
            for row in candidates
            if row.id in claimed_ids
        ]

        lost = len(candidates) - len(leased)
        if lost:
            logger.debug(f"Lease lost {lost} term(s) to a concurrent worker")
        if leased:
            logger.debug(f"Leased {len(leased)} term(s) until {lease_until.isoformat()}")
        return leased

    async def release(
        self,
        term: LeasedTerm,
        scanned_at: datetime,
        rescan_interval: timedelta,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """
        Release a lease after a successful scan.

        The term becomes due again at scanned_at + rescan_interval. The update
        only applies while the row still carries this lease, so a lease that
        already expired and was re-taken by another worker is left alone.

        Pass `session` to release inside the ingestion transaction.
        Returns True if the lease was still held.
        """
        stmt = (
            update(Term)
            .where(Term.id == term.id, Term.next_eligible_at == term.lease_expires_at)
            .values(next_eligible_at=scanned_at + rescan_interval)
            .execution_options(synchronize_session=False)
        )

        if session is not None:
            result = await session.execute(stmt)
        else:
            async with self._session_factory() as own_session:
                async with own_session.begin():
                    result = await own_session.execute(stmt)

        released = result.rowcount > 0
        if not released:
            logger.warning(
                f"Lease on term {term.id} ('{term.text}') expired before release; "
                f"leaving its schedule unchanged"
            )
        return released
