"""
Tests for TermLease - atomic batch leasing of due terms.

The most important property: concurrent acquire() calls never return
overlapping terms.
"""

import asyncio
from datetime import timedelta

import pytest

from keyword_monitor.archivist.leases import TermLease
from tests.test_helpers import add_term, get_term

LEASE = timedelta(hours=2)


class TestAcquire:
    """TermLease.acquire()"""

    @pytest.mark.asyncio
    async def test_empty_store_returns_empty_batch(self, session_factory, now):
        lease = TermLease(session_factory, LEASE, clock=lambda: now)
        assert await lease.acquire(5) == []

    @pytest.mark.asyncio
    async def test_leases_due_terms_oldest_first(self, session_factory, now):
        newer = await add_term(session_factory, "newer", next_eligible_at=now - timedelta(minutes=1))
        older = await add_term(session_factory, "older", next_eligible_at=now - timedelta(hours=3))
        await add_term(session_factory, "future", next_eligible_at=now + timedelta(minutes=5))
        await add_term(session_factory, "inactive", next_eligible_at=now - timedelta(hours=5), is_active=False)

        lease = TermLease(session_factory, LEASE, clock=lambda: now)
        batch = await lease.acquire(10)

        assert [t.id for t in batch] == [older.id, newer.id]

    @pytest.mark.asyncio
    async def test_respects_limit(self, session_factory, now):
        for i in range(5):
            await add_term(session_factory, f"term-{i}", next_eligible_at=now - timedelta(minutes=10 - i))

        lease = TermLease(session_factory, LEASE, clock=lambda: now)
        batch = await lease.acquire(3)

        assert [t.text for t in batch] == ["term-0", "term-1", "term-2"]

    @pytest.mark.asyncio
    async def test_pushes_next_eligible_to_lease_horizon(self, session_factory, now):
        term = await add_term(session_factory, "acme", next_eligible_at=now)
        lease = TermLease(session_factory, LEASE, clock=lambda: now)

        [leased] = await lease.acquire(1)

        stored = await get_term(session_factory, term.id)
        assert stored.next_eligible_at == now + LEASE
        assert leased.lease_expires_at == now + LEASE

    @pytest.mark.asyncio
    async def test_returns_pre_lease_snapshot(self, session_factory, now):
        scanned = now - timedelta(hours=4)
        eligible = now - timedelta(minutes=30)
        term = await add_term(
            session_factory, "acme", tenant_id="t-9", next_eligible_at=eligible, last_scanned_at=scanned
        )
        lease = TermLease(session_factory, LEASE, clock=lambda: now)

        [leased] = await lease.acquire(1)

        assert leased.id == term.id
        assert leased.tenant_id == "t-9"
        assert leased.text == "acme"
        assert leased.last_scanned_at == scanned
        assert leased.eligible_at == eligible
        assert leased.previously_scanned

    @pytest.mark.asyncio
    async def test_leased_terms_not_returned_again(self, session_factory, now):
        await add_term(session_factory, "acme", next_eligible_at=now)
        lease = TermLease(session_factory, LEASE, clock=lambda: now)

        first = await lease.acquire(5)
        second = await lease.acquire(5)

        assert len(first) == 1
        assert second == []

    @pytest.mark.asyncio
    async def test_lease_expires(self, session_factory, now):
        """An unreleased lease makes the term eligible again after the horizon."""
        await add_term(session_factory, "acme", next_eligible_at=now)
        await TermLease(session_factory, LEASE, clock=lambda: now).acquire(5)

        before_expiry = TermLease(session_factory, LEASE, clock=lambda: now + LEASE - timedelta(seconds=1))
        at_expiry = TermLease(session_factory, LEASE, clock=lambda: now + LEASE)

        assert await before_expiry.acquire(5) == []
        assert len(await at_expiry.acquire(5)) == 1

    @pytest.mark.asyncio
    async def test_limit_below_one_rejected(self, session_factory, now):
        lease = TermLease(session_factory, LEASE, clock=lambda: now)
        with pytest.raises(ValueError):
            await lease.acquire(0)


class TestConcurrentAcquire:
    """No double-lease across concurrent callers."""

    @pytest.mark.asyncio
    async def test_concurrent_batches_are_disjoint(self, session_factory, now):
        for i in range(12):
            await add_term(session_factory, f"term-{i}", next_eligible_at=now - timedelta(minutes=i))

        # Separate TermLease objects, like separate worker processes
        leases = [TermLease(session_factory, LEASE, clock=lambda: now) for _ in range(4)]
        batches = await asyncio.gather(*(lease.acquire(5) for lease in leases))

        ids = [term.id for batch in batches for term in batch]
        assert len(ids) == len(set(ids)), "a term was leased twice"
        assert len(ids) == 12

    @pytest.mark.asyncio
    async def test_repeated_concurrent_rounds_stay_disjoint(self, session_factory, now):
        for i in range(6):
            await add_term(session_factory, f"term-{i}", next_eligible_at=now)

        seen = []
        for _ in range(3):
            leases = [TermLease(session_factory, LEASE, clock=lambda: now) for _ in range(3)]
            batches = await asyncio.gather(*(lease.acquire(2) for lease in leases))
            seen.extend(term.id for batch in batches for term in batch)

        assert len(seen) == len(set(seen)) == 6


class TestRelease:
    """TermLease.release()"""

    @pytest.mark.asyncio
    async def test_release_schedules_next_scan(self, session_factory, now):
        term = await add_term(session_factory, "acme", next_eligible_at=now)
        lease = TermLease(session_factory, LEASE, clock=lambda: now)
        [leased] = await lease.acquire(1)

        scanned_at = now + timedelta(seconds=5)
        assert await lease.release(leased, scanned_at, timedelta(hours=1))

        stored = await get_term(session_factory, term.id)
        assert stored.next_eligible_at == scanned_at + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_release_after_lease_was_retaken_is_ignored(self, session_factory, now):
        term = await add_term(session_factory, "acme", next_eligible_at=now)
        [stale] = await TermLease(session_factory, LEASE, clock=lambda: now).acquire(1)

        later = now + LEASE
        [fresh] = await TermLease(session_factory, LEASE, clock=lambda: later).acquire(1)

        released = await TermLease(session_factory, LEASE).release(stale, now, timedelta(hours=1))

        assert not released
        stored = await get_term(session_factory, term.id)
        assert stored.next_eligible_at == fresh.lease_expires_at
