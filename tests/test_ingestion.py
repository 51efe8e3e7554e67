"""
Tests for mention ingestion and deduplication.

Key property: ingesting the same source URL any number of times, in the same
or different batches, yields exactly one stored mention.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import false

from keyword_monitor.archivist.ingestion import (
    build_content,
    build_mention_record,
    ingest_mentions,
    truncate_snippet,
)
from keyword_monitor.archivist.models import LeasedTerm
from tests.test_helpers import add_term, all_mentions, get_term, make_item


def leased(term, now) -> LeasedTerm:
    return LeasedTerm(
        id=term.id,
        tenant_id=term.tenant_id,
        text=term.text,
        last_scanned_at=term.last_scanned_at,
        eligible_at=now,
        lease_expires_at=now + timedelta(hours=2),
    )


async def ingest(session_factory, term, items, now):
    async with session_factory() as session:
        async with session.begin():
            return await ingest_mentions(session, term, items, now=now)


class TestContentHelpers:

    def test_build_content_joins_title_and_body(self):
        assert build_content("Title", "Body text") == "Title Body text"

    def test_build_content_skips_empty_parts(self):
        assert build_content("Title", "") == "Title"
        assert build_content("", "Body") == "Body"
        assert build_content(None, None) == ""

    def test_truncate_snippet(self):
        assert truncate_snippet("x" * 600) == "x" * 500
        assert truncate_snippet("short") == "short"

    def test_build_mention_record(self, now):
        term = LeasedTerm(
            id=7, tenant_id="tenant-a", text="acme", last_scanned_at=None,
            eligible_at=now, lease_expires_at=now,
        )
        item = make_item("/r/python/comments/1/a/", title="Great", body="x" * 600, created_utc=1_700_000_000)

        record = build_mention_record(term, item, "https://reddit.com/r/python/comments/1/a", now)

        assert record["source_url"] == "https://reddit.com/r/python/comments/1/a"
        assert len(record["content_snippet"]) == 500
        assert record["content_snippet"].startswith("Great x")
        assert record["sentiment"] == "POSITIVE"
        assert record["author"] == "someone"
        assert record["community"] == "python"
        assert record["found_at"] == datetime(2023, 11, 14, 22, 13, 20)
        assert record["tenant_id"] == "tenant-a"
        assert record["term_id"] == 7
        assert record["created_at"] == now


class TestIngestMentions:

    @pytest.mark.asyncio
    async def test_inserts_new_mentions(self, session_factory, now):
        term = leased(await add_term(session_factory, "acme", tenant_id="tenant-a"), now)
        items = [
            make_item("/r/python/comments/1/a/", title="I love acme"),
            make_item("/r/python/comments/2/b/", title="acme is a problem"),
        ]

        created = await ingest(session_factory, term, items, now)

        assert len(created) == 2
        stored = await all_mentions(session_factory)
        assert [m.source_url for m in stored] == [
            "https://reddit.com/r/python/comments/1/a",
            "https://reddit.com/r/python/comments/2/b",
        ]
        assert [m.sentiment for m in stored] == ["POSITIVE", "NEGATIVE"]
        assert all(m.tenant_id == "tenant-a" and m.term_id == term.id for m in stored)

    @pytest.mark.asyncio
    async def test_same_url_in_two_batches_stored_once(self, session_factory, now):
        term = leased(await add_term(session_factory, "acme"), now)
        item = make_item("/r/python/comments/1/a/", title="acme")

        first = await ingest(session_factory, term, [item], now)
        second = await ingest(session_factory, term, [item], now + timedelta(hours=1))

        assert len(first) == 1
        assert second == []
        assert len(await all_mentions(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_duplicates_within_batch_stored_once(self, session_factory, now):
        term = leased(await add_term(session_factory, "acme"), now)
        items = [
            make_item("/r/python/comments/1/a/", title="first"),
            make_item("https://www.reddit.com/r/python/comments/1/a/?utm_source=share", title="second"),
        ]

        created = await ingest(session_factory, term, items, now)

        assert len(created) == 1
        assert created[0].content_snippet == "first"

    @pytest.mark.asyncio
    async def test_url_found_by_another_term_not_duplicated(self, session_factory, now):
        """Source URL is globally unique, across terms and tenants."""
        term_a = leased(await add_term(session_factory, "acme", tenant_id="a"), now)
        term_b = leased(await add_term(session_factory, "widgets", tenant_id="b"), now)
        item = make_item("/r/python/comments/1/a/", title="acme widgets")

        await ingest(session_factory, term_a, [item], now)
        created = await ingest(session_factory, term_b, [item], now)

        assert created == []
        [stored] = await all_mentions(session_factory)
        assert stored.tenant_id == "a"

    @pytest.mark.asyncio
    async def test_insert_race_absorbed_by_on_conflict(self, session_factory, now, monkeypatch):
        """A row inserted between the lookup and the insert is skipped silently."""
        from keyword_monitor.archivist import ingestion

        term = leased(await add_term(session_factory, "acme"), now)
        await ingest(session_factory, term, [make_item("/r/python/comments/1/a/")], now)

        real_select = ingestion.select

        def select_that_misses(*args, **kwargs):
            # Pretend the pre-insert lookup found nothing
            return real_select(*args, **kwargs).where(false())

        monkeypatch.setattr(ingestion, "select", select_that_misses)

        created = await ingest(
            session_factory, term,
            [make_item("/r/python/comments/1/a/"), make_item("/r/python/comments/2/b/")],
            now,
        )

        assert [m.source_url for m in created] == ["https://reddit.com/r/python/comments/2/b"]
        assert len(await all_mentions(session_factory)) == 2

    @pytest.mark.asyncio
    async def test_updates_last_scanned_at_even_without_items(self, session_factory, now):
        stored = await add_term(session_factory, "acme")
        term = leased(stored, now)

        created = await ingest(session_factory, term, [], now)

        assert created == []
        assert (await get_term(session_factory, stored.id)).last_scanned_at == now

    @pytest.mark.asyncio
    async def test_items_without_permalink_skipped(self, session_factory, now):
        term = leased(await add_term(session_factory, "acme"), now)

        created = await ingest(session_factory, term, [make_item("  "), make_item("/r/a/comments/9/x/")], now)

        assert [m.source_url for m in created] == ["https://reddit.com/r/a/comments/9/x"]
