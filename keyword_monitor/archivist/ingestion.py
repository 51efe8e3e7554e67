"""
Mention ingestion: deduplicate discovered posts and persist them in one batch.

Dedup happens at three levels:
1. Within the batch (the same permalink returned twice)
2. Against the database with a single IN (...) lookup
3. ON CONFLICT (source_url) DO NOTHING on insert - catches anything that
   slipped between the lookup and the insert (concurrent workers)

A duplicate is never an error; it is simply not inserted.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..analyst.sentiment import classify
from ..common.reddit_client import RawItem
from ..common.url_utils import canonical_source_url
from .models import CONTENT_SNIPPET_MAX_LENGTH, LeasedTerm, Mention, Term, utc_now_naive

logger = logging.getLogger(__name__)


def build_content(title: Optional[str], body: Optional[str]) -> str:
    """Join title and body, skipping empty parts."""
    return " ".join(part for part in (title, body) if part)


def truncate_snippet(content: str, max_length: int = CONTENT_SNIPPET_MAX_LENGTH) -> str:
    return content[:max_length]


def build_mention_record(term: LeasedTerm, item: RawItem, source_url: str, now: datetime) -> dict:
    """Build the insert values for one mention."""
    content = build_content(item.title, item.body)
    return {
        "source_url": source_url,
        "content_snippet": truncate_snippet(content),
        "author": item.author,
        "community": item.community,
        "sentiment": classify(content).value,
        "found_at": item.created_at,
        "tenant_id": term.tenant_id,
        "term_id": term.id,
        "created_at": now,
    }


def _insert_ignoring_duplicates(session: AsyncSession, records: List[dict]):
    """INSERT ... ON CONFLICT (source_url) DO NOTHING RETURNING for the session's dialect."""
    dialect = session.get_bind().dialect.name
    insert = sqlite_insert if dialect == "sqlite" else pg_insert
    return (
        insert(Mention)
        .values(records)
        .on_conflict_do_nothing(index_elements=["source_url"])
        .returning(Mention)
    )


async def ingest_mentions(
    session: AsyncSession,
    term: LeasedTerm,
    items: List[RawItem],
    now: Optional[datetime] = None,
) -> List[Mention]:
    """
    Persist new mentions for a term and mark the term as scanned.

    Args:
        session: Open session; the caller owns the transaction
        term: Leased term the items were found for
        items: Raw search results
        now: Scan completion time (defaults to current UTC)

    Returns:
        Mentions actually inserted by this call (duplicates excluded)
    """
    now = now or utc_now_naive()

    # Canonicalise and drop in-batch duplicates (first occurrence wins)
    by_url: Dict[str, RawItem] = {}
    for item in items:
        try:
            source_url = canonical_source_url(item.permalink)
        except ValueError:
            logger.debug(f"Skipping result without permalink for term {term.id}")
            continue
        by_url.setdefault(source_url, item)

    inserted: List[Mention] = []
    if by_url:
        result = await session.execute(
            select(Mention.source_url).where(Mention.source_url.in_(list(by_url)))
        )
        existing = set(result.scalars().all())

        records = [
            build_mention_record(term, item, source_url, now)
            for source_url, item in by_url.items()
            if source_url not in existing
        ]

        if records:
            result = await session.execute(_insert_ignoring_duplicates(session, records))
            inserted = list(result.scalars().all())

            raced = len(records) - len(inserted)
            if raced:
                logger.warning(
                    f"{raced} mention(s) for term {term.id} were inserted concurrently; skipped"
                )

        logger.debug(
            f"Term {term.id} ('{term.text}'): {len(items)} results, "
            f"{len(existing)} already stored, {len(inserted)} new"
        )

    await session.execute(
        update(Term)
        .where(Term.id == term.id)
        .values(last_scanned_at=now)
        .execution_options(synchronize_session=False)
    )

    return inserted
