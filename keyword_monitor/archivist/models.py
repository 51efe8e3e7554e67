"""
Database models using SQLModel (SQLAlchemy + Pydantic).

Schema:
- Term: A tracked search phrase owned by a tenant
- Mention: A discovered Reddit post matching a term (unique per source URL)

Terms are created and deleted by the term-management API. This subsystem
only writes the scheduling fields (next_eligible_at, last_scanned_at).
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, Index
from sqlmodel import SQLModel, Field


def utc_now_naive() -> datetime:
    """Return current UTC time as timezone-naive datetime.

    PostgreSQL TIMESTAMP WITHOUT TIME ZONE columns require naive datetimes.
    Using timezone-aware datetimes causes asyncpg DataError.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Max stored length of mention content (title + body)
CONTENT_SNIPPET_MAX_LENGTH = 500


class Term(SQLModel, table=True):
    """A tracked search keyword."""
    __tablename__ = "terms"
    __table_args__ = (
        # Lease query: WHERE is_active AND next_eligible_at <= now ORDER BY next_eligible_at
        Index("ix_terms_active_next_eligible", "is_active", "next_eligible_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True, max_length=64)
    text: str = Field(max_length=255)
    is_active: bool = Field(default=True)

    # Scheduling state. All timestamps are naive UTC (TIMESTAMP WITHOUT TIME ZONE)
    last_scanned_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=False), nullable=True)
    )  # Last successful scan completion
    next_eligible_at: datetime = Field(
        default_factory=utc_now_naive, sa_column=Column(DateTime(timezone=False), nullable=False)
    )  # Lease horizon / due time

    created_at: datetime = Field(
        default_factory=utc_now_naive, sa_column=Column(DateTime(timezone=False), nullable=False)
    )


class Mention(SQLModel, table=True):
    """A deduplicated Reddit post that matched a term."""
    __tablename__ = "mentions"

    id: Optional[int] = Field(default=None, primary_key=True)

    # Canonical permalink - the natural key. Unique constraint is what makes
    # ON CONFLICT DO NOTHING dedup safe across concurrent workers.
    source_url: str = Field(unique=True, index=True, max_length=500)

    content_snippet: str = Field(default="", max_length=CONTENT_SNIPPET_MAX_LENGTH)
    author: Optional[str] = Field(default=None, max_length=100)
    community: Optional[str] = Field(default=None, max_length=100)  # subreddit
    sentiment: str = Field(default="UNKNOWN", max_length=20)
    # Post creation time on Reddit, not ingestion time
    found_at: datetime = Field(sa_column=Column(DateTime(timezone=False), nullable=False))

    tenant_id: str = Field(index=True, max_length=64)
    term_id: int = Field(foreign_key="terms.id", index=True)

    created_at: datetime = Field(
        default_factory=utc_now_naive, sa_column=Column(DateTime(timezone=False), nullable=False)
    )


@dataclass(frozen=True)
class LeasedTerm:
    """Snapshot of a term taken when it was leased by a worker."""
    id: int
    tenant_id: str
    text: str
    last_scanned_at: Optional[datetime]
    eligible_at: datetime  # next_eligible_at before the lease was taken
    lease_expires_at: datetime

    @property
    def previously_scanned(self) -> bool:
        return self.last_scanned_at is not None
