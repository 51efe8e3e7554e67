"""Database models, term leasing and mention storage."""

from .models import Term, Mention, LeasedTerm
from .database import get_session, init_db, close_db, async_session_factory
from .ingestion import ingest_mentions
from .leases import TermLease

__all__ = [
    "Term",
    "Mention",
    "LeasedTerm",
    "get_session",
    "init_db",
    "close_db",
    "async_session_factory",
    "ingest_mentions",
    "TermLease",
]
