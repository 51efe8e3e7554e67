"""
Common utilities and shared modules.
"""

from .reddit_client import (
    RawItem,
    RedditAuthError,
    RedditSearchClient,
    RedditSearchError,
    TokenProvider,
    choose_window,
    get_search_client,
    close_search_client,
)

from .http_client import create_api_client
from .url_utils import canonical_source_url

__all__ = [
    # Reddit client
    "RawItem",
    "RedditAuthError",
    "RedditSearchClient",
    "RedditSearchError",
    "TokenProvider",
    "choose_window",
    "get_search_client",
    "close_search_client",
    # HTTP / URL utilities
    "create_api_client",
    "canonical_source_url",
]
