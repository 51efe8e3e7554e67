"""
Shared URL canonicalisation for mention deduplication.

The canonical source URL is the natural key of a Mention, so every code path
that stores or looks up mentions must build it with canonical_source_url().
"""

import logging
from urllib.parse import urlparse, urlunparse

logger = logging.getLogger(__name__)

REDDIT_BASE_URL = "https://reddit.com"

# Hosts that serve the same Reddit permalink
REDDIT_HOST_ALIASES = {
    "reddit.com", "www.reddit.com", "old.reddit.com", "new.reddit.com",
    "np.reddit.com", "oauth.reddit.com",
}


def canonical_source_url(permalink: str) -> str:
    """
    Build the canonical URL for a Reddit permalink.

    Accepts the relative permalink the API returns or an absolute URL.
    Query string, fragment and trailing slash are dropped and every Reddit
    host alias collapses to reddit.com.

    Examples:
        >>> canonical_source_url("/r/python/comments/abc123/title/")
        'https://reddit.com/r/python/comments/abc123/title'
        >>> canonical_source_url("https://www.reddit.com/r/python/comments/abc123/title/?utm_source=share")
        'https://reddit.com/r/python/comments/abc123/title'
    """
    if not permalink or not permalink.strip():
        raise ValueError("permalink is empty")

    permalink = permalink.strip()
    parsed = urlparse(permalink)

    if parsed.netloc:
        host = parsed.netloc.lower()
        if host in REDDIT_HOST_ALIASES:
            scheme, host = "https", "reddit.com"
        else:
            scheme = parsed.scheme.lower() or "https"
    else:
        scheme, host = "https", "reddit.com"

    path = parsed.path
    if not path.startswith("/"):
        path = "/" + path
    path = path.rstrip("/") or "/"

    return urlunparse((scheme, host, path, "", "", ""))
