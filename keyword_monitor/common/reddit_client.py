"""
Reddit API client for keyword search.

Provides:
- TokenProvider: cached client-credentials access token with single-flight refresh
- RedditSearchClient: one timeout-bounded search request per term

The search client never retries. A failed term is reported to the caller via
RedditSearchError; retry policy belongs to the worker loop (the term's lease
simply expires and it becomes eligible again).
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..config.settings import MIN_TOKEN_SAFETY_MARGIN, Settings, settings as default_settings
from .http_client import create_api_client

logger = logging.getLogger(__name__)


class RedditAuthError(Exception):
    """Raised when Reddit credentials are missing or the token exchange fails."""
    pass


class RedditSearchError(Exception):
    """Raised when a single search request fails (network, timeout, non-2xx, bad payload)."""
    pass


@dataclass
class AccessToken:
    value: str
    expires_at: float  # epoch seconds

    def is_valid(self, now: float, safety_margin: float) -> bool:
        return self.expires_at - now > safety_margin


@dataclass
class RawItem:
    """A search hit as returned by the Reddit API."""
    permalink: str
    title: str = ""
    body: str = ""
    author: Optional[str] = None
    community: Optional[str] = None
    created_utc: float = 0.0

    @property
    def created_at(self) -> datetime:
        """Post creation time as naive UTC datetime."""
        return datetime.fromtimestamp(self.created_utc, tz=timezone.utc).replace(tzinfo=None)

    @classmethod
    def from_listing_child(cls, child: Dict[str, Any]) -> "RawItem":
        data = child.get("data") or {}
        permalink = data.get("permalink")
        if not permalink:
            raise RedditSearchError("search result without permalink")
        return cls(
            permalink=permalink,
            title=data.get("title") or "",
            body=data.get("selftext") or "",
            author=data.get("author"),
            community=data.get("subreddit"),
            created_utc=float(data.get("created_utc") or 0),
        )


class TokenProvider:
    """
    Process-wide access token cache.

    get_token() returns the cached token while it is valid beyond the safety
    margin. Otherwise one exchange is performed; concurrent callers wait on
    the same lock and reuse the refreshed token instead of exchanging again.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str,
        safety_margin: float = MIN_TOKEN_SAFETY_MARGIN,
        user_agent: str = default_settings.reddit_user_agent,
        timeout: float = default_settings.reddit_request_timeout,
        clock: Callable[[], float] = time.time,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not client_id or not client_secret:
            raise RedditAuthError(
                "Reddit API credentials (REDDIT_CLIENT_ID, REDDIT_CLIENT_SECRET) are missing"
            )
        if safety_margin < MIN_TOKEN_SAFETY_MARGIN:
            raise ValueError(f"safety_margin must be >= {MIN_TOKEN_SAFETY_MARGIN}s, got {safety_margin}")
        self._client_id = client_id
        self._client_secret = client_secret
        self.token_url = token_url
        self.safety_margin = safety_margin
        self.user_agent = user_agent
        self.timeout = timeout
        self._clock = clock
        self._client = http_client
        self._token: Optional[AccessToken] = None
        self._lock = asyncio.Lock()
        self.exchange_count = 0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "TokenProvider":
        settings = settings or default_settings
        return cls(
            client_id=settings.reddit_client_id,
            client_secret=settings.reddit_client_secret,
            token_url=settings.reddit_token_url,
            safety_margin=settings.token_safety_margin,
            user_agent=settings.reddit_user_agent,
            timeout=settings.reddit_request_timeout,
            **kwargs,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = create_api_client(user_agent=self.user_agent, timeout=self.timeout)
        return self._client

    def _cached(self) -> Optional[str]:
        if self._token and self._token.is_valid(self._clock(), self.safety_margin):
            return self._token.value
        return None

    async def get_token(self) -> str:
        token = self._cached()
        if token:
            return token

        async with self._lock:
            # Another caller may have refreshed while we waited
            token = self._cached()
            if token:
                return token
            return await self._exchange()

    def invalidate(self) -> None:
        """Drop the cached token so the next call exchanges again."""
        self._token = None

    async def _exchange(self) -> str:
        logger.info("Refreshing Reddit API token...")
        self.exchange_count += 1
        client = self._get_client()

        try:
            response = await client.post(
                self.token_url,
                data={"grant_type": "client_credentials"},
                auth=(self._client_id, self._client_secret),
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise RedditAuthError(
                f"Reddit token exchange rejected: HTTP {e.response.status_code}"
            ) from e
        except (httpx.RequestError, ValueError) as e:
            raise RedditAuthError(f"Reddit token exchange failed: {e}") from e

        if not isinstance(payload, dict):
            raise RedditAuthError("Reddit token response is not a JSON object")

        value = payload.get("access_token")
        if not value:
            raise RedditAuthError(f"Reddit token response without access_token: {payload.get('error')}")

        try:
            expires_in = float(payload.get("expires_in") or 0)
        except (TypeError, ValueError) as e:
            raise RedditAuthError(f"Reddit token response with invalid expires_in: {e}") from e

        self._token = AccessToken(value=value, expires_at=self._clock() + expires_in)
        logger.info(f"Reddit API token refreshed successfully (expires in {expires_in:.0f}s)")
        return value

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class RedditSearchClient:
    """Async client for the Reddit search endpoint."""

    def __init__(
        self,
        token_provider: TokenProvider,
        search_url: str = default_settings.reddit_search_url,
        timeout: float = default_settings.reddit_request_timeout,
        user_agent: str = default_settings.reddit_user_agent,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.token_provider = token_provider
        self.search_url = search_url
        self.timeout = timeout
        self.user_agent = user_agent
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = create_api_client(user_agent=self.user_agent, timeout=self.timeout)
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def search(self, term_text: str, window: str, limit: int) -> List[RawItem]:
        """
        Search Reddit for an exact phrase, newest first.

        Args:
            term_text: Literal search phrase (sent quoted)
            window: Time window token - "day", "week" or "month"
            limit: Max number of results

        Raises:
            RedditSearchError: transport error, timeout, non-2xx, malformed JSON
            RedditAuthError: token could not be obtained
        """
        token = await self.token_provider.get_token()
        client = await self._get_client()

        params = {
            "q": f'"{term_text}"',
            "sort": "new",
            "limit": limit,
            "t": window,
        }

        try:
            response = await client.get(
                self.search_url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise RedditSearchError(f"search timed out after {self.timeout}s") from e
        except httpx.RequestError as e:
            raise RedditSearchError(f"network error: {e}") from e

        if response.status_code == 401:
            # Token revoked early - force a fresh exchange next time
            self.token_provider.invalidate()

        if response.status_code >= 400:
            raise RedditSearchError(f"search returned HTTP {response.status_code}")

        try:
            payload = response.json()
            children = (payload.get("data") or {}).get("children") or []
        except (ValueError, AttributeError) as e:
            raise RedditSearchError(f"malformed search response: {e}") from e

        items = []
        for child in children:
            try:
                items.append(RawItem.from_listing_child(child))
            except (RedditSearchError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed search result for '{term_text}': {e}")
        return items


def choose_window(last_scanned_at: Optional[datetime], first_scan_window: str, rescan_window: str) -> str:
    """Narrow window for terms scanned before, wider one on first scan."""
    return rescan_window if last_scanned_at is not None else first_scan_window


# Process-wide client (shares one token cache between worker tasks)
_search_client: Optional[RedditSearchClient] = None


def get_search_client(settings: Optional[Settings] = None) -> RedditSearchClient:
    """Get the shared search client, creating it on first use.

    Raises:
        RedditAuthError: credentials are not configured
    """
    global _search_client
    if _search_client is None:
        settings = settings or default_settings
        _search_client = RedditSearchClient(
            TokenProvider.from_settings(settings),
            search_url=settings.reddit_search_url,
            timeout=settings.reddit_request_timeout,
            user_agent=settings.reddit_user_agent,
        )
    return _search_client


async def close_search_client():
    """Close the shared search client."""
    global _search_client
    if _search_client is not None:
        await _search_client.close()
        await _search_client.token_provider.close()
        _search_client = None
