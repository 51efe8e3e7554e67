"""
Shared HTTP Client Configuration.

Provides standardized HTTP client creation and the User-Agent for all
outbound API calls. Reddit rejects requests with generic user agents, so
every client must identify the bot.

Usage:
    from keyword_monitor.common.http_client import create_api_client

    async with create_api_client() as client:
        response = await client.get(url)
"""

import httpx
from typing import Optional

from ..config.settings import settings


def create_api_client(
    user_agent: Optional[str] = None,
    timeout: Optional[float] = None,
    max_connections: int = 10,
    max_keepalive: int = 5,
    extra_headers: Optional[dict] = None,
) -> httpx.AsyncClient:
    """
    Create a standardized async HTTP client for API calls.

    Args:
        user_agent: User-Agent string (default: settings.reddit_user_agent)
        timeout: Request timeout in seconds (default: settings.reddit_request_timeout)
        max_connections: Maximum concurrent connections
        max_keepalive: Maximum keepalive connections
        extra_headers: Additional headers to include

    Returns:
        Configured httpx.AsyncClient
    """
    headers = {
        "User-Agent": user_agent or settings.reddit_user_agent,
        "Accept": "application/json",
    }
    if extra_headers:
        headers.update(extra_headers)

    return httpx.AsyncClient(
        timeout=timeout or settings.reddit_request_timeout,
        headers=headers,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive,
        ),
    )
