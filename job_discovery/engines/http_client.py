"""Shared HTTP client factory for consistent HTTP behavior across source adapters.

This module provides a centralized way to create and configure httpx.AsyncClient
instances, ensuring consistent timeouts, headers, and settings across adapters.

Usage:
    from job_discovery.engines.http_client import create_http_client

    async with create_http_client(json_accept=True) as client:
        response = await client.get("https://remoteok.com/api")
"""

from typing import Optional

import httpx

from job_discovery.config import get_settings

settings = get_settings()


def get_default_headers(
    user_agent: Optional[str] = None,
    accept: str = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    json_accept: bool = False,
) -> dict[str, str]:
    """
    Get default headers for HTTP requests.

    Args:
        user_agent: Custom user agent string. Defaults to settings.source_user_agent.
        accept: Accept header value. Defaults to HTML/XML preference.
        json_accept: If True, sets Accept header for JSON responses.

    Returns:
        Dictionary of HTTP headers.
    """
    if json_accept:
        accept = "application/json"

    return {
        "User-Agent": user_agent or settings.source_user_agent,
        "Accept": accept,
        "Accept-Language": "en-US,en;q=0.5",
    }


def create_http_client(
    timeout: Optional[float] = None,
    follow_redirects: bool = True,
    user_agent: Optional[str] = None,
    json_accept: bool = False,
    headers: Optional[dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create a configured httpx.AsyncClient with consistent defaults.

    Args:
        timeout: Request timeout in seconds. Defaults to settings.source_timeout_seconds.
        follow_redirects: Whether to follow HTTP redirects. Default True.
        user_agent: Custom user agent string.
        json_accept: If True, sets Accept header for JSON responses.
        headers: Additional headers to merge with defaults.
        transport: Optional transport override (used to stub sources).

    Returns:
        Configured httpx.AsyncClient instance.
    """
    default_timeout = timeout if timeout is not None else settings.source_timeout_seconds
    default_headers = get_default_headers(
        user_agent=user_agent,
        json_accept=json_accept,
    )

    if headers:
        default_headers.update(headers)

    return httpx.AsyncClient(
        timeout=default_timeout,
        follow_redirects=follow_redirects,
        headers=default_headers,
        transport=transport,
    )


class ManagedHttpClient:
    """
    A managed HTTP client that can be lazily initialized and reused.

    Adapters hold one of these so a single client serves every call an
    adapter makes, and is closed when the registry shuts down.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        json_accept: bool = False,
        user_agent: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout
        self._json_accept = json_accept
        self._user_agent = user_agent
        self._headers = headers
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = create_http_client(
                timeout=self._timeout,
                json_accept=self._json_accept,
                user_agent=self._user_agent,
                headers=self._headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if it exists."""
        if self._client:
            await self._client.aclose()
            self._client = None
