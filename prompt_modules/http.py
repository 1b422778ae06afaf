"""Async HTTP helpers shared by the content cache and network prompt sources."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from .errors import NetworkFailureError
from .errors import NotFoundError
from .errors import RateLimitedError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@asynccontextmanager
async def http_client(
    client: httpx.AsyncClient | None = None,
    *,
    timeout: float = DEFAULT_TIMEOUT,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the caller's client, or a short-lived one closed on exit.

    Args:
        client: Client owned by the caller (left open)
        timeout: Request timeout in seconds for a newly created client
    """
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout), follow_redirects=True) as new_client:
        yield new_client


def _mentions_rate_limit(response: httpx.Response) -> bool:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        text = body["message"]
    else:
        text = response.text
    return "rate limit" in text.lower()


def raise_for_response(response: httpx.Response) -> None:
    """Map a non-2xx response onto the error taxonomy.

    Raises:
        NotFoundError: HTTP 404
        RateLimitedError: HTTP 403 whose body mentions rate limiting
        NetworkFailureError: Any other non-2xx status
    """
    if response.is_success:
        return

    url = str(response.request.url)
    status = response.status_code
    if status == 404:
        raise NotFoundError(f"Not found: {url} (HTTP 404)")
    if status == 403 and _mentions_rate_limit(response):
        raise RateLimitedError(f"Rate limit exceeded: {url} (HTTP 403)")
    raise NetworkFailureError(f"HTTP {status} {response.reason_phrase} for {url}", status_code=status)


async def send(
    url: str,
    *,
    headers: dict[str, str] | None = None,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> httpx.Response:
    """Issue a GET request without checking the status code.

    Raises:
        NetworkFailureError: Transport-level failure (DNS, connection, timeout)
    """
    logger.debug(f"GET {url}")
    async with http_client(client, timeout=timeout) as active:
        try:
            response = await active.get(url, headers=headers or {})
            # Read the body before a short-lived client is closed
            await response.aread()
            return response
        except httpx.TransportError as e:
            raise NetworkFailureError(f"Request to {url} failed: {e}") from e


async def fetch(
    url: str,
    *,
    headers: dict[str, str] | None = None,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> httpx.Response:
    """GET ``url`` and raise for any non-2xx response."""
    response = await send(url, headers=headers, client=client, timeout=timeout)
    raise_for_response(response)
    return response
