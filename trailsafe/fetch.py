"""Shared async HTTP plumbing: client construction and settle-all fan-out."""

import asyncio
import logging
from typing import Callable, Iterable, Optional

import httpx

import config

logger = logging.getLogger(__name__)


def build_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """
    Create the AsyncClient used for every upstream call in one request.

    Args:
        transport: Optional transport override (tests pass httpx.MockTransport).

    Returns:
        An httpx.AsyncClient with a fixed per-call timeout and identifying headers.
        There is no retry layer; a failed call becomes an unavailable feed.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.REQUEST_TIMEOUT_SECONDS),
        follow_redirects=True,
        headers={"User-Agent": config.USER_AGENT, "Accept": "application/geo+json, application/json, */*"},
        transport=transport,
    )


async def fetch_json(client: httpx.AsyncClient, url: str, params: Optional[dict] = None):
    response = await client.get(url, params=params)
    response.raise_for_status()
    return response.json()


async def fetch_text(client: httpx.AsyncClient, url: str, params: Optional[dict] = None) -> str:
    response = await client.get(url, params=params, headers={"Accept": "text/html, application/json, */*"})
    response.raise_for_status()
    return response.text


async def settle_all(*awaitables) -> list:
    """
    Await every awaitable concurrently and return results in order.

    A failure never cancels its siblings; the exception object takes the
    failed call's slot so the caller can degrade that feed on its own.
    """
    results = await asyncio.gather(*awaitables, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.debug("settled with failure: %r", result)
    return list(results)


def best_of(results: Iterable, key: Callable, accept: Optional[Callable] = None):
    """Pick the highest-keyed non-failed result, or None when nothing qualifies."""
    best = None
    best_key = None
    for result in results:
        if result is None or isinstance(result, BaseException):
            continue
        if accept is not None and not accept(result):
            continue
        k = key(result)
        if best is None or k > best_key:
            best, best_key = result, k
    return best
