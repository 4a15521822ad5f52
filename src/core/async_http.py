"""Async HTTP utilities using httpx with optional caching."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Optional

import httpx

from config import settings
from . import cache

_log = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """Network, HTTP status or envelope decoding failure."""


def make_client(**kwargs: Any) -> httpx.AsyncClient:
    headers = {"User-Agent": settings.DEFAULT_USER_AGENT}
    return httpx.AsyncClient(headers=headers, timeout=settings.DEFAULT_TIMEOUT, **kwargs)


async def fetch(
    url: str,
    *,
    params: Optional[Mapping[str, str]] = None,
    client: Optional[httpx.AsyncClient] = None,
    retries: int | None = None,
    backoff: float | None = None,
    use_cache: bool = False,
    cache_ttl: int = settings.CACHE_TTL,
) -> str:
    retries = retries if retries is not None else settings.DEFAULT_RETRIES
    backoff = backoff if backoff is not None else settings.DEFAULT_BACKOFF_FACTOR
    key = cache.cache_key(url, params)
    if use_cache:
        cached = cache.get(key, ttl=cache_ttl)
        if cached is not None:
            _log.debug("Cache hit for %s", url)
            return cached
    close_client = False
    if client is None:
        client = make_client()
        close_client = True
    try:
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = await client.get(url, params=params)
                resp.raise_for_status()
                text = resp.text
                _log.info("GET %s -> %s (%d bytes)", url, resp.status_code, len(text))
                if use_cache:
                    cache.put(key, text)
                return text
            except httpx.HTTPError as e:
                if attempt > retries:
                    raise FetchError(f"Failed to fetch {url} after {retries} retries: {e}") from e
                sleep_for = backoff * (2 ** (attempt - 1))
                _log.warning(
                    "Attempt %d/%d failed for %s: %s. Retrying in %.1fs",
                    attempt,
                    retries,
                    url,
                    e,
                    sleep_for,
                )
                await asyncio.sleep(sleep_for)
    finally:
        if close_client:
            await client.aclose()


async def fetch_json(url: str, **kwargs: Any) -> dict:
    """Fetch and decode a JSON object; anything else is a FetchError."""
    text = await fetch(url, **kwargs)
    try:
        payload = json.loads(text)
    except ValueError as e:
        raise FetchError(f"Response from {url} is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise FetchError(f"Response from {url} is not a JSON object")
    return payload
