from __future__ import annotations

import asyncio

import httpx
import pytest

from core import async_http, cache
from core.async_http import FetchError, fetch, fetch_json


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_fetch_passes_params_and_returns_text():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, text="ok")

    async def scenario():
        async with _client(handler) as client:
            return await fetch("https://wiki.test/api.php", params={"action": "parse"}, client=client)

    assert asyncio.run(scenario()) == "ok"
    assert seen["params"] == {"action": "parse"}


def test_fetch_retries_then_succeeds():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, text="finally")

    async def scenario():
        async with _client(handler) as client:
            return await fetch("https://wiki.test/", client=client, retries=3, backoff=0)

    assert asyncio.run(scenario()) == "finally"
    assert calls["n"] == 3


def test_fetch_raises_fetch_error_after_retries():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    async def scenario():
        async with _client(handler) as client:
            await fetch("https://wiki.test/", client=client, retries=1, backoff=0)

    with pytest.raises(FetchError):
        asyncio.run(scenario())


def test_fetch_json_rejects_non_json():
    async def scenario():
        async with _client(lambda r: httpx.Response(200, text="<html>")) as client:
            await fetch_json("https://wiki.test/", client=client, retries=0)

    with pytest.raises(FetchError):
        asyncio.run(scenario())


def test_fetch_uses_cache(tmp_path, monkeypatch):
    monkeypatch.setattr(cache, "CACHE_DIR", str(tmp_path / "_cache"))
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(200, text="cached body")

    async def scenario():
        async with _client(handler) as client:
            first = await fetch("https://wiki.test/", params={"a": "1"}, client=client, use_cache=True)
            second = await fetch("https://wiki.test/", params={"a": "1"}, client=client, use_cache=True)
            return first, second

    assert asyncio.run(scenario()) == ("cached body", "cached body")
    assert calls["n"] == 1


def test_cache_key_ignores_param_order():
    assert cache.cache_key("u", {"a": "1", "b": "2"}) == cache.cache_key("u", {"b": "2", "a": "1"})
    assert cache.cache_key("u", {"a": "1"}) != cache.cache_key("u", {"a": "2"})


def test_default_client_sends_user_agent():
    client = async_http.make_client()
    try:
        assert client.headers["User-Agent"] == "KittyScape Loot Bot/1.0"
    finally:
        asyncio.run(client.aclose())
