"""Tests for token caching and request authorization.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import pytest

from tokenflow import ReuseTokenSource, StaticTokenSource, TokenAuth, reuse_token_source
from tokenflow.exceptions import ConfigurationError, NetworkError
from tokenflow.models.token_models import Token, utcnow


class CountingSource:
    """Returns numbered tokens after yielding to the event loop."""

    def __init__(self, lifetime: timedelta = timedelta(hours=1)) -> None:
        self.calls = 0
        self.lifetime = lifetime
        self.failures: list[Exception] = []

    async def token(self) -> Token:
        self.calls += 1
        await asyncio.sleep(0.01)
        if self.failures:
            raise self.failures.pop(0)
        return Token(access_token=f"token-{self.calls}", expiry=utcnow() + self.lifetime)


async def test_concurrent_callers_share_one_refresh() -> None:
    """Many callers hitting an empty cache trigger a single upstream call."""
    upstream = CountingSource()
    source = ReuseTokenSource(None, upstream)

    tokens = await asyncio.gather(*(source.token() for _ in range(10)))

    assert upstream.calls == 1
    assert {token.access_token for token in tokens} == {"token-1"}


async def test_failures_are_not_cached() -> None:
    upstream = CountingSource()
    upstream.failures.append(NetworkError("connection reset"))
    source = ReuseTokenSource(None, upstream)

    with pytest.raises(NetworkError):
        await source.token()
    assert (await source.token()).access_token == "token-2"


async def test_valid_initial_token_is_used() -> None:
    upstream = CountingSource()
    initial = Token(access_token="seed", expiry=utcnow() + timedelta(minutes=5))

    assert await ReuseTokenSource(initial, upstream).token() is initial
    assert upstream.calls == 0


async def test_early_expiry_overrides_delta() -> None:
    """A wider early-expiry window refreshes tokens that are still nominally valid."""
    upstream = CountingSource(lifetime=timedelta(minutes=2))
    source = ReuseTokenSource(None, upstream, early_expiry=timedelta(minutes=5))

    await source.token()
    await source.token()

    assert upstream.calls == 2


async def test_static_source_never_refreshes() -> None:
    expired = Token(access_token="old", expiry=utcnow() - timedelta(hours=1))
    assert await StaticTokenSource(expired).token() is expired


def test_reuse_token_source_does_not_double_wrap() -> None:
    inner = ReuseTokenSource(None, CountingSource())
    assert reuse_token_source(None, inner) is inner
    assert isinstance(reuse_token_source(None, CountingSource()), ReuseTokenSource)


async def test_reuse_token_source_reseeds_existing_cache() -> None:
    upstream = CountingSource()
    inner = ReuseTokenSource(None, upstream, early_expiry=timedelta(minutes=1))
    seed = Token(access_token="seeded", expiry=utcnow() + timedelta(hours=1))

    source = reuse_token_source(seed, inner)

    assert source is not inner
    assert isinstance(source, ReuseTokenSource)
    assert source._source is upstream
    token = await source.token()
    assert token.access_token == "seeded"
    assert token.expiry_delta == timedelta(minutes=1)
    assert upstream.calls == 0


async def test_token_auth_sets_header() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["Authorization"])
        return httpx.Response(200)

    auth = TokenAuth(StaticTokenSource(Token(access_token="abc", token_type="mac")))
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), auth=auth) as client:
        await client.get("https://api.tokenflow.test/")

    assert seen == ["MAC abc"]


def test_token_auth_rejects_sync_clients() -> None:
    auth = TokenAuth(StaticTokenSource(Token(access_token="abc")))
    transport = httpx.MockTransport(lambda request: httpx.Response(200))

    with httpx.Client(transport=transport, auth=auth) as client, pytest.raises(ConfigurationError):
        client.get("https://api.tokenflow.test/")
