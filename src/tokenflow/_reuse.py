"""Token sources: static, caching/refreshing and request binding.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Generator
from datetime import timedelta
from typing import Protocol, runtime_checkable

import httpx

from .exceptions import ConfigurationError
from .models.token_models import Token

logger = logging.getLogger(__name__)


@runtime_checkable
class TokenSource(Protocol):
    """Anything that can produce a token on demand."""

    async def token(self) -> Token:
        """Return a token, fetching a new one if needed."""
        ...


class StaticTokenSource:
    """Always returns the same token, even once it has expired."""

    def __init__(self, token: Token) -> None:
        self._token = token

    async def token(self) -> Token:
        return self._token


class ReuseTokenSource:
    """Cache a token and refresh it from an underlying source when stale.

    Refreshes are single-flight: concurrent callers that find the cache
    stale wait for one underlying call. Failures are returned to the caller
    and never cached.
    """

    def __init__(
        self,
        token: Token | None,
        source: TokenSource,
        early_expiry: timedelta | None = None,
    ) -> None:
        """Initialize the caching source.

        Args:
            token: Initial token, may be None or already expired
            source: Source asked for a new token when the cache is stale
            early_expiry: Overrides the token's expiry delta when set

        """
        self._source = source
        self._early_expiry = early_expiry
        self._lock = asyncio.Lock()
        self._token = self._with_delta(token) if token is not None else None

    def _with_delta(self, token: Token) -> Token:
        if self._early_expiry is None:
            return token
        return token.model_copy(update={"expiry_delta": self._early_expiry})

    async def token(self) -> Token:
        """Return the cached token, refreshing it first if it is no longer valid."""
        async with self._lock:
            if self._token is not None and self._token.valid:
                return self._token
            logger.debug("Cached token missing or stale, fetching a new one")
            token = self._with_delta(await self._source.token())
            self._token = token
            return token


def reuse_token_source(token: Token | None, source: TokenSource) -> TokenSource:
    """Wrap ``source`` in a caching source seeded with ``token``.

    A ``ReuseTokenSource`` is never wrapped again. Without a seed token it
    is returned unchanged; with one, a new cache over its underlying source
    is returned.
    """
    if isinstance(source, ReuseTokenSource):
        if token is None:
            return source
        return ReuseTokenSource(token, source._source, source._early_expiry)
    return ReuseTokenSource(token, source)


class TokenAuth(httpx.Auth):
    """httpx authentication that sets the Authorization header from a token source."""

    def __init__(self, source: TokenSource) -> None:
        self._source = source

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise ConfigurationError("TokenAuth can only be used with httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self._source.token()
        token.set_auth_header(request)
        yield request
