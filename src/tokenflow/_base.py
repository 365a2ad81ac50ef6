"""Base HTTP client shared by the token, STS and credential-source requests.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import json
import logging
from typing import Any, NamedTuple

import httpx

from . import _urlvalues
from ._tls import with_client_certificate
from .exceptions import (
    ConfigurationError,
    NetworkError,
    TimeoutError as TokenFlowTimeoutError,
    create_error_from_response,
)
from .models.oauth_models import TLSAuth

logger = logging.getLogger(__name__)

# HTTP Error Status Constants
HTTP_ERROR_THRESHOLD = 400

# Response bodies are truncated at this many bytes.
MAX_RESPONSE_BYTES = 1 << 20

DEFAULT_TIMEOUT = 30.0
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class RequestConfig(NamedTuple):
    """Configuration for HTTP requests."""

    form_data: _urlvalues.FormValues | None = None
    json_data: dict[str, Any] | None = None
    content: bytes | str | None = None
    headers: dict[str, str] | None = None
    params: dict[str, Any] | None = None


class RawResponse(NamedTuple):
    """Status, headers and (size-limited) body of a completed request."""

    status_code: int
    headers: httpx.Headers
    body: bytes

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    @property
    def ok(self) -> bool:
        return self.status_code < HTTP_ERROR_THRESHOLD


def resolve_http_client(http_client: Any) -> httpx.AsyncClient | None:
    """Validate a caller-supplied HTTP client.

    Args:
        http_client: ``None`` or an ``httpx.AsyncClient``

    Returns:
        The client unchanged.

    Raises:
        ConfigurationError: If the value is not an ``httpx.AsyncClient``.

    """
    if http_client is None or isinstance(http_client, httpx.AsyncClient):
        return http_client
    msg = f"http_client must be an httpx.AsyncClient, got {type(http_client).__name__}"
    raise ConfigurationError(msg)


class BaseClient:
    """Borrowed or owned ``httpx.AsyncClient`` used for one logical operation.

    A caller-supplied client is borrowed and left open. When no client is
    supplied, or when a client certificate has to be attached, a new client is
    created and closed on exit.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        tls_auth: TLSAuth | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize base HTTP client.

        Args:
            http_client: Client to borrow, or None for a default client
            tls_auth: Client certificate to present on the TLS handshake
            timeout: Timeout in seconds for a default client

        Raises:
            ConfigurationError: If the client or its transport is of the wrong type.

        """
        borrowed = resolve_http_client(http_client)
        if tls_auth is not None:
            self._client = with_client_certificate(borrowed, tls_auth)
            self._owned = True
        elif borrowed is not None:
            self._client = borrowed
            self._owned = False
        else:
            self._client = httpx.AsyncClient(timeout=timeout)
            self._owned = True

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._client

    async def __aenter__(self) -> BaseClient:
        """Async context manager entry.

        Returns:
            The client instance.

        """
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if it was created here."""
        if self._owned:
            await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        config: RequestConfig | None = None,
    ) -> RawResponse:
        """Send a request and read at most ``MAX_RESPONSE_BYTES`` of the body.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Absolute request URL
            config: Request configuration

        Returns:
            The response status, headers and body.

        Raises:
            NetworkError: For network-related errors
            TokenFlowTimeoutError: For timeout errors

        """
        if config is None:
            config = RequestConfig()

        headers = dict(config.headers or {})
        content = config.content
        if config.form_data is not None:
            headers.setdefault("Content-Type", FORM_CONTENT_TYPE)
            content = _urlvalues.encode(config.form_data)

        try:
            async with self._client.stream(
                method,
                url,
                content=content,
                json=config.json_data,
                params=config.params,
                headers=headers,
            ) as response:
                body = await self._read_limited(response)
        except httpx.TimeoutException as e:
            raise TokenFlowTimeoutError("Request timeout", {"url": url}) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error: {e}", {"url": url}) from e

        logger.debug("%s %s -> %d", method, url, response.status_code)
        return RawResponse(response.status_code, response.headers, body)

    @staticmethod
    async def _read_limited(response: httpx.Response) -> bytes:
        chunks: list[bytes] = []
        remaining = MAX_RESPONSE_BYTES
        async for chunk in response.aiter_bytes():
            chunks.append(chunk[:remaining])
            remaining -= len(chunks[-1])
            if remaining <= 0:
                break
        return b"".join(chunks)


def parse_error_response(response: RawResponse) -> dict[str, Any]:
    """Parse an OAuth error body as JSON or form data.

    Returns:
        The parsed fields, or an empty dict when the body is not parseable.

    """
    content_type = response.content_type.lower()
    if content_type.startswith((FORM_CONTENT_TYPE, "text/plain")):
        try:
            values = _urlvalues.parse(response.text)
        except ValueError:
            return {}
        return {key: _urlvalues.first(values, key) for key in values}
    try:
        data = json.loads(response.body)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def raise_for_status(response: RawResponse) -> None:
    """Raise a RetrieveError when the response carries an error status.

    Raises:
        RetrieveError: If the status code is 400 or above.

    """
    if response.ok:
        return
    raise create_error_from_response(
        response.status_code,
        response.body,
        response.content_type,
        parse_error_response(response),
    )
