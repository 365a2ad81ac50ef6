"""Test configuration and common utilities.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import pytest
import respx

from tokenflow._authstyle import auth_style_cache

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Generator


@pytest.fixture(autouse=True)
def clear_auth_style_cache() -> Generator[None, None, None]:
    """Forget auth styles learned by earlier tests."""
    auth_style_cache.clear()
    yield
    auth_style_cache.clear()


@pytest.fixture
def token_url() -> str:
    """Return the token endpoint used by the mocked server.

    Returns:
        str: The token URL for testing.

    """
    return "https://auth.tokenflow.test/token"


@pytest.fixture
def mock_responses() -> Generator[respx.MockRouter, None, None]:
    """Mock HTTP responses.

    Yields:
        The mock router for HTTP requests.

    """
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create a shared client for requests.

    Yields:
        httpx.AsyncClient: Client routed through the respx mock.

    """
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def sample_token_response() -> dict[str, Any]:
    """Sample token endpoint response.

    Returns:
        dict[str, Any]: Successful RFC 6749 token response.

    """
    return {
        "access_token": "90d64460d14870c08c81352a05dedd3465940a7c",
        "token_type": "bearer",
        "refresh_token": "refresh-1",
        "expires_in": 3600,
        "scope": "user",
    }


@pytest.fixture
def form_of() -> Any:
    """Return a helper that decodes a recorded request body.

    Returns:
        Callable mapping an ``httpx.Request`` to its form fields.

    """

    def decode(request: httpx.Request) -> dict[str, str]:
        return dict(httpx.QueryParams(request.content.decode()).multi_items())

    return decode
