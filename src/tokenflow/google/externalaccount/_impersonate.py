"""Service account impersonation through the IAM credentials API.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

import httpx
from pydantic import BaseModel, ValidationError

from ..._base import BaseClient, RequestConfig
from ..._reuse import TokenSource
from ...exceptions import InvalidResponseError, RetrieveError
from ...models.token_models import Token

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


class _GenerateAccessTokenResponse(BaseModel):
    accessToken: str  # noqa: N815
    expireTime: str  # noqa: N815


class ImpersonateTokenSource:
    """Trades a federated access token for a service account access token."""

    def __init__(
        self,
        url: str,
        scopes: list[str],
        source: TokenSource,
        lifetime_seconds: int = DEFAULT_TOKEN_LIFETIME_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.scopes = list(scopes)
        self.lifetime_seconds = lifetime_seconds
        self._source = source
        self._http_client = http_client

    def _request_body(self) -> str:
        body: dict[str, object] = {"lifetime": f"{self.lifetime_seconds}s"}
        if self.scopes:
            body["scope"] = self.scopes
        return json.dumps(body, separators=(",", ":"))

    async def token(self) -> Token:
        """Fetch a service account token, authorized by the federated token.

        Raises:
            RetrieveError: If the IAM credentials API answers outside 2xx
            InvalidResponseError: If the response cannot be parsed

        """
        federated = await self._source.token()
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"{federated.canonical_type()} {federated.access_token}",
        }

        logger.debug("Impersonating service account via %s", self.url)
        async with BaseClient(self._http_client) as client:
            response = await client.request(
                "POST",
                self.url,
                config=RequestConfig(content=self._request_body(), headers=headers),
            )
        if not httpx.codes.is_success(response.status_code):
            raise RetrieveError(response.status_code, response.body, response.content_type)

        try:
            parsed = _GenerateAccessTokenResponse.model_validate_json(response.body)
            expiry = datetime.fromisoformat(parsed.expireTime)
        except (ValidationError, ValueError) as e:
            raise InvalidResponseError(f"impersonate: unable to parse response: {e}") from e
        return Token(access_token=parsed.accessToken, token_type="Bearer", expiry=expiry)
