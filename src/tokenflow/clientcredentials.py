"""OAuth 2.0 client credentials grant (RFC 6749 section 4.4).

Use this when the client acts on its own behalf rather than for a user.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import httpx
from pydantic import BaseModel, ConfigDict, Field

from ._base import resolve_http_client
from ._options import Params
from ._reuse import ReuseTokenSource, TokenAuth, TokenSource
from ._tokens import ClientAuthConfig, retrieve_token
from .models.oauth_models import AuthStyle, PrivateKeyAuth, TLSAuth
from .models.token_models import Token


class Config(BaseModel):
    """Client credentials flow configuration."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str = ""
    token_url: str
    scopes: list[str] = Field(default_factory=list)
    # Extra token request parameters. They override the built-in ones.
    endpoint_params: dict[str, str | list[str]] = Field(default_factory=dict)
    auth_style: AuthStyle = AuthStyle.AUTO
    private_key_auth: PrivateKeyAuth | None = None
    tls_auth: TLSAuth | None = None

    @property
    def client_auth(self) -> ClientAuthConfig:
        return ClientAuthConfig(
            client_id=self.client_id,
            client_secret=self.client_secret,
            auth_style=self.auth_style,
            private_key_auth=self.private_key_auth,
            tls_auth=self.tls_auth,
        )

    async def token(self, http_client: httpx.AsyncClient | None = None) -> Token:
        """Request a new token.

        Args:
            http_client: Client to send the request with

        Returns:
            The issued token.

        Raises:
            RetrieveError: If the token endpoint rejects the request
            InvalidResponseError: If the response lacks an access token

        """
        params: Params = {"grant_type": "client_credentials"}
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        params.update(self.endpoint_params)
        return await retrieve_token(self.token_url, params, self.client_auth, http_client)

    def token_source(self, http_client: httpx.AsyncClient | None = None) -> TokenSource:
        """Return a source that caches tokens and fetches a new one when stale.

        Raises:
            ConfigurationError: If the client authentication settings are invalid.

        """
        self.client_auth.validate()
        return ReuseTokenSource(None, _ClientCredentialsSource(self, resolve_http_client(http_client)))

    def client(self, http_client: httpx.AsyncClient | None = None) -> httpx.AsyncClient:
        """Return an ``httpx.AsyncClient`` that authorizes requests with fetched tokens."""
        return httpx.AsyncClient(auth=TokenAuth(self.token_source(http_client)))


class _ClientCredentialsSource:
    def __init__(self, config: Config, http_client: httpx.AsyncClient | None) -> None:
        self._config = config
        self._http_client = http_client

    async def token(self) -> Token:
        return await self._config.token(self._http_client)
