"""OAuth 2.0 client configuration: authorization code, password, refresh and device flows.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from pydantic import BaseModel, ConfigDict, Field

from . import _urlvalues
from ._base import resolve_http_client
from ._options import AuthCodeOption, Params, apply_options
from ._reuse import ReuseTokenSource, TokenAuth, TokenSource
from ._tokens import ClientAuthConfig, retrieve_device_auth, retrieve_token
from .exceptions import ConfigurationError, RetrieveError, TimeoutError as TokenFlowTimeoutError
from .models.oauth_models import DeviceAuthResponse, Endpoint, PrivateKeyAuth, TLSAuth
from .models.token_models import Token, utcnow

logger = logging.getLogger(__name__)

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

# RFC 8628 section 3.5 polling errors.
ERR_AUTHORIZATION_PENDING = "authorization_pending"
ERR_SLOW_DOWN = "slow_down"

DEFAULT_POLL_INTERVAL = 5
SLOW_DOWN_INCREMENT = 5


class Config(BaseModel):
    """OAuth 2.0 client configuration for a single provider.

    Example:
        >>> config = Config(
        ...     client_id="CLIENT_ID",
        ...     client_secret="CLIENT_SECRET",
        ...     endpoint=Endpoint(auth_url="https://provider/auth", token_url="https://provider/token"),
        ...     redirect_url="https://app.example.com/callback",
        ...     scopes=["scope1", "scope2"],
        ... )
        >>> url = config.auth_code_url("state")

    """

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str = ""
    endpoint: Endpoint = Field(default_factory=Endpoint)
    redirect_url: str = ""
    scopes: list[str] = Field(default_factory=list)
    private_key_auth: PrivateKeyAuth | None = None
    tls_auth: TLSAuth | None = None

    @property
    def client_auth(self) -> ClientAuthConfig:
        return ClientAuthConfig(
            client_id=self.client_id,
            client_secret=self.client_secret,
            auth_style=self.endpoint.auth_style,
            private_key_auth=self.private_key_auth,
            tls_auth=self.tls_auth,
        )

    def auth_code_url(self, state: str, *options: AuthCodeOption) -> str:
        """Build the URL of the provider's consent page.

        Query parameters are sorted by name. Options run after the built-in
        parameters are set and may override any of them.

        Args:
            state: Opaque value the redirect handler should check
            *options: Extra parameters, such as PKCE challenge options

        Returns:
            The authorization URL.

        """
        params: Params = {
            "response_type": "code",
            "client_id": self.client_id,
        }
        if self.redirect_url:
            params["redirect_uri"] = self.redirect_url
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        if state:
            params["state"] = state
        apply_options(params, options)

        query = _urlvalues.encode(params)
        separator = "&" if "?" in self.endpoint.auth_url else "?"
        return f"{self.endpoint.auth_url}{separator}{query}"

    async def exchange(
        self,
        code: str,
        *options: AuthCodeOption,
        http_client: httpx.AsyncClient | None = None,
    ) -> Token:
        """Exchange an authorization code for a token.

        Args:
            code: Code returned to the redirect URL
            *options: Extra parameters, such as the PKCE verifier options
            http_client: Client to send the request with

        Returns:
            The issued token.

        Raises:
            RetrieveError: If the token endpoint rejects the exchange
            InvalidResponseError: If the response lacks an access token

        """
        params: Params = {"grant_type": "authorization_code", "code": code}
        if self.redirect_url:
            params["redirect_uri"] = self.redirect_url
        apply_options(params, options)
        return await self._retrieve(params, http_client)

    async def password_credentials_token(
        self,
        username: str,
        password: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> Token:
        """Obtain a token with the resource owner password grant."""
        params: Params = {
            "grant_type": "password",
            "username": username,
            "password": password,
        }
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        return await self._retrieve(params, http_client)

    def token_source(
        self,
        token: Token | None,
        http_client: httpx.AsyncClient | None = None,
    ) -> TokenSource:
        """Return a source that reuses ``token`` and refreshes it when it goes stale.

        Raises:
            ConfigurationError: If the client authentication settings are invalid.

        """
        self.client_auth.validate()
        refresh_token = token.refresh_token if token is not None else ""
        refresher = RefreshTokenSource(self, refresh_token, resolve_http_client(http_client))
        return ReuseTokenSource(token, refresher)

    def client(
        self,
        token: Token | None,
        http_client: httpx.AsyncClient | None = None,
    ) -> httpx.AsyncClient:
        """Return an ``httpx.AsyncClient`` that authorizes requests with ``token``.

        The token is refreshed as needed through ``http_client``.
        """
        return httpx.AsyncClient(auth=TokenAuth(self.token_source(token, http_client)))

    async def device_auth(
        self,
        *options: AuthCodeOption,
        http_client: httpx.AsyncClient | None = None,
    ) -> DeviceAuthResponse:
        """Start an RFC 8628 device authorization.

        Returns:
            The device and user codes plus where the user should enter them.

        Raises:
            ConfigurationError: If the endpoint has no device authorization URL.

        """
        if not self.endpoint.device_auth_url:
            raise ConfigurationError("endpoint missing device_auth_url")
        params: Params = {"client_id": self.client_id}
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        apply_options(params, options)
        return await retrieve_device_auth(
            self.endpoint.device_auth_url, params, self.client_auth, http_client
        )

    async def device_access_token(
        self,
        response: DeviceAuthResponse,
        *options: AuthCodeOption,
        http_client: httpx.AsyncClient | None = None,
    ) -> Token:
        """Poll the token endpoint until the user approves the device.

        Waits ``response.interval`` seconds (5 when unset) between attempts
        and backs off by 5 seconds on each ``slow_down`` answer.

        Raises:
            RetrieveError: If the server answers with any error other than a
                pending authorization or a slow-down request
            TokenFlowTimeoutError: If the device code expires first

        """
        params: Params = {
            "client_id": self.client_id,
            "grant_type": DEVICE_CODE_GRANT_TYPE,
            "device_code": response.device_code,
        }
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        apply_options(params, options)

        interval = response.interval or DEFAULT_POLL_INTERVAL
        while True:
            await asyncio.sleep(interval)
            if response.expiry is not None and utcnow() >= response.expiry:
                raise TokenFlowTimeoutError("device code expired")
            try:
                return await self._retrieve(params, http_client)
            except RetrieveError as e:
                if e.error_code == ERR_SLOW_DOWN:
                    interval += SLOW_DOWN_INCREMENT
                    logger.debug("Device token polling slowed to every %ds", interval)
                elif e.error_code != ERR_AUTHORIZATION_PENDING:
                    raise

    async def _retrieve(self, params: Params, http_client: httpx.AsyncClient | None) -> Token:
        return await retrieve_token(
            self.endpoint.token_url, params, self.client_auth, http_client
        )


class RefreshTokenSource:
    """Obtains new tokens with the refresh-token grant.

    The most recent refresh token is kept, so a server that rotates refresh
    tokens keeps working; one that omits it keeps the previous one.
    """

    def __init__(
        self,
        config: Config,
        refresh_token: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._refresh_token = refresh_token
        self._http_client = http_client

    async def token(self) -> Token:
        if not self._refresh_token:
            raise ConfigurationError("oauth2: token expired and refresh token is not set")
        params: Params = {
            "grant_type": "refresh_token",
            "refresh_token": self._refresh_token,
        }
        token = await self._config._retrieve(params, self._http_client)
        self._refresh_token = token.refresh_token
        return token
