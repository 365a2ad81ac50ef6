"""OAuth 2.0 JWT bearer grant (RFC 7523 section 2.1), also called two-legged OAuth.

A service account signs an assertion with its private key and trades it
for an access token. No client secret is involved.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

import httpx
import jwt
from pydantic import BaseModel, ConfigDict, Field

from ._base import resolve_http_client
from ._options import Params
from ._privatekeyjwt import load_private_key
from ._reuse import ReuseTokenSource, TokenAuth, TokenSource
from ._tokens import ClientAuthConfig, retrieve_token
from .exceptions import ConfigurationError, InternalError, InvalidResponseError
from .models.oauth_models import Algorithm, AuthStyle, PrivateKeyAuth
from .models.token_models import Token, utcnow

logger = logging.getLogger(__name__)

JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
DEFAULT_ASSERTION_LIFETIME = timedelta(hours=1)
# Assertions are issued this long before the current time.
ISSUED_AT_SKEW = timedelta(seconds=10)


class Config(BaseModel):
    """JWT bearer flow configuration."""

    model_config = ConfigDict(frozen=True)

    # Issuer of the assertion, usually a service account email.
    email: str
    # PEM encoded RSA key, PKCS #1 or PKCS #8.
    private_key: str
    private_key_id: str = ""
    # User to impersonate, if any.
    subject: str = ""
    scopes: list[str] = Field(default_factory=list)
    token_url: str
    # Assertion lifetime; one hour when unset.
    expires: timedelta | None = None
    # Overrides token_url as the assertion audience.
    audience: str = ""
    private_claims: dict[str, Any] = Field(default_factory=dict)
    # Use the id_token of the response as the access token.
    use_id_token: bool = False

    def validate_config(self) -> None:
        """Check that the fields needed to sign an assertion are present.

        Raises:
            ConfigurationError: If the email, key or token URL is missing or the
                key is not an RSA key.

        """
        self._signing_key()

    def _signing_key(self) -> Any:
        if not self.email:
            raise ConfigurationError("email is required")
        if not self.private_key:
            raise ConfigurationError("private key is required")
        if not self.token_url:
            raise ConfigurationError("token URL is required")
        return load_private_key(PrivateKeyAuth(key=self.private_key, algorithm=Algorithm.RS256))

    def assertion(self, now: datetime | None = None) -> str:
        """Sign the bearer assertion.

        Args:
            now: Issue time, defaults to the current time

        Returns:
            The compact RS256 JWT.

        Raises:
            ConfigurationError: If the configuration is incomplete.

        """
        key = self._signing_key()
        issued = (now or utcnow()) - ISSUED_AT_SKEW
        claims: dict[str, Any] = dict(self.private_claims)
        claims.update(
            iss=self.email,
            aud=self.audience or self.token_url,
            iat=int(issued.timestamp()),
            exp=int((issued + (self.expires or DEFAULT_ASSERTION_LIFETIME)).timestamp()),
        )
        if self.scopes:
            claims["scope"] = " ".join(self.scopes)
        if self.subject:
            claims["sub"] = self.subject
            claims["prn"] = self.subject

        headers = {"kid": self.private_key_id} if self.private_key_id else None
        try:
            return jwt.encode(claims, key, algorithm="RS256", headers=headers)
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise InternalError("failed to encode JWT") from e

    async def token(self, http_client: httpx.AsyncClient | None = None) -> Token:
        """Sign an assertion and exchange it for a token.

        Args:
            http_client: Client to send the request with

        Returns:
            The issued token.

        Raises:
            ConfigurationError: If the configuration is incomplete
            RetrieveError: If the token endpoint rejects the assertion
            InvalidResponseError: If the response lacks the requested token

        """
        params: Params = {
            "grant_type": JWT_BEARER_GRANT_TYPE,
            "assertion": self.assertion(),
        }
        logger.debug("Requesting JWT bearer token for %s", self.email)
        token = await retrieve_token(
            self.token_url, params, ClientAuthConfig(auth_style=AuthStyle.IN_PARAMS), http_client
        )
        if not self.use_id_token:
            return token

        id_token = token.extra_field("id_token")
        if not isinstance(id_token, str) or not id_token:
            raise InvalidResponseError("oauth2: response missing ID token")
        return token.model_copy(update={"access_token": id_token})

    def token_source(self, http_client: httpx.AsyncClient | None = None) -> TokenSource:
        """Return a source that signs a new assertion whenever the cached token is stale.

        Raises:
            ConfigurationError: If the configuration is incomplete.

        """
        self.validate_config()
        return ReuseTokenSource(None, _JWTSource(self, resolve_http_client(http_client)))

    def client(self, http_client: httpx.AsyncClient | None = None) -> httpx.AsyncClient:
        """Return an ``httpx.AsyncClient`` that authorizes requests with fetched tokens."""
        return httpx.AsyncClient(auth=TokenAuth(self.token_source(http_client)))


class _JWTSource:
    def __init__(self, config: Config, http_client: httpx.AsyncClient | None) -> None:
        self._config = config
        self._http_client = http_client

    async def token(self) -> Token:
        return await self._config.token(self._http_client)
