"""Downscoped credentials: restrict the permissions a short-lived token can use.

A credential access boundary lists, per Cloud Storage resource, the roles
the new token may exercise. The security token service trades the root
token for one limited to that boundary.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .._base import resolve_http_client
from .._reuse import ReuseTokenSource, TokenSource
from ..exceptions import ConfigurationError
from ..models.token_models import MAX_EXPIRES_IN, Token, utcnow
from ..sts import ACCESS_TOKEN_TYPE, ClientAuthentication, STSTokenExchangeRequest, exchange_token
from .externalaccount._urls import validate_token_url

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URL = "https://sts.googleapis.com/v1/token"
MAX_ACCESS_BOUNDARY_RULES = 10


class AvailabilityCondition(BaseModel):
    """Restricts a rule to the objects matched by a CEL expression."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    expression: str
    title: str | None = None
    description: str | None = None


class AccessBoundaryRule(BaseModel):
    """Upper bound on the permissions available for one resource.

    ``available_resource`` is a full resource name such as
    ``//storage.googleapis.com/projects/_/buckets/bucket-name`` and each
    permission names a role with the ``inRole:`` prefix, for example
    ``inRole:roles/storage.objectViewer``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    available_resource: str = Field(alias="availableResource")
    available_permissions: list[str] = Field(alias="availablePermissions")
    availability_condition: AvailabilityCondition | None = Field(
        default=None, alias="availabilityCondition"
    )


class CredentialAccessBoundary(BaseModel):
    """The rules that together bound a downscoped token."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    access_boundary_rules: list[AccessBoundaryRule] = Field(alias="accessBoundaryRules")

    def validate_rules(self) -> None:
        """Raise ConfigurationError unless there are 1 to 10 complete rules."""
        rules = self.access_boundary_rules
        if not rules:
            raise ConfigurationError("downscope: length of AccessBoundaryRules must be at least 1")
        if len(rules) > MAX_ACCESS_BOUNDARY_RULES:
            msg = f"downscope: length of AccessBoundaryRules may not be greater than {MAX_ACCESS_BOUNDARY_RULES}"
            raise ConfigurationError(msg)
        for rule in rules:
            if not rule.available_resource:
                raise ConfigurationError(
                    "downscope: all rules must have a nonempty AvailableResource",
                    details={"rule": rule.model_dump(by_alias=True, exclude_none=True)},
                )
            if not rule.available_permissions:
                raise ConfigurationError(
                    "downscope: all rules must provide at least one permission",
                    details={"rule": rule.model_dump(by_alias=True, exclude_none=True)},
                )

    def options(self) -> dict[str, object]:
        """Return the ``options`` payload of the exchange request."""
        return {"accessBoundary": self.model_dump(by_alias=True, exclude_none=True)}


class DownscopingTokenSource:
    """Exchanges tokens from a root source for tokens bounded by an access boundary.

    A downscoped token without its own lifetime inherits the expiry of the
    root token it was derived from.
    """

    def __init__(
        self,
        root_source: TokenSource | None,
        boundary: CredentialAccessBoundary,
        token_url: str = DEFAULT_TOKEN_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Validate the boundary and keep the root source.

        Args:
            root_source: Source of the token whose permissions are narrowed
            boundary: Rules the new token is limited to
            token_url: Security token service endpoint
            http_client: Client to send exchange requests with

        Raises:
            ConfigurationError: If the root source is missing, the boundary is
                invalid or the token URL is not a Google STS endpoint.

        """
        if root_source is None:
            raise ConfigurationError("downscope: rootSource cannot be nil")
        boundary.validate_rules()
        validate_token_url(token_url)
        self._root_source = root_source
        self._boundary = boundary
        self._token_url = token_url
        self._http_client = resolve_http_client(http_client)

    async def token(self) -> Token:
        root = await self._root_source.token()
        response = await exchange_token(
            self._token_url,
            STSTokenExchangeRequest(
                subject_token=root.access_token,
                subject_token_type=ACCESS_TOKEN_TYPE,
                requested_token_type=ACCESS_TOKEN_TYPE,
            ),
            ClientAuthentication(),
            options=self._boundary.options(),
            http_client=self._http_client,
        )
        logger.debug("Exchanged root token for a downscoped %s token", response.issued_token_type)

        lifetime = min(response.expires_in, MAX_EXPIRES_IN)
        expiry = utcnow() + timedelta(seconds=lifetime) if lifetime > 0 else root.expiry
        return Token(
            access_token=response.access_token,
            token_type=response.token_type,
            expiry=expiry,
        )


def new_token_source(
    root_source: TokenSource | None,
    boundary: CredentialAccessBoundary,
    *,
    token_url: str = DEFAULT_TOKEN_URL,
    http_client: httpx.AsyncClient | None = None,
) -> TokenSource:
    """Return a caching source of tokens downscoped from ``root_source``.

    A new downscoped token is requested whenever the cached one is stale.

    Raises:
        ConfigurationError: If the root source is missing or the boundary is invalid.

    """
    source = DownscopingTokenSource(root_source, boundary, token_url, http_client)
    return ReuseTokenSource(None, source)
