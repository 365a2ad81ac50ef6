"""RFC 8693 OAuth 2.0 token exchange against a security token service.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ._base import BaseClient, RequestConfig, raise_for_status
from ._options import Params
from .exceptions import InvalidResponseError
from .models.oauth_models import AuthStyle

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:token-exchange"
ACCESS_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:access_token"
JWT_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:jwt"
ID_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:id_token"
SAML2_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:saml2"


class STSTokenExchangeRequest(BaseModel):
    """Parameters of a token exchange request."""

    model_config = ConfigDict(frozen=True)

    grant_type: str = TOKEN_EXCHANGE_GRANT_TYPE
    audience: str = ""
    resource: str = ""
    scope: list[str] = Field(default_factory=list)
    requested_token_type: str = ACCESS_TOKEN_TYPE
    subject_token: str
    subject_token_type: str
    actor_token: str = ""
    actor_token_type: str = ""

    def form_values(self) -> Params:
        """Return the request as form parameters, leaving out unset optional ones."""
        values: Params = {
            "grant_type": self.grant_type,
            "requested_token_type": self.requested_token_type,
            "subject_token": self.subject_token,
            "subject_token_type": self.subject_token_type,
        }
        if self.audience:
            values["audience"] = self.audience
        if self.scope:
            values["scope"] = " ".join(self.scope)
        if self.resource:
            values["resource"] = self.resource
        if self.actor_token:
            values["actor_token"] = self.actor_token
            values["actor_token_type"] = self.actor_token_type
        return values


class STSTokenExchangeResponse(BaseModel):
    """Successful token exchange response."""

    access_token: str
    issued_token_type: str = ""
    token_type: str = ""
    expires_in: int = 0
    scope: str = ""
    refresh_token: str = ""


class ClientAuthentication(BaseModel):
    """OAuth client id and secret presented to the token service.

    Nothing is sent unless both the id and the secret are set.
    """

    model_config = ConfigDict(frozen=True)

    auth_style: AuthStyle = AuthStyle.IN_HEADER
    client_id: str = ""
    client_secret: str = ""

    def inject(self, values: Params, headers: dict[str, str]) -> None:
        if not self.client_id or not self.client_secret:
            return
        if self.auth_style is AuthStyle.IN_HEADER:
            plain = f"{self.client_id}:{self.client_secret}"
            encoded = base64.b64encode(plain.encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {encoded}"
        else:
            values["client_id"] = self.client_id
            values["client_secret"] = self.client_secret


async def exchange_token(
    endpoint: str,
    request: STSTokenExchangeRequest,
    auth: ClientAuthentication,
    headers: dict[str, str] | None = None,
    options: dict[str, Any] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> STSTokenExchangeResponse:
    """Exchange a subject token at ``endpoint``.

    Args:
        endpoint: Token service URL
        request: Exchange parameters
        auth: Client credentials to present
        headers: Extra request headers
        options: Sent JSON encoded as the ``options`` form field
        http_client: Client to send the request with

    Returns:
        The parsed exchange response.

    Raises:
        RetrieveError: If the token service answers with an error status
        InvalidResponseError: If the response cannot be parsed or lacks an access token

    """
    values = request.form_values()
    request_headers = dict(headers or {})
    auth.inject(values, request_headers)
    if options is not None:
        values["options"] = json.dumps(options, separators=(",", ":"))

    logger.debug("Exchanging %s token at %s", request.subject_token_type, endpoint)
    async with BaseClient(http_client) as client:
        response = await client.request(
            "POST", endpoint, config=RequestConfig(form_data=values, headers=request_headers)
        )
    raise_for_status(response)

    try:
        parsed = STSTokenExchangeResponse.model_validate_json(response.body)
    except ValidationError as e:
        msg = f"oauth2/google: failed to unmarshal response body from Secure Token Server: {e}"
        raise InvalidResponseError(msg) from e
    if not parsed.access_token:
        raise InvalidResponseError("oauth2/google: got empty access token from Secure Token Server")
    return parsed
