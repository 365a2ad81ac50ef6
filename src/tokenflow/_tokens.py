"""Token endpoint requests: client authentication, POST and response parsing.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timedelta
from typing import Any, NamedTuple

import httpx

from . import _urlvalues
from ._authstyle import auth_style_cache
from ._base import FORM_CONTENT_TYPE, BaseClient, RawResponse, RequestConfig, raise_for_status
from ._clientauth import apply_client_auth
from ._options import Params
from ._privatekeyjwt import load_private_key
from ._tls import validate_tls_auth
from .exceptions import ConfigurationError, InvalidResponseError, RetrieveError
from .models.oauth_models import AuthStyle, DeviceAuthResponse, PrivateKeyAuth, TLSAuth
from .models.token_models import EXPIRY_DELTA, MAX_EXPIRES_IN, Token, utcnow

logger = logging.getLogger(__name__)

# Statuses that suggest the server wanted the credentials somewhere else.
PROBE_RETRY_STATUSES = frozenset({400, 401})

_STANDARD_FIELDS = frozenset({"access_token", "token_type", "refresh_token", "expires_in"})


class ClientAuthConfig(NamedTuple):
    """How a client authenticates itself to a token endpoint."""

    client_id: str = ""
    client_secret: str = ""
    auth_style: AuthStyle = AuthStyle.AUTO
    private_key_auth: PrivateKeyAuth | None = None
    tls_auth: TLSAuth | None = None

    def validate(self) -> None:
        """Check the settings the auth style depends on.

        Raises:
            ConfigurationError: If a required key or certificate is missing or invalid.

        """
        if self.auth_style is AuthStyle.PRIVATE_KEY_JWT:
            if self.private_key_auth is None:
                raise ConfigurationError("private_key_auth is required for private_key_jwt")
            load_private_key(self.private_key_auth)
        elif self.auth_style is AuthStyle.TLS:
            if self.tls_auth is None:
                raise ConfigurationError("tls_auth is required for tls auth style")
            validate_tls_auth(self.tls_auth)


async def _send(
    url: str,
    params: Params,
    auth: ClientAuthConfig,
    style: AuthStyle,
    http_client: httpx.AsyncClient | None,
) -> RawResponse:
    form = dict(params)
    headers = {"Accept": "application/json"}
    apply_client_auth(
        style,
        auth.client_id,
        auth.client_secret,
        form,
        headers,
        token_url=url,
        private_key_auth=auth.private_key_auth,
    )
    tls_auth = None
    if style is AuthStyle.TLS:
        if auth.tls_auth is None:
            raise ConfigurationError("tls_auth is required for tls auth style")
        tls_auth = auth.tls_auth

    async with BaseClient(http_client, tls_auth=tls_auth) as client:
        response = await client.request(
            "POST", url, config=RequestConfig(form_data=form, headers=headers)
        )
    raise_for_status(response)
    return response


async def post_form(
    url: str,
    params: Params,
    auth: ClientAuthConfig,
    http_client: httpx.AsyncClient | None = None,
) -> tuple[RawResponse, datetime]:
    """POST ``params`` to ``url`` with client authentication applied.

    With ``AuthStyle.AUTO`` the credentials are first sent in a Basic
    header; a 400 or 401 answer triggers one retry with the credentials in
    the form body. The style that worked is remembered per URL.

    Returns:
        The successful response and the time the successful attempt started.

    Raises:
        RetrieveError: If the endpoint answers with an error status.

    """
    style = auth.auth_style
    probe = style is AuthStyle.AUTO
    if probe:
        cached = auth_style_cache.lookup(url)
        if cached is not None:
            style = cached
            probe = False
        else:
            style = AuthStyle.IN_HEADER

    logger.debug("Requesting %s (grant_type=%s)", url, params.get("grant_type", ""))
    start = utcnow()
    try:
        response = await _send(url, params, auth, style, http_client)
    except RetrieveError as e:
        if not probe or e.status_code not in PROBE_RETRY_STATUSES:
            raise
        logger.debug("Retrying %s with client credentials in params", url)
        style = AuthStyle.IN_PARAMS
        start = utcnow()
        response = await _send(url, params, auth, style, http_client)

    if probe:
        auth_style_cache.remember(url, style)
    return response, start


def _parse_seconds(value: Any, *, strict: bool) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return min(int(value), MAX_EXPIRES_IN)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return min(int(value), MAX_EXPIRES_IN)
    if strict:
        msg = f"oauth2: cannot parse json: invalid number {value!r}"
        raise InvalidResponseError(msg)
    return 0


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def parse_token_response(response: RawResponse, start: datetime) -> Token:
    """Decode a successful token response as form data or JSON.

    Args:
        response: The 2xx response
        start: When the request was sent; ``expires_in`` counts from here

    Returns:
        The token, with non-standard fields kept in ``extra``.

    Raises:
        InvalidResponseError: If the body cannot be parsed or lacks ``access_token``.

    """
    content_type = response.content_type.lower()
    if content_type.startswith((FORM_CONTENT_TYPE, "text/plain")):
        try:
            values = _urlvalues.parse(response.text)
        except ValueError as e:
            raise InvalidResponseError(f"oauth2: cannot parse response: {e}") from e
        raw: dict[str, Any] = {key: _urlvalues.first(values, key) for key in values}
        expires_in = _parse_seconds(raw.get("expires_in"), strict=False)
    else:
        try:
            raw = json.loads(response.body)
        except ValueError as e:
            raise InvalidResponseError(f"oauth2: cannot parse json: {e}") from e
        if not isinstance(raw, dict):
            raise InvalidResponseError("oauth2: cannot parse json: expected an object")
        expires_in = _parse_seconds(raw.get("expires_in"), strict=True)

    access_token = _string(raw.get("access_token"))
    if not access_token:
        raise InvalidResponseError("oauth2: server response missing access_token")

    expiry = None
    if expires_in > 0:
        expiry = start + timedelta(seconds=expires_in) - EXPIRY_DELTA

    return Token(
        access_token=access_token,
        token_type=_string(raw.get("token_type")),
        refresh_token=_string(raw.get("refresh_token")),
        expiry=expiry,
        extra={k: v for k, v in raw.items() if k not in _STANDARD_FIELDS},
    )


async def retrieve_token(
    token_url: str,
    params: Params,
    auth: ClientAuthConfig,
    http_client: httpx.AsyncClient | None = None,
) -> Token:
    """Request a token from ``token_url``.

    Args:
        token_url: Token endpoint
        params: Grant parameters, form encoded in key order
        auth: Client authentication settings
        http_client: Client to send the request with, None for a default one

    Returns:
        The issued token. A refresh grant keeps the submitted refresh token
        when the response carries none.

    Raises:
        RetrieveError: If the endpoint answers with an error status
        InvalidResponseError: If the success response is unusable

    """
    response, start = await post_form(token_url, params, auth, http_client)
    token = parse_token_response(response, start)
    submitted = params.get("refresh_token")
    if not token.refresh_token and isinstance(submitted, str) and submitted:
        token = token.model_copy(update={"refresh_token": submitted})
    return token


async def retrieve_device_auth(
    device_auth_url: str,
    params: Params,
    auth: ClientAuthConfig,
    http_client: httpx.AsyncClient | None = None,
) -> DeviceAuthResponse:
    """Start an RFC 8628 device authorization.

    Raises:
        RetrieveError: If the endpoint answers with an error status
        InvalidResponseError: If the response is not a device authorization

    """
    response, start = await post_form(device_auth_url, params, auth, http_client)
    try:
        raw = json.loads(response.body)
    except ValueError as e:
        raise InvalidResponseError(f"oauth2: cannot parse json: {e}") from e
    if not isinstance(raw, dict):
        raise InvalidResponseError("oauth2: cannot parse json: expected an object")

    expires_in = _parse_seconds(raw.get("expires_in"), strict=True)
    interval = _parse_seconds(raw.get("interval"), strict=True)
    try:
        return DeviceAuthResponse(
            device_code=raw.get("device_code", ""),
            user_code=raw.get("user_code", ""),
            # Some servers misspell the field as verification_url.
            verification_uri=raw.get("verification_uri") or raw.get("verification_url", ""),
            verification_uri_complete=raw.get("verification_uri_complete", ""),
            expiry=start + timedelta(seconds=expires_in) if expires_in > 0 else None,
            interval=interval,
        )
    except ValueError as e:
        raise InvalidResponseError(f"oauth2: invalid device authorization: {e}") from e
